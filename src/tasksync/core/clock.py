"""Wall-clock helpers.

Timestamps that cross the API boundary (due dates, token expiry) are epoch
milliseconds, matching what the browser client sends and stores.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def ms_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, UTC)
