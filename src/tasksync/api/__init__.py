"""HTTP API for tasks and calendar sync."""
