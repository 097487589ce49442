"""Tests for bearer-token identity resolution."""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from tasksync.auth import Identity, create_access_token, decode_identity, require_identity
from tasksync.calendar.errors import Unauthenticated

pytestmark = pytest.mark.unit

SECRET = "test-secret"


def test_round_trip():
    token = create_access_token("user-1", SECRET)
    assert decode_identity(token, SECRET) == Identity(subject="user-1")


def test_wrong_secret():
    token = create_access_token("user-1", SECRET)
    assert decode_identity(token, "other-secret") is None


def test_expired_token():
    token = create_access_token("user-1", SECRET, ttl=timedelta(seconds=-10))
    assert decode_identity(token, SECRET) is None


def test_missing_subject_claim():
    token = jwt.encode({"name": "nobody"}, SECRET, algorithm="HS256")
    assert decode_identity(token, SECRET) is None


@pytest.mark.parametrize(("token", "secret"), [(None, SECRET), ("abc", None), ("", SECRET)])
def test_missing_inputs(token, secret):
    assert decode_identity(token, secret) is None


def test_blank_subject_rejected():
    with pytest.raises(ValueError):
        create_access_token("  ", SECRET)


def test_require_identity():
    identity = Identity(subject="user-1")
    assert require_identity(identity) is identity
    with pytest.raises(Unauthenticated):
        require_identity(None)
    with pytest.raises(Unauthenticated):
        require_identity(Identity(subject=""))
