"""
tests/test_session_service.py — Dashboard Sessions
====================================================
"""

from __future__ import annotations

from datetime import timedelta

import jwt
import pytest
from conftest import run_async

from discordassist.errors import AuthenticationRequired, InternalError
from discordassist.services.session_service import (
    JWT_ALGORITHM,
    SESSION_TTL,
    destroy_session,
    establish_session,
    resolve_session,
)
from discordassist.storage.base import utcnow

SECRET = "s" * 48


@pytest.fixture
def user(storage):
    return storage.upsert_user(discord_id="999", username="Ada")


class TestEstablishSession:
    def test_token_round_trips_to_user(self, storage, user):
        issued = run_async(establish_session(storage, user, SECRET))

        assert issued.max_age == int(SESSION_TTL.total_seconds())
        assert run_async(resolve_session(storage, issued.token, SECRET)).id == user.id

    def test_token_claims(self, storage, user):
        issued = run_async(establish_session(storage, user, SECRET))
        claims = jwt.decode(issued.token, SECRET, algorithms=[JWT_ALGORITHM])

        assert claims["sid"] == issued.session.id
        assert claims["sub"] == user.id
        assert "exp" in claims

    def test_each_login_gets_a_new_session(self, storage, user):
        a = run_async(establish_session(storage, user, SECRET))
        b = run_async(establish_session(storage, user, SECRET))
        assert a.session.id != b.session.id


class TestResolveSession:
    def test_missing_token(self, storage):
        with pytest.raises(AuthenticationRequired):
            run_async(resolve_session(storage, None, SECRET))

    def test_wrong_secret(self, storage, user):
        issued = run_async(establish_session(storage, user, SECRET))
        with pytest.raises(AuthenticationRequired):
            run_async(resolve_session(storage, issued.token, "x" * 48))

    def test_tampered_subject(self, storage, user):
        issued = run_async(establish_session(storage, user, SECRET))
        forged = jwt.encode(
            {"sid": issued.session.id, "sub": "someone-else", "exp": issued.session.expires_at},
            SECRET,
            algorithm=JWT_ALGORITHM,
        )
        with pytest.raises(AuthenticationRequired):
            run_async(resolve_session(storage, forged, SECRET))

    def test_expired_row_is_rejected_and_removed(self, storage, user):
        issued = run_async(establish_session(storage, user, SECRET))
        later = utcnow() + SESSION_TTL + timedelta(minutes=1)

        with pytest.raises(AuthenticationRequired):
            run_async(resolve_session(storage, issued.token, SECRET, now=later))
        assert storage.get_session(issued.session.id) is None

    def test_expired_token(self, storage, user):
        past = utcnow() - SESSION_TTL - timedelta(hours=1)
        issued = run_async(establish_session(storage, user, SECRET, now=past))
        with pytest.raises(AuthenticationRequired):
            run_async(resolve_session(storage, issued.token, SECRET))


class TestDestroySession:
    def test_logout_invalidates_token_immediately(self, storage, user):
        issued = run_async(establish_session(storage, user, SECRET))

        run_async(destroy_session(storage, issued.token, SECRET))

        assert storage.get_session(issued.session.id) is None
        with pytest.raises(AuthenticationRequired):
            run_async(resolve_session(storage, issued.token, SECRET))

    def test_missing_or_garbage_token_is_a_no_op(self, storage):
        run_async(destroy_session(storage, None, SECRET))
        run_async(destroy_session(storage, "not-a-jwt", SECRET))

    def test_storage_failure_is_internal_error(self, storage, user):
        issued = run_async(establish_session(storage, user, SECRET))

        class BrokenStorage:
            def delete_session(self, session_id):
                raise RuntimeError("disk on fire")

        with pytest.raises(InternalError, match="Could not log out"):
            run_async(destroy_session(BrokenStorage(), issued.token, SECRET))
