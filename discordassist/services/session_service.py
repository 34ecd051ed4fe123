"""
discordassist.services.session_service — Dashboard Sessions
=============================================================

Server-side sessions with a signed cookie pointing at them.

* The session row (``auth_sessions``) is the source of truth; it holds the
  user id and an absolute expiry 24 hours after creation.  There is no
  sliding renewal.
* The cookie carries an HS256 JWT with ``sid`` (session id), ``sub`` (user
  id) and ``exp``.  A valid signature alone is not enough: the row must
  still exist, so logout takes effect immediately.

:func:`establish_session` is the only function that creates sessions.  The
popup callback, the redirect callback and manual login all go through it.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt
from jwt.exceptions import InvalidTokenError

from discordassist.database.engine import run_db
from discordassist.errors import AuthenticationRequired, InternalError
from discordassist.storage.base import Storage, utcnow
from discordassist.storage.records import SessionRecord, UserRecord

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(hours=24)
SESSION_COOKIE_NAME = "discordassist.sid"
JWT_ALGORITHM = "HS256"


@dataclass(frozen=True, slots=True)
class IssuedSession:
    token: str
    session: SessionRecord

    @property
    def max_age(self) -> int:
        """Seconds until expiry, for the cookie ``Max-Age``."""
        return round((self.session.expires_at - self.session.created_at).total_seconds())


async def establish_session(
    storage: Storage, user: UserRecord, secret: str, *, now: datetime | None = None
) -> IssuedSession:
    """Create a session for *user* and return it with its signed token."""
    now = now or utcnow()
    expires_at = now + SESSION_TTL
    session = await run_db(
        storage.create_session,
        session_id=secrets.token_urlsafe(32),
        user_id=user.id,
        expires_at=expires_at,
    )
    token = jwt.encode(
        {"sid": session.id, "sub": user.id, "exp": session.expires_at},
        secret,
        algorithm=JWT_ALGORITHM,
    )
    logger.info("Session established for user %s", user.id)
    return IssuedSession(token=token, session=session)


async def resolve_session(
    storage: Storage, token: str | None, secret: str, *, now: datetime | None = None
) -> UserRecord:
    """Return the user behind *token*.

    Raises
    ------
    AuthenticationRequired
        Missing, tampered or expired token; unknown or expired session row;
        or a session whose user no longer exists.
    """
    if not token:
        raise AuthenticationRequired()
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise AuthenticationRequired("Invalid or expired session")

    session = await run_db(storage.get_session, str(payload.get("sid", "")))
    if session is None or session.user_id != payload.get("sub"):
        raise AuthenticationRequired("Invalid or expired session")
    if session.is_expired(now or utcnow()):
        await run_db(storage.delete_session, session.id)
        raise AuthenticationRequired("Invalid or expired session")

    user = await run_db(storage.get_user, session.user_id)
    if user is None:
        raise AuthenticationRequired()
    return user


async def destroy_session(storage: Storage, token: str | None, secret: str) -> None:
    """Delete the session behind *token*.

    A missing or unreadable token means there is nothing to destroy.  A
    storage failure is reported as :class:`InternalError`.
    """
    if not token:
        return
    try:
        payload = jwt.decode(
            token, secret, algorithms=[JWT_ALGORITHM], options={"verify_exp": False}
        )
    except InvalidTokenError:
        return
    try:
        await run_db(storage.delete_session, str(payload.get("sid", "")))
    except Exception as exc:
        logger.exception("Failed to destroy session")
        raise InternalError("Could not log out") from exc
