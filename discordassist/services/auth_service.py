"""
discordassist.services.auth_service — Discord OAuth2 Exchange
===============================================================

Turns an authorization code into a local :class:`UserRecord`.

* :func:`build_authorization_url` — consent-screen URL, no side effects.
* :func:`fetch_identity` — token exchange + profile fetch over httpx.  Every
  transport failure, timeout, or non-200 answer becomes a
  :class:`~discordassist.errors.ProviderError`.
* :func:`complete_auth` — validates the callback parameters, fetches the
  identity, then upserts the user.  Nothing is written unless both Discord
  calls succeeded.

Session creation is *not* done here; see
:mod:`discordassist.services.session_service`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from discordassist.config import OAuthCredentials
from discordassist.constants import (
    DISCORD_API,
    DISCORD_AUTHORIZE_URL,
    DISCORD_AVATAR_URL,
    OAUTH_SCOPES,
)
from discordassist.database.engine import run_db
from discordassist.errors import MissingCodeError, ProviderDenied, ProviderError
from discordassist.storage.base import Storage
from discordassist.storage.records import UserRecord

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_FAILED = "Discord authentication expired. Please try again."
PROFILE_FETCH_FAILED = "Failed to get user information from Discord"
PROVIDER_TIMEOUT = "Discord did not respond in time. Please try again."


@dataclass(frozen=True, slots=True)
class Identity:
    """The subset of a Discord profile we keep."""

    discord_id: str
    username: str
    avatar_url: str | None
    email: str | None

    @classmethod
    def from_profile(cls, profile: dict) -> Identity:
        discord_id = str(profile["id"])
        avatar = profile.get("avatar")
        return cls(
            discord_id=discord_id,
            username=profile.get("username") or "Unknown",
            avatar_url=(
                DISCORD_AVATAR_URL.format(user_id=discord_id, avatar=avatar) if avatar else None
            ),
            email=profile.get("email"),
        )


def build_authorization_url(creds: OAuthCredentials, *, state: str | None = None) -> str:
    """Return the Discord consent-screen URL for *creds*."""
    params = {
        "client_id": creds.client_id,
        "redirect_uri": creds.redirect_uri,
        "response_type": "code",
        "scope": " ".join(OAUTH_SCOPES),
    }
    if state:
        params["state"] = state
    return f"{DISCORD_AUTHORIZE_URL}?{urlencode(params)}"


async def fetch_identity(
    creds: OAuthCredentials,
    code: str,
    *,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Identity:
    """Exchange *code* for a token and fetch the caller's Discord profile.

    No retries: the browser is expected to restart the flow.

    Raises
    ------
    ProviderError
        On timeout, transport failure, a non-200 answer from either
        endpoint, or a malformed body.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            token_resp = await client.post(
                f"{DISCORD_API}/oauth2/token",
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": creds.redirect_uri,
                    "client_id": creds.client_id,
                    "client_secret": creds.client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            if token_resp.status_code != 200:
                logger.warning(
                    "Discord token exchange failed (%s): %s",
                    token_resp.status_code,
                    token_resp.text[:200],
                )
                raise ProviderError(TOKEN_EXCHANGE_FAILED)

            access_token = token_resp.json().get("access_token")
            if not access_token:
                logger.warning("Discord token response carried no access_token")
                raise ProviderError(TOKEN_EXCHANGE_FAILED)

            user_resp = await client.get(
                f"{DISCORD_API}/users/@me",
                headers={"Authorization": f"Bearer {access_token}"},
            )
            if user_resp.status_code != 200:
                logger.warning(
                    "Discord profile fetch failed (%s): %s",
                    user_resp.status_code,
                    user_resp.text[:200],
                )
                raise ProviderError(PROFILE_FETCH_FAILED)

            return Identity.from_profile(user_resp.json())
    except httpx.TimeoutException as exc:
        logger.warning("Discord OAuth call timed out: %s", exc)
        raise ProviderError(PROVIDER_TIMEOUT) from exc
    except httpx.HTTPError as exc:
        logger.warning("Discord OAuth transport error: %s", exc)
        raise ProviderError() from exc
    except (ValueError, KeyError) as exc:
        logger.warning("Discord returned a malformed OAuth response: %s", exc)
        raise ProviderError(PROFILE_FETCH_FAILED) from exc


async def complete_auth(
    storage: Storage,
    creds: OAuthCredentials,
    *,
    code: str | None,
    error: str | None = None,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> UserRecord:
    """Validate callback parameters, resolve the identity, upsert the user.

    Raises
    ------
    ProviderDenied
        Discord redirected back with an ``error`` parameter.
    MissingCodeError
        No authorization code was supplied.
    ProviderError
        Either Discord call failed (see :func:`fetch_identity`).
    """
    if error:
        logger.info("Discord authorization denied: %s", error)
        raise ProviderDenied(details={"provider_error": error})
    if not code:
        raise MissingCodeError()

    identity = await fetch_identity(creds, code, timeout=timeout, transport=transport)
    user = await run_db(
        storage.upsert_user,
        discord_id=identity.discord_id,
        username=identity.username,
        avatar_url=identity.avatar_url,
        email=identity.email,
    )
    logger.info("Discord login for %s (%s)", user.username, user.discord_id)
    return user
