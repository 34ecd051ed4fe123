"""
discordassist.api.auth — Discord OAuth2 + dashboard sessions
==============================================================

Two ways back from Discord's consent screen, one way in:

* **popup** — the dashboard opened the consent screen in a popup.  The
  callback answers with a tiny HTML page that ``postMessage``s the result to
  ``window.opener`` and closes itself.
* **redirect** — popups were blocked.  The callback redirects the browser to
  the dashboard (or back to ``/?auth_error=…``).

The delivery mode travels in the OAuth ``state`` parameter.  Every state is
stored when issued and consumed once by the callback; an unknown, reused
or expired state fails the sign-in before any Discord call.  Both wrappers,
and manual sign-in, end in :func:`_sign_in`, which is the only caller of
:func:`~discordassist.services.session_service.establish_session`.
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import Annotated, Literal
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from discordassist.api.deps import (
    get_config,
    get_oauth_credentials,
    get_oauth_transport,
    get_session_secret,
    get_storage,
)
from discordassist.config import DiscordAssistConfig, OAuthCredentials
from discordassist.constants import SNOWFLAKE_PATTERN
from discordassist.database.engine import run_db
from discordassist.errors import (
    DiscordAssistError,
    Forbidden,
    InternalError,
    InvalidStateError,
    ProviderError,
)
from discordassist.services.auth_service import build_authorization_url, complete_auth
from discordassist.services.session_service import (
    SESSION_COOKIE_NAME,
    IssuedSession,
    destroy_session,
    establish_session,
)
from discordassist.storage.base import Storage
from discordassist.storage.records import UserRecord

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

Delivery = Literal["popup", "redirect"]


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ManualLogin(BaseModel):
    model_config = ConfigDict(extra="forbid")

    discord_id: str = Field(pattern=SNOWFLAKE_PATTERN)
    username: str = Field(min_length=1, max_length=100)
    email: str | None = Field(None, max_length=320)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _require_oauth(creds: OAuthCredentials) -> None:
    missing = []
    if not creds.client_id:
        missing.append("DISCORD_CLIENT_ID")
    if not creds.client_secret:
        missing.append("DISCORD_CLIENT_SECRET")
    if missing:
        raise InternalError(
            "Discord OAuth is not configured: missing " + ", ".join(missing)
        )


def _encode_state(delivery: Delivery) -> str:
    return f"{delivery}.{secrets.token_urlsafe(16)}"


def _delivery_from_state(state: str | None) -> Delivery:
    mode = (state or "").split(".", 1)[0]
    return "redirect" if mode == "redirect" else "popup"


def _set_session_cookie(
    response: Response, issued: IssuedSession, cfg: DiscordAssistConfig
) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        issued.token,
        max_age=issued.max_age,
        httponly=True,
        samesite="lax",
        secure=cfg.is_production,
        path="/",
    )


async def _sign_in(
    storage: Storage, user: UserRecord, secret: str, response: Response, cfg: DiscordAssistConfig
) -> None:
    issued = await establish_session(storage, user, secret)
    _set_session_cookie(response, issued, cfg)


def _script_json(value: object) -> str:
    # Safe to inline inside <script>: no closing tag can sneak through.
    return json.dumps(value).replace("</", "<\\/")


def _popup_page(
    title: str, heading: str, payload: dict, fallback_url: str, cfg: DiscordAssistConfig
) -> str:
    target_origin = cfg.frontend_url or ""
    return f"""<!DOCTYPE html>
<html>
<head>
  <title>{title}</title>
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; text-align: center; padding: 2rem;">
  <h2>{heading}</h2>
  <p>You can close this window.</p>
  <script>
    (function () {{
      var payload = {_script_json(payload)};
      var target = {_script_json(target_origin)} || window.location.origin;
      if (window.opener) {{
        window.opener.postMessage(payload, target);
        setTimeout(function () {{ window.close(); }}, 500);
      }} else {{
        window.location.href = {_script_json(fallback_url)};
      }}
    }})();
  </script>
</body>
</html>"""


def _error_location(cfg: DiscordAssistConfig, exc: DiscordAssistError, retryable: bool) -> str:
    query = urlencode({"auth_error": exc.code, "retry": "1" if retryable else "0"})
    return f"{cfg.frontend_url}/?{query}"


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("/start")
async def start(
    delivery: Delivery = "popup",
    creds: OAuthCredentials = Depends(get_oauth_credentials),
    storage: Storage = Depends(get_storage),
):
    """Return the Discord consent-screen URL."""
    _require_oauth(creds)
    state = _encode_state(delivery)
    await run_db(storage.create_oauth_state, state)
    return {"authorization_url": build_authorization_url(creds, state=state)}


@router.get("/callback")
async def callback(
    code: str | None = None,
    error: str | None = None,
    state: str | None = None,
    cfg: DiscordAssistConfig = Depends(get_config),
    creds: OAuthCredentials = Depends(get_oauth_credentials),
    storage: Storage = Depends(get_storage),
    secret: str = Depends(get_session_secret),
    transport: httpx.AsyncBaseTransport | None = Depends(get_oauth_transport),
):
    """Finish the OAuth flow and hand the result to the popup or redirect wrapper."""
    delivery = _delivery_from_state(state)
    try:
        _require_oauth(creds)
        if not state or not await run_db(storage.consume_oauth_state, state):
            raise InvalidStateError()
        user = await complete_auth(
            storage,
            creds,
            code=code,
            error=error,
            timeout=cfg.oauth_timeout_seconds,
            transport=transport,
        )
        if delivery == "redirect":
            response: Response = RedirectResponse(cfg.landing_url, status_code=302)
        else:
            response = HTMLResponse(
                _popup_page(
                    "Authentication Success",
                    "✅ Authentication Successful!",
                    {"type": "DISCORD_AUTH_SUCCESS", "user": user.to_dict()},
                    cfg.landing_url,
                    cfg,
                )
            )
        await _sign_in(storage, user, secret, response, cfg)
        return response
    except DiscordAssistError as exc:
        logger.warning("Discord sign-in failed (%s): %s", exc.code, exc.message)
        return _failure_response(delivery, exc, cfg)
    except Exception:
        logger.exception("Unexpected error during Discord sign-in")
        return _failure_response(delivery, InternalError("Authentication failed"), cfg)


def _failure_response(
    delivery: Delivery, exc: DiscordAssistError, cfg: DiscordAssistConfig
) -> Response:
    retryable = isinstance(exc, (ProviderError, InternalError, InvalidStateError))
    if delivery == "redirect":
        return RedirectResponse(_error_location(cfg, exc, retryable), status_code=302)
    return HTMLResponse(
        _popup_page(
            "Authentication Error",
            "❌ Authentication Failed",
            {
                "type": "DISCORD_AUTH_ERROR",
                "error": exc.message,
                "code": exc.code,
                "retryable": retryable,
            },
            _error_location(cfg, exc, retryable),
            cfg,
        ),
        status_code=exc.status_code,
    )


@router.post("/manual")
async def manual_login(
    body: ManualLogin,
    cfg: DiscordAssistConfig = Depends(get_config),
    storage: Storage = Depends(get_storage),
    secret: str = Depends(get_session_secret),
):
    """Sign in without OAuth (only when ``allow_manual_auth`` is on)."""
    if not cfg.allow_manual_auth:
        raise Forbidden("Manual sign-in is disabled")

    user = await run_db(
        storage.upsert_user,
        discord_id=body.discord_id,
        username=body.username,
        email=body.email or None,
    )
    response = JSONResponse({"success": True, "user": user.to_dict()})
    await _sign_in(storage, user, secret, response, cfg)
    logger.info("Manual sign-in for %s (%s)", user.username, user.discord_id)
    return response


@router.post("/logout")
async def logout(
    request: Request,
    storage: Annotated[Storage, Depends(get_storage)],
    secret: Annotated[str, Depends(get_session_secret)],
):
    """Destroy the server-side session and clear the cookie."""
    await destroy_session(storage, request.cookies.get(SESSION_COOKIE_NAME), secret)
    response = JSONResponse({"success": True})
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response
