"""
discordassist.errors — Error Taxonomy
=======================================

Every failure that crosses a component boundary is one of the classes below.
The API layer turns them into ``{"error": code, "message": ...}`` bodies;
the Auth Bridge and the Lifecycle Manager convert transport/SDK exceptions
into them so raw ``httpx`` or ``discord`` errors never reach a caller.
"""

from __future__ import annotations

from typing import Any


class DiscordAssistError(Exception):
    """Base class for all DiscordAssist errors.

    Parameters
    ----------
    message:
        Human-readable description, safe to show to the end user.
    details:
        Optional structured context included in API error bodies.
    """

    code: str = "internal_error"
    status_code: int = 500
    default_message: str = "Unexpected error"

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class AuthenticationRequired(DiscordAssistError):
    code = "authentication_required"
    status_code = 401
    default_message = "Not authenticated"


class ProviderError(DiscordAssistError):
    """An upstream Discord call (OAuth or gateway) failed or timed out."""

    code = "provider_error"
    status_code = 502
    default_message = "Discord could not be reached. Please try again."


class ProviderDenied(DiscordAssistError):
    """The user declined authorization on Discord's consent screen."""

    code = "provider_denied"
    status_code = 400
    default_message = "Discord authorization was denied"


class ConfigNotFound(DiscordAssistError):
    code = "config_not_found"
    status_code = 404
    default_message = "Bot configuration not found"


class ValidationFailed(DiscordAssistError):
    code = "validation_failed"
    status_code = 422
    default_message = "Validation failed"


class MissingCodeError(ValidationFailed):
    code = "missing_code"
    status_code = 400
    default_message = "Authorization code required"


class Forbidden(DiscordAssistError):
    code = "forbidden"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class InternalError(DiscordAssistError):
    code = "internal_error"
    status_code = 500
    default_message = "Internal server error"


class InvalidStateError(ValidationFailed):
    """The OAuth ``state`` was never issued, was already used, or expired."""

    code = "invalid_state"
    status_code = 400
    default_message = "Sign-in link expired or invalid. Please try again."
