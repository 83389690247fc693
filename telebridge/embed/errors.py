"""Error taxonomy for the embed bootstrap.

Every error that can reach a caller carries a ``user_message`` in one of two
categories: rate limiting ("high demand, try again later") or generic
unavailability. Raw third-party error text is kept on ``detail`` for logs and
never copied into ``user_message``.
"""

from __future__ import annotations

RATE_LIMITED_MESSAGE = (
    "The video conferencing service is experiencing high demand. "
    "Please wait a few minutes and try again, or refresh the page."
)
UNAVAILABLE_MESSAGE = (
    "Unable to load video conferencing service. The service may be "
    "temporarily unavailable. Please wait a moment and try again."
)
COOLDOWN_MESSAGE = (
    "The video service is currently rate-limited. "
    "Please wait a moment and try again."
)
RETRY_REFUSED_MESSAGE = (
    "Please wait a moment before retrying. "
    "The service is still experiencing high demand."
)


class EmbedError(Exception):
    """Base class for embed bootstrap failures."""

    user_message: str = UNAVAILABLE_MESSAGE
    rate_limited: bool = False

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.user_message
        super().__init__(self.detail)


class ScriptLoadError(EmbedError):
    """A single attempt to load the external library failed."""

    def __init__(self, detail: str | None = None, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.status_code = status_code


class LoadExhausted(EmbedError):
    """Retries ran out on generic (non rate-limit) failures."""


class RateLimitExhausted(EmbedError):
    """Retries ran out while the service was signalling rate limits."""

    user_message = RATE_LIMITED_MESSAGE
    rate_limited = True


class RateLimitedError(EmbedError):
    """A fresh load was refused because the cooldown window is still open."""

    user_message = COOLDOWN_MESSAGE
    rate_limited = True


class ContainerMissingError(EmbedError):
    """The host container was absent when the widget was instantiated."""


class CredentialConfigError(EmbedError):
    """A credential was required but could not be issued."""


class NotHostedDeploymentError(CredentialConfigError):
    pass


class MissingAppIdError(CredentialConfigError):
    pass


class MissingPrivateKeyError(CredentialConfigError):
    pass


class MissingUserIdError(CredentialConfigError):
    pass


class CredentialSigningError(CredentialConfigError):
    """The configured key could not sign the credential."""


class WidgetRuntimeWarning(UserWarning):
    """Non-fatal widget noise (permission prompts, analytics failures)."""
