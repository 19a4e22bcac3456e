"""
Presentation intents emitted by the session controller, and a thin adapter that consumes them.
The controller never touches a UI directly; a surface-specific presenter renders these.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class IntentKind(str, Enum):
    SHOW_LOADER = "show_loader"
    HIDE_LOADER = "hide_loader"
    SHOW_ERROR = "show_error"
    HIDE_ERROR = "hide_error"
    UPDATE_STATUS = "update_status"
    TOKEN_EXPIRY = "token_expiry"


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    message: str | None = None
    status: str | None = None
    expires_at: datetime | None = None


Presenter = Callable[[Intent], None]


def format_token_countdown(expires_at: datetime, now: datetime) -> str:
    """'Token Expires: m:ss' while valid, 'Token Expired' afterwards."""
    remaining = int((expires_at - now).total_seconds())
    if remaining <= 0:
        return "Token Expired"
    minutes, seconds = divmod(remaining, 60)
    return f"Token Expires: {minutes}:{seconds:02d}"


class LoggingPresenter:
    """Renders intents as log lines (headless sessions, smoke checks)."""

    def __init__(self, logger: logging.Logger | None = None, clock: Callable[[], datetime] | None = None):
        self._logger = logger or logging.getLogger(__name__)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.last_error: str | None = None
        self.status: str | None = None

    def __call__(self, intent: Intent) -> None:
        if intent.kind is IntentKind.SHOW_ERROR:
            self.last_error = intent.message
            self._logger.error("%s", intent.message)
        elif intent.kind is IntentKind.HIDE_ERROR:
            self.last_error = None
        elif intent.kind is IntentKind.UPDATE_STATUS:
            self.status = intent.status
            self._logger.info("● %s", intent.message)
        elif intent.kind is IntentKind.TOKEN_EXPIRY and intent.expires_at is not None:
            self._logger.info("%s", format_token_countdown(intent.expires_at, self._clock()))
        else:
            self._logger.debug("%s", intent.kind.value)
