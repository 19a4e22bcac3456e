"""
Embed session controller: the client-side state machine that keeps a report supplied with a valid token.

    IDLE -> CONNECTING -> CONNECTED
                 \\-> DISCONNECTED -> (automatic retry, bounded) -> CONNECTING

Load failures are retried with linear backoff up to MAX_LOAD_ATTEMPTS; after that only a manual
retry() re-enters CONNECTING. A runtime "TokenExpired" error triggers an immediate refresh without
a state change. Rendering is left to the presenter: the controller only emits intents.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from embed_client.api import EmbedApiClient, EmbedToken, ReportConfig
from embed_client.config import MAX_LOAD_ATTEMPTS, RETRY_BASE_DELAY_SECONDS, TOKEN_EXPIRED_MARKER
from embed_client.errors import LoadFailure, RuntimeTokenExpiredError
from embed_client.presenter import Intent, IntentKind, LoggingPresenter, Presenter
from embed_client.scheduler import RefreshScheduler


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


_STATUS_TEXT = {
    SessionState.IDLE: "Idle",
    SessionState.CONNECTING: "Connecting...",
    SessionState.CONNECTED: "Connected",
    SessionState.DISCONNECTED: "Disconnected",
}


@dataclass
class RetryState:
    attempt: int = 0
    max_attempts: int = MAX_LOAD_ATTEMPTS
    base_delay: float = RETRY_BASE_DELAY_SECONDS

    def delay(self, attempt: int | None = None) -> float:
        return self.base_delay * (self.attempt if attempt is None else attempt)

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def reset(self) -> None:
        self.attempt = 0


class EmbeddedReport(Protocol):
    def on(self, event: str, handler: Callable[[Any], None]) -> None: ...

    def off(self, event: str) -> None: ...

    async def set_access_token(self, token: str) -> None: ...


class EmbedSurface(Protocol):
    def embed(self, config: dict) -> EmbeddedReport: ...


def build_embed_config(config: ReportConfig, token: EmbedToken) -> dict:
    """View-only report embed with fixed layout and background."""
    return {
        "type": "report",
        "tokenType": "Embed",
        "accessToken": token.value,
        "embedUrl": token.embed_url,
        "id": config.report_id,
        "permissions": "Read",
        "settings": {
            "filterPaneEnabled": True,
            "navContentPaneEnabled": True,
            "background": "Transparent",
            "layoutType": "Custom",
            "customLayout": {"displayOption": "FitToWidth"},
        },
    }


def _error_message(detail: Any) -> str:
    if detail is None:
        return ""
    if isinstance(detail, Mapping):
        return str(detail.get("message") or "")
    return str(getattr(detail, "message", None) or detail)


class SessionController:
    def __init__(
        self,
        api: EmbedApiClient,
        surface: EmbedSurface,
        *,
        scheduler: RefreshScheduler | None = None,
        retry_state: RetryState | None = None,
        presenter: Presenter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ):
        self.api = api
        self.surface = surface
        self.scheduler = scheduler or RefreshScheduler()
        self.retry_state = retry_state or RetryState()
        self._presenter = presenter or LoggingPresenter()
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)
        self.state = SessionState.IDLE
        self.report: EmbeddedReport | None = None
        self.token: EmbedToken | None = None
        self.last_error: Exception | None = None
        self._retry_task: asyncio.Task | None = None
        self._refresh_task: asyncio.Task | None = None

    @property
    def pending_retry(self) -> asyncio.Task | None:
        if self._retry_task is not None and not self._retry_task.done():
            return self._retry_task
        return None

    @property
    def refresh_in_flight(self) -> bool:
        if self._refresh_task is not None and not self._refresh_task.done():
            return True
        return self.scheduler.refreshing

    async def load(self) -> None:
        """Fetch config + token, embed the report, attach observers, arm the refresh."""
        self._set_state(SessionState.CONNECTING)
        self._emit(IntentKind.SHOW_LOADER)
        self._emit(IntentKind.HIDE_ERROR)
        try:
            config = await self.api.fetch_config()
            token = await self.api.fetch_token()
            report = self.surface.embed(build_embed_config(config, token))
        except Exception as exc:
            self._handle_load_error(exc)
            return

        self.report = report
        self.token = token
        for event, handler in (
            ("loaded", self._on_loaded),
            ("rendered", self._on_rendered),
            ("error", self._on_error),
        ):
            report.off(event)
            report.on(event, handler)
        self._emit(IntentKind.TOKEN_EXPIRY, expires_at=token.expires_at)
        self.scheduler.arm(token.expires_at, self.refresh)

    async def refresh(self) -> EmbedToken | None:
        """
        Swap a fresh token into the live report and re-arm the scheduler.
        On failure the session is told to reload; nothing else is attempted.
        """
        if self.report is None:
            self._logger.warning("Token refresh requested with no embedded report")
            return None
        try:
            token = await self.api.fetch_token()
            await self.report.set_access_token(token.value)
        except Exception as exc:
            self.last_error = exc
            self._logger.error("Token refresh failed: %s", exc)
            self._emit(IntentKind.SHOW_ERROR, "Token expired. Please refresh the page.")
            return None
        self.token = token
        self._logger.info("Token refreshed successfully [%s]", token.correlation_id)
        self._emit(IntentKind.TOKEN_EXPIRY, expires_at=token.expires_at)
        self.scheduler.arm(token.expires_at, self.refresh)
        return token

    async def retry(self) -> None:
        """Manual retry: drop any pending automatic retry, reset the attempt count, load again."""
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
        self._retry_task = None
        self.retry_state.reset()
        await self.load()

    def close(self) -> None:
        self.scheduler.cancel()
        for task in (self._retry_task, self._refresh_task):
            if task is not None and not task.done():
                task.cancel()
        self._retry_task = None
        self._refresh_task = None

    def _handle_load_error(self, exc: Exception) -> None:
        if isinstance(exc, LoadFailure):
            failure = exc
        else:
            failure = LoadFailure(str(exc))
            failure.__cause__ = exc
        self.last_error = failure
        self._emit(IntentKind.HIDE_LOADER)
        self._set_state(SessionState.DISCONNECTED)

        retry = self.retry_state
        if retry.exhausted:
            self._logger.error("Failed to load report after %d retries: %s", retry.max_attempts, failure)
            self._emit(IntentKind.SHOW_ERROR, str(failure) or "Failed to load report after multiple attempts")
            return

        retry.attempt += 1
        delay = retry.delay()
        self._logger.warning(
            "Failed to load report: %s; retrying %d/%d in %.0fs", failure, retry.attempt, retry.max_attempts, delay
        )
        self._emit(IntentKind.SHOW_ERROR, f"Connection failed. Retrying {retry.attempt}/{retry.max_attempts}...")
        self._retry_task = asyncio.get_running_loop().create_task(self._retry_after(delay))

    async def _retry_after(self, delay: float) -> None:
        # _retry_task keeps pointing here through load(), so a manual retry() cancels both
        await self._sleep(delay)
        await self.load()

    def _on_loaded(self, detail: Any = None) -> None:
        self._logger.info("Report loaded successfully")
        self.retry_state.reset()
        self._emit(IntentKind.HIDE_LOADER)
        self._set_state(SessionState.CONNECTED)

    def _on_rendered(self, detail: Any = None) -> None:
        self._logger.debug("Report rendered")

    def _on_error(self, detail: Any = None) -> None:
        message = _error_message(detail)
        if TOKEN_EXPIRED_MARKER in message:
            self.last_error = RuntimeTokenExpiredError(message)
            if self.refresh_in_flight:
                self._logger.info("Embed token expired; refresh already in progress")
                return
            self._logger.info("Embed token expired, attempting refresh...")
            self._refresh_task = asyncio.get_running_loop().create_task(self.refresh())
            return
        self._logger.error("Embed error: %s", message or detail)
        self._emit(IntentKind.SHOW_ERROR, f"Report error: {message or 'Unknown error occurred'}")

    def _set_state(self, state: SessionState) -> None:
        self.state = state
        self._emit(IntentKind.UPDATE_STATUS, _STATUS_TEXT[state], status=state.value)

    def _emit(self, kind: IntentKind, message: str | None = None, **fields: Any) -> None:
        self._presenter(Intent(kind, message, **fields))
