"""
Proactive embed token refresh. One pending refresh at most: arming always cancels the previous one.
A failed refresh is logged and not retried; the session recovers through its runtime error path.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

from embed_client.config import REFRESH_MARGIN_SECONDS

RefreshCallback = Callable[[], Awaitable[object]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RefreshScheduler:
    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        refresh_margin_seconds: float = REFRESH_MARGIN_SECONDS,
        logger: logging.Logger | None = None,
    ):
        self._clock = clock or utc_now
        self._sleep = sleep
        self._margin = timedelta(seconds=refresh_margin_seconds)
        self._logger = logger or logging.getLogger(__name__)
        # Timer still sleeping
        self._task: asyncio.Task | None = None
        # Timer whose callback is running
        self._firing: asyncio.Task | None = None
        self.next_refresh_at: datetime | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def refreshing(self) -> bool:
        return self._firing is not None and not self._firing.done()

    def arm(self, expires_at: datetime, on_refresh_needed: RefreshCallback) -> bool:
        """
        Schedule on_refresh_needed at expires_at minus the refresh margin.
        Returns False (nothing armed) when that instant is already now or in the past.
        """
        self.cancel()
        refresh_at = expires_at - self._margin
        delay = (refresh_at - self._clock()).total_seconds()
        if delay <= 0:
            self._logger.info("Token expires within the refresh margin; no refresh scheduled")
            return False
        self.next_refresh_at = refresh_at
        self._task = asyncio.get_running_loop().create_task(self._fire_after(delay, on_refresh_needed))
        self._logger.info("Token refresh scheduled in %d seconds", round(delay))
        return True

    def cancel(self) -> None:
        """Drop the pending timer and abort a refresh callback that is still running.

        A callback re-arming from inside its own refresh is left to finish.
        """
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.next_refresh_at = None
        firing = self._firing
        if firing is not None and firing is not asyncio.current_task():
            if not firing.done():
                firing.cancel()
            self._firing = None

    async def _fire_after(self, delay: float, on_refresh_needed: RefreshCallback) -> None:
        await self._sleep(delay)
        self._firing = self._task
        self._task = None
        self.next_refresh_at = None
        self._logger.info("Refreshing token...")
        try:
            await on_refresh_needed()
        except Exception:
            self._logger.exception("Scheduled token refresh failed; no further refresh scheduled")
        finally:
            if self._firing is asyncio.current_task():
                self._firing = None
