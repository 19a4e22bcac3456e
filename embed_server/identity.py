"""
Identity token cache: client-credentials exchange against Azure AD for the Power BI scope.
One instance owns one cache slot. The token is replaced (never mutated) when it is renewed,
and treated as expired SAFETY_MARGIN_SECONDS before the issuer-reported lifetime ends.
"""
import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import httpx

from embed_server.config import (
    AUTHORITY_URL,
    POWERBI_SCOPE,
    REQUEST_TIMEOUT_SECONDS,
    SAFETY_MARGIN_SECONDS,
)
from embed_server.errors import AuthenticationError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CachedIdentityToken:
    value: str
    expires_at: datetime

    def valid_at(self, now: datetime) -> bool:
        return now < self.expires_at


class IdentityTokenCache:
    """
    Cache for the service principal's access token.

    acquire() returns the cached token while the clock is before expires_at; otherwise it
    performs exactly one exchange. Callers that arrive while an exchange is running wait on
    that same exchange instead of starting their own. Failures raise AuthenticationError and
    leave the slot untouched, so the next call starts over. Nothing here retries.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
        authority_url: str = AUTHORITY_URL,
        scope: str = POWERBI_SCOPE,
        safety_margin_seconds: int = SAFETY_MARGIN_SECONDS,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._clock = clock or utc_now
        self._logger = logger or logging.getLogger(__name__)
        self._authority_url = authority_url.rstrip("/")
        self._scope = scope
        self._safety_margin = timedelta(seconds=safety_margin_seconds)
        self._timeout = timeout
        self._token: CachedIdentityToken | None = None
        self._inflight: asyncio.Task | None = None

    @property
    def token_url(self) -> str:
        return f"{self._authority_url}/{self._tenant_id}/oauth2/v2.0/token"

    @property
    def cached(self) -> CachedIdentityToken | None:
        return self._token

    async def acquire(self) -> CachedIdentityToken:
        correlation_id = str(uuid.uuid4())
        token = self._token
        if token is not None and token.valid_at(self._clock()):
            self._logger.info("Using cached identity token [%s]", correlation_id)
            return token

        if self._inflight is None:
            self._logger.info("Acquiring new identity token [%s]", correlation_id)
            task = asyncio.ensure_future(self._exchange(correlation_id))
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        else:
            self._logger.info("Waiting on in-flight identity token request [%s]", correlation_id)
        # A cancelled caller must not cancel the exchange other callers are waiting on
        return await asyncio.shield(self._inflight)

    def invalidate(self) -> None:
        """Drop the cached token; the next acquire() performs a fresh exchange."""
        self._token = None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _exchange(self, correlation_id: str) -> CachedIdentityToken:
        form = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "scope": self._scope,
        }
        try:
            response = await self._http.post(
                self.token_url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            self._logger.error("Failed to get identity token [%s]: %s", correlation_id, exc)
            raise AuthenticationError(
                "Azure AD authentication failed: identity provider unreachable",
                details={"error": str(exc)},
            ) from exc

        if not response.is_success:
            self._logger.error(
                "Failed to get identity token [%s]: status=%s body=%s",
                correlation_id,
                response.status_code,
                response.text[:500],
            )
            raise AuthenticationError(
                "Azure AD authentication failed: check CLIENT_ID and CLIENT_SECRET",
                details={"status_code": response.status_code},
            )

        try:
            body = response.json()
            value = body["access_token"]
            expires_in = int(body["expires_in"])
        except (ValueError, KeyError, TypeError) as exc:
            self._logger.error("Malformed identity token response [%s]: %s", correlation_id, exc)
            raise AuthenticationError("Azure AD authentication failed: malformed token response") from exc
        if not value:
            raise AuthenticationError("Azure AD authentication failed: empty access_token")

        token = CachedIdentityToken(
            value=value,
            expires_at=self._clock() + timedelta(seconds=expires_in) - self._safety_margin,
        )
        self._token = token
        self._logger.info(
            "Identity token acquired [%s], cached until %s",
            correlation_id,
            token.expires_at.isoformat(),
        )
        return token
