"""
HTTP adapter for the embed server: GET /api/config and POST /api/token.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from embed_client.config import EMBED_SERVER_URL, REQUEST_TIMEOUT_SECONDS
from embed_client.errors import ConfigFetchError, TokenFetchError


@dataclass(frozen=True)
class ReportConfig:
    workspace_id: str
    report_id: str
    environment: str | None = None
    correlation_id: str | None = None


@dataclass(frozen=True)
class EmbedToken:
    value: str
    embed_url: str
    expires_at: datetime
    correlation_id: str | None = None


def parse_expiry(value: str) -> datetime:
    """Aware UTC datetime from the server's ISO-8601 `expiry`. Naive values are UTC.

    Mirrors embed_server.embed_token.parse_expiration; the client ships without the server package.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class EmbedApiClient:
    def __init__(
        self,
        base_url: str = EMBED_SERVER_URL,
        *,
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)
        self._base_url = base_url.rstrip("/")
        self._logger = logger or logging.getLogger(__name__)

    async def fetch_config(self) -> ReportConfig:
        try:
            r = await self._http.get(f"{self._base_url}/api/config")
        except httpx.HTTPError as e:
            raise ConfigFetchError(f"Config fetch failed: {e}") from e
        if not r.is_success:
            raise ConfigFetchError(f"Config fetch failed: {r.reason_phrase or r.status_code}")
        body = _json_or_empty(r)
        try:
            return ReportConfig(
                workspace_id=body["workspaceId"],
                report_id=body["reportId"],
                environment=body.get("environment"),
                correlation_id=body.get("correlationId"),
            )
        except KeyError as e:
            raise ConfigFetchError(f"Config fetch failed: missing {e}") from e

    async def fetch_token(self) -> EmbedToken:
        """
        Request a fresh embed token. Raises TokenFetchError on transport errors, on error statuses
        (carrying the server's `error` message) and on {success: false} bodies.
        """
        try:
            r = await self._http.post(f"{self._base_url}/api/token", headers={"Content-Type": "application/json"})
        except httpx.HTTPError as e:
            raise TokenFetchError(f"Token fetch failed: {e}") from e

        body = _json_or_empty(r)
        correlation_id = body.get("correlationId")
        if not r.is_success and r.status_code != 400:
            message = body.get("error") or f"Token fetch failed: {r.reason_phrase or r.status_code}"
            raise TokenFetchError(message, status_code=r.status_code, correlation_id=correlation_id)
        if not body.get("success"):
            raise TokenFetchError(
                body.get("error") or "Failed to get embed token",
                status_code=r.status_code,
                correlation_id=correlation_id,
            )

        try:
            token = EmbedToken(
                value=body["token"],
                embed_url=body["embedUrl"],
                expires_at=parse_expiry(body["expiry"]),
                correlation_id=correlation_id,
            )
        except (KeyError, ValueError, AttributeError) as e:
            raise TokenFetchError(f"Malformed token response: {e}", correlation_id=correlation_id) from e
        self._logger.debug("Embed token received [%s], expires %s", correlation_id, token.expires_at.isoformat())
        return token

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
