"""
Embed token issuance (Power BI GenerateToken). View-only, one workspace/report pair per call.
Nothing is cached here: each call represents a fresh client session request.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlencode

import httpx

from embed_server.config import POWERBI_API_URL, POWERBI_APP_URL, REQUEST_TIMEOUT_SECONDS
from embed_server.errors import AccessDeniedError, EmbedIssuanceError
from embed_server.identity import IdentityTokenCache


@dataclass(frozen=True)
class EmbedToken:
    value: str
    expires_at: datetime
    embed_url: str
    correlation_id: str


def parse_expiration(value: str) -> datetime:
    """Parse the ISO-8601 `expiration` Power BI returns (e.g. 2024-05-01T12:00:00Z) as aware UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_report_url(workspace_id: str, report_id: str, app_url: str = POWERBI_APP_URL) -> str:
    return f"{app_url}/reportEmbed?{urlencode({'reportId': report_id, 'groupId': workspace_id})}"


class EmbedTokenIssuer:
    def __init__(
        self,
        identity_cache: IdentityTokenCache,
        *,
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
        api_url: str = POWERBI_API_URL,
        app_url: str = POWERBI_APP_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.identity_cache = identity_cache
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._logger = logger or logging.getLogger(__name__)
        self._api_url = api_url.rstrip("/")
        self._app_url = app_url.rstrip("/")
        self._timeout = timeout

    def generate_token_url(self, workspace_id: str, report_id: str) -> str:
        return f"{self._api_url}/groups/{workspace_id}/reports/{report_id}/GenerateToken"

    async def issue(self, workspace_id: str, report_id: str) -> EmbedToken:
        """
        Mint a new view-only embed token for the report.
        Raises AuthenticationError (identity exchange), AccessDeniedError (403) or
        EmbedIssuanceError (anything else).
        """
        correlation_id = str(uuid.uuid4())
        self._logger.info("Generating Power BI embed token [%s]", correlation_id)

        # AuthenticationError propagates unchanged
        identity = await self.identity_cache.acquire()

        try:
            response = await self._http.post(
                self.generate_token_url(workspace_id, report_id),
                json={"accessLevel": "View", "datasetId": None},
                headers={"Authorization": f"Bearer {identity.value}"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            self._logger.error("Failed to get embed token [%s]: %s", correlation_id, exc)
            raise EmbedIssuanceError(
                f"Power BI embed token generation failed: {exc}",
                details={"error": str(exc)},
            ) from exc

        if response.status_code == 403:
            self._logger.error(
                "Failed to get embed token [%s]: 403 from Power BI; verify workspace access for service principal",
                correlation_id,
            )
            raise AccessDeniedError(
                "Power BI API error: Verify workspace access for service principal",
                details={"status_code": 403},
            )
        if not response.is_success:
            self._logger.error(
                "Failed to get embed token [%s]: status=%s body=%s",
                correlation_id,
                response.status_code,
                response.text[:500],
            )
            raise EmbedIssuanceError(
                f"Power BI embed token generation failed: HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            body = response.json()
            token = EmbedToken(
                value=body["token"],
                expires_at=parse_expiration(body["expiration"]),
                embed_url=build_report_url(workspace_id, report_id, self._app_url),
                correlation_id=correlation_id,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            self._logger.error("Malformed embed token response [%s]: %s", correlation_id, exc)
            raise EmbedIssuanceError(f"Power BI embed token generation failed: malformed response ({exc})") from exc

        self._logger.info(
            "Embed token generated successfully [%s], expires %s",
            correlation_id,
            token.expires_at.isoformat(),
        )
        return token

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
        await self.identity_cache.aclose()
