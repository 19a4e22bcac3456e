"""
Embed server configuration. Credentials come from env (or a local .env file); never from code.
"""
import os
import re
from collections.abc import Mapping

from dotenv import load_dotenv

from embed_server.errors import ConfigurationError

# Real environment variables win over .env values
load_dotenv()

# Service principal (Azure AD app registration)
TENANT_ID = os.environ.get("TENANT_ID", "")
CLIENT_ID = os.environ.get("CLIENT_ID", "")
CLIENT_SECRET = os.environ.get("CLIENT_SECRET", "")

# The single report this server embeds
WORKSPACE_ID = os.environ.get("WORKSPACE_ID", "")
REPORT_ID = os.environ.get("REPORT_ID", "")

ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")
PORT = int(os.environ.get("PORT", "3000"))

# Identity provider and Power BI endpoints (public identifiers, not secrets)
AUTHORITY_URL = os.environ.get("AUTHORITY_URL", "https://login.microsoftonline.com").rstrip("/")
POWERBI_SCOPE = "https://analysis.windows.net/powerbi/api/.default"
POWERBI_API_URL = os.environ.get("POWERBI_API_URL", "https://api.powerbi.com/v1.0/myorg").rstrip("/")
POWERBI_APP_URL = os.environ.get("POWERBI_APP_URL", "https://app.powerbi.com").rstrip("/")

# Outbound request timeout (seconds)
REQUEST_TIMEOUT_SECONDS = 30.0

# Identity token is treated as expired this many seconds before the issuer says so
SAFETY_MARGIN_SECONDS = 300

# Rate limiting for POST /api/token: per client IP, per minute
TOKEN_RATE_LIMIT_PER_MINUTE = int(os.environ.get("TOKEN_RATE_LIMIT_PER_MINUTE", "10"))

REQUIRED_VARS = ("CLIENT_ID", "CLIENT_SECRET", "TENANT_ID", "WORKSPACE_ID", "REPORT_ID")

_GUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def is_guid(value: str) -> bool:
    return bool(_GUID.match(value or ""))


def validate_config(env: Mapping[str, str] | None = None) -> None:
    """
    Check that every required variable is set and that TENANT_ID / CLIENT_ID are GUIDs.
    Raises ConfigurationError listing what is wrong. Called once at startup.
    """
    if env is None:
        env = os.environ
    missing = [key for key in REQUIRED_VARS if not env.get(key)]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}",
            details={"missing": missing},
        )
    if not is_guid(env["TENANT_ID"]):
        raise ConfigurationError("TENANT_ID is not a valid GUID")
    if not is_guid(env["CLIENT_ID"]):
        raise ConfigurationError("CLIENT_ID is not a valid GUID")
