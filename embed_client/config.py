"""
Embed client configuration. Timing constants for the session lifecycle.
"""
import os

# Embed server (token broker) base URL
EMBED_SERVER_URL = os.environ.get("EMBED_SERVER_URL", "http://127.0.0.1:3000").rstrip("/")

# Replace the embed token this long before Power BI's reported expiry
REFRESH_MARGIN_SECONDS = 300

# Load retries: linear backoff, RETRY_BASE_DELAY_SECONDS * attempt
MAX_LOAD_ATTEMPTS = 3
RETRY_BASE_DELAY_SECONDS = 2.0

REQUEST_TIMEOUT_SECONDS = 30.0

# Substring in a live report error message that means the embed token has expired
TOKEN_EXPIRED_MARKER = "TokenExpired"
