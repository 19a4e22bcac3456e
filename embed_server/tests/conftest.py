"""
Pytest configuration for embed_server. Fixed, fake service-principal settings so tests never
depend on a developer's .env (load_dotenv does not override variables that are already set).
"""
import os

os.environ["TENANT_ID"] = "11111111-2222-3333-4444-555555555555"
os.environ["CLIENT_ID"] = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"
os.environ["CLIENT_SECRET"] = "test-secret"
os.environ["WORKSPACE_ID"] = "ws-0001"
os.environ["REPORT_ID"] = "rpt-0001"
os.environ["ENVIRONMENT"] = "test"
os.environ["TOKEN_RATE_LIMIT_PER_MINUTE"] = "10"
