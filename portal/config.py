"""Configuration settings for the portal upload service."""

import os

from common.constants import URL_CACHE_TTL_SECONDS


DATABASE_PATH = os.environ.get("PORTAL_DATABASE_PATH", "/app/data/portal.db")

PORTAL_HOST = os.environ.get("PORTAL_HOST", "0.0.0.0")

PORTAL_PORT = int(os.environ.get("PORTAL_PORT", "5000"))

UPLOAD_TEMP_DIR = os.environ.get("PORTAL_UPLOAD_TEMP_DIR", "/tmp/portal-uploads")

MAX_UPLOAD_BYTES = int(os.environ.get("PORTAL_MAX_UPLOAD_BYTES", str(100 * 1024 * 1024)))

# "redis" or "memory"
CACHE_BACKEND = os.environ.get("PORTAL_CACHE_BACKEND", "redis")

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

AZURE_TENANT_ID = os.environ.get("AZURE_TENANT_ID", "")

AZURE_CLIENT_ID = os.environ.get("AZURE_CLIENT_ID", "")

AZURE_CLIENT_SECRET = os.environ.get("AZURE_CLIENT_SECRET", "")

AZURE_AUTHORITY = os.environ.get("AZURE_AUTHORITY", "https://login.microsoftonline.com")

GRAPH_BASE_URL = os.environ.get("GRAPH_BASE_URL", "https://graph.microsoft.com/v1.0")

SHAREPOINT_SITE_HOST = os.environ.get("SHAREPOINT_SITE_HOST", "serendipityint.sharepoint.com")

SHAREPOINT_SITE_PATH = os.environ.get("SHAREPOINT_SITE_PATH", "sites/ResourcePortal")

URL_CACHE_TTL = int(os.environ.get("URL_CACHE_TTL_SECONDS", str(URL_CACHE_TTL_SECONDS)))

CHUNK_UPLOAD_DELAY_SECONDS = float(os.environ.get("CHUNK_UPLOAD_DELAY_SECONDS", "0"))

CANCEL_ON_DISCONNECT = os.environ.get("PORTAL_CANCEL_ON_DISCONNECT", "false").lower() in ("1", "true", "yes")
