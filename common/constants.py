"""Project-wide constants (chunk sizes, cache thresholds, token margins)."""

MIB: int = 1024 * 1024

CHUNK_SIZE_BYTES: int = 4 * MIB  # Graph upload sessions accept 320 KiB multiples
SIMPLE_UPLOAD_LIMIT_BYTES: int = 4 * MIB  # files strictly below this use a single PUT

TOKEN_REFRESH_MARGIN_SECONDS: int = 5 * 60

URL_CACHE_TTL_SECONDS: int = 3600
URL_REFRESH_THRESHOLD: float = 0.8
URL_CACHE_KEY_TEMPLATE: str = "file:{object_id}:urls"

GRAPH_SCOPES: tuple = ("https://graph.microsoft.com/.default",)
REMOTE_TIMEOUT_SECONDS: float = 60.0
TOKEN_TIMEOUT_SECONDS: float = 15.0

ALLOWED_FILE_TYPES: tuple = (
    "operate it collateral",
    "images",
    "videos",
    "sell it collateral",
)

DOCUMENT_DRIVE_NAMES: tuple = ("Documents", "Shared Documents")
