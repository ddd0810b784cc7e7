import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEBUG = LOG_LEVEL == "DEBUG"
# JSON lines for the log drain; defaults to on at INFO and off at DEBUG.
LOG_JSON = os.getenv("LOG_JSON", str(LOG_LEVEL == "INFO")).lower() in ("1", "true", "yes")
SERVICE_NAME = os.getenv("SERVICE_NAME", "casa-booking")

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_SOCKET_TIMEOUT_SECONDS = float(os.getenv("REDIS_SOCKET_TIMEOUT_SECONDS", "5"))

# Guesty booking-engine API
GUESTY_CLIENT_ID = os.getenv("GUESTY_CLIENT_ID")
GUESTY_CLIENT_SECRET = os.getenv("GUESTY_CLIENT_SECRET")
GUESTY_OAUTH_TOKEN_URL = os.getenv(
    "GUESTY_OAUTH_TOKEN_URL", "https://booking.guesty.com/oauth2/token"
)
GUESTY_OAUTH_SCOPE = os.getenv("GUESTY_OAUTH_SCOPE", "booking_engine:api")
GUESTY_API_BASE = os.getenv("GUESTY_API_BASE", "https://booking.guesty.com/api/")
GUESTY_PROPERTY_ID = os.getenv("GUESTY_PROPERTY_ID", "")
UPSTREAM_TIMEOUT_SECONDS = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "20"))

# Availability cache
AVAILABILITY_TTL_SECONDS = int(os.getenv("AVAILABILITY_TTL_SECONDS", str(24 * 60 * 60)))
AVAILABILITY_STALE_RETENTION_SECONDS = int(
    os.getenv("AVAILABILITY_STALE_RETENTION_SECONDS", str(7 * 24 * 60 * 60))
)
REFRESH_HORIZON_MONTHS = int(os.getenv("REFRESH_HORIZON_MONTHS", "6"))

# Shared secret sent by the external scheduler as "Authorization: Bearer <secret>"
CRON_SECRET = os.getenv("CRON_SECRET")

# Family portal
FAMILY_PASSWORD = os.getenv("FAMILY_PASSWORD")
FAMILY_SESSION_DAYS = int(os.getenv("FAMILY_SESSION_DAYS", "30"))
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "true").lower() == "true"

PUSHOVER_USER_KEY = os.getenv("PUSHOVER_USER_KEY")
PUSHOVER_API_TOKEN = os.getenv("PUSHOVER_API_TOKEN")


def parse_allowed_origins(raw: str | None) -> list[str]:
    """
    Split a comma-separated origin list. Unset or empty means same-origin only.

    Example:
        >>> parse_allowed_origins("https://casa.example, https://www.casa.example")
        ['https://casa.example', 'https://www.casa.example']
    """
    return [origin.strip() for origin in (raw or "").split(",") if origin.strip()]


ALLOWED_ORIGINS: list[str] = parse_allowed_origins(os.getenv("ALLOWED_ORIGINS"))
