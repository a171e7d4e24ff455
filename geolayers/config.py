import os

from dotenv import load_dotenv

# Pick up a .env from the working directory, if present
load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


class Settings:
    """Application settings read from GEOLAYERS_* environment variables."""

    def __init__(self):
        self.database_url = os.getenv("GEOLAYERS_DATABASE_URL", "sqlite:///./geolayers.db")
        self.log_level = os.getenv("GEOLAYERS_LOG_LEVEL", "INFO").upper()

        # Remote persistence / storage / identity API
        self.remote_url = os.getenv("GEOLAYERS_REMOTE_URL", "").rstrip("/")
        self.remote_key = os.getenv("GEOLAYERS_REMOTE_KEY", "")
        self.storage_bucket = os.getenv("GEOLAYERS_STORAGE_BUCKET", "documents")
        self.remote_timeout = _env_float("GEOLAYERS_REMOTE_TIMEOUT", 20.0)

        # Map defaults (center of Brazil)
        self.default_center_lat = _env_float("GEOLAYERS_DEFAULT_CENTER_LAT", -15.7801)
        self.default_center_lng = _env_float("GEOLAYERS_DEFAULT_CENTER_LNG", -47.9292)
        self.default_zoom = _env_int("GEOLAYERS_DEFAULT_ZOOM", 6)
        self.map_width = _env_int("GEOLAYERS_MAP_WIDTH", 1024)
        self.map_height = _env_int("GEOLAYERS_MAP_HEIGHT", 768)

        # In-memory map sessions: idle ones expire, the least recently used go first when full
        self.max_sessions = _env_int("GEOLAYERS_MAX_SESSIONS", 100)
        self.session_ttl = _env_float("GEOLAYERS_SESSION_TTL", 3600.0)

    @property
    def remote_configured(self) -> bool:
        return bool(self.remote_url and self.remote_key)


settings = Settings()
