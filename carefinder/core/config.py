import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from carefinder.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Credentials
    google_maps_api_key: str = ""
    google_places_api_key: str = ""
    foursquare_api_key: str = ""

    # Endpoints
    overpass_url: str = "https://overpass-api.de/api/interpreter"
    geocoding_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    places_url: str = "https://maps.googleapis.com/maps/api/place"
    foursquare_url: str = "https://api.foursquare.com/v3/places"
    database_url: str = ""

    # Timeouts (seconds)
    timeout: float = 30
    source_timeout: float = 20

    # Search behaviour
    search_radius_km: float = Field(10.0, gt=0)
    default_scope: str = "default"
    detail_concurrency: int = Field(5, ge=1)
    fail_when_all_sources_fail: bool = False

    # Rate limits (tokens per second, bucket capacity equals rate)
    geocoding_rate_per_second: float = Field(50, gt=0)
    places_rate_per_second: float = Field(10, gt=0)
    foursquare_rate_per_second: float = Field(50, gt=0)

    # Caching
    cache_backend: str = "memory"  # memory | sqlite | none
    cache_db_path: str = "carefinder_cache.sqlite3"
    geocode_cache_ttl: int = 60 * 60 * 24
    name_search_cache_ttl: int = 60 * 60 * 5

    log_level: str = "INFO"

    def missing_credentials(self) -> list[str]:
        required = {
            "GOOGLE_MAPS_API_KEY": self.google_maps_api_key,
            "GOOGLE_PLACES_API_KEY": self.google_places_api_key,
            "FOURSQUARE_API_KEY": self.foursquare_api_key,
        }
        return [name for name, value in required.items() if not value]

    def require_credentials(self) -> None:
        """Raise ConfigurationError naming every missing API key."""
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    if settings.cache_backend not in {"memory", "sqlite", "none"}:
        logger.warning("Unknown CACHE_BACKEND=%s; falling back to memory", settings.cache_backend)
        settings.cache_backend = "memory"
    if not settings.database_url:
        logger.info("DATABASE_URL is not set; providers are kept in memory only.")
    return settings
