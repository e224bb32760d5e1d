from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


def _parse_list(v):
    if isinstance(v, str):
        try:
            return json.loads(v)
        except json.JSONDecodeError:
            return [item.strip() for item in v.split(',') if item.strip()]
    return v


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./shiprate.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Shiprate Pricing Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Zone classification
    # "settings" reads the lists below (and METRO_CITIES_FILE),
    # "database" reads the system_configurations table
    CONFIG_SOURCE: str = "settings"
    METRO_CITIES: list[str] = [
        "NEW DELHI", "DELHI", "MUMBAI", "KOLKATA", "CHENNAI",
        "BENGALURU", "BANGALORE", "HYDERABAD", "AHMEDABAD", "PUNE",
    ]
    SPECIAL_STATES: list[str] = [
        "JAMMU AND KASHMIR", "LADAKH", "ASSAM", "ARUNACHAL PRADESH",
        "MANIPUR", "MEGHALAYA", "MIZORAM", "NAGALAND", "TRIPURA", "SIKKIM",
        "ANDAMAN AND NICOBAR ISLANDS", "LAKSHADWEEP",
    ]
    METRO_CITIES_FILE: Optional[str] = None  # JSON: {"metro_cities": [...], "special_states": [...]}

    # Pricing
    DEFAULT_GST_PERCENT: float = 18.0
    VOLUMETRIC_DIVISOR: int = 5000  # cm3 per kg
    DEFAULT_RATE_CARD_TIER: str = "STANDARD"

    # Carrier ranking
    SERVICEABILITY_TIMEOUT_SECONDS: float = 3.0  # Per-carrier serviceability call
    RANKING_MAX_CONCURRENCY: int = 8  # Carriers evaluated in parallel

    @field_validator('CORS_ORIGINS', 'METRO_CITIES', 'SPECIAL_STATES', mode='before')
    @classmethod
    def parse_list_values(cls, v):
        return _parse_list(v)

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
