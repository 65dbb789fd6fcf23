# app/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator
from pathlib import Path
from loguru import logger
from typing import Optional, List
import sys

CACHE_BACKENDS = ("memory", "redis")


class Settings(BaseSettings):
    # --- Core App Settings ---
    APP_NAME: str = "Rental Profiles Backend"
    API_V1_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = False

    # --- CORS ---
    # Comma-separated, e.g. "http://localhost:8081,https://app.example.com"
    ALLOWED_ORIGINS: str = Field("*", description="Allowed CORS origins. Use '*' for dev ONLY.")

    # --- Database (MongoDB) ---
    MONGODB_URI: str = Field("mongodb://localhost:27017/rentals", description="MongoDB connection string")
    MONGO_DB_NAME: Optional[str] = None  # Derived from URI if not set
    PROFILES_MONGO_COLLECTION: str = "profiles"
    MONGO_TIMEOUT_MS: int = 5000

    # --- Redis / Profile Cache ---
    REDIS_URL: Optional[str] = None
    PROFILE_CACHE_BACKEND: str = "memory"  # memory | redis
    PROFILE_CACHE_TTL_SECONDS: int = 300
    PROFILE_CACHE_KEY_PREFIX: str = "profile_cache:"

    # --- Auth (resolved upstream) ---
    AUTH_OWNER_HEADER: str = "X-Owner-Id"

    # --- Profile rules ---
    AGENCY_MEMBER_EDITING: bool = True  # Listed agency members may edit the agency profile

    # --- Audit Log Settings ---
    AUDIT_LOG_ENABLED: bool = True
    AUDIT_LOG_MONGO_COLLECTION: str = "audit_logs"

    # --- Rate limiting ---
    RATE_LIMIT_DEFAULT: str = "600/minute"

    model_config = SettingsConfigDict(
        env_file=str(Path.cwd() / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def process_and_validate(self) -> "Settings":
        # Derive DB name if needed
        if self.MONGO_DB_NAME is None and self.MONGODB_URI:
            db_name = self.MONGODB_URI.rsplit("/", 1)[-1].split("?")[0] if self.MONGODB_URI.count("/") > 2 else ""
            self.MONGO_DB_NAME = db_name or "rentals"
            logger.debug(f"Derived MONGO_DB_NAME: {self.MONGO_DB_NAME}")

        self.PROFILE_CACHE_BACKEND = self.PROFILE_CACHE_BACKEND.lower()
        if self.PROFILE_CACHE_BACKEND not in CACHE_BACKENDS:
            raise ValueError(f"PROFILE_CACHE_BACKEND must be one of {CACHE_BACKENDS}, got '{self.PROFILE_CACHE_BACKEND}'.")
        if self.PROFILE_CACHE_BACKEND == "redis" and not self.REDIS_URL:
            raise ValueError("REDIS_URL is required when PROFILE_CACHE_BACKEND=redis.")
        if self.PROFILE_CACHE_TTL_SECONDS <= 0:
            raise ValueError("PROFILE_CACHE_TTL_SECONDS must be positive.")

        return self

    @property
    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


# --- Global Settings Instance ---
try:
    settings = Settings()
    logger.info(f"Settings loaded for {settings.APP_NAME}")
    logger.info(f"MongoDB DB: {settings.MONGO_DB_NAME}")
    logger.info(f"Profile cache: {settings.PROFILE_CACHE_BACKEND} (ttl={settings.PROFILE_CACHE_TTL_SECONDS}s)")
    logger.info(f"Audit Log: {'Enabled' if settings.AUDIT_LOG_ENABLED else 'Disabled'}")
except ValueError as e:
    logger.critical(f"CONFIGURATION ERROR: {e}")
    sys.exit(f"Configuration Error: {e}")
