"""
Configuration for the authorization service, read from the environment.
"""

import os
from typing import List

import dotenv
from loguru import logger

dotenv.load_dotenv()

DEV_JWT_SECRET = "dev-only-insecure-jwt-secret-change-me-0000"


class ConfigurationError(RuntimeError):
    """Raised when the environment holds an unusable configuration."""


class AuthConfig:
    """Settings for database, tokens, caching and role seeding"""

    def __init__(self):
        # Database
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./abilities.db")
        self.db_echo = os.getenv("DB_ECHO", "False").lower() == "true"
        self.pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
        self.max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "20"))

        # Tokens
        self.environment = os.getenv("ENVIRONMENT", "development").lower()
        self.jwt_secret = os.getenv("JWT_SECRET") or DEV_JWT_SECRET
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.jwt_expiry = int(os.getenv("JWT_EXPIRY_SECONDS", "3600"))

        # Ruleset cache (0 disables)
        self.ability_cache_ttl = int(os.getenv("ABILITY_CACHE_TTL", "60"))

        # Role seeds
        self.role_seed_path = os.getenv("ROLE_SEED_PATH", "configs/roles/default.yaml")

        # CORS
        self.cors_origins: List[str] = [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ]

        self._validate()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def _validate(self):
        if self.jwt_secret == DEV_JWT_SECRET:
            if self.is_production:
                raise ConfigurationError("JWT_SECRET must be set in production")
            logger.warning("JWT_SECRET not set - using development secret")
        elif len(self.jwt_secret) < 32:
            logger.warning("JWT_SECRET is less than 32 bytes - use a stronger secret!")

        if self.ability_cache_ttl < 0:
            raise ConfigurationError("ABILITY_CACHE_TTL must be >= 0")


_config = None


def get_config() -> AuthConfig:
    """Get the process-wide configuration (built on first use)"""
    global _config
    if _config is None:
        _config = AuthConfig()
    return _config


def reset_config():
    """Drop the cached configuration so the environment is read again"""
    global _config
    _config = None
