# estatecrm/config.py
# Environment-aware configuration for the estatecrm service

import logging
import os
from typing import Literal

logger = logging.getLogger(__name__)

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# Database configuration
# DATABASE_URL takes precedence; local development falls back to a SQLite file
DATABASE_URL = os.environ.get("DATABASE_URL", "").strip() or "sqlite:///./estatecrm.db"
DB_POOL_SIZE = int(os.environ.get("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.environ.get("DB_MAX_OVERFLOW", "10"))
DB_ECHO = os.environ.get("DB_ECHO", "false").lower() == "true"

# Database type detection
IS_POSTGRES = DATABASE_URL.startswith(("postgres://", "postgresql://", "postgresql+"))
IS_SQLITE = DATABASE_URL.startswith("sqlite")

# Hosted identity provider: session tokens are JWTs signed with this secret
IDP_JWT_SECRET = os.environ.get("IDP_JWT_SECRET", "dev-identity-secret")  # TODO: Use provider JWKS in prod
IDP_JWT_ALGORITHM = os.environ.get("IDP_JWT_ALGORITHM", "HS256")
IDP_ISSUER = os.environ.get("IDP_ISSUER", "").strip() or None
IDP_AUDIENCE = os.environ.get("IDP_AUDIENCE", "").strip() or None

# Identity provider admin API (used by user sync)
IDP_API_URL = os.environ.get("IDP_API_URL", "https://api.identity.local/v1").rstrip("/")
IDP_API_KEY = os.environ.get("IDP_API_KEY", "")
IDP_TIMEOUT_SECONDS = float(os.environ.get("IDP_TIMEOUT_SECONDS", "10"))

# Outbound account e-mails
EMAIL_FROM = os.environ.get("EMAIL_FROM", "EstateCRM <noreply@estatecrm.local>")

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG" if IS_DEV else "INFO").upper()

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

if IS_STAGING or IS_PROD:
    extra_origins = os.environ.get("CORS_ORIGINS", "")
    if extra_origins:
        CORS_ORIGINS.extend(o.strip() for o in extra_origins.split(",") if o.strip())
    elif IS_STAGING:
        CORS_ORIGINS.append("https://staging.estatecrm.app")
    else:
        CORS_ORIGINS.append("https://app.estatecrm.app")


def log_settings() -> None:
    """Log the effective (non-secret) settings once at startup."""
    logger.info(f"[CONFIG] Environment: {ENV}")
    logger.info(f"[CONFIG] Database: {'PostgreSQL' if IS_POSTGRES else 'SQLite' if IS_SQLITE else 'other'}")
    logger.info(f"[CONFIG] Identity provider API: {IDP_API_URL}")
    logger.info(f"[CONFIG] Token claim checks: issuer={'on' if IDP_ISSUER else 'off'}, audience={'on' if IDP_AUDIENCE else 'off'}")
