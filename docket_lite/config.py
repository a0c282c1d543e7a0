"""
Configuration for Docket Lite
=============================

Environment variables (all optional):
- ENVIRONMENT: development|production (default: development)
- CORS_ALLOW_ORIGINS: comma separated origins
- SOFT_DELETE_RETENTION_DAYS: days before soft-deleted rows are purge eligible (default: 90)
- PASSWORD_SETUP_TOKEN_HOURS: invite link lifetime (default: 48)
- SUPERADMIN_EMAIL / SUPERADMIN_PASSWORD: platform SuperAdmin seeded at startup
- APP_URL: frontend base URL used in emails
- RATE_LIMIT_ENABLED: enable redis rate limiting (default: false)

Feature flags are read live from the environment so they can be flipped
without a restart:
- DISABLE_FIRM_CREATION: block SuperAdmin firm creation (503)
- IDEMPOTENCY_ENFORCED: require Idempotency-Key on mutating requests (default: true)
"""

import os
from typing import List, Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


def _env_truthy(name: str, default: str = "false") -> bool:
    """Parse boolean environment variable values."""
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "y", "on")


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Service info
    service_name: str = "Docket Lite"
    service_version: str = "1.0.0"
    environment: str = "development"

    # HTTP
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173"
    idempotency_exempt_prefixes: str = "/api/auth,/f/,/health"
    rate_limit_enabled: bool = False

    # Soft delete
    soft_delete_retention_days: int = 90

    # Onboarding
    password_setup_token_hours: int = 48
    app_url: str = "http://localhost:5173"

    # Platform SuperAdmin (seeded at startup when both are set)
    superadmin_email: Optional[str] = None
    superadmin_password: Optional[str] = None
    superadmin_name: str = "Platform SuperAdmin"

    # Audit
    audit_buffer_size: int = 1000

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def cors_origins(self) -> List[str]:
        origins: List[str] = []
        for item in self.cors_allow_origins.split(","):
            origin = item.strip().strip('"').strip("'").rstrip("/")
            if origin:
                origins.append(origin)
        return origins

    def idempotency_exempt(self) -> List[str]:
        return [p.strip() for p in self.idempotency_exempt_prefixes.split(",") if p.strip()]

    def validate_config(self) -> List[str]:
        """Validate configuration, return list of warnings"""
        warnings = []

        if bool(self.superadmin_email) != bool(self.superadmin_password):
            warnings.append("SUPERADMIN_EMAIL and SUPERADMIN_PASSWORD must be set together")

        if self.is_production and os.environ.get("JWT_SECRET_KEY") is None:
            warnings.append("ENVIRONMENT=production but JWT_SECRET_KEY not set")

        if self.soft_delete_retention_days < 1:
            warnings.append("SOFT_DELETE_RETENTION_DAYS should be at least 1")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# =============================================================================
# FEATURE FLAGS
# =============================================================================

def is_firm_creation_disabled() -> bool:
    return _env_truthy("DISABLE_FIRM_CREATION", "false")


def is_idempotency_enforced() -> bool:
    return _env_truthy("IDEMPOTENCY_ENFORCED", "true")
