"""
Foundation settings for the CMS backend.
"""

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CMSSettings(BaseSettings):
    """
    Core settings shared by every CMS package.

    Values come from the environment (or a ``.env`` file); tests and the
    application factory may also build an instance explicitly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    # --- Basic Environment ---
    DEBUG: bool = True
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    LOG_LEVEL: str = "INFO"

    # --- HTTP Surface ---
    API_PREFIX: str = "/cms"
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "https://admin.assurur.com",
    ]

    # --- Pagination & API Limits ---
    # These power PaginationParams in schemas/parameter.py
    DEFAULT_LIST_PER_PAGE: int = 20
    MAX_API_LIMIT: int = 100
    MIN_LIST_PER_PAGE: int = 1

    # --- Token Verification ---
    JWT_SECRET: str = ""
    JWT_ALGORITHMS: list[str] = ["HS256", "RS256", "ES256"]
    JWT_ISSUER: str | None = None
    JWT_AUDIENCE: str | None = None
    JWT_ROLE_CLAIM: str = "role"
    JWKS_URL: str | None = None
    JWKS_CACHE_SECONDS: int = 300

    # --- Role Policy ---
    ROLE_POLICY_FILE: str | None = None
    ROLE_PERMISSIONS: dict[str, list[str]] | None = None
    DEFAULT_ROLE: str = "author"

    # --- Database Core ---
    DATABASE_URL: str = "sqlite+aiosqlite:///cms.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_ECHO: bool = False

    # --- Media & Object Storage ---
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024
    ALLOWED_MEDIA_TYPES: list[str] = [
        "image/jpeg",
        "image/png",
        "image/webp",
        "image/gif",
        "application/pdf",
    ]
    STORAGE_BACKEND: Literal["local", "s3"] = "local"
    STORAGE_ROOT: str = "storage"
    S3_ENDPOINT: str = ""
    S3_REGION: str = "auto"
    S3_BUCKET: str = "cms-media"
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    MEDIA_PUBLIC_BASE_URL: str = "/media-files"
    PRESIGNED_URL_EXPIRES: int = 3600

    @model_validator(mode="after")
    def validate_security(self) -> "CMSSettings":
        """Ensures non-development deployments can verify bearer tokens."""
        if not self.is_development() and not (self.JWT_SECRET or self.JWKS_URL):
            raise ValueError(
                "JWT_SECRET or JWKS_URL is mandatory outside development mode."
            )
        return self

    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


# Singleton instance for core use
cms_settings = CMSSettings()
