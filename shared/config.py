"""
Type-safe configuration for the mapping engine using Pydantic Settings.

This module provides a centralized, type-safe configuration system
that loads from environment variables and .env files.

Usage:
    from shared.config import config

    if len(record_ids) > config.salesforce_batch_size:
        ...
"""
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MappingEngineConfig(BaseSettings):
    """
    Central configuration for the mapping engine.

    All configuration is loaded from environment variables or .env file.
    Provides type safety and validation at startup.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ============================================================================
    # Salesforce
    # ============================================================================

    salesforce_api_version: str = Field(default="v60.0", description="REST API version used for every CRM call")
    salesforce_batch_size: int = Field(default=25, description="Records per composite batch request (platform limit is 25)")
    access_token_endpoint: Optional[str] = Field(
        default=None,
        description="Token service URL; receives POST {userId} and answers {access_token}",
    )
    http_timeout_seconds: float = Field(default=30.0, description="Timeout applied to every outbound HTTP call")

    # ============================================================================
    # Google Sheets
    # ============================================================================

    GOOGLE_CLIENT_ID: str = Field(default="", description="Google OAuth client ID")
    GOOGLE_CLIENT_SECRET: str = Field(default="", description="Google OAuth client secret")
    google_token_ttl_seconds: int = Field(default=3600, description="Age after which a stored sheet token is refreshed")
    google_credential_object: str = Field(default="GoogleCredentials__c", description="CRM object holding sheet credentials")
    google_token_type: str = Field(default="google-sheet", description="TokenType__c value of sheet credentials")
    sheet_row_window: str = Field(default="2:1000", description="Row range scanned by the sheet write node")

    # ============================================================================
    # Logging
    # ============================================================================

    log_level: str = Field(default="INFO", description="Console log level")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("salesforce_batch_size")
    @classmethod
    def _positive_batch(cls, value: int) -> int:
        if value < 1:
            raise ValueError("salesforce_batch_size must be at least 1")
        return value

    # ============================================================================
    # Computed Properties
    # ============================================================================

    @property
    def is_google_oauth_configured(self) -> bool:
        """Check if Google OAuth refresh is possible."""
        return bool(self.GOOGLE_CLIENT_ID and self.GOOGLE_CLIENT_SECRET)


# ============================================================================
# Global Config Instance
# ============================================================================

config = MappingEngineConfig()
