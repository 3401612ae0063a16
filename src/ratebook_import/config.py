"""Configuration management for ratebook import.

This module provides centralized configuration using pydantic-settings.
All configuration options can be set via environment variables with the
RBI_ prefix, or via a .env file in the project root.

Environment Variables:
    RBI_MAX_FILE_SIZE_MB: Maximum ratebook upload size in MB (default: 25)
    RBI_DEFAULT_CONTRACT_TYPE: Contract type used when a sheet carries no
        section marker and the caller gives no override (default: BCH)
    RBI_DEFAULT_TERM: Term in months for tabular rows without one (default: 36)
    RBI_DEFAULT_ANNUAL_MILEAGE: Annual mileage for tabular rows without one
        (default: 10000)
    RBI_DEFAULT_MANUFACTURER: Manufacturer used when none is found (default: Unknown)
    RBI_PREVIEW_LIMIT: Number of rates returned by analysis previews (default: 20)
    RBI_TABULAR_HEADER_SCAN_ROWS: Rows scanned for a tabular header (default: 5)
    RBI_MIN_TABULAR_HEADERS: Distinct header fields needed for tabular (default: 3)
    RBI_MATRIX_SCAN_ROWS: Rows scanned for matrix axis labels (default: 20)
    RBI_MIN_PLAUSIBLE_OTR: Smallest OTR price accepted from header cells, in
        major units (default: 10000)
    RBI_ERROR_LOG_LIMIT: Errors kept on a stored import batch (default: 50)
    RBI_LOG_LEVEL: Logging level (default: INFO)
    RBI_DEBUG: Enable debug mode (default: false)
    RBI_CORS_ORIGINS: Comma-separated CORS origins (default: *)
    RBI_SERVER_HOST: Server bind host (default: 0.0.0.0)
    RBI_SERVER_PORT: Server bind port (default: 8000)
"""

import logging
from typing import Any

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CONTRACT_TYPE_CODES = {"BCH", "PCH", "CH", "CHNM", "PCHNM", "BSSNL", "HCH"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Example .env file:
        RBI_DEFAULT_CONTRACT_TYPE=PCH
        RBI_LOG_LEVEL=DEBUG
        RBI_PREVIEW_LIMIT=50
    """

    model_config = SettingsConfigDict(
        env_prefix="RBI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # File Upload Settings
    # =========================================================================

    max_file_size_mb: int = 25
    """Maximum ratebook upload size in megabytes."""

    # =========================================================================
    # Extraction Defaults
    # =========================================================================

    default_contract_type: str = "BCH"
    """Contract type assumed when neither a section marker nor an override exists."""

    default_term: int = 36
    """Contract length in months for tabular rows that omit it."""

    default_annual_mileage: int = 10000
    """Annual mileage for tabular rows that omit it."""

    default_manufacturer: str = "Unknown"
    """Manufacturer (and model) placeholder when no identity is found."""

    preview_limit: int = 20
    """Number of rates included in an analysis preview."""

    # =========================================================================
    # Detection Settings
    # =========================================================================

    tabular_header_scan_rows: int = 5
    """Number of leading rows searched for a tabular header row."""

    min_tabular_headers: int = 3
    """Distinct recognised header fields needed to call a sheet tabular."""

    matrix_scan_rows: int = 20
    """Number of leading rows searched for matrix axis labels."""

    min_plausible_otr: int = 10000
    """Smallest on-the-road price (major units) accepted from header cells."""

    # =========================================================================
    # Import Store Settings
    # =========================================================================

    error_log_limit: int = 50
    """Maximum number of error messages kept on a stored import batch."""

    # =========================================================================
    # Logging Settings
    # =========================================================================

    log_level: str = "INFO"
    """Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL."""

    debug: bool = False
    """Enable debug mode with additional logging and error details."""

    # =========================================================================
    # Server Settings
    # =========================================================================

    cors_origins: str = "*"
    """Comma-separated list of allowed CORS origins, or * for all."""

    server_host: str = "0.0.0.0"
    """Host address for the server to bind to."""

    server_port: int = 8000
    """Port for the server to listen on."""

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}"
            )
        return upper_v

    @field_validator("default_contract_type")
    @classmethod
    def validate_contract_type(cls, v: str) -> str:
        """Validate the fallback contract type is a known code."""
        upper_v = v.strip().upper()
        if upper_v not in CONTRACT_TYPE_CODES:
            raise ValueError(
                f"Invalid contract type: {v}. "
                f"Must be one of: {', '.join(sorted(CONTRACT_TYPE_CODES))}"
            )
        return upper_v

    @field_validator("max_file_size_mb")
    @classmethod
    def validate_file_size(cls, v: int) -> int:
        """Validate file size is positive and reasonable."""
        if not 1 <= v <= 500:
            raise ValueError(f"max_file_size_mb must be between 1 and 500, got {v}")
        return v

    @field_validator("default_term")
    @classmethod
    def validate_default_term(cls, v: int) -> int:
        """Validate the default term is a plausible lease length."""
        if not 1 <= v <= 120:
            raise ValueError(f"default_term must be between 1 and 120, got {v}")
        return v

    @field_validator(
        "default_annual_mileage",
        "preview_limit",
        "tabular_header_scan_rows",
        "min_tabular_headers",
        "matrix_scan_rows",
        "error_log_limit",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate counters and limits are positive."""
        if v < 1:
            raise ValueError(f"Value must be at least 1, got {v}")
        return v

    @field_validator("server_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError(f"server_port must be between 1 and 65535, got {v}")
        return v

    @model_validator(mode="after")
    def validate_scan_windows(self) -> "Settings":
        """Validate the matrix scan window covers the tabular header window."""
        if self.matrix_scan_rows < self.tabular_header_scan_rows:
            raise ValueError(
                f"matrix_scan_rows ({self.matrix_scan_rows}) must be at least "
                f"tabular_header_scan_rows ({self.tabular_header_scan_rows})"
            )
        return self

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def log_level_int(self) -> int:
        """Get log level as integer for logging module."""
        level: int = getattr(logging, self.log_level)
        return level

    def to_safe_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary suitable for logging.

        Returns:
            Dictionary representation of the settings.
        """
        return {
            "max_file_size_mb": self.max_file_size_mb,
            "default_contract_type": self.default_contract_type,
            "default_term": self.default_term,
            "default_annual_mileage": self.default_annual_mileage,
            "default_manufacturer": self.default_manufacturer,
            "preview_limit": self.preview_limit,
            "tabular_header_scan_rows": self.tabular_header_scan_rows,
            "min_tabular_headers": self.min_tabular_headers,
            "matrix_scan_rows": self.matrix_scan_rows,
            "min_plausible_otr": self.min_plausible_otr,
            "error_log_limit": self.error_log_limit,
            "log_level": self.log_level,
            "debug": self.debug,
            "cors_origins": self.cors_origins,
            "server_host": self.server_host,
            "server_port": self.server_port,
        }


def validate_settings_on_startup(s: Settings) -> None:
    """Validate settings on application startup.

    Args:
        s: Settings instance to validate.
    """
    logger = logging.getLogger(__name__)

    # Warn about permissive CORS in non-debug mode
    if s.cors_origins == "*" and not s.debug:
        logger.warning(
            "CORS is configured to allow all origins (*). "
            "Consider restricting this in production."
        )

    logger.info(
        f"Configuration loaded: log_level={s.log_level}, debug={s.debug}, "
        f"max_file_size_mb={s.max_file_size_mb}, "
        f"default_contract_type={s.default_contract_type}"
    )


# Create the global settings instance
settings = Settings()
