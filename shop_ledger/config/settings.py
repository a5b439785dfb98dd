"""
Configuration Management for Shop Ledger

Settings come from environment variables (and an optional `.env` file)
through pydantic-settings, one class per concern.

DESIGN DECISION: Report tuning (labels, limits, window sizes) lives next to the storage
credentials so one `.env` file describes a deployment.
"""

import warnings
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Hosted storage: service account and worksheet names."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    transactions_sheet_name: str = Field(
        default="Transactions",
        description="Name of the sheet for sales and expenses"
    )
    products_sheet_name: str = Field(
        default="Products",
        description="Name of the sheet for the product catalog"
    )
    categories_sheet_name: str = Field(
        default="ProductCategories",
        description="Name of the sheet for product categories"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Only warn on a missing file; secrets are often mounted at runtime."""
        if not Path(v).is_file():
            warnings.warn(f"No service account file at {v}; Google Sheets storage will fail to connect.")
        return v


class AppSettings(BaseSettings):
    """
    Ledger-wide settings: environment, logging, storage choice, local
    calendar and report tuning.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Minimum log level"
    )
    json_logs: bool = Field(
        default=True,
        description="Render logs as JSON (False = console renderer)"
    )

    # Storage
    storage_backend: Literal["memory", "google_sheets"] = Field(
        default="memory",
        description="Which storage backend the ledger uses"
    )

    # Local calendar
    timezone: Optional[str] = Field(
        default=None,
        description="IANA timezone for day boundaries (unset = system local time)"
    )

    # Report tuning
    uncategorized_label: str = Field(
        default="Sin Categoría",
        min_length=1,
        description="Income bucket for items without a resolvable product category"
    )
    top_products_limit: int = Field(
        default=3,
        ge=1,
        le=50,
        description="How many products the top-products ranking returns"
    )
    activity_window_days: int = Field(
        default=7,
        ge=1,
        le=31,
        description="Length of the trailing daily activity window"
    )
    sale_screen_product_limit: int = Field(
        default=10,
        ge=1,
        description="Maximum visible products offered when recording a sale"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept any case, store upper case."""
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Entry point to every settings group.

    Groups are built on access, so a missing Google Sheets setup does
    not stop an in-memory ledger from starting.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to load every settings group.

    Returns {group: loaded}, plus a `<group>_error` message for each
    group that failed validation.
    """
    settings = get_settings()
    results = {}

    for group in ("app", "google_sheets"):
        try:
            getattr(settings, group)
            results[group] = True
        except ValidationError as e:
            results[group] = False
            results[f"{group}_error"] = str(e)

    return results
