"""
Configuration Management for Obligation Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""
    
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
    accounts_sheet_name: str = Field(default="Accounts")
    transactions_sheet_name: str = Field(default="Transactions")
    sources_sheet_name: str = Field(
        default="RecurringSources",
        description="Scheduled payments and credit-card statement sources"
    )
    occurrences_sheet_name: str = Field(default="Occurrences")
    loans_sheet_name: str = Field(default="Loans")
    loan_terms_sheet_name: str = Field(default="LoanTerms")
    loan_installments_sheet_name: str = Field(default="LoanInstallments")
    bt_allocations_sheet_name: str = Field(default="LoanBtAllocations")
    loan_payments_sheet_name: str = Field(default="LoanPayments")
    insurances_sheet_name: str = Field(default="Insurances")
    premiums_sheet_name: str = Field(default="InsurancePremiums")
    salary_profiles_sheet_name: str = Field(default="SalaryProfiles")
    salary_cycles_sheet_name: str = Field(default="SalaryCycles")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )
    
    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class EngineSettings(BaseSettings):
    """Tunables for the scheduling and reconciliation engine."""
    
    model_config = SettingsConfigDict(
        env_prefix="ENGINE_",
        extra="ignore"
    )
    
    amortization_tolerance: Decimal = Field(
        default=Decimal("1.00"),
        ge=0,
        description="Largest residue allowed on a rebuilt schedule's final outstanding"
    )
    max_custom_interval_months: int = Field(
        default=60,
        ge=1,
        le=60,
        description="Upper bound for custom recurrence intervals"
    )
    upcoming_payday_count: int = Field(
        default=6,
        ge=1,
        le=24,
        description="How many paydays the dashboard looks ahead"
    )
    past_payday_count: int = Field(
        default=3,
        ge=1,
        le=24,
        description="How many paydays the salary history looks back"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.
    
    Loads configuration from environment variables and .env file.
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
    
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Where sources, occurrences and ledger rows are kept"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for local structured logs"
    )
    
    @property
    def uses_google_sheets(self) -> bool:
        return self.storage_backend == "google_sheets"


class Settings(BaseSettings):
    """
    Root settings container.
    
    Aggregates all sub-settings for easy access.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    # Note: These are loaded lazily to allow partial configuration
    
    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()
    
    @property
    def engine(self) -> EngineSettings:
        return EngineSettings()
    
    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).
    
    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.
    
    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    
    settings = get_settings()
    
    for name in ("google_sheets", "engine", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)
    
    return results
