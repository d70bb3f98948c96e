"""
Configuration management using pydantic-settings

Loads configuration from environment variables and .env file
"""

import logging

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database Configuration
    DB_HOST: str = Field(default="localhost", description="Database host")
    DB_PORT: int = Field(default=5432, description="Database port")
    DB_NAME: str = Field(default="erp_db", description="Database name")
    DB_USER: str = Field(default="erp_user", description="Database user")
    DB_PASSWORD: str = Field(default="erp_password", description="Database password")
    DB_POOL_MIN: int = Field(default=1, description="Minimum pooled connections")
    DB_POOL_MAX: int = Field(default=10, description="Maximum pooled connections")
    INVOICE_TABLE: str = Field(default="billing.invoices", description="Table holding persisted invoices")

    # Application Settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Composition Configuration
    RESTORE_GRACE_SECONDS: float = Field(
        default=1.0,
        ge=0.0,
        description="How long a finished restoration stays visible before returning to idle"
    )
    INVOICE_NUMBER_PREFIX: str = Field(default="INV-", description="Display prefix for invoice numbers")
    DEFAULT_PAYMENT_METHOD: str = Field(default="cash", description="Payment method selected on open")

    # Currency Configuration
    CURRENCY_SYMBOL: str = Field(default="Rs", description="Symbol used when displaying amounts")
    CURRENCY_MINOR_UNITS: int = Field(default=2, ge=0, le=4, description="Decimal places of the minor unit")

    # Tax rates by payment method, used when no settings provider overrides them
    TAX_RATE_CASH: float = Field(default=0.0, ge=0.0, le=1.0, description="Tax rate for cash payments")
    TAX_RATE_CARD: float = Field(default=0.18, ge=0.0, le=1.0, description="Tax rate for card/POS payments")
    TAX_RATE_ONLINE: float = Field(default=0.15, ge=0.0, le=1.0, description="Tax rate for online transfers")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance"""
    return settings


def configure_logging(level: str = None):
    """Apply LOG_LEVEL to the root logger"""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
