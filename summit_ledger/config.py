"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Summit ledger core configuration"""

    # Database configuration
    database_url: str = "sqlite:///summit_ledger.db"  # Default SQLite
    use_sqlite: bool = True

    # Concurrency configuration
    lock_timeout_seconds: float = 5.0  # Bounded wait before Contention
    reference_max_attempts: int = 10  # Collisions tolerated before Conflict

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    min_initial_deposit: str = "0.00"  # Zero means any non-negative deposit
    deposit_savings_only: bool = False
    cost_basis_precision: int = 6
    default_history_limit: int = 100

    # Feature flags
    enable_audit_logging: bool = True
    seed_stocks: bool = False

    class Config:
        env_prefix = "SUMMIT_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
