"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings


class EngineConfig(BaseSettings):
    """Loan engine configuration"""

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Calculation defaults
    default_repayment_strategy: str = "principal_interest_penalties_fees"
    accrual_days_in_year: int = 365     # Day basis for settlement interest accrual
    schedule_amount_places: int = 2     # Rounding scale of per-period principal/interest

    class Config:
        env_prefix = "LOAN_ENGINE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = EngineConfig()


def get_config() -> EngineConfig:
    """Get the global configuration instance"""
    return config


def reload_config() -> EngineConfig:
    """Reload configuration from environment"""
    global config
    config = EngineConfig()
    return config
