"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class PaisaConfig(BaseSettings):
    """Namma Paisa loans service configuration"""
    
    # Database configuration
    database_url: str = "namma_paisa.db"  # SQLite file path, or "memory"
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24
    dev_user_id: str = "dev_user"  # Caller identity when auth is disabled
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Business rules configuration
    default_currency: str = "INR"
    closure_tolerance: str = "0.01"  # Allowed closure amount mismatch before warning
    upcoming_limit: int = 5
    
    class Config:
        env_prefix = "NAMMA_PAISA_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = PaisaConfig()


def get_config() -> PaisaConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> PaisaConfig:
    """Reload configuration from environment"""
    global config
    config = PaisaConfig()
    return config
