#!/usr/bin/env python3
"""Modular configuration system for the BizChat campaign service

Configuration hierarchy:
- bizchat_config: Vendor gateway (BizChat) endpoints, keys and campaign defaults
- logging_config: Logging configuration
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .bizchat_config import BizChatConfig, ConfigurationError
from .logging_config import LoggingConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)


@dataclass
class ServiceSettings:
    """Top-level settings for the BizChat campaign service"""
    service_name: str = "bizchat_service"
    service_port: int = 8260
    environment: str = "development"
    account_service_url: str = "http://localhost:8200"
    bizchat: BizChatConfig = field(default_factory=BizChatConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> 'ServiceSettings':
        try:
            port = int(os.getenv("SERVICE_PORT", "8260"))
        except ValueError:
            port = 8260
        return cls(
            service_name=os.getenv("SERVICE_NAME", "bizchat_service"),
            service_port=port,
            environment=os.getenv("ENV") or os.getenv("ENVIRONMENT", "development"),
            account_service_url=os.getenv("ACCOUNT_SERVICE_URL", "http://localhost:8200"),
            bizchat=BizChatConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )


# Create global settings instance
settings = ServiceSettings.from_env()

def get_settings() -> ServiceSettings:
    """Get global settings instance"""
    return settings

def reload_settings() -> ServiceSettings:
    """Reload settings from environment"""
    global settings
    settings = ServiceSettings.from_env()
    return settings

__all__ = [
    'ServiceSettings',
    'get_settings',
    'reload_settings',
    'settings',
    'BizChatConfig',
    'ConfigurationError',
    'LoggingConfig',
]
