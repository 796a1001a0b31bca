#!/usr/bin/env python3
"""BizChat vendor gateway configuration

The environment flag is resolved once when the config is loaded and is then
threaded through the gateway client. Anything other than an explicit
"production"/"prod" value selects the development gateway.
"""
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple


def _bool(val: str) -> bool:
    return val.lower() == "true"

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


PRODUCTION_FLAGS = {"production", "prod"}


class ConfigurationError(Exception):
    """Raised when the active vendor environment cannot be used (e.g. missing API key)"""

    def __init__(self, message: str, setting: str = ""):
        super().__init__(message)
        self.setting = setting


@dataclass
class BizChatConfig:
    """BizChat gateway endpoints, credentials and campaign defaults"""

    # ===========================================
    # Environment selection
    # ===========================================
    environment: str = "development"

    dev_api_url: str = "https://gw-dev.bizchat1.co.kr:8443"
    prod_api_url: str = "https://gw.bizchat1.co.kr"
    dev_api_key: str = ""
    prod_api_key: str = ""

    # Every vendor call is bounded by this timeout
    timeout_seconds: float = 30.0

    # ===========================================
    # Callbacks
    # ===========================================
    callback_base_url: str = "http://localhost:8260"
    callback_auth_key: str = ""

    # ===========================================
    # Campaign defaults
    # ===========================================
    default_company_name: str = "위픽"
    cost_per_message: Decimal = Decimal("50")
    # Unknown region names fail compilation instead of being dropped
    strict_regions: bool = False

    @property
    def use_production(self) -> bool:
        return self.environment.strip().lower() in PRODUCTION_FLAGS

    @property
    def callback_state_url(self) -> str:
        return f"{self.callback_base_url.rstrip('/')}/api/v1/bizchat/callback/state"

    def resolve_vendor_target(self) -> Tuple[str, str]:
        """Return (base_url, api_key) for the active environment.

        Raises:
            ConfigurationError: the API key for the active environment is not set
        """
        if self.use_production:
            base_url, api_key, key_name = self.prod_api_url, self.prod_api_key, "BIZCHAT_PROD_API_KEY"
        else:
            base_url, api_key, key_name = self.dev_api_url, self.dev_api_key, "BIZCHAT_DEV_API_KEY"

        if not api_key:
            raise ConfigurationError(
                f"BizChat API key not configured for {'production' if self.use_production else 'development'} "
                f"environment ({key_name})",
                setting=key_name,
            )
        if not base_url:
            raise ConfigurationError("BizChat API base URL not configured", setting="BIZCHAT_API_URL")
        return base_url.rstrip("/"), api_key

    @classmethod
    def from_env(cls) -> 'BizChatConfig':
        """Load BizChat configuration from environment variables"""
        # BIZCHAT_USE_PROD=true is still honoured as an explicit opt-in
        environment = os.getenv("BIZCHAT_ENV", "development")
        if _bool(os.getenv("BIZCHAT_USE_PROD", "false")):
            environment = "production"

        return cls(
            environment=environment,
            dev_api_url=os.getenv("BIZCHAT_DEV_API_URL", "https://gw-dev.bizchat1.co.kr:8443"),
            prod_api_url=os.getenv("BIZCHAT_PROD_API_URL", "https://gw.bizchat1.co.kr"),
            dev_api_key=os.getenv("BIZCHAT_DEV_API_KEY", ""),
            prod_api_key=os.getenv("BIZCHAT_PROD_API_KEY", ""),
            timeout_seconds=_float(os.getenv("BIZCHAT_TIMEOUT_SECONDS", "30"), 30.0),
            callback_base_url=os.getenv("BIZCHAT_CALLBACK_BASE_URL", "http://localhost:8260"),
            callback_auth_key=os.getenv("BIZCHAT_CALLBACK_AUTH_KEY", ""),
            default_company_name=os.getenv("BIZCHAT_DEFAULT_COMPANY_NAME", "위픽"),
            cost_per_message=Decimal(os.getenv("BIZCHAT_COST_PER_MESSAGE", "50")),
            strict_regions=_bool(os.getenv("BIZCHAT_STRICT_REGIONS", "false")),
        )
