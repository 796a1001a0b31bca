#!/usr/bin/env python3
"""
Core Module for the BizChat campaign service

Shared components used by the service package.

COMPONENTS:
    - config/: Dataclass configuration loaded from the environment (.env via python-dotenv)
    - service_client_base.py: Base class for outbound httpx clients

USAGE:
    from core.config import get_settings

    settings = get_settings()
    base_url, api_key = settings.bizchat.resolve_vendor_target()
"""

__version__ = "2.0.0"
