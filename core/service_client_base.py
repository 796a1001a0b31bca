"""
Base HTTP Client

Base class for outbound HTTP clients: owns one httpx.AsyncClient with a
bounded timeout and default headers.
"""

import httpx
import logging
from typing import Optional, Dict, Any
from abc import ABC

logger = logging.getLogger(__name__)


class BaseServiceClient(ABC):
    """
    Outbound client base class

    Handles:
    1. HTTP client lifecycle
    2. Default headers
    3. Timeout control

    Usage:
        class AccountClient(BaseServiceClient):
            service_name = "account_service"

            async def get_user_balance(self, user_id: str):
                response = await self.get(f"/api/v1/accounts/{user_id}/balance")
                return response.json()
    """

    # Subclasses define this
    service_name: str = None

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Base URL of the remote service
            headers: Extra default headers
            timeout: Request timeout in seconds, applied to every call
            transport: Optional httpx transport (tests plug in httpx.MockTransport)
        """
        if not self.service_name:
            raise ValueError(f"{self.__class__.__name__} must define 'service_name'")

        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        default_headers = self._build_default_headers()
        default_headers.update(headers or {})

        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers=default_headers,
            transport=transport,
        )

        logger.debug(f"Initialized {self.service_name} client: {self.base_url} (timeout={timeout}s)")

    def _build_default_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": f"bizchat-campaign-service/{self.service_name}",
        }

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
        logger.debug(f"Closed {self.service_name} client")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ========================================
    # HTTP methods
    # ========================================

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        """GET request"""
        url = f"{self.base_url}{path}"
        return await self.client.get(url, params=params, headers=headers)

    async def post(
        self,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        """POST request"""
        url = f"{self.base_url}{path}"
        return await self.client.post(url, json=json, params=params, headers=headers)


__all__ = ["BaseServiceClient"]
