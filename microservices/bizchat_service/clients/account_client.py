"""
Account Service Client

Client for calling account_service to read a user's balance.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from core.service_client_base import BaseServiceClient

from ..protocols import BizChatServiceError

logger = logging.getLogger(__name__)


class BalanceLookupError(BizChatServiceError):
    """Raised when the balance cannot be read"""
    pass


class AccountClient(BaseServiceClient):
    """Client for account_service"""

    service_name = "account_service"

    def __init__(
        self,
        base_url: str = "http://localhost:8200",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url=base_url, timeout=timeout, transport=transport)

    async def get_user_balance(self, user_id: str) -> Decimal:
        """
        Get the user's spendable balance.

        An unknown account (404) or a reply without a balance reads as zero.
        Any other failure raises BalanceLookupError; it is never treated as
        an unlimited balance.
        """
        try:
            response = await self.get(f"/api/v1/accounts/{user_id}/balance")
            response.raise_for_status()
            data = response.json()
            return Decimal(str(data.get("balance", "0")))

        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.warning(f"User not found: {user_id}")
                return Decimal("0")
            logger.error(f"Error getting balance for {user_id}: {e}")
            raise BalanceLookupError(f"Balance lookup failed for {user_id}") from e

        except (httpx.HTTPError, ValueError, InvalidOperation) as e:
            logger.error(f"Error getting balance for {user_id}: {e}")
            raise BalanceLookupError(f"Balance lookup failed for {user_id}") from e


__all__ = ["AccountClient", "BalanceLookupError"]
