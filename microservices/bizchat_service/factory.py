"""
BizChat Service Factory

Factory for creating BizChat campaign service instances with proper
dependency injection.
"""

import logging
from typing import Optional

from core.config import ServiceSettings, get_settings

from .campaign_repository import CampaignRepository, TemplateRepository
from .campaign_service import BizChatCampaignService
from .clients.account_client import AccountClient
from .clients.bizchat_client import BizChatClient
from .protocols import BalanceClientProtocol, VendorGatewayProtocol
from .targeting_compiler import TargetingCompiler

logger = logging.getLogger(__name__)


class BizChatServiceFactory:
    """Factory for creating BizChat service components"""

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        gateway: Optional[VendorGatewayProtocol] = None,
        balance_client: Optional[BalanceClientProtocol] = None,
    ):
        self.settings = settings or get_settings()
        self._gateway = gateway
        self._balance_client = balance_client
        self._repository: Optional[CampaignRepository] = None
        self._template_repository: Optional[TemplateRepository] = None
        self._service: Optional[BizChatCampaignService] = None

    async def initialize(self) -> None:
        """Initialize all components"""
        logger.info("Initializing BizChat Service components...")

        self._repository = CampaignRepository()
        await self._repository.initialize()
        self._template_repository = TemplateRepository()

        # A missing API key for the active environment fails here, at startup
        if self._gateway is None:
            self._gateway = BizChatClient(self.settings.bizchat)
        if self._balance_client is None:
            self._balance_client = AccountClient(base_url=self.settings.account_service_url)

        self._service = BizChatCampaignService(
            repository=self._repository,
            template_repository=self._template_repository,
            gateway=self._gateway,
            balance_client=self._balance_client,
            config=self.settings.bizchat,
            compiler=TargetingCompiler(strict_regions=self.settings.bizchat.strict_regions),
        )

        logger.info("BizChat Service components initialized")

    async def close(self) -> None:
        """Close all components"""
        logger.info("Closing BizChat Service components...")

        for client in (self._gateway, self._balance_client):
            close = getattr(client, "close", None)
            if close is not None:
                await close()

        if self._repository:
            await self._repository.close()

        logger.info("BizChat Service components closed")

    @property
    def repository(self) -> CampaignRepository:
        """Get campaign repository"""
        if not self._repository:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._repository

    @property
    def template_repository(self) -> TemplateRepository:
        """Get template repository"""
        if not self._template_repository:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._template_repository

    @property
    def service(self) -> BizChatCampaignService:
        """Get campaign service"""
        if not self._service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._service

    @property
    def gateway(self) -> VendorGatewayProtocol:
        """Get BizChat gateway client"""
        if not self._gateway:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._gateway


# Global factory instance
_factory: Optional[BizChatServiceFactory] = None


async def get_factory() -> BizChatServiceFactory:
    """Get or create factory instance"""
    global _factory
    if _factory is None:
        _factory = BizChatServiceFactory()
        await _factory.initialize()
    return _factory


async def close_factory() -> None:
    """Close factory instance"""
    global _factory
    if _factory:
        await _factory.close()
        _factory = None


__all__ = [
    "BizChatServiceFactory",
    "get_factory",
    "close_factory",
]
