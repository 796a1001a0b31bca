"""
BizChat Campaign Service Data Repository

In-process store for campaigns, messages and templates. Updates are a
compare-and-swap on the campaign version.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .models import Campaign, Message, Template
from .protocols import (
    CampaignNotFoundError,
    CampaignValidationError,
    ConcurrentModificationError,
)

logger = logging.getLogger(__name__)


class CampaignRepository:
    """Campaign data repository - in memory (async)"""

    def __init__(self):
        self._campaigns: Dict[str, Campaign] = {}
        self._vendor_index: Dict[str, str] = {}
        self._messages: Dict[str, Message] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        logger.info("Campaign repository initialized (in-memory)")

    async def close(self) -> None:
        logger.info("Campaign repository closed")

    async def save_campaign(self, campaign: Campaign) -> Campaign:
        async with self._lock:
            if campaign.campaign_id in self._campaigns:
                raise CampaignValidationError(
                    f"Campaign {campaign.campaign_id} already exists", field="campaign_id"
                )
            stored = campaign.model_copy(deep=True)
            self._campaigns[stored.campaign_id] = stored
            if stored.vendor_campaign_id:
                self._vendor_index[stored.vendor_campaign_id] = stored.campaign_id
        return stored.model_copy(deep=True)

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        campaign = self._campaigns.get(campaign_id)
        return campaign.model_copy(deep=True) if campaign else None

    async def get_campaign_by_vendor_id(self, vendor_campaign_id: str) -> Optional[Campaign]:
        campaign_id = self._vendor_index.get(vendor_campaign_id)
        if campaign_id is None:
            return None
        return await self.get_campaign(campaign_id)

    async def update_campaign(
        self, campaign_id: str, updates: Dict[str, Any], expected_version: int
    ) -> Campaign:
        """Apply updates when the stored version matches, bumping the version"""
        async with self._lock:
            current = self._campaigns.get(campaign_id)
            if current is None:
                raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")
            if current.version != expected_version:
                raise ConcurrentModificationError(campaign_id, expected_version)

            vendor_id = updates.get("vendor_campaign_id")
            if vendor_id and current.vendor_campaign_id and vendor_id != current.vendor_campaign_id:
                raise CampaignValidationError(
                    f"Campaign {campaign_id} is already linked to vendor campaign "
                    f"{current.vendor_campaign_id}",
                    field="vendor_campaign_id",
                )

            changes = dict(updates)
            changes["version"] = current.version + 1
            changes["updated_at"] = datetime.now(timezone.utc)
            updated = current.model_copy(update=changes, deep=True)
            self._campaigns[campaign_id] = updated
            if updated.vendor_campaign_id:
                self._vendor_index[updated.vendor_campaign_id] = campaign_id

        logger.debug(f"Campaign {campaign_id} updated to version {updated.version}: {sorted(updates)}")
        return updated.model_copy(deep=True)

    async def save_message(self, message: Message) -> Message:
        async with self._lock:
            self._messages[message.campaign_id] = message.model_copy(deep=True)
        return message

    async def get_message(self, campaign_id: str) -> Optional[Message]:
        message = self._messages.get(campaign_id)
        return message.model_copy(deep=True) if message else None


class TemplateRepository:
    """Template store - in memory (async)"""

    def __init__(self):
        self._templates: Dict[str, Template] = {}

    async def save_template(self, template: Template) -> Template:
        self._templates[template.template_id] = template.model_copy(deep=True)
        return template

    async def get_template(self, template_id: str) -> Optional[Template]:
        template = self._templates.get(template_id)
        return template.model_copy(deep=True) if template else None


__all__ = ["CampaignRepository", "TemplateRepository"]
