"""
BizChat Campaign Service Business Logic

Owns the campaign state machine. Each transition validates locally first,
then calls the BizChat gateway, and commits the new local status only after
the vendor confirms.
"""

import asyncio
import logging
import uuid
import weakref
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple, Union

from core.config import BizChatConfig

from .models import (
    FINAL_STATUSES,
    Campaign,
    CampaignCreateRequest,
    CampaignStatus,
    DemographicTargeting,
    GeofenceTargeting,
    Message,
    Template,
    TemplateStatus,
    status_from_vendor_code,
)
from .payload_assembler import PayloadAssembler, validate_bounds
from .protocols import (
    BalanceClientProtocol,
    CampaignNotFoundError,
    CampaignRepositoryProtocol,
    CampaignValidationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    TemplateNotFoundError,
    TemplateRepositoryProtocol,
    VendorGatewayProtocol,
)
from .send_window import (
    CollectionWindow,
    compute_collection_window,
    resolve_send_time,
    validate_send_time,
)
from .targeting_compiler import CategoryNameResolver, TargetingCompiler

logger = logging.getLogger(__name__)


Schedule = Union[datetime, CollectionWindow]


class BizChatCampaignService:
    """Campaign lifecycle controller"""

    # Full vendor-aligned state machine; vendor callbacks follow it too
    VALID_TRANSITIONS = {
        CampaignStatus.DRAFT: [CampaignStatus.TEMP_REGISTERED],
        CampaignStatus.TEMP_REGISTERED: [
            CampaignStatus.INSPECTION_REQUESTED,
            CampaignStatus.APPROVAL_REQUESTED,
        ],
        CampaignStatus.INSPECTION_REQUESTED: [CampaignStatus.INSPECTION_COMPLETE, CampaignStatus.CANCELLED],
        CampaignStatus.INSPECTION_COMPLETE: [
            CampaignStatus.TEMP_REGISTERED,
            CampaignStatus.APPROVAL_REQUESTED,
            CampaignStatus.CANCELLED,
        ],
        CampaignStatus.APPROVAL_REQUESTED: [
            CampaignStatus.APPROVED,
            CampaignStatus.REJECTED,
            CampaignStatus.CANCELLED,
        ],
        CampaignStatus.APPROVED: [CampaignStatus.SEND_PREPARATION, CampaignStatus.CANCELLED],
        CampaignStatus.REJECTED: [CampaignStatus.TEMP_REGISTERED, CampaignStatus.CANCELLED],  # re-submission
        CampaignStatus.SEND_PREPARATION: [CampaignStatus.IN_PROGRESS, CampaignStatus.CANCELLED],
        CampaignStatus.IN_PROGRESS: [CampaignStatus.COMPLETED, CampaignStatus.STOPPED],
        CampaignStatus.COMPLETED: [],  # Terminal state
        CampaignStatus.CANCELLED: [],  # Terminal state
        CampaignStatus.STOPPED: [],  # Terminal state
    }

    # Guard sets per caller action
    REGISTERABLE = frozenset({CampaignStatus.DRAFT})
    SUBMITTABLE = frozenset({
        CampaignStatus.DRAFT,
        CampaignStatus.TEMP_REGISTERED,
        CampaignStatus.INSPECTION_COMPLETE,
        CampaignStatus.REJECTED,
    })
    CANCELLABLE = frozenset({
        CampaignStatus.INSPECTION_REQUESTED,
        CampaignStatus.INSPECTION_COMPLETE,
        CampaignStatus.APPROVAL_REQUESTED,
        CampaignStatus.APPROVED,
        CampaignStatus.REJECTED,
        CampaignStatus.SEND_PREPARATION,
    })
    STOPPABLE = frozenset({CampaignStatus.IN_PROGRESS})

    # Position along the forward chain; a vendor report ranked below the
    # current status is stale unless VALID_TRANSITIONS allows the edge
    PROGRESS_RANK = {
        CampaignStatus.DRAFT: 0,
        CampaignStatus.TEMP_REGISTERED: 1,
        CampaignStatus.INSPECTION_REQUESTED: 2,
        CampaignStatus.INSPECTION_COMPLETE: 3,
        CampaignStatus.APPROVAL_REQUESTED: 4,
        CampaignStatus.APPROVED: 5,
        CampaignStatus.REJECTED: 5,
        CampaignStatus.SEND_PREPARATION: 6,
        CampaignStatus.IN_PROGRESS: 7,
        CampaignStatus.COMPLETED: 8,
        CampaignStatus.CANCELLED: 8,
        CampaignStatus.STOPPED: 8,
    }

    ACTIONS = ("register", "cancel", "stop")

    def __init__(
        self,
        repository: CampaignRepositoryProtocol,
        template_repository: TemplateRepositoryProtocol,
        gateway: VendorGatewayProtocol,
        balance_client: BalanceClientProtocol,
        config: BizChatConfig,
        compiler: Optional[TargetingCompiler] = None,
        assembler: Optional[PayloadAssembler] = None,
    ):
        self.repository = repository
        self.template_repository = template_repository
        self.gateway = gateway
        self.balance_client = balance_client
        self.config = config
        self.compiler = compiler or TargetingCompiler()
        self.assembler = assembler or PayloadAssembler(
            callback_url=config.callback_state_url,
            default_company_name=config.default_company_name,
        )
        # An entry lives only while some operation holds or awaits the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, campaign_id: str) -> asyncio.Lock:
        lock = self._locks.get(campaign_id)
        if lock is None:
            lock = self._locks[campaign_id] = asyncio.Lock()
        return lock

    # ====================
    # Queries
    # ====================

    async def get_campaign(self, campaign_id: str) -> Campaign:
        campaign = await self.repository.get_campaign(campaign_id)
        if not campaign:
            raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")
        return campaign

    # ====================
    # Creation
    # ====================

    async def create_campaign(
        self, request: CampaignCreateRequest, now: Optional[datetime] = None
    ) -> Campaign:
        """
        Create a campaign in draft.

        Local checks run first (template, lengths, send time, balance); then
        category names are resolved and, for demographic targeting, the
        vendor audience estimate supplies the canonical filter string.
        A failed estimate aborts creation.
        """
        template = await self._load_template(request.template_id, request.user_id)

        campaign_id = f"cmp_{uuid.uuid4().hex[:16]}"
        campaign = Campaign(
            campaign_id=campaign_id,
            user_id=request.user_id,
            template_id=template.template_id,
            name=request.name,
            company_name=request.company_name or self.config.default_company_name,
            message_type=template.message_type,
            rcs_type=template.rcs_type,
            targeting=request.targeting,
            status=CampaignStatus.DRAFT,
            sender_number=request.sender_number,
            goal_count=request.goal_count,
            audience_overshoot=request.audience_overshoot,
            scheduled_at=request.scheduled_at,
        )
        message = self._clone_template(template, campaign_id)
        validate_bounds(campaign, message)

        if request.scheduled_at is not None:
            _, send_at = self._resolve_schedule(campaign, request.scheduled_at, now)
            campaign.scheduled_at = send_at

        await self._check_balance(request.user_id, request.goal_count)

        if isinstance(campaign.targeting, DemographicTargeting):
            await self._estimate_audience(campaign)
        else:
            names = ", ".join(g.name for g in campaign.targeting.geofences)
            campaign.filter_description = f"지오펜스: {names}"

        campaign = await self.repository.save_campaign(campaign)
        await self.repository.save_message(message)

        logger.info(
            f"Created campaign {campaign_id} for user {request.user_id} "
            f"({campaign.targeting_mode.value}, max audience {campaign.max_audience_count})"
        )
        return campaign

    async def _load_template(self, template_id: str, user_id: str) -> Template:
        template = await self.template_repository.get_template(template_id)
        if not template or template.user_id != user_id:
            raise TemplateNotFoundError(f"Template not found: {template_id}")
        if template.status != TemplateStatus.APPROVED:
            raise CampaignValidationError(
                f"Template {template_id} is not approved (status: {template.status.value})",
                field="template_id",
            )
        return template

    @staticmethod
    def _clone_template(template: Template, campaign_id: str) -> Message:
        """Copy-on-use: the message never references the template afterwards"""
        return Message(
            message_id=f"msg_{uuid.uuid4().hex[:16]}",
            campaign_id=campaign_id,
            title=template.title,
            body=template.body,
            image_file_id=template.image_file_id,
            urls=list(template.urls),
            buttons=[b.model_copy() for b in template.buttons],
            slides=[s.model_copy(deep=True) for s in template.slides],
        )

    async def _check_balance(self, user_id: str, goal_count: int) -> None:
        required = Decimal(goal_count) * self.config.cost_per_message
        balance = await self.balance_client.get_user_balance(user_id)
        if balance < required:
            raise InsufficientBalanceError(
                f"Insufficient balance: {required} required, {balance} available",
                required=required,
                available=balance,
            )

    async def _estimate_audience(self, campaign: Campaign) -> None:
        resolver = CategoryNameResolver(self.gateway)
        targeting = await resolver.resolve(campaign.targeting)
        compiled = self.compiler.compile_demographic(targeting)

        estimate = await self.gateway.estimate_audience(compiled.vendor_expression())

        campaign.targeting = targeting
        campaign.filter_query = estimate.filter_query
        campaign.max_audience_count = estimate.count
        campaign.filter_description = compiled.description
        campaign.filter_description_html = compiled.description_html

    # ====================
    # Scheduling
    # ====================

    def _resolve_schedule(
        self, campaign: Campaign, requested: Optional[datetime], now: Optional[datetime]
    ) -> Tuple[Schedule, datetime]:
        """Return (schedule for the payload, send time to store)"""
        candidate = requested or campaign.scheduled_at
        if isinstance(campaign.targeting, GeofenceTargeting):
            window = compute_collection_window(desired_send=candidate, now=now)
            return window, window.send

        if candidate is not None:
            send_at = validate_send_time(candidate, now=now)
        else:
            send_at = resolve_send_time(None, now=now)
        return send_at, send_at

    async def _load_message(self, campaign: Campaign) -> Message:
        message = await self.repository.get_message(campaign.campaign_id)
        if message:
            return message
        if not campaign.template_id:
            raise CampaignValidationError("Campaign message not found", field="message")
        template = await self._load_template(campaign.template_id, campaign.user_id)
        message = self._clone_template(template, campaign.campaign_id)
        return await self.repository.save_message(message)

    # ====================
    # Transitions
    # ====================

    def _guard(self, campaign: Campaign, allowed: frozenset, action: str) -> None:
        if campaign.status not in allowed:
            allowed_labels = ", ".join(sorted(s.slug for s in allowed))
            raise InvalidTransitionError(
                f"Cannot {action} campaign {campaign.campaign_id} in status "
                f"{campaign.status.slug} (allowed from: {allowed_labels})",
                current_status=campaign.status,
                action=action,
            )

    async def _commit(self, campaign: Campaign, **updates) -> Campaign:
        updated = await self.repository.update_campaign(
            campaign.campaign_id, updates, expected_version=campaign.version
        )
        if "status" in updates and updates["status"] != campaign.status:
            logger.info(
                f"Campaign {campaign.campaign_id}: {campaign.status.slug} -> {updated.status.slug}"
            )
        return updated

    async def register_campaign(self, campaign_id: str, now: Optional[datetime] = None) -> Campaign:
        """draft -> temp_registered through the vendor create call"""
        async with self._lock_for(campaign_id):
            campaign = await self.get_campaign(campaign_id)
            self._guard(campaign, self.REGISTERABLE, "register")
            if campaign.vendor_campaign_id:
                raise InvalidTransitionError(
                    f"Campaign {campaign_id} is already registered as {campaign.vendor_campaign_id}",
                    current_status=campaign.status,
                    action="register",
                )
            message = await self._load_message(campaign)
            schedule, send_at = self._resolve_schedule(campaign, None, now)
            return await self._vendor_create(campaign, message, schedule, send_at)

    async def _vendor_create(
        self, campaign: Campaign, message: Message, schedule: Schedule, send_at: datetime
    ) -> Campaign:
        request = self.assembler.build_create(campaign, message, schedule)
        vendor_id = await self.gateway.create_campaign(request)
        logger.info(f"Campaign {campaign.campaign_id} registered at BizChat as {vendor_id}")
        return await self._commit(
            campaign,
            vendor_campaign_id=vendor_id,
            status=CampaignStatus.TEMP_REGISTERED,
            scheduled_at=send_at,
        )

    async def submit_campaign(
        self,
        campaign_id: str,
        scheduled_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Campaign:
        """
        Submit for approval.

        Creates the vendor campaign if none is recorded yet, otherwise sends
        an update against the recorded id; then requests approval. Each step
        commits on vendor confirmation and a failure stops the sequence.
        """
        async with self._lock_for(campaign_id):
            campaign = await self.get_campaign(campaign_id)
            self._guard(campaign, self.SUBMITTABLE, "submit")

            message = await self._load_message(campaign)
            # The stored time may have slipped inside the lead time since creation
            schedule, send_at = self._resolve_schedule(campaign, scheduled_at, now)

            if not campaign.vendor_campaign_id:
                campaign = await self._vendor_create(campaign, message, schedule, send_at)
            else:
                request = self.assembler.build_update(campaign, message, schedule)
                await self.gateway.update_campaign(request)
                campaign = await self._commit(
                    campaign, status=CampaignStatus.TEMP_REGISTERED, scheduled_at=send_at
                )

            await self.gateway.request_approval(campaign.vendor_campaign_id)
            return await self._commit(campaign, status=CampaignStatus.APPROVAL_REQUESTED)

    async def cancel_campaign(self, campaign_id: str) -> Campaign:
        async with self._lock_for(campaign_id):
            campaign = await self.get_campaign(campaign_id)
            self._guard(campaign, self.CANCELLABLE, "cancel")
            if campaign.vendor_campaign_id:
                await self.gateway.cancel_campaign(campaign.vendor_campaign_id)
            else:
                logger.info(f"Campaign {campaign_id} has no vendor id; cancelling locally")
            return await self._commit(campaign, status=CampaignStatus.CANCELLED)

    async def stop_campaign(self, campaign_id: str) -> Campaign:
        async with self._lock_for(campaign_id):
            campaign = await self.get_campaign(campaign_id)
            self._guard(campaign, self.STOPPABLE, "stop")
            if campaign.vendor_campaign_id:
                await self.gateway.stop_campaign(campaign.vendor_campaign_id)
            return await self._commit(campaign, status=CampaignStatus.STOPPED)

    async def transition_campaign(
        self, campaign_id: str, action: str, now: Optional[datetime] = None
    ) -> Campaign:
        """Dispatch a named caller action"""
        normalized = action.strip().lower()
        if normalized == "register":
            return await self.register_campaign(campaign_id, now=now)
        if normalized == "cancel":
            return await self.cancel_campaign(campaign_id)
        if normalized == "stop":
            return await self.stop_campaign(campaign_id)

        campaign = await self.get_campaign(campaign_id)
        raise InvalidTransitionError(
            f"Unknown action '{action}' (expected one of: {', '.join(self.ACTIONS)})",
            current_status=campaign.status,
            action=action,
        )

    # ====================
    # Vendor callbacks
    # ====================

    def _is_stale_report(self, current: CampaignStatus, reported: CampaignStatus) -> bool:
        """Forward skips are normal; moving back is only allowed along a table edge"""
        if reported == current or reported in self.VALID_TRANSITIONS[current]:
            return False
        return self.PROGRESS_RANK[reported] <= self.PROGRESS_RANK[current]

    async def apply_vendor_status(
        self,
        vendor_campaign_id: str,
        status_code: int,
        sent_count: Optional[int] = None,
        success_count: Optional[int] = None,
    ) -> Optional[Campaign]:
        """
        Apply a vendor-reported status.

        Unknown campaigns and unknown codes are acknowledged without change;
        a campaign already completed, cancelled or stopped is never moved, and
        a late report of an earlier status is ignored.
        """
        existing = await self.repository.get_campaign_by_vendor_id(vendor_campaign_id)
        if existing is None:
            logger.warning(f"Status callback for unknown vendor campaign {vendor_campaign_id}")
            return None

        new_status = status_from_vendor_code(status_code)
        if new_status is None:
            logger.warning(
                f"Ignoring unknown vendor status {status_code} for campaign {existing.campaign_id}"
            )
            return existing

        async with self._lock_for(existing.campaign_id):
            campaign = await self.get_campaign(existing.campaign_id)
            if campaign.status in FINAL_STATUSES:
                logger.info(
                    f"Campaign {campaign.campaign_id} is {campaign.status.slug}; "
                    f"ignoring vendor status {status_code}"
                )
                return campaign

            if self._is_stale_report(campaign.status, new_status):
                logger.warning(
                    f"Ignoring stale vendor status {status_code} for campaign {campaign.campaign_id} "
                    f"(currently {campaign.status.slug})"
                )
                return campaign

            updates = {"status": new_status}
            if sent_count is not None:
                updates["sent_count"] = sent_count
            if success_count is not None:
                updates["success_count"] = success_count
            return await self._commit(campaign, **updates)


__all__ = ["BizChatCampaignService"]
