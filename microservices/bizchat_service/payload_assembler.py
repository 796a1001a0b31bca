"""
Payload Assembler

Builds the vendor JSON body for campaign create/update calls from a
campaign, its message and the resolved send schedule.

Billing type is derived from the message type and RCS sub-type only:

    LMS            -> 0
    RCS carousel   -> 1  (image-bearing, MMS-class tier)
    MMS            -> 2
    RCS (other)    -> 3

The billing class then decides which structural branch applies.
"""

import logging
import math
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, List, Optional, Union

from .models import (
    RCS_TYPE_SPECS,
    Campaign,
    MessageType,
    Message,
    RcsSlide,
    RcsType,
    TargetingMode,
    VendorRequest,
)
from .protocols import CampaignValidationError
from .send_window import CollectionWindow, to_unix_seconds

logger = logging.getLogger(__name__)


MAX_CAMPAIGN_NAME_LENGTH = 40
MAX_COMPANY_NAME_LENGTH = 100
MAX_TITLE_LENGTH = 30
MAX_BODY_LENGTH = 1000

AUDIENCE_OVERSHOOT_RATIO = 1.5
MAX_AUDIENCE_OVERSHOOT = 400000

AD_DENY_NUMBER = "1504"

CREATE_PATH = "/api/v1/cmpn/create"
UPDATE_PATH = "/api/v1/cmpn/update"

DEMOGRAPHIC_KEYS = ("atsSndStartDate", "sndMosu", "sndMosuFlag", "sndMosuQuery", "sndMosuDesc")
GEOFENCE_KEYS = ("sndGeofenceId", "collStartDate", "collEndDate", "collSndDate")


class BillingType(IntEnum):
    LMS = 0
    RCS_MMS = 1
    MMS = 2
    RCS_LMS = 3

    @property
    def needs_file(self) -> bool:
        return self in (BillingType.RCS_MMS, BillingType.MMS)

    @property
    def is_rcs(self) -> bool:
        return self in (BillingType.RCS_MMS, BillingType.RCS_LMS)


def derive_billing_type(message_type: MessageType, rcs_type: Optional[RcsType] = None) -> BillingType:
    if message_type == MessageType.LMS:
        return BillingType.LMS
    if message_type == MessageType.MMS:
        return BillingType.MMS
    if rcs_type == RcsType.SLIDE:
        return BillingType.RCS_MMS
    return BillingType.RCS_LMS


def compute_audience_overshoot(goal_count: int, explicit: Optional[int] = None) -> int:
    """sndMosu: the explicit value, else 150% of the goal capped at 400,000"""
    if explicit:
        return explicit
    return min(math.ceil(goal_count * AUDIENCE_OVERSHOOT_RATIO), MAX_AUDIENCE_OVERSHOOT)


# ====================
# Bounds
# ====================


def _check_length(value: Optional[str], limit: int, field: str, label: str) -> None:
    if value and len(value) > limit:
        raise CampaignValidationError(
            f"{label} must be {limit} characters or fewer (got {len(value)})", field=field
        )


def validate_bounds(campaign: Campaign, message: Message) -> None:
    """Length and RCS structural checks; runs before any vendor call"""
    _check_length(campaign.name, MAX_CAMPAIGN_NAME_LENGTH, "name", "Campaign name")
    _check_length(campaign.company_name, MAX_COMPANY_NAME_LENGTH, "company_name", "Company name")
    _check_length(message.title, MAX_TITLE_LENGTH, "title", "Message title")
    _check_length(message.body, MAX_BODY_LENGTH, "body", "Message body")

    if campaign.message_type != MessageType.RCS:
        return

    rcs_type = campaign.rcs_type if campaign.rcs_type is not None else RcsType.STANDARD
    limits = RCS_TYPE_SPECS[rcs_type]
    slides = _rcs_slides(rcs_type, message)
    if rcs_type == RcsType.SLIDE and not message.slides:
        raise CampaignValidationError("Carousel RCS messages need at least one slide", field="slides")

    for index, slide in enumerate(slides, start=1):
        prefix = f"slides[{index}]." if rcs_type == RcsType.SLIDE else ""
        _check_length(slide.title, MAX_TITLE_LENGTH, f"{prefix}title", "Message title")
        _check_length(slide.body, limits.max_body_length, f"{prefix}body", f"RCS type {int(rcs_type)} body")
        if len(slide.urls) > limits.max_url_count:
            raise CampaignValidationError(
                f"RCS type {int(rcs_type)} allows at most {limits.max_url_count} URLs",
                field=f"{prefix}urls",
            )
        for button in slide.buttons:
            _check_length(
                button.label, limits.max_button_label_length, f"{prefix}buttons", "Button label"
            )
        if limits.image_required and not slide.image_file_id:
            raise CampaignValidationError(
                f"RCS type {int(rcs_type)} requires an image", field=f"{prefix}image_file_id"
            )


# ====================
# Structure
# ====================


def _file_info(image_file_id: Optional[str]) -> Dict[str, Any]:
    if image_file_id:
        return {"list": [{"origId": image_file_id}]}
    return {}


def _url_link(urls: List[str]) -> Dict[str, Any]:
    if urls:
        return {"list": [{"url": url} for url in urls]}
    return {}


def _rcs_slides(rcs_type: RcsType, message: Message) -> List[RcsSlide]:
    if rcs_type == RcsType.SLIDE:
        return list(message.slides)
    return [
        RcsSlide(
            title=message.title,
            body=message.body,
            image_file_id=message.image_file_id,
            urls=message.urls,
            buttons=message.buttons,
        )
    ]


def _rcs_entry(number: int, slide: RcsSlide, with_file: bool) -> Dict[str, Any]:
    entry = {
        "slideNum": number,
        "title": slide.title or "",
        "msg": slide.body,
        "urlLink": _url_link(slide.urls),
        "buttons": {"list": [{"name": b.label, "url": b.url} for b in slide.buttons]},
    }
    if with_file:
        entry["fileInfo"] = _file_info(slide.image_file_id)
    return entry


class PayloadAssembler:
    """Builds create/update requests for the BizChat gateway"""

    def __init__(self, callback_url: str, default_company_name: str = "위픽"):
        self.callback_url = callback_url
        self.default_company_name = default_company_name

    def build_body(
        self,
        campaign: Campaign,
        message: Message,
        schedule: Union[datetime, CollectionWindow],
    ) -> Dict[str, Any]:
        """
        Build the campaign body.

        Args:
            schedule: the validated send time for demographic campaigns, or
                the resolved collection window for geofence campaigns
        """
        validate_bounds(campaign, message)

        billing = derive_billing_type(campaign.message_type, campaign.rcs_type)
        body: Dict[str, Any] = {
            "tgtCompanyName": campaign.company_name or self.default_company_name,
            "name": campaign.name,
            "sndNum": campaign.sender_number,
            "rcvType": int(campaign.receive_type),
            "sndGoalCnt": campaign.goal_count,
            "billingType": int(billing),
            "isTmp": 0,
            "settleCnt": campaign.goal_count,
            "adverDeny": AD_DENY_NUMBER,
            "cb": {"state": self.callback_url},
            "mms": {
                "title": message.title or "",
                "msg": message.body,
                "fileInfo": _file_info(message.image_file_id) if billing.needs_file else {},
                "urlLink": _url_link(message.urls),
            },
        }

        # Non-RCS bodies carry no rcs key at all
        if billing.is_rcs:
            rcs_type = campaign.rcs_type if campaign.rcs_type is not None else RcsType.STANDARD
            body["rcsType"] = int(rcs_type)
            body["rcs"] = [
                _rcs_entry(number, slide, with_file=billing.needs_file)
                for number, slide in enumerate(_rcs_slides(rcs_type, message), start=1)
            ]

        if campaign.targeting_mode == TargetingMode.GEOFENCE:
            body.update(self._geofence_fields(campaign, schedule))
        else:
            body.update(self._demographic_fields(campaign, schedule))
        return body

    def _demographic_fields(self, campaign: Campaign, schedule) -> Dict[str, Any]:
        if not isinstance(schedule, datetime):
            raise CampaignValidationError(
                "Demographic campaigns are scheduled with a single send time", field="scheduled_at"
            )
        if not campaign.filter_query:
            # The vendor rejects a create without its own canonical filter string
            raise CampaignValidationError(
                "Campaign has no audience filter query; estimate the audience first",
                field="filter_query",
            )
        return {
            "atsSndStartDate": to_unix_seconds(schedule),
            "sndMosu": compute_audience_overshoot(campaign.goal_count, campaign.audience_overshoot),
            "sndMosuFlag": 0,
            "sndMosuQuery": campaign.filter_query,
            "sndMosuDesc": campaign.filter_description_html or "",
        }

    def _geofence_fields(self, campaign: Campaign, schedule) -> Dict[str, Any]:
        if not isinstance(schedule, CollectionWindow):
            raise CampaignValidationError(
                "Geofence campaigns are scheduled with a collection window", field="scheduled_at"
            )
        fields = {"sndGeofenceId": campaign.targeting.send_geofence_id}
        fields.update(schedule.as_unix())
        return fields

    def build_create(
        self, campaign: Campaign, message: Message, schedule: Union[datetime, CollectionWindow]
    ) -> VendorRequest:
        return VendorRequest(path=CREATE_PATH, body=self.build_body(campaign, message, schedule))

    def build_update(
        self, campaign: Campaign, message: Message, schedule: Union[datetime, CollectionWindow]
    ) -> VendorRequest:
        if not campaign.vendor_campaign_id:
            raise CampaignValidationError(
                "Campaign has no vendor campaign id to update", field="vendor_campaign_id"
            )
        return VendorRequest(
            path=UPDATE_PATH,
            params={"id": campaign.vendor_campaign_id},
            body=self.build_body(campaign, message, schedule),
        )


__all__ = [
    "BillingType",
    "derive_billing_type",
    "compute_audience_overshoot",
    "validate_bounds",
    "PayloadAssembler",
    "CREATE_PATH",
    "UPDATE_PATH",
    "DEMOGRAPHIC_KEYS",
    "GEOFENCE_KEYS",
    "MAX_AUDIENCE_OVERSHOOT",
]
