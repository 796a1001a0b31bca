"""
BizChat Campaign Service Data Models

Canonical data structures for campaigns, messages, templates and the
targeting selection, plus the vendor status code table.
"""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


# ====================
# Enums
# ====================


class MessageType(str, Enum):
    """Message type sent through the vendor"""
    LMS = "LMS"
    MMS = "MMS"
    RCS = "RCS"


class RcsType(IntEnum):
    """RCS message sub-type (vendor rcsType)"""
    STANDARD = 0
    LMS = 1
    SLIDE = 2  # carousel
    IMAGE_A = 3
    IMAGE_B = 4
    PRODUCT_VERTICAL = 5


class TargetingMode(str, Enum):
    """How the audience is selected"""
    DEMOGRAPHIC = "demographic"
    GEOFENCE = "geofence"


class ReceiveType(IntEnum):
    """Vendor rcvType"""
    ATS = 0
    MAPTICS_REALTIME = 1
    MAPTICS_COLLECT = 2
    MDN = 10


class Gender(str, Enum):
    ALL = "all"
    MALE = "male"
    FEMALE = "female"


class LocationKind(str, Enum):
    HOME = "home"
    WORK = "work"


class ProfilingValueType(str, Enum):
    BOOLEAN = "boolean"
    NUMBER = "number"
    CODE = "code"


class TemplateStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CampaignStatus(IntEnum):
    """Local campaign status, aligned with the vendor status codes"""
    TEMP_REGISTERED = 0
    INSPECTION_REQUESTED = 1
    INSPECTION_COMPLETE = 2
    DRAFT = 5
    APPROVAL_REQUESTED = 10
    APPROVED = 11
    REJECTED = 17
    SEND_PREPARATION = 20
    IN_PROGRESS = 30
    COMPLETED = 40
    CANCELLED = 90
    STOPPED = 91

    @property
    def slug(self) -> str:
        return self.name.lower()

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


STATUS_LABELS: Dict[CampaignStatus, str] = {
    CampaignStatus.TEMP_REGISTERED: "임시등록",
    CampaignStatus.INSPECTION_REQUESTED: "검수요청",
    CampaignStatus.INSPECTION_COMPLETE: "검수완료",
    CampaignStatus.DRAFT: "임시저장",
    CampaignStatus.APPROVAL_REQUESTED: "승인요청",
    CampaignStatus.APPROVED: "승인완료",
    CampaignStatus.REJECTED: "반려",
    CampaignStatus.SEND_PREPARATION: "발송준비",
    CampaignStatus.IN_PROGRESS: "발송중",
    CampaignStatus.COMPLETED: "발송완료",
    CampaignStatus.CANCELLED: "취소",
    CampaignStatus.STOPPED: "발송중단",
}

# Rejected is terminal for vendor-driven progress but can be re-submitted
TERMINAL_STATUSES = frozenset({
    CampaignStatus.COMPLETED,
    CampaignStatus.CANCELLED,
    CampaignStatus.STOPPED,
    CampaignStatus.REJECTED,
})

# No vendor report moves a campaign out of these
FINAL_STATUSES = frozenset({
    CampaignStatus.COMPLETED,
    CampaignStatus.CANCELLED,
    CampaignStatus.STOPPED,
})

# The state callback reports cancel/stop with its own codes
VENDOR_STATUS_ALIASES: Dict[int, CampaignStatus] = {
    25: CampaignStatus.CANCELLED,
    35: CampaignStatus.STOPPED,
}


def status_from_vendor_code(code: int) -> Optional[CampaignStatus]:
    """Map a vendor-reported status code to a local status, or None if unknown"""
    if code in VENDOR_STATUS_ALIASES:
        return VENDOR_STATUS_ALIASES[code]
    try:
        return CampaignStatus(code)
    except ValueError:
        return None


# ====================
# RCS structural limits
# ====================


class RcsTypeSpec(BaseModel):
    """Fixed structural limits of one RCS sub-type"""
    max_body_length: int
    max_button_label_length: int
    max_url_count: int
    image_required: bool


RCS_TYPE_SPECS: Dict[RcsType, RcsTypeSpec] = {
    RcsType.STANDARD: RcsTypeSpec(max_body_length=1100, max_button_label_length=17, max_url_count=3, image_required=True),
    RcsType.LMS: RcsTypeSpec(max_body_length=1100, max_button_label_length=17, max_url_count=3, image_required=False),
    RcsType.SLIDE: RcsTypeSpec(max_body_length=300, max_button_label_length=17, max_url_count=2, image_required=True),
    RcsType.IMAGE_A: RcsTypeSpec(max_body_length=1100, max_button_label_length=17, max_url_count=3, image_required=True),
    RcsType.IMAGE_B: RcsTypeSpec(max_body_length=1100, max_button_label_length=17, max_url_count=3, image_required=True),
    RcsType.PRODUCT_VERTICAL: RcsTypeSpec(max_body_length=1100, max_button_label_length=17, max_url_count=3, image_required=True),
}


# ====================
# Base
# ====================


class BaseContract(BaseModel):
    """Base model for all contracts"""

    model_config = {
        "from_attributes": True,
    }


# ====================
# Targeting Specification
# ====================


class CategorySelection(BaseContract):
    """A 1-3 level category path; names are what the vendor expects"""
    cat1: str = Field(..., min_length=1)
    cat1_name: Optional[str] = None
    cat2: Optional[str] = None
    cat2_name: Optional[str] = None
    cat3: Optional[str] = None
    cat3_name: Optional[str] = None

    @model_validator(mode="after")
    def validate_hierarchy(self):
        if self.cat3 and not self.cat2:
            raise ValueError("cat3 requires cat2")
        return self

    @property
    def is_resolved(self) -> bool:
        if not self.cat1_name:
            return False
        if self.cat2 and not self.cat2_name:
            return False
        if self.cat3 and not self.cat3_name:
            return False
        return True

    def display_path(self) -> str:
        parts = [self.cat1_name or self.cat1]
        if self.cat2:
            parts.append(self.cat2_name or self.cat2)
        if self.cat3:
            parts.append(self.cat3_name or self.cat3)
        return " > ".join(parts)


class LocationSelection(BaseContract):
    code: str = Field(..., min_length=1)
    kind: LocationKind
    name: str


class ProfilingFilter(BaseContract):
    """Behavioural/profiling signal; value shape depends on value_type"""
    code: str = Field(..., min_length=1)
    value: Union[bool, Dict[str, Any], List[str], str]
    desc: str
    value_type: ProfilingValueType


class DemographicTargeting(BaseContract):
    """ATS (demographic/behavioural) targeting"""
    mode: Literal["demographic"] = "demographic"
    gender: Gender = Gender.ALL
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    regions: List[str] = Field(default_factory=list)
    shopping_categories: List[CategorySelection] = Field(default_factory=list)
    webapp_categories: List[CategorySelection] = Field(default_factory=list)
    call_usage_categories: List[CategorySelection] = Field(default_factory=list)
    locations: List[LocationSelection] = Field(default_factory=list)
    profiling: List[ProfilingFilter] = Field(default_factory=list)


class GeofenceTarget(BaseContract):
    gender: int = Field(0, ge=0, le=2)  # 0=all, 1=male, 2=female
    min_age: int = Field(..., ge=10, le=100)
    max_age: int = Field(..., ge=10, le=100)
    stay_minutes: int = Field(..., ge=1)
    radius_meters: int = Field(..., ge=1)
    address: str = Field(..., min_length=1)


class SavedGeofence(BaseContract):
    geofence_id: str
    name: str
    targets: List[GeofenceTarget] = Field(..., min_length=1)


class GeofenceTargeting(BaseContract):
    """Location-based audience collection"""
    mode: Literal["geofence"] = "geofence"
    geofences: List[SavedGeofence] = Field(..., min_length=1)
    send_geofence_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_send_geofence(self):
        ids = [g.geofence_id for g in self.geofences]
        if self.send_geofence_id is None:
            self.send_geofence_id = ids[0]
        elif self.send_geofence_id not in ids:
            raise ValueError("send_geofence_id must reference one of the saved geofences")
        return self


TargetingSpec = Annotated[
    Union[DemographicTargeting, GeofenceTargeting],
    Field(discriminator="mode"),
]


# ====================
# Vendor filter expression
# ====================


class FilterDataType(str, Enum):
    NUMBER = "number"
    CODE = "code"
    BOOLEAN = "boolean"
    CATE = "cate"


class FilterCondition(BaseContract):
    """One condition of the vendor targeting expression"""
    data: Any
    data_type: FilterDataType
    meta_type: str
    code: str
    desc: str
    negate: bool = False

    def to_vendor(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "dataType": self.data_type.value,
            "metaType": self.meta_type,
            "code": self.code,
            "desc": self.desc,
            "not": self.negate,
        }


class FilterExpression(BaseContract):
    """AND root of the targeting expression; present even when empty"""
    conditions: List[FilterCondition] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.conditions

    def to_vendor(self) -> Dict[str, Any]:
        return {"$and": [c.to_vendor() for c in self.conditions]}


# ====================
# Message / Template
# ====================


class RcsButton(BaseContract):
    label: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)


class RcsSlide(BaseContract):
    title: Optional[str] = None
    body: str = ""
    image_file_id: Optional[str] = None
    urls: List[str] = Field(default_factory=list)
    buttons: List[RcsButton] = Field(default_factory=list)


class Template(BaseContract):
    """Reviewed message template; cloned into a Message on use"""
    template_id: str
    user_id: str
    name: str
    message_type: MessageType
    rcs_type: Optional[RcsType] = None
    title: Optional[str] = None
    body: str
    image_file_id: Optional[str] = None
    urls: List[str] = Field(default_factory=list)
    buttons: List[RcsButton] = Field(default_factory=list)
    slides: List[RcsSlide] = Field(default_factory=list)
    status: TemplateStatus = TemplateStatus.DRAFT


class Message(BaseContract):
    message_id: str
    campaign_id: str
    title: Optional[str] = None
    body: str
    image_file_id: Optional[str] = None
    urls: List[str] = Field(default_factory=list)
    buttons: List[RcsButton] = Field(default_factory=list)
    slides: List[RcsSlide] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ====================
# Campaign
# ====================


class Campaign(BaseContract):
    """Campaign record"""
    campaign_id: str
    user_id: str
    template_id: Optional[str] = None

    name: str = Field(..., min_length=1)
    company_name: str
    message_type: MessageType
    rcs_type: Optional[RcsType] = None

    targeting: TargetingSpec

    vendor_campaign_id: Optional[str] = None
    status: CampaignStatus = CampaignStatus.DRAFT

    sender_number: str
    goal_count: int = Field(..., ge=1)
    audience_overshoot: Optional[int] = Field(None, ge=1)
    max_audience_count: Optional[int] = None

    filter_query: Optional[str] = None
    filter_description: Optional[str] = None
    filter_description_html: Optional[str] = None

    scheduled_at: Optional[datetime] = None

    sent_count: int = 0
    success_count: int = 0

    version: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def targeting_mode(self) -> TargetingMode:
        return TargetingMode(self.targeting.mode)

    @property
    def status_label(self) -> str:
        return self.status.label

    @property
    def receive_type(self) -> ReceiveType:
        if self.targeting_mode == TargetingMode.GEOFENCE:
            return ReceiveType.MAPTICS_COLLECT
        return ReceiveType.ATS


# ====================
# Request / Response Models
# ====================


class CampaignCreateRequest(BaseContract):
    """Input of CreateCampaign"""
    user_id: str
    template_id: str
    name: str = Field(..., min_length=1)
    company_name: Optional[str] = None
    sender_number: str = Field(..., min_length=1)
    goal_count: int = Field(1000, ge=100)
    audience_overshoot: Optional[int] = Field(None, ge=1)
    targeting: TargetingSpec
    scheduled_at: Optional[datetime] = None

    @field_validator("scheduled_at")
    @classmethod
    def require_timezone(cls, v):
        if v is not None and v.tzinfo is None:
            raise ValueError("scheduled_at must be timezone-aware")
        return v


class SubmitRequest(BaseModel):
    scheduled_at: Optional[datetime] = None


class TransitionRequest(BaseModel):
    action: str = Field(..., min_length=1)


class VendorStatusCallback(BaseModel):
    """State callback body posted by the vendor"""
    campaignId: str
    statusCode: int
    prevStatusCode: Optional[int] = None
    message: Optional[str] = None
    sentCount: Optional[int] = None
    successCount: Optional[int] = None
    failCount: Optional[int] = None
    timestamp: Optional[str] = None


class VendorRequest(BaseModel):
    """A fully assembled vendor call"""
    method: str = "POST"
    path: str
    params: Dict[str, str] = Field(default_factory=dict)
    body: Dict[str, Any] = Field(default_factory=dict)


class CampaignResponse(BaseModel):
    campaign_id: str
    name: str
    status: str
    status_code: int
    status_label: str
    vendor_campaign_id: Optional[str] = None
    targeting_mode: TargetingMode
    max_audience_count: Optional[int] = None
    scheduled_at: Optional[datetime] = None

    @classmethod
    def from_campaign(cls, campaign: Campaign) -> "CampaignResponse":
        return cls(
            campaign_id=campaign.campaign_id,
            name=campaign.name,
            status=campaign.status.slug,
            status_code=int(campaign.status),
            status_label=campaign.status_label,
            vendor_campaign_id=campaign.vendor_campaign_id,
            targeting_mode=campaign.targeting_mode,
            max_audience_count=campaign.max_audience_count,
            scheduled_at=campaign.scheduled_at,
        )


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    vendor_environment: str


class ErrorResponse(BaseModel):
    """Standard error response"""
    detail: str
    error_code: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = [
    "MessageType",
    "RcsType",
    "TargetingMode",
    "ReceiveType",
    "Gender",
    "LocationKind",
    "ProfilingValueType",
    "TemplateStatus",
    "CampaignStatus",
    "STATUS_LABELS",
    "TERMINAL_STATUSES",
    "FINAL_STATUSES",
    "VENDOR_STATUS_ALIASES",
    "status_from_vendor_code",
    "RcsTypeSpec",
    "RCS_TYPE_SPECS",
    "CategorySelection",
    "LocationSelection",
    "ProfilingFilter",
    "DemographicTargeting",
    "GeofenceTarget",
    "SavedGeofence",
    "GeofenceTargeting",
    "TargetingSpec",
    "FilterDataType",
    "FilterCondition",
    "FilterExpression",
    "RcsButton",
    "RcsSlide",
    "Template",
    "Message",
    "Campaign",
    "CampaignCreateRequest",
    "SubmitRequest",
    "TransitionRequest",
    "VendorStatusCallback",
    "VendorRequest",
    "CampaignResponse",
    "HealthResponse",
    "ErrorResponse",
]
