"""
BizChat Campaign Service Protocols

Defines interfaces for dependency injection and testing, plus the
service error taxonomy.
"""

from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

from core.config import ConfigurationError

from .models import Campaign, CampaignStatus, Message, Template, VendorRequest


# ====================
# Repository Protocols
# ====================


class CampaignRepositoryProtocol(Protocol):
    """Protocol for campaign data repository"""

    async def initialize(self) -> None:
        """Initialize repository connection"""
        ...

    async def close(self) -> None:
        """Close repository connection"""
        ...

    async def save_campaign(self, campaign: Campaign) -> Campaign:
        """Persist a new campaign"""
        ...

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Get campaign by ID"""
        ...

    async def get_campaign_by_vendor_id(self, vendor_campaign_id: str) -> Optional[Campaign]:
        """Get campaign by the vendor-issued campaign ID"""
        ...

    async def update_campaign(
        self, campaign_id: str, updates: Dict[str, Any], expected_version: int
    ) -> Campaign:
        """Apply updates if the stored version still equals expected_version.

        Raises ConcurrentModificationError otherwise.
        """
        ...

    async def save_message(self, message: Message) -> Message:
        """Persist the campaign message"""
        ...

    async def get_message(self, campaign_id: str) -> Optional[Message]:
        """Get the message of a campaign"""
        ...


class TemplateRepositoryProtocol(Protocol):
    """Protocol for the message template store"""

    async def get_template(self, template_id: str) -> Optional[Template]:
        """Get template by ID"""
        ...


# ====================
# Client Protocols
# ====================


class BalanceClientProtocol(Protocol):
    """Protocol for the account balance lookup"""

    async def get_user_balance(self, user_id: str) -> Decimal:
        """Get the user's spendable balance"""
        ...


class VendorGatewayProtocol(Protocol):
    """Protocol for the BizChat gateway client"""

    async def create_campaign(self, request: VendorRequest) -> str:
        ...

    async def update_campaign(self, request: VendorRequest) -> None:
        ...

    async def request_approval(self, vendor_campaign_id: str) -> None:
        ...

    async def cancel_campaign(self, vendor_campaign_id: str) -> None:
        ...

    async def stop_campaign(self, vendor_campaign_id: str) -> None:
        ...

    async def estimate_audience(self, expression: Dict[str, Any]) -> Any:
        ...

    async def fetch_categories(self, domain: str, parent_id: Optional[str] = None) -> Any:
        ...


# ====================
# Custom Exceptions
# ====================


class BizChatServiceError(Exception):
    """Base exception for BizChat service errors"""
    pass


class CampaignValidationError(BizChatServiceError):
    """Raised when local validation fails; the vendor is never contacted"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class TargetingValidationError(CampaignValidationError):
    """Raised when a targeting selection cannot be compiled"""
    pass


class SendWindowError(CampaignValidationError):
    """Raised when a send time or collection window violates the business rules"""

    def __init__(self, message: str, field: Optional[str] = "scheduled_at", constraint: Optional[str] = None):
        super().__init__(message, field=field)
        self.constraint = constraint


class InsufficientBalanceError(CampaignValidationError):
    """Raised when the balance does not cover the campaign cost"""

    def __init__(self, message: str, required: Decimal, available: Decimal):
        super().__init__(message, field="goal_count")
        self.required = required
        self.available = available


class InvalidTransitionError(BizChatServiceError):
    """Raised when an action is not legal from the campaign's current status"""

    def __init__(self, message: str, current_status: Optional[CampaignStatus] = None, action: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status
        self.action = action


class CampaignNotFoundError(BizChatServiceError):
    """Raised when campaign is not found"""
    pass


class TemplateNotFoundError(BizChatServiceError):
    """Raised when template is not found or not usable"""
    pass


class ConcurrentModificationError(BizChatServiceError):
    """Raised when the version compare-and-swap fails"""

    def __init__(self, campaign_id: str, expected_version: int):
        super().__init__(f"Campaign {campaign_id} was modified concurrently (expected version {expected_version})")
        self.campaign_id = campaign_id
        self.expected_version = expected_version


class VendorError(BizChatServiceError):
    """Base for failures talking to the BizChat gateway"""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message


class VendorApplicationError(VendorError):
    """Vendor answered with a non-success envelope code"""

    def __init__(self, message: str, code: Optional[str] = None, raw: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code)
        self.raw = raw or {}


class VendorTransportError(VendorError):
    """Network failure, timeout or an unparseable response body"""

    def __init__(self, message: str, code: Optional[str] = None, timeout: bool = False):
        super().__init__(message, code=code)
        self.timeout = timeout


__all__ = [
    "CampaignRepositoryProtocol",
    "TemplateRepositoryProtocol",
    "BalanceClientProtocol",
    "VendorGatewayProtocol",
    "BizChatServiceError",
    "CampaignValidationError",
    "TargetingValidationError",
    "SendWindowError",
    "InsufficientBalanceError",
    "InvalidTransitionError",
    "CampaignNotFoundError",
    "TemplateNotFoundError",
    "ConcurrentModificationError",
    "ConfigurationError",
    "VendorError",
    "VendorApplicationError",
    "VendorTransportError",
]
