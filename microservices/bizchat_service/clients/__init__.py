"""
BizChat Service Clients

Outbound HTTP clients: the BizChat gateway and the account service.
"""

from .account_client import AccountClient, BalanceLookupError
from .bizchat_client import (
    AudienceEstimate,
    BizChatClient,
    CategoryMeta,
    VendorRequest,
    VendorResponse,
)

__all__ = [
    "AccountClient",
    "BalanceLookupError",
    "AudienceEstimate",
    "BizChatClient",
    "CategoryMeta",
    "VendorRequest",
    "VendorResponse",
]
