"""
BizChat Campaign Service

Campaign lifecycle engine for the BizChat carrier marketing gateway:
- Targeting compilation to the vendor ATS filter expression
- Send-time and geofence collection window rules
- Vendor create/update payload assembly with billing-type derivation
- Campaign state machine driven by caller actions and vendor callbacks

Port: 8260
"""

__version__ = "1.0.0"
__service__ = "bizchat_service"
