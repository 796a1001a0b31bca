"""
BizChat Campaign Service Main Application

FastAPI application for BizChat campaign lifecycle management.
Port: 8260
"""

import logging
import secrets
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from core.config import ConfigurationError, get_settings

from . import __version__
from .factory import BizChatServiceFactory
from .models import (
    CampaignCreateRequest,
    CampaignResponse,
    HealthResponse,
    SubmitRequest,
    TransitionRequest,
    VendorStatusCallback,
)
from .protocols import (
    BizChatServiceError,
    CampaignNotFoundError,
    CampaignValidationError,
    ConcurrentModificationError,
    InvalidTransitionError,
    TemplateNotFoundError,
    VendorApplicationError,
    VendorTransportError,
)

settings = get_settings()
settings.logging.setup_logging()
logger = logging.getLogger(__name__)

# Service configuration
SERVICE_NAME = settings.service_name
SERVICE_PORT = settings.service_port
SERVICE_VERSION = __version__

# Global factory instance
factory: Optional[BizChatServiceFactory] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global factory

    logger.info(f"Starting {SERVICE_NAME} on port {SERVICE_PORT}")

    # Tests may install a pre-built factory
    if factory is None:
        factory = BizChatServiceFactory(settings)
        await factory.initialize()

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")
    await factory.close()
    factory = None


app = FastAPI(
    title="BizChat Campaign Service",
    description="Campaign lifecycle engine for the BizChat carrier marketing gateway",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


# ====================
# Exception Handlers
# ====================


def _error(status_code: int, exc: Exception, error_code: Optional[str] = None, **extra) -> JSONResponse:
    content = {"detail": str(exc), "error_code": error_code or type(exc).__name__}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(CampaignNotFoundError)
async def campaign_not_found_handler(request: Request, exc: CampaignNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(TemplateNotFoundError)
async def template_not_found_handler(request: Request, exc: TemplateNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    current = exc.current_status.slug if exc.current_status is not None else None
    return _error(status.HTTP_409_CONFLICT, exc, current_status=current, action=exc.action)


@app.exception_handler(ConcurrentModificationError)
async def concurrent_modification_handler(request: Request, exc: ConcurrentModificationError):
    return _error(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(CampaignValidationError)
async def validation_error_handler(request: Request, exc: CampaignValidationError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc, field=exc.field)


@app.exception_handler(VendorApplicationError)
async def vendor_application_handler(request: Request, exc: VendorApplicationError):
    # Vendor code is passed through verbatim
    return _error(status.HTTP_502_BAD_GATEWAY, exc, error_code=exc.code, vendor_response=exc.raw)


@app.exception_handler(VendorTransportError)
async def vendor_transport_handler(request: Request, exc: VendorTransportError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT if exc.timeout else status.HTTP_502_BAD_GATEWAY
    return _error(status_code, exc, error_code=exc.code, retryable=True)


@app.exception_handler(BizChatServiceError)
async def service_error_handler(request: Request, exc: BizChatServiceError):
    logger.error(f"Unhandled service error: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc, setting=exc.setting)


# ====================
# Dependencies
# ====================


def get_service():
    """Get campaign service from factory"""
    if not factory:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return factory.service


def verify_callback_key(
    request: Request,
    x_auth_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> None:
    """Check the callback auth key when one is configured"""
    expected = settings.bizchat.callback_auth_key
    if not expected:
        return
    provided = x_auth_key or authorization or request.query_params.get("authKey") or ""
    if not secrets.compare_digest(provided, expected):
        logger.warning("[Callback] Auth key mismatch")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


# ====================
# Health Endpoints
# ====================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return HealthResponse(
        status="healthy" if factory else "starting",
        service=SERVICE_NAME,
        port=SERVICE_PORT,
        version=SERVICE_VERSION,
        vendor_environment="production" if settings.bizchat.use_production else "development",
    )


# ====================
# Campaign Endpoints
# ====================


@app.post(
    "/api/v1/bizchat/campaigns",
    response_model=CampaignResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Campaigns"],
)
async def create_campaign(request: CampaignCreateRequest, service=Depends(get_service)):
    """Create a campaign in draft"""
    campaign = await service.create_campaign(request)
    return CampaignResponse.from_campaign(campaign)


@app.get("/api/v1/bizchat/campaigns/{campaign_id}", response_model=CampaignResponse, tags=["Campaigns"])
async def get_campaign(campaign_id: str, service=Depends(get_service)):
    campaign = await service.get_campaign(campaign_id)
    return CampaignResponse.from_campaign(campaign)


@app.post(
    "/api/v1/bizchat/campaigns/{campaign_id}/submit",
    response_model=CampaignResponse,
    tags=["Campaigns"],
)
async def submit_campaign(
    campaign_id: str,
    request: Optional[SubmitRequest] = None,
    service=Depends(get_service),
):
    """Register (or update) the campaign at BizChat and request approval"""
    scheduled_at = request.scheduled_at if request else None
    campaign = await service.submit_campaign(campaign_id, scheduled_at=scheduled_at)
    return CampaignResponse.from_campaign(campaign)


@app.post(
    "/api/v1/bizchat/campaigns/{campaign_id}/transition",
    response_model=CampaignResponse,
    tags=["Campaigns"],
)
async def transition_campaign(
    campaign_id: str,
    request: TransitionRequest,
    service=Depends(get_service),
):
    """Apply a caller action: register, cancel or stop"""
    campaign = await service.transition_campaign(campaign_id, request.action)
    return CampaignResponse.from_campaign(campaign)


# ====================
# Vendor Callback
# ====================


@app.post("/api/v1/bizchat/callback/state", tags=["Callback"], dependencies=[Depends(verify_callback_key)])
async def campaign_state_callback(payload: VendorStatusCallback, service=Depends(get_service)):
    """
    Campaign state callback from BizChat.

    Always answers 200 for unknown campaigns so the vendor does not retry.
    """
    logger.info(f"[Callback] {payload.campaignId}: status {payload.statusCode}")
    campaign = await service.apply_vendor_status(
        payload.campaignId,
        payload.statusCode,
        sent_count=payload.sentCount,
        success_count=payload.successCount,
    )
    if campaign is None:
        return {
            "success": False,
            "message": "Campaign not found in local database",
            "campaignId": payload.campaignId,
        }
    return {
        "success": True,
        "campaignId": campaign.campaign_id,
        "bizchatCampaignId": payload.campaignId,
        "statusCode": int(campaign.status),
        "status": campaign.status.slug,
        "label": campaign.status_label,
    }


# ====================
# Main Entry Point
# ====================


def main():
    """Run the service"""
    import uvicorn

    uvicorn.run(
        "microservices.bizchat_service.main:app",
        host="0.0.0.0",
        port=SERVICE_PORT,
        reload=False,
        log_level=settings.logging.log_level.lower(),
    )


if __name__ == "__main__":
    main()
