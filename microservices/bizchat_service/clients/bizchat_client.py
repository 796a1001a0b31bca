"""
BizChat Gateway Client

Authenticated calls to the BizChat marketing gateway. Every call carries a
transaction id (tid) query parameter and the API key header; responses are
normalised into a {code, message, data} envelope and classified as
transport or application failures.
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from core.config import BizChatConfig
from core.service_client_base import BaseServiceClient

from ..models import VendorRequest
from ..protocols import VendorApplicationError, VendorTransportError

logger = logging.getLogger(__name__)


SUCCESS_CODE = "S000001"

# Raw codes stay attached to the raised error
FRIENDLY_MESSAGES: Dict[str, str] = {
    "401": "BizChat rejected the API key (unauthorized)",
    "403": "BizChat denied access to this resource",
    "404": "The campaign or resource was not found at BizChat",
}

CATEGORY_DOMAINS = {"11st", "webapp"}

LOG_BODY_LIMIT = 500


class VendorResponse(BaseModel):
    """Normalised vendor envelope"""
    code: str
    message: str = ""
    data: Any = None
    http_status: int = 200
    synthetic: bool = False  # body was not JSON

    @property
    def is_success(self) -> bool:
        return self.code == SUCCESS_CODE


class AudienceEstimate(BaseModel):
    """Vendor audience estimate for a targeting expression"""
    count: int
    filter_query: str


class CategoryMeta(BaseModel):
    id: str
    name: str
    cateid: str


def _truncate(payload: Any) -> str:
    text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False, default=str)
    return text[:LOG_BODY_LIMIT]


class BizChatClient(BaseServiceClient):
    """Client for the BizChat gateway"""

    service_name = "bizchat_gateway"

    def __init__(
        self,
        config: BizChatConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        # Raises ConfigurationError when the active environment has no key
        base_url, api_key = config.resolve_vendor_target()
        super().__init__(
            base_url=base_url,
            headers={"Authorization": api_key},
            timeout=config.timeout_seconds,
            transport=transport,
        )
        self.environment = "production" if config.use_production else "development"
        self._last_tid = 0
        logger.info(f"BizChat client targeting {self.environment} gateway {self.base_url}")

    def next_tid(self) -> str:
        """Millisecond timestamp, strictly increasing for this client"""
        tid = int(time.time() * 1000)
        if tid <= self._last_tid:
            tid = self._last_tid + 1
        self._last_tid = tid
        return str(tid)

    @staticmethod
    def parse_envelope(response: httpx.Response) -> VendorResponse:
        """Parse a vendor response; non-JSON bodies become a synthetic envelope."""
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not isinstance(payload, dict):
            return VendorResponse(
                code=str(response.status_code),
                message=response.text or "Empty response",
                http_status=response.status_code,
                synthetic=True,
            )

        return VendorResponse(
            code=str(payload.get("code") or response.status_code),
            message=payload.get("msg") or payload.get("message") or "",
            data=payload.get("data"),
            http_status=response.status_code,
        )

    @staticmethod
    def describe(code: str, message: str) -> str:
        friendly = FRIENDLY_MESSAGES.get(code)
        if friendly:
            return f"{friendly} ({code})"
        return f"BizChat error {code}: {message}" if message else f"BizChat error {code}"

    async def send(self, request: VendorRequest) -> VendorResponse:
        """Issue one vendor call and classify the outcome.

        Raises:
            VendorTransportError: network failure, timeout or non-JSON body
            VendorApplicationError: envelope code other than S000001
        """
        tid = self.next_tid()
        params = {"tid": tid, **request.params}
        logger.info(f"[BizChat] {request.method} {request.path} tid={tid} params={request.params}")
        logger.debug(f"[BizChat] Request body: {_truncate(request.body)}")

        try:
            # Every vendor endpoint is POST
            response = await self.post(request.path, json=request.body, params=params)
        except httpx.TimeoutException as e:
            logger.error(f"[BizChat] {request.path} timed out after {self.timeout}s (tid={tid})")
            raise VendorTransportError(
                f"BizChat call {request.path} timed out after {self.timeout}s",
                code="TIMEOUT",
                timeout=True,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"[BizChat] {request.path} transport failure (tid={tid}): {e}")
            raise VendorTransportError(
                f"BizChat call {request.path} failed: {e}", code="NETWORK"
            ) from e

        logger.debug(f"[BizChat] Response {response.status_code}: {_truncate(response.text)}")
        envelope = self.parse_envelope(response)

        if envelope.synthetic:
            logger.error(f"[BizChat] Non-JSON response from {request.path}: HTTP {envelope.code}")
            raise VendorTransportError(self.describe(envelope.code, envelope.message), code=envelope.code)

        if not envelope.is_success:
            logger.warning(f"[BizChat] {request.path} returned {envelope.code}: {envelope.message}")
            raise VendorApplicationError(
                self.describe(envelope.code, envelope.message),
                code=envelope.code,
                raw=envelope.model_dump(),
            )
        return envelope

    # ========================================
    # Campaign endpoints
    # ========================================

    async def create_campaign(self, request: VendorRequest) -> str:
        """Send an assembled create request and return the vendor campaign id"""
        envelope = await self.send(request)
        data = envelope.data if isinstance(envelope.data, dict) else {}
        vendor_id = data.get("id")
        if not vendor_id:
            raise VendorApplicationError(
                "BizChat did not return a campaign id",
                code=envelope.code,
                raw=envelope.model_dump(),
            )
        return str(vendor_id)

    async def update_campaign(self, request: VendorRequest) -> None:
        """Send an assembled update request; the vendor id travels in its params"""
        await self.send(request)

    async def request_approval(self, vendor_campaign_id: str) -> None:
        await self.send(VendorRequest(path="/api/v1/cmpn/appr/req", params={"id": vendor_campaign_id}))

    async def cancel_campaign(self, vendor_campaign_id: str) -> None:
        await self.send(VendorRequest(path="/api/v1/cmpn/cancel", params={"id": vendor_campaign_id}))

    async def stop_campaign(self, vendor_campaign_id: str) -> None:
        await self.send(VendorRequest(path="/api/v1/cmpn/stop", params={"id": vendor_campaign_id}))

    # ========================================
    # ATS endpoints
    # ========================================

    async def estimate_audience(self, expression: Dict[str, Any]) -> AudienceEstimate:
        """Post a compiled expression to the estimate endpoint.

        The vendor answers with its own canonical filter string, which is the
        value later submitted as sndMosuQuery.
        """
        envelope = await self.send(VendorRequest(path="/api/v1/ats/mosu", body=expression))
        data = envelope.data if isinstance(envelope.data, dict) else {}

        query = data.get("query") or data.get("sndMosuQuery")
        if not query:
            raise VendorApplicationError(
                "BizChat audience estimate returned no filter query",
                code=envelope.code,
                raw=envelope.model_dump(),
            )
        if not isinstance(query, str):
            query = json.dumps(query, ensure_ascii=False)

        count = data.get("sndMosu") or data.get("cnt") or 0
        return AudienceEstimate(count=int(count), filter_query=query)

    async def fetch_categories(self, domain: str, parent_id: Optional[str] = None) -> List[CategoryMeta]:
        """List categories of a domain ("11st" or "webapp") under parent_id"""
        if domain not in CATEGORY_DOMAINS:
            raise ValueError(f"Unknown category domain: {domain}")

        body = {"cateid": parent_id} if parent_id else {}
        envelope = await self.send(VendorRequest(path=f"/api/v1/ats/meta/{domain}", body=body))
        data = envelope.data if isinstance(envelope.data, dict) else {}

        categories = []
        for item in data.get("list") or []:
            item_id = str(item.get("id", ""))
            categories.append(
                CategoryMeta(
                    id=item_id,
                    name=item.get("name", ""),
                    cateid=str(item.get("cateid") or item_id),
                )
            )
        return categories


__all__ = [
    "SUCCESS_CODE",
    "FRIENDLY_MESSAGES",
    "VendorResponse",
    "VendorRequest",
    "AudienceEstimate",
    "CategoryMeta",
    "BizChatClient",
]
