import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..core.errors import PaymentGatewayError
from ..models.payment import PaymentStatus

logger = logging.getLogger(__name__)

# Lookup statuses that settle a payment; anything else keeps it Pending
KHALTI_STATUS_MAP = {
    "Completed": PaymentStatus.PAID,
    "Expired": PaymentStatus.FAILED,
    "User canceled": PaymentStatus.FAILED,
    "Refunded": PaymentStatus.FAILED,
}


def to_paisa(amount: Decimal) -> int:
    return int((Decimal(str(amount)) * 100).to_integral_value())


def map_khalti_status(gateway_status: Optional[str]) -> PaymentStatus:
    return KHALTI_STATUS_MAP.get(gateway_status or "", PaymentStatus.PENDING)


class KhaltiService:
    """Client for the Khalti ePayment v2 API"""

    def __init__(
        self,
        gateway_url: str = settings.KHALTI_GATEWAY_URL,
        secret_key: Optional[str] = settings.KHALTI_SECRET_KEY,
        return_url: Optional[str] = settings.KHALTI_RETURN_URL,
        website_url: Optional[str] = settings.KHALTI_WEBSITE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.gateway_url = gateway_url.rstrip("/")
        self.secret_key = secret_key
        self.return_url = return_url
        self.website_url = website_url
        self.transport = transport
        self.timeout = timeout

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Key {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.secret_key:
            raise PaymentGatewayError("Khalti is not configured")

        url = f"{self.gateway_url}/api/v2/{path}"
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            try:
                response = await client.post(url, json=payload, headers=self.headers())
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error("Khalti %s failed with %s: %s", path, e.response.status_code, e.response.text)
                raise PaymentGatewayError("Khalti request was rejected", status=e.response.status_code)
            except httpx.HTTPError as e:
                logger.error("Khalti %s unreachable: %s", path, e)
                raise PaymentGatewayError("Khalti gateway unavailable")
            return response.json()

    async def initiate(self, amount: Decimal, purchase_order_id: str, purchase_order_name: str) -> Dict[str, Any]:
        """Start a payment; returns pidx and payment_url"""
        data = await self._post("epayment/initiate/", {
            "return_url": self.return_url,
            "website_url": self.website_url,
            "amount": to_paisa(amount),
            "purchase_order_id": purchase_order_id,
            "purchase_order_name": purchase_order_name,
        })
        if not data.get("pidx"):
            raise PaymentGatewayError("Khalti did not return a payment id")
        return data

    async def lookup(self, pidx: str) -> Dict[str, Any]:
        if not pidx:
            raise PaymentGatewayError("pidx is required for payment verification")
        return await self._post("epayment/lookup/", {"pidx": pidx})
