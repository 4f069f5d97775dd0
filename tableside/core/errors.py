from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class ServiceError(HTTPException):
    """HTTPException whose detail is always a dict with a message"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **extra: Any):
        detail: Dict[str, Any] = {"message": message}
        detail.update({k: v for k, v in extra.items() if v is not None})
        super().__init__(status_code=self.status_code, detail=detail)

    @property
    def message(self) -> str:
        return self.detail["message"]


class ValidationFailed(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message, errors=errors)


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(ServiceError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, data: Any = None):
        super().__init__(message, data=data)


class KitchenAtCapacity(ServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, active_orders: int, max_capacity: int):
        utilization = round(active_orders / max_capacity * 100) if max_capacity else 100
        super().__init__(
            "Kitchen is at full capacity. Please try again shortly.",
            data={
                "activeOrders": active_orders,
                "maxCapacity": max_capacity,
                "utilizationPercent": utilization,
            },
        )
        self.active_orders = active_orders
        self.max_capacity = max_capacity


class PaymentGatewayError(ServiceError):
    status_code = status.HTTP_502_BAD_GATEWAY
