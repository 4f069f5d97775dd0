from enum import Enum
from datetime import datetime
from typing import Optional

from .order import CamelModel


class TableStatus(str, Enum):
    AVAILABLE = "Available"
    OCCUPIED = "Occupied"
    RESERVED = "Reserved"


class Table(CamelModel):
    id: str
    table_number: int
    capacity: int
    status: TableStatus = TableStatus.AVAILABLE
    current_order: Optional[str] = None
    assigned_waiter: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_response(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
