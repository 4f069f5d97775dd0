from enum import Enum
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    WAITER = "waiter"
    STAFF = "staff"
    CHEF = "chef"
    CASHIER = "cashier"
    ACCOUNTANT = "accountant"

# Roles eligible for automatic table assignment
FLOOR_ROLES = [UserRole.WAITER, UserRole.STAFF]

class StaffMember(BaseModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    is_active: bool = True
    created_at: Optional[datetime] = None

    @property
    def is_floor_staff(self) -> bool:
        return self.role.lower() in [r.value for r in FLOOR_ROLES]
