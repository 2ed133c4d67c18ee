"""
User, vendor and actor models
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from enum import Enum
from .base import BaseEntity, TimestampMixin


class Role(str, Enum):
    """Actor roles"""
    USER = "user"
    VENDOR = "vendor"
    ADMIN = "admin"


class VendorType(str, Enum):
    HOME_CHEF = "home_chef"
    FOOD_VENDOR = "food_vendor"


class User(BaseEntity, TimestampMixin):
    """User record"""
    id: int = Field(..., description="User ID")
    name: Optional[str] = Field(None, max_length=100)
    role: Role = Field(..., description="Role")
    push_tokens: List[str] = Field(default_factory=list, description="Device push tokens")


class Vendor(BaseEntity):
    """Vendor profile"""
    vendor_id: int
    user_id: int
    business_name: Optional[str] = None
    vendor_type: VendorType
    is_active: bool = True


class Actor(BaseModel):
    """The authenticated caller of an operation"""
    user_id: int
    role: Role
    vendor_id: Optional[int] = Field(None, description="Vendor profile id when role is vendor")

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
