"""
Minimal user projection returned alongside reservations.
"""

from typing import Optional
from pydantic import BaseModel

from stall_booking.domain.models import Role


class UserSummary(BaseModel):
    id: str
    role: Role
    email: Optional[str] = None
    name: Optional[str] = None
    business_name: Optional[str] = None
