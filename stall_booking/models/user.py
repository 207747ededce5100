"""
User identity record.

Owned by the identity service; this service only reads it for the user
projection on reservations and locks the row to serialize a user's quota check.
"""

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from stall_booking.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    business_name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="user")

    reservations = relationship("Reservation", back_populates="user", lazy="noload")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
