"""
Stall model.

Key design decisions:
- `code` is the unique human-readable identifier printed on the floor plan
- `status` is only moved AVAILABLE <-> RESERVED by a conditional UPDATE that
  filters on the expected current status, so two writers cannot both win
- location and dimensions are display-only
"""

from sqlalchemy import Column, String, Numeric, Index, CheckConstraint
from sqlalchemy.orm import relationship

from stall_booking.db.base import Base, TimestampMixin


class Stall(Base, TimestampMixin):
    __tablename__ = "stalls"

    id = Column(String(36), primary_key=True)
    code = Column(String(50), unique=True, index=True, nullable=False)
    size = Column(String(10), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    location = Column(String(255), nullable=True)
    dimensions = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="AVAILABLE")

    reservations = relationship(
        "Reservation", back_populates="stall", lazy="noload", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_stall_price_non_negative"),
        CheckConstraint("size IN ('SMALL', 'MEDIUM', 'LARGE')", name="check_stall_size"),
        CheckConstraint(
            "status IN ('AVAILABLE', 'RESERVED', 'MAINTENANCE')", name="check_stall_status"
        ),
        # Availability listing filters on status and sorts by code
        Index("ix_stalls_status_code", "status", "code"),
    )

    def __repr__(self) -> str:
        return f"<Stall(id={self.id}, code={self.code}, status={self.status})>"
