"""
Reservation model.

Key design decisions:
- Status field allows cancellation without deleting records
- total_amount is a price snapshot taken at booking time
- No unique constraint on (user_id, stall_id): a user may re-book a stall
  after cancelling, so duplicates are rejected among active rows only
"""

from sqlalchemy import Column, String, Numeric, ForeignKey, Index, CheckConstraint, text
from sqlalchemy.orm import relationship

from stall_booking.db.base import Base, TimestampMixin

ACTIVE_FILTER = "status IN ('PENDING', 'CONFIRMED')"


class Reservation(Base, TimestampMixin):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    stall_id = Column(String(36), ForeignKey("stalls.id", ondelete="CASCADE"), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default="CONFIRMED")

    user = relationship("User", back_populates="reservations")
    stall = relationship("Stall", back_populates="reservations")

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="check_reservation_amount_non_negative"),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED')", name="check_reservation_status"
        ),
        # Quota count: active reservations per user
        Index("ix_reservations_user_status", "user_id", "status"),
        # Exclusivity checks: active reservations per stall
        Index("ix_reservations_stall_status", "stall_id", "status"),
        # Backstop for stall exclusivity: one active row per stall
        Index(
            "uq_reservations_active_stall",
            "stall_id",
            unique=True,
            postgresql_where=text(ACTIVE_FILTER),
            sqlite_where=text(ACTIVE_FILTER),
        ),
    )

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, user={self.user_id}, stall={self.stall_id}, status={self.status})>"
