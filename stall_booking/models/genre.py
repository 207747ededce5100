"""
Genre catalogue and the reservation link table.

Key design decisions:
- `name` is unique; the catalogue is small and listed alphabetically
- reservation_genres rows cascade with both sides, so deleting a genre or a
  reservation never leaves a dangling link
"""

from sqlalchemy import Column, String, Text, ForeignKey
from sqlalchemy.orm import relationship

from stall_booking.db.base import Base, TimestampMixin


class Genre(Base, TimestampMixin):
    __tablename__ = "genres"

    id = Column(String(36), primary_key=True)
    name = Column(String(100), unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)

    reservation_links = relationship(
        "ReservationGenre", back_populates="genre", lazy="noload", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Genre(id={self.id}, name={self.name})>"


class ReservationGenre(Base):
    __tablename__ = "reservation_genres"

    reservation_id = Column(
        String(36), ForeignKey("reservations.id", ondelete="CASCADE"), primary_key=True
    )
    genre_id = Column(
        String(36), ForeignKey("genres.id", ondelete="CASCADE"), primary_key=True, index=True
    )

    genre = relationship("Genre", back_populates="reservation_links")

    def __repr__(self) -> str:
        return f"<ReservationGenre(reservation={self.reservation_id}, genre={self.genre_id})>"
