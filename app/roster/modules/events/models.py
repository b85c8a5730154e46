from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.roster.models import Base
from app.roster.utils import utcnow


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int | None] = mapped_column(ForeignKey("groups.id", ondelete="SET NULL"), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    dates: Mapped[list["EventDate"]] = relationship(
        "EventDate",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventDate.start_at",
    )
    participations: Mapped[list["EventParticipation"]] = relationship(
        "EventParticipation",
        back_populates="event",
        cascade="all, delete-orphan",
    )

    def __str__(self) -> str:
        return self.name


class EventDate(Base):
    __tablename__ = "event_dates"
    __table_args__ = (Index("idx_event_dates_event_id", "event_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    finish_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    event: Mapped[Event] = relationship("Event", back_populates="dates")


class EventParticipation(Base):
    __tablename__ = "event_participations"
    __table_args__ = (
        UniqueConstraint("event_id", "person_id", name="uq_event_participations_event_person"),
        Index("idx_event_participations_person_id", "person_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    person_id: Mapped[int] = mapped_column(ForeignKey("people.id", ondelete="CASCADE"), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    event: Mapped[Event] = relationship("Event", back_populates="participations")
