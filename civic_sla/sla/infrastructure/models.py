"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the issue store.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from civic_sla.infrastructure.database import Base
from civic_sla.config import Priority, IssueStatus


class IssueModel(Base):
    """
    Database model for an issue's SLA-relevant fields.

    Maps to the 'issues' table. ``version`` is bumped on every write and
    used as the compare-and-set token.
    """
    __tablename__ = "issues"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    title: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    priority: Mapped[str] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=IssueStatus.REPORTED)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    # SLA tracking
    sla_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    sla_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_escalation_check: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    escalation_events: Mapped[List["EscalationEventModel"]] = relationship(
        back_populates="issue",
        order_by="EscalationEventModel.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_issues_status_last_check", "status", "last_escalation_check"),
    )


class EscalationEventModel(Base):
    """
    Database model for one escalation history entry.

    Maps to the 'escalation_events' table. Rows are only ever inserted;
    the autoincrement id preserves insertion order.
    """
    __tablename__ = "escalation_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    issue_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)

    level: Mapped[int] = mapped_column(Integer, nullable=False)
    escalated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    escalated_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # null = system
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    issue: Mapped[IssueModel] = relationship(back_populates="escalation_events")
