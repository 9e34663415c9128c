from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from ..models.case import CaseKind, CaseStatus, Criterion, Perspective
from ..models.notification import NotificationType

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC in, timezone-aware UTC out, on every backend."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Naive datetimes are not stored")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        # SQLite hands back naive values
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _enum(cls: type[enum.Enum], name: str) -> SQLEnum:
    return SQLEnum(
        cls,
        name=name,
        native_enum=False,
        values_callable=lambda members: [m.value for m in members],
    )


# ---------------------------------------------------------------------------
# Cases
# ---------------------------------------------------------------------------


class CaseRecord(Base):
    """
    A case of any kind; `kind` partitions the table.

    Assessments are stored as JSON snapshots of the scores chosen at the
    time, never as references to evaluation options.
    """

    __tablename__ = "cases"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    kind: Mapped[CaseKind] = mapped_column(_enum(CaseKind, "case_kind_enum"), index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    requester_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    handler_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    counterparty_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    counterparty_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    type_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    form: Mapped[str] = mapped_column(String(64), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[CaseStatus] = mapped_column(
        _enum(CaseStatus, "case_status_enum"), nullable=False, index=True
    )
    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    user_assessment: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    admin_assessment: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_cases_kind_created", "kind", "created_at"),
    )


# ---------------------------------------------------------------------------
# Evaluation vocabularies
# ---------------------------------------------------------------------------


class EvaluationConfigRecord(Base):
    __tablename__ = "evaluation_configs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    perspective: Mapped[Perspective] = mapped_column(
        _enum(Perspective, "perspective_enum"), nullable=False
    )
    criterion: Mapped[Criterion] = mapped_column(
        _enum(Criterion, "criterion_enum"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    options: Mapped[List["EvaluationOptionRecord"]] = relationship(
        "EvaluationOptionRecord",
        back_populates="config",
        cascade="all, delete-orphan",
        order_by="EvaluationOptionRecord.order",
        lazy="selectin",
    )

    __table_args__ = (
        # At most one active config per (perspective, criterion)
        Index(
            "uq_evaluation_configs_active_pair",
            "perspective",
            "criterion",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )


class EvaluationOptionRecord(Base):
    __tablename__ = "evaluation_options"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    config_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("evaluation_configs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    config: Mapped[EvaluationConfigRecord] = relationship(
        "EvaluationConfigRecord", back_populates="options"
    )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationRecord(Base):
    """
    One inbox entry.

    Stale-case escalations are unique per (recipient, case, type); the
    partial index leaves ordinary notices free to repeat.
    """

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    recipient_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "notification_type_enum"), nullable=False
    )

    case_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)
    case_kind: Mapped[Optional[CaseKind]] = mapped_column(
        _enum(CaseKind, "case_kind_enum"), nullable=True
    )

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
        Index(
            "uq_notifications_escalation",
            "recipient_id",
            "case_id",
            "type",
            unique=True,
            sqlite_where=text(f"type = '{NotificationType.LONG_TERM_CASE.value}'"),
            postgresql_where=text(f"type = '{NotificationType.LONG_TERM_CASE.value}'"),
        ),
    )
