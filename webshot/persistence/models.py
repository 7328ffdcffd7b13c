"""SQLAlchemy ORM models for the capture record store."""

from datetime import datetime
from typing import Dict, List, Optional, Any
from uuid import uuid4

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Text,
    JSON,
    Index,
    ForeignKey,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from ..models.capture import CaptureStatus, GroupStatus
from ..models.jobs import JobStatus
from .database import Base


def _new_id() -> str:
    return str(uuid4())


class CaptureGroupRecord(Base):
    """A crawl or frame collection of captures."""

    __tablename__ = "capture_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    base_url: Mapped[str] = mapped_column(Text, nullable=False)

    expected_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=GroupStatus.PENDING.value,
        index=True
    )

    params_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
        comment="Requested parameters: time frames, options, auto-scroll, crawl limits"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now()
    )
    finalized_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    captures: Mapped[List["CaptureRecord"]] = relationship(
        "CaptureRecord",
        back_populates="group",
        order_by="CaptureRecord.created_at"
    )

    __table_args__ = (
        CheckConstraint("expected_total >= 0", name="ck_groups_expected_total"),
    )

    @property
    def params(self) -> Dict[str, Any]:
        return self.params_json or {}

    def __repr__(self) -> str:
        return f"<CaptureGroupRecord(id={self.id}, kind={self.kind}, status={self.status})>"


class CaptureRecord(Base):
    """One persisted image-producing unit of work and its result."""

    __tablename__ = "captures"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    url: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    group_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("capture_groups.id", ondelete="CASCADE"),
        nullable=True
    )
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("captures.id", ondelete="SET NULL"),
        nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CaptureStatus.PENDING.value
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Result
    image_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    thumbnail_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    captured_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    metadata_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
        comment="Kind-specific metadata (frame, scroll, trigger, form step)"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now()
    )

    group: Mapped[Optional["CaptureGroupRecord"]] = relationship(
        "CaptureGroupRecord",
        back_populates="captures"
    )

    __table_args__ = (
        Index("idx_captures_group_status", "group_id", "status"),
        Index("idx_captures_parent", "parent_id"),
    )

    @property
    def meta(self) -> Dict[str, Any]:
        return self.metadata_json or {}

    @property
    def is_terminal(self) -> bool:
        return CaptureStatus(self.status).is_terminal

    def __repr__(self) -> str:
        return f"<CaptureRecord(id={self.id}, kind={self.kind}, status={self.status})>"


class JobRecord(Base):
    """A durable queued job."""

    __tablename__ = "capture_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    payload_json: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JobStatus.QUEUED.value
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now()
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_jobs_status_run_at", "status", "run_at"),
    )

    def __repr__(self) -> str:
        return f"<JobRecord(id={self.id}, kind={self.kind}, status={self.status})>"
