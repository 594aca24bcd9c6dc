"""
Evidence attached to a task result, and its per-field change history.

Tables: evidences, evidence_history
"""
from datetime import date, datetime

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_type, utcnow
from .enums import EvidenceReviewStatus, EvidenceType


class Evidence(Base):
    __tablename__ = "evidences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_result_id: Mapped[int] = mapped_column(
        ForeignKey("assessment_task_results.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type: Mapped[EvidenceType] = mapped_column(enum_type(EvidenceType, length=20), nullable=False)
    review_status: Mapped[EvidenceReviewStatus] = mapped_column(
        enum_type(EvidenceReviewStatus, length=20), default=EvidenceReviewStatus.PENDING, nullable=False,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(String(2000))
    owner: Mapped[str | None] = mapped_column(String(200))
    evidence_date: Mapped[date | None] = mapped_column(Date)
    valid_until: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)

    created_by_id: Mapped[str | None] = mapped_column(String(64))
    updated_by_id: Mapped[str | None] = mapped_column(String(64))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    task_result: Mapped["AssessmentTaskResult"] = relationship()  # noqa: F821


class EvidenceHistory(Base):
    """Per-field change history of one evidence row."""

    __tablename__ = "evidence_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evidence_id: Mapped[int] = mapped_column(
        ForeignKey("evidences.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    changed_by_id: Mapped[str | None] = mapped_column(String(64))
    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    old_value: Mapped[str | None] = mapped_column(Text)
    new_value: Mapped[str | None] = mapped_column(Text)
    reason: Mapped[str | None] = mapped_column(Text)
    request_id: Mapped[str | None] = mapped_column(String(100))
    ip: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(String(300))
    meta: Mapped[dict | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
