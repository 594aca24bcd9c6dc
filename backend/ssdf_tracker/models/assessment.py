"""
Per-assessment state: the assessment itself, task results, derived CIS results,
approval releases and frozen snapshots.

Tables: assessments, assessment_task_results, assessment_cis_results,
        assessment_releases, assessment_snapshots
"""
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_type, utcnow
from .enums import CisStatus, EditingMode, ReleaseStatus, SnapshotType, SsdfStatus


class Assessment(Base):
    __tablename__ = "assessments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    unit: Mapped[str | None] = mapped_column(String(200))
    scope: Mapped[str | None] = mapped_column(Text)
    assessment_owner: Mapped[str | None] = mapped_column(String(200))
    start_date: Mapped[date | None] = mapped_column(Date)
    review_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)

    # Admin-controlled lock, orthogonal to the release status
    editing_mode: Mapped[EditingMode] = mapped_column(
        enum_type(EditingMode), default=EditingMode.UNLOCKED_FOR_ASSESSORS, nullable=False,
    )
    editing_locked_by_id: Mapped[str | None] = mapped_column(String(64))
    editing_locked_at: Mapped[datetime | None] = mapped_column(DateTime)
    editing_lock_note: Mapped[str | None] = mapped_column(Text)

    created_by_id: Mapped[str | None] = mapped_column(String(64))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    task_results: Mapped[list["AssessmentTaskResult"]] = relationship(
        back_populates="assessment", cascade="all, delete-orphan",
    )
    releases: Mapped[list["AssessmentRelease"]] = relationship(
        back_populates="assessment", cascade="all, delete-orphan",
        foreign_keys="AssessmentRelease.assessment_id",
    )


class AssessmentTaskResult(Base):
    __tablename__ = "assessment_task_results"
    __table_args__ = (
        UniqueConstraint("assessment_id", "ssdf_task_id", name="uq_task_result"),
        Index("ix_task_result_task", "ssdf_task_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assessment_id: Mapped[int] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False,
    )
    ssdf_task_id: Mapped[str] = mapped_column(ForeignKey("ssdf_tasks.id"), nullable=False)

    applicable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    status: Mapped[SsdfStatus] = mapped_column(
        enum_type(SsdfStatus), default=SsdfStatus.NOT_STARTED, nullable=False,
    )
    maturity_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    target_level: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    weight: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    owner: Mapped[str | None] = mapped_column(String(200))
    team: Mapped[str | None] = mapped_column(String(200))
    due_date: Mapped[date | None] = mapped_column(Date)
    last_review: Mapped[date | None] = mapped_column(Date)
    evidence_text: Mapped[str | None] = mapped_column(Text)
    evidence_links: Mapped[list | None] = mapped_column(JSON)
    comments: Mapped[str | None] = mapped_column(Text)

    updated_by_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    assessment: Mapped["Assessment"] = relationship(back_populates="task_results")
    ssdf_task: Mapped["SsdfTask"] = relationship()  # noqa: F821


class AssessmentCisResult(Base):
    """Derived (and optionally overridden) coverage of one CIS target.

    ``target_key`` is "c:<control>" for control-level targets and
    "s:<safeguard>" for safeguard-level targets; it carries the uniqueness
    that a nullable ``cis_safeguard_id`` column cannot.
    """

    __tablename__ = "assessment_cis_results"
    __table_args__ = (
        UniqueConstraint("assessment_id", "target_key", name="uq_cis_result_target"),
        Index("ix_cis_result_control", "assessment_id", "cis_control_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assessment_id: Mapped[int] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False,
    )
    target_key: Mapped[str] = mapped_column(String(24), nullable=False)
    cis_control_id: Mapped[str] = mapped_column(ForeignKey("cis_controls.id"), nullable=False)
    cis_safeguard_id: Mapped[str | None] = mapped_column(ForeignKey("cis_safeguards.id"))

    derived_status: Mapped[CisStatus] = mapped_column(
        enum_type(CisStatus), default=CisStatus.NOT_APPLICABLE, nullable=False,
    )
    derived_maturity_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    derived_coverage_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    derived_from_task_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    derived_from_ssdf: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    manual_override: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    manual_status: Mapped[CisStatus | None] = mapped_column(enum_type(CisStatus))
    manual_maturity_level: Mapped[int | None] = mapped_column(Integer)

    updated_by_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def effective_status(self) -> CisStatus:
        if self.manual_override and self.manual_status is not None:
            return self.manual_status
        return self.derived_status

    @property
    def effective_maturity_level(self) -> int:
        if self.manual_override and self.manual_maturity_level is not None:
            return self.manual_maturity_level
        return self.derived_maturity_level


class AssessmentRelease(Base):
    """One approval revision. Approved releases are never mutated in place."""

    __tablename__ = "assessment_releases"
    __table_args__ = (
        Index("ix_release_assessment", "assessment_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assessment_id: Mapped[int] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False,
    )
    status: Mapped[ReleaseStatus] = mapped_column(
        enum_type(ReleaseStatus), default=ReleaseStatus.DRAFT, nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    snapshot: Mapped[dict | None] = mapped_column(JSON)
    base_release_id: Mapped[int | None] = mapped_column(
        ForeignKey("assessment_releases.id", ondelete="SET NULL"),
    )

    created_by_id: Mapped[str | None] = mapped_column(String(64))
    approved_by_id: Mapped[str | None] = mapped_column(String(64))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    assessment: Mapped["Assessment"] = relationship(
        back_populates="releases", foreign_keys=[assessment_id],
    )
    base_release: Mapped["AssessmentRelease | None"] = relationship(
        remote_side="AssessmentRelease.id", foreign_keys=[base_release_id],
    )


class AssessmentSnapshot(Base):
    __tablename__ = "assessment_snapshots"
    __table_args__ = (
        Index("ix_snapshot_assessment", "assessment_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assessment_id: Mapped[int] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False,
    )
    release_id: Mapped[int | None] = mapped_column(
        ForeignKey("assessment_releases.id", ondelete="SET NULL"),
    )
    type: Mapped[SnapshotType] = mapped_column(enum_type(SnapshotType, length=10), nullable=False)
    label: Mapped[str | None] = mapped_column(String(80))
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_by_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
