from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_type, utcnow
from .enums import MappingType


class SsdfCisMapping(Base):
    """Weighted link from one SSDF task to a CIS control OR a CIS safeguard."""

    __tablename__ = "ssdf_cis_mappings"
    __table_args__ = (
        CheckConstraint(
            "(cis_control_id IS NULL) != (cis_safeguard_id IS NULL)",
            name="ck_mapping_single_target",
        ),
        CheckConstraint("weight >= 0 AND weight <= 1", name="ck_mapping_weight"),
        Index("ix_mapping_task", "ssdf_task_id"),
        Index("ix_mapping_control", "cis_control_id"),
        Index("ix_mapping_safeguard", "cis_safeguard_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ssdf_task_id: Mapped[str] = mapped_column(ForeignKey("ssdf_tasks.id"), nullable=False)
    cis_control_id: Mapped[str | None] = mapped_column(ForeignKey("cis_controls.id"))
    cis_safeguard_id: Mapped[str | None] = mapped_column(ForeignKey("cis_safeguards.id"))
    mapping_type: Mapped[MappingType] = mapped_column(enum_type(MappingType, length=20), nullable=False)
    weight: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    ssdf_task: Mapped["SsdfTask"] = relationship()  # noqa: F821
    cis_control: Mapped["CisControl | None"] = relationship()  # noqa: F821
    cis_safeguard: Mapped["CisSafeguard | None"] = relationship()  # noqa: F821
