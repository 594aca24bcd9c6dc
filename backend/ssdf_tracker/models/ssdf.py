"""
NIST SSDF reference data: groups (PO, PS, PW, RV) → practices → tasks.

Seeded once from the catalog and rarely mutated.
"""
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow

# Display and aggregation order of the four SSDF groups
GROUP_ORDER = ("PO", "PS", "PW", "RV")


class SsdfGroup(Base):
    __tablename__ = "ssdf_groups"

    id: Mapped[str] = mapped_column(String(10), primary_key=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)

    practices: Mapped[list["SsdfPractice"]] = relationship(back_populates="group")


class SsdfPractice(Base):
    __tablename__ = "ssdf_practices"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    group_id: Mapped[str] = mapped_column(ForeignKey("ssdf_groups.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)

    group: Mapped["SsdfGroup"] = relationship(back_populates="practices")
    tasks: Mapped[list["SsdfTask"]] = relationship(back_populates="practice")


class SsdfTask(Base):
    __tablename__ = "ssdf_tasks"

    id: Mapped[str] = mapped_column(String(30), primary_key=True)
    practice_id: Mapped[str] = mapped_column(ForeignKey("ssdf_practices.id"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    examples: Mapped[str | None] = mapped_column(Text)
    references: Mapped[str | None] = mapped_column(Text)
    order_id: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    practice: Mapped["SsdfPractice"] = relationship(back_populates="tasks")
