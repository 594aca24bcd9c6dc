from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_type, utcnow
from .enums import ImplementationGroup


class CisControl(Base):
    __tablename__ = "cis_controls"

    # Numeric string, "1".."18"
    id: Mapped[str] = mapped_column(String(10), primary_key=True)
    name: Mapped[str] = mapped_column(String(400), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    safeguards: Mapped[list["CisSafeguard"]] = relationship(back_populates="control")


class CisSafeguard(Base):
    __tablename__ = "cis_safeguards"

    # "<control>.<n>", e.g. "16.1"
    id: Mapped[str] = mapped_column(String(10), primary_key=True)
    control_id: Mapped[str] = mapped_column(ForeignKey("cis_controls.id"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    implementation_group: Mapped[ImplementationGroup] = mapped_column(
        enum_type(ImplementationGroup, length=5), nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    control: Mapped["CisControl"] = relationship(back_populates="safeguards")
