from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from ssdf_tracker.models.enums import CisStatus, ImplementationGroup
from ssdf_tracker.services.ssdf_scoring import MAX_MATURITY_LEVEL


# ── Reference data (read-only) ──

class CisSafeguardOut(BaseModel):
    id: str
    control_id: str
    name: str
    implementation_group: ImplementationGroup
    model_config = {"from_attributes": True}


class CisControlOut(BaseModel):
    id: str
    name: str
    safeguards: list[CisSafeguardOut] = []
    model_config = {"from_attributes": True}


# ── Per-assessment results ──

class CisResultOut(BaseModel):
    id: int
    assessment_id: int
    target_key: str
    cis_control_id: str
    cis_safeguard_id: str | None = None

    derived_status: CisStatus
    derived_maturity_level: int
    derived_coverage_score: float
    derived_from_task_ids: list[str] = []
    derived_from_ssdf: bool

    manual_override: bool
    manual_status: CisStatus | None = None
    manual_maturity_level: int | None = None

    effective_status: CisStatus
    effective_maturity_level: int

    updated_by_id: str | None = None
    updated_at: datetime
    model_config = {"from_attributes": True}


class CisOverrideUpdate(BaseModel):
    """Manual override of one CIS target.

    Exactly one of ``cis_control_id`` / ``cis_safeguard_id`` names the target.
    Completeness of the override values is checked by the service.
    """
    cis_control_id: str | None = None
    cis_safeguard_id: str | None = None
    manual_override: bool
    manual_status: CisStatus | None = None
    manual_maturity_level: int | None = Field(None, ge=0, le=MAX_MATURITY_LEVEL)
    reason: str | None = None

    @model_validator(mode="after")
    def _single_target(self):
        if bool(self.cis_control_id) == bool(self.cis_safeguard_id):
            raise ValueError("Provide exactly one of cis_control_id or cis_safeguard_id")
        return self
