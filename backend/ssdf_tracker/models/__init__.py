from .base import Base
from .enums import (
    AuditAction,
    CisStatus,
    EditingMode,
    EvidenceReviewStatus,
    EvidenceType,
    ImplementationGroup,
    MappingType,
    ReleaseAction,
    ReleaseStatus,
    Role,
    SnapshotType,
    SsdfStatus,
)
from .organization import Organization
from .ssdf import GROUP_ORDER, SsdfGroup, SsdfPractice, SsdfTask
from .cis import CisControl, CisSafeguard
from .mapping import SsdfCisMapping
from .assessment import (
    Assessment,
    AssessmentCisResult,
    AssessmentRelease,
    AssessmentSnapshot,
    AssessmentTaskResult,
)
from .evidence import Evidence, EvidenceHistory
from .audit import AssessmentTaskHistory, AuditLog

__all__ = [
    "Base",
    "AuditAction", "CisStatus", "EditingMode", "EvidenceReviewStatus", "EvidenceType",
    "ImplementationGroup", "MappingType",
    "ReleaseAction", "ReleaseStatus", "Role", "SnapshotType", "SsdfStatus",
    "Organization",
    "GROUP_ORDER", "SsdfGroup", "SsdfPractice", "SsdfTask",
    "CisControl", "CisSafeguard",
    "SsdfCisMapping",
    "Assessment", "AssessmentCisResult", "AssessmentRelease", "AssessmentSnapshot",
    "AssessmentTaskResult",
    "Evidence", "EvidenceHistory",
    "AssessmentTaskHistory", "AuditLog",
]
