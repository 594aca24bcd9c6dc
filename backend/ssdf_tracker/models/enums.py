from __future__ import annotations

from enum import Enum


class SsdfStatus(str, Enum):
    """Implementation status of one SSDF task within an assessment."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    IMPLEMENTED = "IMPLEMENTED"
    NOT_APPLICABLE = "NOT_APPLICABLE"


class CisStatus(str, Enum):
    """Status of a CIS control or safeguard, derived or entered manually."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    IMPLEMENTED = "IMPLEMENTED"
    NOT_APPLICABLE = "NOT_APPLICABLE"


class MappingType(str, Enum):
    """How strongly an SSDF task covers its CIS target."""

    DIRECT = "DIRECT"
    PARTIAL = "PARTIAL"
    SUPPORTS = "SUPPORTS"


class ImplementationGroup(str, Enum):
    IG1 = "IG1"
    IG2 = "IG2"
    IG3 = "IG3"


class ReleaseStatus(str, Enum):
    """Approval workflow states of an assessment revision."""

    DRAFT = "DRAFT"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"


class ReleaseAction(str, Enum):
    submit = "submit"
    approve = "approve"
    reject = "reject"


class EditingMode(str, Enum):
    """Admin-controlled lock, independent of the release status."""

    UNLOCKED_FOR_ASSESSORS = "UNLOCKED_FOR_ASSESSORS"
    LOCKED_ADMIN_ONLY = "LOCKED_ADMIN_ONLY"


class Role(str, Enum):
    ADMIN = "ADMIN"
    ASSESSOR = "ASSESSOR"
    VIEWER = "VIEWER"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    OTHER = "OTHER"


class SnapshotType(str, Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"
    APPROVED = "APPROVED"


class EvidenceType(str, Enum):
    DOCUMENT = "DOCUMENT"
    URL = "URL"
    TICKET = "TICKET"
    PIPELINE = "PIPELINE"
    SCREENSHOT = "SCREENSHOT"
    OTHER = "OTHER"


class EvidenceReviewStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
