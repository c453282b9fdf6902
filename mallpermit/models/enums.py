"""Enums for work permits - these define the valid values for states, types and roles."""
from enum import Enum


class WorkPermitStatus(str, Enum):
    """The six states a WorkPermit can be in. No other states are allowed."""
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({
    WorkPermitStatus.COMPLETED,
    WorkPermitStatus.REJECTED,
    WorkPermitStatus.CANCELLED,
})


class WorkPermitType(str, Enum):
    """Kind of work being authorised. Fixed at creation."""
    GENERAL = "GENERAL"
    HOT_WORK = "HOT_WORK"
    HIGH_LEVEL = "HIGH_LEVEL"
    MEDIA = "MEDIA"
    SPECIAL = "SPECIAL"


class RiskLevel(str, Enum):
    """Risk classification, ordered from lowest to highest."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)


# Only these types may carry CRITICAL risk
CRITICAL_RISK_TYPES = frozenset({
    WorkPermitType.HOT_WORK,
    WorkPermitType.HIGH_LEVEL,
    WorkPermitType.SPECIAL,
})

DEFAULT_RISK_BY_TYPE = {
    WorkPermitType.GENERAL: RiskLevel.LOW,
    WorkPermitType.MEDIA: RiskLevel.LOW,
    WorkPermitType.SPECIAL: RiskLevel.MEDIUM,
    WorkPermitType.HOT_WORK: RiskLevel.HIGH,
    WorkPermitType.HIGH_LEVEL: RiskLevel.HIGH,
}


class WorkCategory(str, Enum):
    ELECTRICAL = "ELECTRICAL"
    PLUMBING = "PLUMBING"
    HVAC = "HVAC"
    STRUCTURAL = "STRUCTURAL"
    DECORATION = "DECORATION"
    MAINTENANCE = "MAINTENANCE"
    OTHER = "OTHER"


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class InspectionType(str, Enum):
    PRE_WORK = "pre-work"
    DURING_WORK = "during-work"
    POST_WORK = "post-work"


class InspectionResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    CONDITIONAL = "conditional"


class IncidentSeverity(str, Enum):
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class Role(str, Enum):
    """Caller roles recognised by the permit workflow."""
    TENANT_USER = "TENANT_USER"
    MALL_MANAGER = "MALL_MANAGER"
    ADMIN = "ADMIN"


class PermitOperation(str, Enum):
    """Every guarded operation the engine exposes."""
    CREATE = "create"
    UPDATE = "update"
    APPROVE = "approve"
    REJECT = "reject"
    ACTIVATE = "activate"
    COMPLETE = "complete"
    CANCEL = "cancel"
    ADD_INSPECTION = "add_inspection"
    ADD_INCIDENT = "add_incident"
    DELETE = "delete"


class NotificationEvent(str, Enum):
    """Event tags handed to the notification sink."""
    CREATED = "created"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVATED = "activated"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    INCIDENT = "incident"
