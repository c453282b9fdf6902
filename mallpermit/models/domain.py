"""Domain models - the WorkPermit aggregate and the sub-records it owns."""
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Text, Enum as SQLEnum, JSON, event
)
from sqlalchemy.orm import relationship

from mallpermit.database import Base
from mallpermit.models.enums import (
    WorkPermitStatus,
    WorkPermitType,
    RiskLevel,
    WorkCategory,
    ApprovalDecision,
    InspectionType,
    InspectionResult,
    IncidentSeverity,
    TERMINAL_STATUSES,
)


def generate_permit_number() -> str:
    """WP- followed by 8 uppercase hex characters."""
    return f"WP-{uuid.uuid4().hex[:8].upper()}"


class WorkPermit(Base):
    """
    A work permit progresses through states:
    Pending Approval → Approved → Active → Completed, or ends Rejected/Cancelled.

    Invariants enforced here:
    - permit_number is unique (database index) and never reassigned
    - approvals, inspections and incidents are owned exclusively by the permit
    - status is only changed by the engine (mallpermit.services.state_machine)
    - every engine write is conditional on the version it read
    """
    __tablename__ = "work_permits"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    permit_number = Column(String(16), nullable=False, unique=True, index=True)

    mall_id = Column(String, nullable=False, index=True)
    tenant_id = Column(String, nullable=True, index=True)  # Absent for mall-initiated work
    contractor_id = Column(String, nullable=True)

    type = Column(SQLEnum(WorkPermitType), nullable=False)
    category = Column(SQLEnum(WorkCategory), nullable=False, default=WorkCategory.OTHER)
    risk_level = Column(SQLEnum(RiskLevel), nullable=False)
    status = Column(
        SQLEnum(WorkPermitStatus),
        nullable=False,
        default=WorkPermitStatus.PENDING_APPROVAL,
        index=True
    )

    # Editable only while pending approval
    description = Column(Text, nullable=False)
    location = Column(String, nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)

    # Safety detail reviewed by the approver
    detailed_description = Column(Text, nullable=True)
    work_schedule = Column(JSON, nullable=True)  # e.g. {"days": [...], "hours": "22:00-06:00"}
    personnel = Column(JSON, nullable=True)  # list of {name, role, ...}
    equipment = Column(JSON, nullable=True)  # list of equipment names
    safety_measures = Column(JSON, nullable=True)  # list of measures
    risk_assessment = Column(JSON, nullable=True)
    method_statement = Column(JSON, nullable=True)
    compliance = Column(JSON, nullable=True)
    documents = Column(JSON, nullable=True)  # list of {name, url, ...}

    # Set once, by the matching terminal transition
    completion_notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    activated_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String, nullable=True)
    rejected_at = Column(DateTime, nullable=True)

    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Bumped by every conditional save (see PermitStore.save)
    version = Column(Integer, nullable=False, default=1)

    # Owned sub-records, in insertion order
    approval_history = relationship(
        "ApprovalEntry",
        back_populates="permit",
        cascade="all, delete-orphan",
        order_by="ApprovalEntry.id"
    )
    inspections = relationship(
        "Inspection",
        back_populates="permit",
        cascade="all, delete-orphan",
        order_by="Inspection.id"
    )
    incidents = relationship(
        "Incident",
        back_populates="permit",
        cascade="all, delete-orphan",
        order_by="Incident.id"
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_high_risk(self) -> bool:
        return self.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)


class ApprovalEntry(Base):
    """One approve/reject decision. Append-only."""
    __tablename__ = "work_permit_approvals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    permit_id = Column(String(36), ForeignKey("work_permits.id", ondelete="CASCADE"), nullable=False)
    actor_id = Column(String, nullable=False)
    decision = Column(SQLEnum(ApprovalDecision), nullable=False)
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    permit = relationship("WorkPermit", back_populates="approval_history")


class Inspection(Base):
    """
    Point-in-time compliance check against a permit.

    Invariants:
    - Never edited or removed once written
    """
    __tablename__ = "work_permit_inspections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    permit_id = Column(String(36), ForeignKey("work_permits.id", ondelete="CASCADE"), nullable=False)
    inspector = Column(String, nullable=False)
    type = Column(SQLEnum(InspectionType), nullable=False)
    findings = Column(JSON, nullable=False, default=list)
    status = Column(SQLEnum(InspectionResult), nullable=False)
    comments = Column(Text, nullable=True)
    recorded_by = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    permit = relationship("WorkPermit", back_populates="inspections")


class Incident(Base):
    """
    Adverse event recorded against a permit.

    Invariants:
    - Never edited or removed once written
    - Does not change the permit's status
    """
    __tablename__ = "work_permit_incidents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    permit_id = Column(String(36), ForeignKey("work_permits.id", ondelete="CASCADE"), nullable=False)
    description = Column(Text, nullable=False)
    severity = Column(SQLEnum(IncidentSeverity), nullable=False)
    injuries = Column(Text, nullable=True)
    damage = Column(Text, nullable=True)
    actions = Column(Text, nullable=True)
    reported_by = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    permit = relationship("WorkPermit", back_populates="incidents")


def _refuse_update(mapper, connection, target):
    raise ValueError(
        f"IMMUTABILITY VIOLATION: {type(target).__name__} {target.id} "
        f"is append-only and cannot be modified"
    )


for _record in (ApprovalEntry, Inspection, Incident):
    event.listen(_record, "before_update", _refuse_update)
