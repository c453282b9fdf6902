"""Pydantic schemas for request/response validation."""
from datetime import datetime, timezone
from typing import Any, Optional, List, Dict
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from mallpermit.models.enums import (
    WorkPermitStatus,
    WorkPermitType,
    RiskLevel,
    WorkCategory,
    ApprovalDecision,
    InspectionType,
    InspectionResult,
    IncidentSeverity,
)


def _not_blank(value: Optional[str]) -> Optional[str]:
    if value is not None and not value.strip():
        raise ValueError("must not be blank")
    return value


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# WorkPermit schemas
class WorkPermitCreate(BaseModel):
    mall_id: str = Field(..., min_length=1)
    tenant_id: Optional[str] = None
    contractor_id: Optional[str] = None
    type: WorkPermitType = WorkPermitType.GENERAL
    category: WorkCategory = WorkCategory.OTHER
    risk_level: Optional[RiskLevel] = None  # Derived from type when omitted
    description: str = Field(..., min_length=1)
    location: Optional[str] = None
    start_date: datetime
    end_date: datetime
    detailed_description: Optional[str] = None
    work_schedule: Optional[Dict[str, Any]] = None
    personnel: Optional[List[Dict[str, Any]]] = None
    equipment: Optional[List[str]] = None
    safety_measures: Optional[List[str]] = None
    risk_assessment: Optional[Dict[str, Any]] = None
    method_statement: Optional[Dict[str, Any]] = None
    compliance: Optional[Dict[str, Any]] = None
    documents: Optional[List[Dict[str, Any]]] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def dates_as_naive_utc(cls, value):
        return _naive_utc(value)

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, value):
        return _not_blank(value)

    @model_validator(mode="after")
    def check_window(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class WorkPermitUpdate(BaseModel):
    """Fields editable while a permit is pending approval."""
    contractor_id: Optional[str] = None
    category: Optional[WorkCategory] = None
    description: Optional[str] = Field(None, min_length=1)
    location: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    detailed_description: Optional[str] = None
    work_schedule: Optional[Dict[str, Any]] = None
    personnel: Optional[List[Dict[str, Any]]] = None
    equipment: Optional[List[str]] = None
    safety_measures: Optional[List[str]] = None
    risk_assessment: Optional[Dict[str, Any]] = None
    method_statement: Optional[Dict[str, Any]] = None
    compliance: Optional[Dict[str, Any]] = None
    documents: Optional[List[Dict[str, Any]]] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def dates_as_naive_utc(cls, value):
        return _naive_utc(value)

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, value):
        return _not_blank(value)


class ApprovalEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    actor_id: str
    decision: ApprovalDecision
    comments: Optional[str]
    created_at: datetime


# Inspection schemas
class InspectionCreate(BaseModel):
    inspector: str = Field(..., min_length=1)
    type: InspectionType
    findings: List[str] = []
    status: InspectionResult
    comments: Optional[str] = None
    risk_level: Optional[RiskLevel] = None  # Inspector's reassessment, if any


class InspectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    inspector: str
    type: InspectionType
    findings: List[str]
    status: InspectionResult
    comments: Optional[str]
    recorded_by: str
    created_at: datetime


# Incident schemas
class IncidentCreate(BaseModel):
    description: str = Field(..., min_length=1)
    severity: IncidentSeverity
    injuries: Optional[str] = None
    damage: Optional[str] = None
    actions: Optional[str] = None

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, value):
        return _not_blank(value)


class IncidentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    description: str
    severity: IncidentSeverity
    injuries: Optional[str]
    damage: Optional[str]
    actions: Optional[str]
    reported_by: str
    created_at: datetime


# Transition payloads
class ApproveRequest(BaseModel):
    comments: Optional[str] = None


class ReasonRequest(BaseModel):
    """Reject and cancel both require a non-empty reason."""
    reason: str = Field(..., min_length=1)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, value):
        return _not_blank(value)


class ReasonBody(BaseModel):
    """Reject/cancel request body. The engine validates the reason after its role check."""
    reason: Optional[str] = None


class CompleteRequest(BaseModel):
    notes: Optional[str] = None


class WorkPermitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    permit_number: str
    mall_id: str
    tenant_id: Optional[str]
    contractor_id: Optional[str]
    type: WorkPermitType
    category: WorkCategory
    risk_level: RiskLevel
    status: WorkPermitStatus
    description: str
    location: Optional[str]
    start_date: datetime
    end_date: datetime
    detailed_description: Optional[str]
    work_schedule: Optional[Dict[str, Any]]
    personnel: Optional[List[Dict[str, Any]]]
    equipment: Optional[List[str]]
    safety_measures: Optional[List[str]]
    risk_assessment: Optional[Dict[str, Any]]
    method_statement: Optional[Dict[str, Any]]
    compliance: Optional[Dict[str, Any]]
    documents: Optional[List[Dict[str, Any]]]
    approval_history: List[ApprovalEntryResponse]
    inspections: List[InspectionResponse]
    incidents: List[IncidentResponse]
    completion_notes: Optional[str]
    cancellation_reason: Optional[str]
    rejection_reason: Optional[str]
    activated_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    rejected_at: Optional[datetime]
    created_by: str
    created_at: datetime
    updated_at: datetime
    version: int


# Listing
class PermitFilters(BaseModel):
    """Conjunctive filters for listing permits."""
    status: Optional[WorkPermitStatus] = None
    type: Optional[WorkPermitType] = None
    risk_level: Optional[RiskLevel] = None
    tenant_id: Optional[str] = None
    mall_id: Optional[str] = None
    search: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class WorkPermitPage(BaseModel):
    items: List[WorkPermitResponse]
    pagination: Pagination


class WorkPermitStats(BaseModel):
    total: int
    count_by_status: Dict[str, int]
    by_type: Dict[str, int]
    by_risk_level: Dict[str, int]
    by_category: Dict[str, int]


# Error response
class ErrorResponse(BaseModel):
    """Response body for every engine error."""
    message: str
    errors: List[dict] = []
