"""API routes for the work permit workflow."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from mallpermit.api.schemas import (
    WorkPermitCreate,
    WorkPermitUpdate,
    WorkPermitResponse,
    WorkPermitPage,
    WorkPermitStats,
    Pagination,
    InspectionCreate,
    IncidentCreate,
    ApproveRequest,
    ReasonBody,
    CompleteRequest,
    ErrorResponse,
)
from mallpermit.config import settings
from mallpermit.database import get_db
from mallpermit.models.enums import WorkPermitStatus, WorkPermitType, RiskLevel, Role
from mallpermit.services.notifications import BackgroundNotificationSink
from mallpermit.services.state_machine import WorkPermitEngine
from mallpermit.services.store import PermitStore

router = APIRouter()

notification_sink = BackgroundNotificationSink(max_workers=settings.notification_workers)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    403: {"model": ErrorResponse, "description": "Role not allowed for this operation"},
    404: {"model": ErrorResponse, "description": "Work permit not found"},
    409: {"model": ErrorResponse, "description": "Invalid transition or concurrent modification"},
}


class Actor(BaseModel):
    """Caller identity, resolved upstream and forwarded in headers."""
    id: str
    role: Role


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None)
) -> Actor:
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing caller identity")
    try:
        role = Role(x_actor_role.upper())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown role")
    return Actor(id=x_actor_id, role=role)


def get_sink():
    return notification_sink


def get_engine(db: Session = Depends(get_db), sink=Depends(get_sink)) -> WorkPermitEngine:
    return WorkPermitEngine(PermitStore(db), sink=sink)


def _response(permit) -> WorkPermitResponse:
    return WorkPermitResponse.model_validate(permit)


# Creation and queries
@router.post("/work-permits", response_model=WorkPermitResponse, status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
def create_work_permit(
    permit_data: WorkPermitCreate,
    actor: Actor = Depends(get_actor),
    engine: WorkPermitEngine = Depends(get_engine)
):
    """Create a new work permit in Pending Approval."""
    return _response(engine.create(permit_data, actor.id, actor.role))


@router.get("/work-permits", response_model=WorkPermitPage, responses=ERROR_RESPONSES)
def list_work_permits(
    page: int = 1,
    limit: Optional[int] = None,
    status: Optional[WorkPermitStatus] = None,
    type: Optional[WorkPermitType] = None,
    risk_level: Optional[RiskLevel] = None,
    tenant_id: Optional[str] = None,
    mall_id: Optional[str] = None,
    search: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    engine: WorkPermitEngine = Depends(get_engine)
):
    """List work permits, newest first, filtered and paginated."""
    filters = {
        "status": status,
        "type": type,
        "risk_level": risk_level,
        "tenant_id": tenant_id,
        "mall_id": mall_id,
        "search": search,
    }
    result = engine.list_permits(filters, page=page, limit=limit)
    return WorkPermitPage(
        items=[_response(p) for p in result["items"]],
        pagination=Pagination(**result["pagination"])
    )


@router.get("/work-permits/stats", response_model=WorkPermitStats)
def get_stats(actor: Actor = Depends(get_actor), engine: WorkPermitEngine = Depends(get_engine)):
    """Counts by status, type, risk level and category."""
    return engine.stats()


@router.get("/work-permits/overdue", response_model=List[WorkPermitResponse])
def list_overdue(actor: Actor = Depends(get_actor), engine: WorkPermitEngine = Depends(get_engine)):
    """Approved or active permits past their end date."""
    return [_response(p) for p in engine.overdue()]


@router.get("/work-permits/expiring", response_model=List[WorkPermitResponse], responses=ERROR_RESPONSES)
def list_expiring(
    days: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    engine: WorkPermitEngine = Depends(get_engine)
):
    """Approved or active permits ending within the next few days."""
    return [_response(p) for p in engine.expiring(days=days)]


@router.get("/work-permits/{permit_id}", response_model=WorkPermitResponse, responses=ERROR_RESPONSES)
def get_work_permit(permit_id: str, actor: Actor = Depends(get_actor), engine: WorkPermitEngine = Depends(get_engine)):
    """Get a specific work permit with its full history."""
    return _response(engine.get(permit_id))


@router.put("/work-permits/{permit_id}", response_model=WorkPermitResponse, responses=ERROR_RESPONSES)
def update_work_permit(
    permit_id: str,
    update_data: WorkPermitUpdate,
    actor: Actor = Depends(get_actor),
    engine: WorkPermitEngine = Depends(get_engine)
):
    """Edit a work permit. Only allowed while it is Pending Approval."""
    return _response(engine.update(permit_id, update_data, actor.id, actor.role))


# Transitions
@router.post("/work-permits/{permit_id}/approve", response_model=WorkPermitResponse, responses=ERROR_RESPONSES)
def approve_work_permit(
    permit_id: str,
    body: ApproveRequest = ApproveRequest(),
    actor: Actor = Depends(get_actor),
    engine: WorkPermitEngine = Depends(get_engine)
):
    return _response(engine.approve(permit_id, actor.id, actor.role, comments=body.comments))


@router.post("/work-permits/{permit_id}/reject", response_model=WorkPermitResponse, responses=ERROR_RESPONSES)
def reject_work_permit(
    permit_id: str,
    body: ReasonBody = ReasonBody(),
    actor: Actor = Depends(get_actor),
    engine: WorkPermitEngine = Depends(get_engine)
):
    """Reject a pending work permit. A reason is required."""
    return _response(engine.reject(permit_id, actor.id, actor.role, reason=body.reason))


@router.post("/work-permits/{permit_id}/activate", response_model=WorkPermitResponse, responses=ERROR_RESPONSES)
def activate_work_permit(permit_id: str, actor: Actor = Depends(get_actor), engine: WorkPermitEngine = Depends(get_engine)):
    return _response(engine.activate(permit_id, actor.id, actor.role))


@router.post("/work-permits/{permit_id}/complete", response_model=WorkPermitResponse, responses=ERROR_RESPONSES)
def complete_work_permit(
    permit_id: str,
    body: CompleteRequest = CompleteRequest(),
    actor: Actor = Depends(get_actor),
    engine: WorkPermitEngine = Depends(get_engine)
):
    return _response(engine.complete(permit_id, actor.id, actor.role, notes=body.notes))


@router.post("/work-permits/{permit_id}/cancel", response_model=WorkPermitResponse, responses=ERROR_RESPONSES)
def cancel_work_permit(
    permit_id: str,
    body: ReasonBody = ReasonBody(),
    actor: Actor = Depends(get_actor),
    engine: WorkPermitEngine = Depends(get_engine)
):
    """Cancel a non-terminal work permit. A reason is required."""
    return _response(engine.cancel(permit_id, actor.id, actor.role, reason=body.reason))


# Sub-records
@router.post("/work-permits/{permit_id}/inspections", response_model=WorkPermitResponse, status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
def add_inspection(
    permit_id: str,
    inspection_data: InspectionCreate,
    actor: Actor = Depends(get_actor),
    engine: WorkPermitEngine = Depends(get_engine)
):
    """
    Record an inspection.
    Side effect: a failed inspection raises the permit's risk to at least HIGH.
    """
    return _response(engine.add_inspection(permit_id, inspection_data, actor.id, actor.role))


@router.post("/work-permits/{permit_id}/incidents", response_model=WorkPermitResponse, status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
def add_incident(
    permit_id: str,
    incident_data: IncidentCreate,
    actor: Actor = Depends(get_actor),
    engine: WorkPermitEngine = Depends(get_engine)
):
    return _response(engine.add_incident(permit_id, incident_data, actor.id, actor.role))


@router.delete("/work-permits/{permit_id}", status_code=status.HTTP_204_NO_CONTENT, responses=ERROR_RESPONSES)
def delete_work_permit(permit_id: str, actor: Actor = Depends(get_actor), engine: WorkPermitEngine = Depends(get_engine)):
    """Permanently delete a work permit. Admin only."""
    engine.delete(permit_id, actor.id, actor.role)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
