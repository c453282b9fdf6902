"""
State machine that enforces the work permit lifecycle.

This is the core enforcement mechanism - every status change, inspection and
incident MUST go through WorkPermitEngine. The engine checks role, payload,
current status and risk rules before touching a permit. It persists through
PermitStore and announces each successful transition to a notification sink.
"""
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError

from mallpermit.api.schemas import (
    WorkPermitCreate,
    WorkPermitUpdate,
    WorkPermitResponse,
    InspectionCreate,
    IncidentCreate,
    ApproveRequest,
    ReasonRequest,
    CompleteRequest,
    PermitFilters,
)
from mallpermit.config import settings
from mallpermit.errors import (
    ValidationError,
    ForbiddenError,
    NotFoundError,
    InvalidTransitionError,
)
from mallpermit.models.domain import (
    WorkPermit,
    ApprovalEntry,
    Inspection,
    Incident,
    generate_permit_number,
)
from mallpermit.models.enums import (
    WorkPermitStatus,
    WorkPermitType,
    RiskLevel,
    ApprovalDecision,
    InspectionResult,
    NotificationEvent,
    PermitOperation,
    CRITICAL_RISK_TYPES,
    DEFAULT_RISK_BY_TYPE,
    TERMINAL_STATUSES,
)
from mallpermit.services.authorization import RoleGuard
from mallpermit.services.store import PermitStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """One edge set of the lifecycle: allowed sources, target status, event tag."""
    operation: PermitOperation
    sources: FrozenSet[WorkPermitStatus]
    target: WorkPermitStatus
    event: NotificationEvent


_NON_TERMINAL = frozenset(WorkPermitStatus) - TERMINAL_STATUSES

TRANSITIONS: Dict[PermitOperation, Transition] = {
    PermitOperation.APPROVE: Transition(
        PermitOperation.APPROVE,
        frozenset({WorkPermitStatus.PENDING_APPROVAL}),
        WorkPermitStatus.APPROVED,
        NotificationEvent.APPROVED,
    ),
    PermitOperation.REJECT: Transition(
        PermitOperation.REJECT,
        frozenset({WorkPermitStatus.PENDING_APPROVAL}),
        WorkPermitStatus.REJECTED,
        NotificationEvent.REJECTED,
    ),
    PermitOperation.ACTIVATE: Transition(
        PermitOperation.ACTIVATE,
        frozenset({WorkPermitStatus.APPROVED}),
        WorkPermitStatus.ACTIVE,
        NotificationEvent.ACTIVATED,
    ),
    PermitOperation.COMPLETE: Transition(
        PermitOperation.COMPLETE,
        frozenset({WorkPermitStatus.ACTIVE}),
        WorkPermitStatus.COMPLETED,
        NotificationEvent.COMPLETED,
    ),
    PermitOperation.CANCEL: Transition(
        PermitOperation.CANCEL,
        _NON_TERMINAL,
        WorkPermitStatus.CANCELLED,
        NotificationEvent.CANCELLED,
    ),
}


# Approver-facing safety detail, editable only while pending approval
SAFETY_DETAIL_FIELDS = (
    "detailed_description",
    "work_schedule",
    "personnel",
    "equipment",
    "safety_measures",
    "risk_assessment",
    "method_statement",
    "compliance",
    "documents",
)


def check_risk_for_type(permit_type: WorkPermitType, risk_level: RiskLevel) -> None:
    """CRITICAL risk is only allowed for hot work, high-level and special permits."""
    if risk_level == RiskLevel.CRITICAL and permit_type not in CRITICAL_RISK_TYPES:
        raise ValidationError(
            f"A {permit_type.value} permit cannot carry {RiskLevel.CRITICAL.value} risk"
        )


class WorkPermitEngine:
    """Enforces state transition invariants and business rules for work permits."""

    def __init__(self, store: PermitStore, guard: Optional[RoleGuard] = None, sink=None):
        self.store = store
        self.guard = guard or RoleGuard()
        self.sink = sink

    # Creation and queries

    def create(self, payload, actor_id: str, role) -> WorkPermit:
        """
        Create a permit in Pending Approval.

        Risk defaults from the permit type when the caller gives none.
        """
        self._authorize(role, PermitOperation.CREATE)
        data = self._parse(WorkPermitCreate, payload)
        risk_level = data.risk_level or DEFAULT_RISK_BY_TYPE[data.type]
        check_risk_for_type(data.type, risk_level)

        attempts = max(settings.permit_number_attempts, 1)
        for attempt in range(1, attempts + 1):
            now = datetime.utcnow()
            permit = WorkPermit(
                id=str(uuid.uuid4()),
                permit_number=generate_permit_number(),
                mall_id=data.mall_id,
                tenant_id=data.tenant_id,
                contractor_id=data.contractor_id,
                type=data.type,
                category=data.category,
                risk_level=risk_level,
                status=WorkPermitStatus.PENDING_APPROVAL,
                description=data.description,
                location=data.location,
                start_date=data.start_date,
                end_date=data.end_date,
                **{field: getattr(data, field) for field in SAFETY_DETAIL_FIELDS},
                created_by=actor_id,
                created_at=now,
                updated_at=now
            )
            try:
                self.store.add(permit)
                break
            except IntegrityError:
                if attempt == attempts:
                    raise
                logger.warning(
                    "Permit number collision on %s, retrying (attempt %d)",
                    permit.permit_number, attempt
                )

        logger.info(
            "Work permit %s created by %s (type=%s, risk=%s, mall=%s)",
            permit.permit_number, actor_id, permit.type.value,
            permit.risk_level.value, permit.mall_id
        )
        self._notify(permit, NotificationEvent.CREATED)
        return permit

    def get(self, permit_id: str) -> WorkPermit:
        return self._load(permit_id)

    def update(self, permit_id: str, payload, actor_id: str, role) -> WorkPermit:
        """Edit descriptive, scheduling and safety detail fields. Only while Pending Approval."""
        self._authorize(role, PermitOperation.UPDATE)
        data = self._parse(WorkPermitUpdate, payload)
        permit = self._load(permit_id)
        if permit.status != WorkPermitStatus.PENDING_APPROVAL:
            self._refuse(permit, PermitOperation.UPDATE, actor_id)

        changes = data.model_dump(exclude_unset=True)
        for field in ("category", "description", "start_date", "end_date"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be cleared")
        start_date = changes.get("start_date") or permit.start_date
        end_date = changes.get("end_date") or permit.end_date
        if end_date <= start_date:
            raise ValidationError("end_date must be after start_date")

        for field, value in changes.items():
            setattr(permit, field, value)
        permit.updated_at = datetime.utcnow()
        self.store.save(permit, WorkPermitStatus.PENDING_APPROVAL)

        logger.info(
            "Work permit %s updated by %s (fields=%s)",
            permit.permit_number, actor_id, sorted(changes)
        )
        return permit

    def list_permits(self, filters=None, page: int = 1, limit: Optional[int] = None) -> dict:
        """
        One page of permits, newest first.

        Filters combine with AND. limit is clamped to the configured maximum.
        """
        criteria = self._parse(PermitFilters, filters or {})
        if limit is None:
            limit = settings.default_page_size
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive integers")
        limit = min(limit, settings.max_page_size)

        items, total = self.store.query(**criteria.model_dump(), page=page, limit=limit)
        return {
            "items": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }

    def stats(self) -> dict:
        """Counts only - sub-record histories are never loaded."""
        count_by_status = {s.value: 0 for s in WorkPermitStatus}
        count_by_status.update(self.store.count_by(WorkPermit.status))
        return {
            "total": self.store.count(),
            "count_by_status": count_by_status,
            "by_type": self.store.count_by(WorkPermit.type),
            "by_risk_level": self.store.count_by(WorkPermit.risk_level),
            "by_category": self.store.count_by(WorkPermit.category),
        }

    def overdue(self, now: Optional[datetime] = None) -> List[WorkPermit]:
        """Approved or active permits whose scheduled window has already ended."""
        now = now or datetime.utcnow()
        return self.store.window_query(
            [WorkPermitStatus.APPROVED, WorkPermitStatus.ACTIVE],
            end_before=now
        )

    def expiring(self, days: Optional[int] = None, now: Optional[datetime] = None) -> List[WorkPermit]:
        """Approved or active permits whose window ends within the next `days` days."""
        if days is None:
            days = settings.expiring_window_days
        if days < 1:
            raise ValidationError("days must be a positive integer")
        now = now or datetime.utcnow()
        return self.store.window_query(
            [WorkPermitStatus.APPROVED, WorkPermitStatus.ACTIVE],
            end_after=now,
            end_before=now + timedelta(days=days)
        )

    # Transitions

    def approve(self, permit_id: str, actor_id: str, role, comments: Optional[str] = None) -> WorkPermit:
        self._authorize(role, PermitOperation.APPROVE)
        data = self._parse(ApproveRequest, {"comments": comments})

        def apply(permit, now):
            permit.approval_history.append(ApprovalEntry(
                actor_id=actor_id,
                decision=ApprovalDecision.APPROVE,
                comments=data.comments,
                created_at=now
            ))

        return self._transition(permit_id, actor_id, PermitOperation.APPROVE, apply)

    def reject(self, permit_id: str, actor_id: str, role, reason: Optional[str] = None) -> WorkPermit:
        self._authorize(role, PermitOperation.REJECT)
        data = self._parse(ReasonRequest, {"reason": reason})

        def apply(permit, now):
            permit.rejection_reason = data.reason
            permit.rejected_at = now
            permit.approval_history.append(ApprovalEntry(
                actor_id=actor_id,
                decision=ApprovalDecision.REJECT,
                comments=data.reason,
                created_at=now
            ))

        return self._transition(permit_id, actor_id, PermitOperation.REJECT, apply)

    def activate(self, permit_id: str, actor_id: str, role) -> WorkPermit:
        self._authorize(role, PermitOperation.ACTIVATE)

        def apply(permit, now):
            permit.activated_at = now

        return self._transition(permit_id, actor_id, PermitOperation.ACTIVATE, apply)

    def complete(self, permit_id: str, actor_id: str, role, notes: Optional[str] = None) -> WorkPermit:
        self._authorize(role, PermitOperation.COMPLETE)
        data = self._parse(CompleteRequest, {"notes": notes})

        def apply(permit, now):
            permit.completion_notes = data.notes
            permit.completed_at = now
            permit.completed_by = actor_id

        return self._transition(permit_id, actor_id, PermitOperation.COMPLETE, apply)

    def cancel(self, permit_id: str, actor_id: str, role, reason: Optional[str] = None) -> WorkPermit:
        self._authorize(role, PermitOperation.CANCEL)
        data = self._parse(ReasonRequest, {"reason": reason})

        def apply(permit, now):
            permit.cancellation_reason = data.reason
            permit.cancelled_at = now
            permit.cancelled_by = actor_id

        return self._transition(permit_id, actor_id, PermitOperation.CANCEL, apply)

    # Sub-records

    def add_inspection(self, permit_id: str, payload, actor_id: str, role) -> WorkPermit:
        """
        Record an inspection against a non-terminal permit.

        Business rules:
        - An explicit risk_level in the payload replaces the permit's risk
        - A failed inspection raises risk to at least HIGH (never lowers it)
        - Status is unchanged and no notification is sent
        """
        self._authorize(role, PermitOperation.ADD_INSPECTION)
        data = self._parse(InspectionCreate, payload)
        permit = self._load(permit_id)
        if permit.is_terminal:
            self._refuse(permit, PermitOperation.ADD_INSPECTION, actor_id)

        previous_risk = permit.risk_level
        risk_level = data.risk_level or previous_risk
        if data.status == InspectionResult.FAIL and risk_level.rank < RiskLevel.HIGH.rank:
            risk_level = RiskLevel.HIGH
        check_risk_for_type(permit.type, risk_level)

        now = datetime.utcnow()
        permit.inspections.append(Inspection(
            inspector=data.inspector,
            type=data.type,
            findings=list(data.findings),
            status=data.status,
            comments=data.comments,
            recorded_by=actor_id,
            created_at=now
        ))
        permit.risk_level = risk_level
        permit.updated_at = now
        self.store.save(permit, permit.status)

        logger.info(
            "Inspection (%s, %s) added to work permit %s by %s",
            data.type.value, data.status.value, permit.permit_number, actor_id
        )
        if risk_level != previous_risk:
            logger.info(
                "Work permit %s risk changed %s -> %s",
                permit.permit_number, previous_risk.value, risk_level.value
            )
        return permit

    def add_incident(self, permit_id: str, payload, actor_id: str, role) -> WorkPermit:
        """
        Record an incident against a non-terminal permit.

        Incidents always notify. A critical incident does not cancel the
        permit; that stays a human decision.
        """
        self._authorize(role, PermitOperation.ADD_INCIDENT)
        data = self._parse(IncidentCreate, payload)
        permit = self._load(permit_id)
        if permit.is_terminal:
            self._refuse(permit, PermitOperation.ADD_INCIDENT, actor_id)

        now = datetime.utcnow()
        permit.incidents.append(Incident(
            description=data.description,
            severity=data.severity,
            injuries=data.injuries,
            damage=data.damage,
            actions=data.actions,
            reported_by=actor_id,
            created_at=now
        ))
        permit.updated_at = now
        self.store.save(permit, permit.status)

        logger.info(
            "Incident (%s) added to work permit %s by %s",
            data.severity.value, permit.permit_number, actor_id
        )
        self._notify(permit, NotificationEvent.INCIDENT)
        return permit

    def delete(self, permit_id: str, actor_id: str, role) -> None:
        """Hard delete, bypassing the state machine. Irreversible."""
        self._authorize(role, PermitOperation.DELETE)
        if not self.store.delete(permit_id):
            raise NotFoundError(f"Work permit {permit_id} not found")
        logger.warning("Work permit %s permanently deleted by %s", permit_id, actor_id)

    # Internals

    def _transition(
        self,
        permit_id: str,
        actor_id: str,
        operation: PermitOperation,
        apply: Callable[[WorkPermit, datetime], None]
    ) -> WorkPermit:
        """Load, check the source status, apply, then save. The caller checks the role."""
        transition = TRANSITIONS[operation]
        permit = self._load(permit_id)

        previous = permit.status
        if previous not in transition.sources:
            self._refuse(permit, operation, actor_id)

        now = datetime.utcnow()
        apply(permit, now)
        permit.status = transition.target
        permit.updated_at = now
        self.store.save(permit, previous)

        logger.info(
            "Work permit %s %s -> %s by %s",
            permit.permit_number, previous.value, transition.target.value, actor_id
        )
        self._notify(permit, transition.event)
        return permit

    def _authorize(self, role, operation: PermitOperation) -> None:
        if not self.guard.allows(role, operation):
            role_name = getattr(role, "value", role)
            raise ForbiddenError(f"Role {role_name} may not {operation.value} work permits")

    def _load(self, permit_id: str) -> WorkPermit:
        permit = self.store.load(permit_id)
        if permit is None:
            raise NotFoundError(f"Work permit {permit_id} not found")
        return permit

    def _refuse(self, permit: WorkPermit, operation: PermitOperation, actor_id: str) -> None:
        logger.info(
            "Refused %s on work permit %s in status %s (actor=%s)",
            operation.value, permit.permit_number, permit.status.value, actor_id
        )
        raise InvalidTransitionError(permit.status.value, operation.value)

    @staticmethod
    def _parse(schema, payload):
        if isinstance(payload, schema):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(exclude_unset=True)
        try:
            return schema.model_validate(payload)
        except PydanticValidationError as e:
            errors = [
                {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
                for err in e.errors()
            ]
            raise ValidationError(f"Invalid {schema.__name__} payload", errors=errors)

    @staticmethod
    def snapshot(permit: WorkPermit) -> dict:
        """JSON-ready copy of a permit, safe to hand to another thread."""
        return WorkPermitResponse.model_validate(permit).model_dump(mode="json")

    def _notify(self, permit: WorkPermit, event: NotificationEvent) -> None:
        if self.sink is None:
            return
        try:
            self.sink.dispatch(self.snapshot(permit), event)
        except Exception:
            # The change is already committed; a sink failure must not undo it
            logger.exception(
                "Failed to dispatch %s notification for work permit %s",
                event.value, permit.id
            )
