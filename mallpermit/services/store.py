"""
SQLAlchemy-backed store for work permits.

The engine only talks to permits through this class. Writes to an existing
permit are conditional on the status and version the engine read, so two
callers racing on the same permit cannot both succeed.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from mallpermit.errors import ConflictError
from mallpermit.models.domain import WorkPermit
from mallpermit.models.enums import WorkPermitStatus


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PermitStore:
    """Loads, saves and queries WorkPermit aggregates."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, permit_id: str) -> Optional[WorkPermit]:
        # Always re-read: the engine validates against current database state
        return self.db.get(WorkPermit, permit_id, populate_existing=True)

    def add(self, permit: WorkPermit) -> WorkPermit:
        """Insert a new permit. IntegrityError propagates after rollback."""
        self.db.add(permit)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(permit)
        return permit

    def save(self, permit: WorkPermit, expected_status: WorkPermitStatus) -> WorkPermit:
        """
        Persist changes to a loaded permit.

        Compare-and-swap on status and version: the row is only written if
        its status is still expected_status and nobody has saved it since it
        was loaded. Otherwise nothing is persisted and ConflictError is raised.
        """
        table = WorkPermit.__table__
        read_version = permit.version
        with self.db.no_autoflush:
            result = self.db.execute(
                update(table)
                .where(
                    table.c.id == permit.id,
                    table.c.status == expected_status,
                    table.c.version == read_version
                )
                .values(status=permit.status, updated_at=permit.updated_at, version=read_version + 1)
            )
        if result.rowcount != 1:
            self.db.rollback()
            raise ConflictError(
                f"Work permit {permit.id} was modified concurrently "
                f"(expected status {expected_status.value}, version {read_version})"
            )
        permit.version = read_version + 1
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return permit

    def delete(self, permit_id: str) -> bool:
        permit = self.db.get(WorkPermit, permit_id)
        if permit is None:
            return False
        self.db.delete(permit)
        self.db.commit()
        return True

    def query(
        self,
        status: Optional[WorkPermitStatus] = None,
        type=None,
        risk_level=None,
        tenant_id: Optional[str] = None,
        mall_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[WorkPermit], int]:
        """Return one page of permits matching every given filter, plus the total."""
        q = self.db.query(WorkPermit)
        if status is not None:
            q = q.filter(WorkPermit.status == status)
        if type is not None:
            q = q.filter(WorkPermit.type == type)
        if risk_level is not None:
            q = q.filter(WorkPermit.risk_level == risk_level)
        if tenant_id is not None:
            q = q.filter(WorkPermit.tenant_id == tenant_id)
        if mall_id is not None:
            q = q.filter(WorkPermit.mall_id == mall_id)
        if search:
            pattern = f"%{_escape_like(search)}%"
            q = q.filter(or_(
                WorkPermit.permit_number.ilike(pattern, escape="\\"),
                WorkPermit.description.ilike(pattern, escape="\\")
            ))

        total = q.count()
        items = (
            q.order_by(WorkPermit.created_at.desc(), WorkPermit.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def window_query(
        self,
        statuses: Iterable[WorkPermitStatus],
        end_after: Optional[datetime] = None,
        end_before: Optional[datetime] = None
    ) -> List[WorkPermit]:
        """Permits in the given statuses whose end_date falls in (end_after, end_before]."""
        q = self.db.query(WorkPermit).filter(WorkPermit.status.in_(list(statuses)))
        if end_after is not None:
            q = q.filter(WorkPermit.end_date > end_after)
        if end_before is not None:
            q = q.filter(WorkPermit.end_date <= end_before)
        return q.order_by(WorkPermit.end_date.asc(), WorkPermit.id.asc()).all()

    def count(self) -> int:
        return self.db.query(func.count(WorkPermit.id)).scalar()

    def count_by(self, column) -> Dict[str, int]:
        """COUNT(*) grouped by a single WorkPermit column."""
        rows = (
            self.db.query(column, func.count(WorkPermit.id))
            .group_by(column)
            .all()
        )
        return {
            (key.value if hasattr(key, "value") else str(key)): count
            for key, count in rows
        }
