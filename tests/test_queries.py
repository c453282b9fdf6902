"""Tests for listing, search, statistics and the schedule queries."""
from datetime import datetime, timedelta

import pytest

from mallpermit.errors import ValidationError
from mallpermit.models.enums import WorkPermitStatus, WorkPermitType, Role


class TestListing:

    def test_filters_combine(self, permit_engine, make_permit):
        make_permit(type="HOT_WORK", tenant_id="tenant_1")
        make_permit(type="HOT_WORK", tenant_id="tenant_2")
        make_permit(type="GENERAL", tenant_id="tenant_1")
        make_permit(type="HOT_WORK", tenant_id="tenant_1", mall_id="mall_2")

        result = permit_engine.list_permits({
            "type": "HOT_WORK",
            "tenant_id": "tenant_1",
            "mall_id": "mall_1",
        })

        assert result["pagination"]["total"] == 1
        permit = result["items"][0]
        assert permit.type == WorkPermitType.HOT_WORK
        assert permit.tenant_id == "tenant_1"
        assert permit.mall_id == "mall_1"

    def test_status_and_risk_filters(self, permit_engine, make_permit, drive_to):
        drive_to(make_permit(type="HOT_WORK"), WorkPermitStatus.APPROVED)
        drive_to(make_permit(type="GENERAL"), WorkPermitStatus.APPROVED)
        make_permit(type="HOT_WORK")

        result = permit_engine.list_permits({"status": "APPROVED", "risk_level": "HIGH"})

        assert result["pagination"]["total"] == 1
        assert result["items"][0].status == WorkPermitStatus.APPROVED

    def test_search_is_case_insensitive(self, permit_engine, make_permit):
        target = make_permit(description="Install new SIGNAGE above entrance")
        make_permit(description="Paint storeroom")

        by_text = permit_engine.list_permits({"search": "signage"})
        by_number = permit_engine.list_permits({"search": target.permit_number.lower()})

        assert [p.id for p in by_text["items"]] == [target.id]
        assert [p.id for p in by_number["items"]] == [target.id]

    def test_search_treats_wildcards_literally(self, permit_engine, make_permit):
        target = make_permit(description="Repaint 100% of the shopfront")
        make_permit(description="Repaint 100 square metres")

        result = permit_engine.list_permits({"search": "100%"})

        assert [p.id for p in result["items"]] == [target.id]

    def test_pagination(self, permit_engine, make_permit):
        for _ in range(5):
            make_permit()

        first = permit_engine.list_permits(page=1, limit=2)
        last = permit_engine.list_permits(page=3, limit=2)
        beyond = permit_engine.list_permits(page=4, limit=2)

        assert first["pagination"] == {"page": 1, "limit": 2, "total": 5, "pages": 3}
        assert len(first["items"]) == 2
        assert len(last["items"]) == 1
        assert beyond["items"] == []

    def test_limit_is_clamped(self, permit_engine, make_permit):
        make_permit()

        result = permit_engine.list_permits(limit=1000)

        assert result["pagination"]["limit"] == 100

    @pytest.mark.parametrize("page,limit", [(0, 10), (-1, 10), (1, 0)])
    def test_invalid_paging(self, permit_engine, page, limit):
        with pytest.raises(ValidationError):
            permit_engine.list_permits(page=page, limit=limit)

    def test_empty_result(self, permit_engine):
        result = permit_engine.list_permits()

        assert result["items"] == []
        assert result["pagination"]["total"] == 0
        assert result["pagination"]["pages"] == 0

    def test_unknown_filter_value(self, permit_engine):
        with pytest.raises(ValidationError):
            permit_engine.list_permits({"status": "ON_HOLD"})

    def test_newest_first_with_stable_ties(self, permit_engine, make_permit, db_session):
        permits = [make_permit() for _ in range(4)]
        stamp = datetime(2030, 1, 1, 12, 0)
        permits[0].created_at = stamp
        permits[1].created_at = stamp
        permits[2].created_at = stamp + timedelta(hours=1)
        permits[3].created_at = stamp - timedelta(hours=1)
        db_session.commit()

        expected = sorted(permits, key=lambda p: (p.created_at, p.id), reverse=True)
        result = permit_engine.list_permits()

        assert [p.id for p in result["items"]] == [p.id for p in expected]


class TestStats:

    def test_counts(self, permit_engine, make_permit, drive_to):
        drive_to(make_permit(type="HOT_WORK"), WorkPermitStatus.ACTIVE)
        drive_to(make_permit(type="GENERAL"), WorkPermitStatus.REJECTED)
        make_permit(type="GENERAL", category="PLUMBING")

        stats = permit_engine.stats()

        assert stats["total"] == 3
        assert stats["count_by_status"] == {
            "PENDING_APPROVAL": 1,
            "APPROVED": 0,
            "ACTIVE": 1,
            "COMPLETED": 0,
            "REJECTED": 1,
            "CANCELLED": 0,
        }
        assert stats["by_type"] == {"HOT_WORK": 1, "GENERAL": 2}
        assert stats["by_risk_level"] == {"HIGH": 1, "LOW": 2}
        assert stats["by_category"] == {"MAINTENANCE": 2, "PLUMBING": 1}

    def test_empty_store(self, permit_engine):
        stats = permit_engine.stats()

        assert stats["total"] == 0
        assert set(stats["count_by_status"].values()) == {0}
        assert stats["by_type"] == {}


class TestScheduleQueries:
    """Overdue and expiring only look at Approved and Active permits."""

    @pytest.fixture
    def scheduled(self, permit_engine, make_permit, drive_to):
        def _scheduled(start, days, target):
            permit = make_permit(
                start_date=start.isoformat(),
                end_date=(start + timedelta(days=days)).isoformat()
            )
            return drive_to(permit, target)
        return _scheduled

    def test_overdue(self, permit_engine, scheduled):
        start = datetime(2030, 1, 1)
        approved = scheduled(start, 4, WorkPermitStatus.APPROVED)
        active = scheduled(start, 2, WorkPermitStatus.ACTIVE)
        scheduled(start, 2, WorkPermitStatus.PENDING_APPROVAL)
        scheduled(start, 2, WorkPermitStatus.COMPLETED)
        scheduled(start, 30, WorkPermitStatus.ACTIVE)

        result = permit_engine.overdue(now=datetime(2030, 1, 6))

        assert [p.id for p in result] == [active.id, approved.id]

    def test_expiring(self, permit_engine, scheduled):
        start = datetime(2030, 1, 1)
        soon = scheduled(start, 4, WorkPermitStatus.ACTIVE)
        scheduled(start, 10, WorkPermitStatus.APPROVED)
        scheduled(start, 1, WorkPermitStatus.APPROVED)
        scheduled(start, 4, WorkPermitStatus.CANCELLED)

        result = permit_engine.expiring(days=3, now=datetime(2030, 1, 3))

        assert [p.id for p in result] == [soon.id]

    def test_expiring_uses_configured_default(self, permit_engine, scheduled):
        start = datetime(2030, 1, 1)
        permit = scheduled(start, 3, WorkPermitStatus.APPROVED)

        result = permit_engine.expiring(now=datetime(2030, 1, 1, 12, 0))

        assert [p.id for p in result] == [permit.id]

    @pytest.mark.parametrize("days", [0, -2])
    def test_expiring_needs_positive_days(self, permit_engine, days):
        with pytest.raises(ValidationError):
            permit_engine.expiring(days=days)

    def test_queries_do_not_mutate(self, permit_engine, scheduled, sink):
        permit = scheduled(datetime(2030, 1, 1), 1, WorkPermitStatus.ACTIVE)
        sink.events.clear()

        permit_engine.overdue(now=datetime(2031, 1, 1))

        assert permit_engine.get(permit.id).status == WorkPermitStatus.ACTIVE
        assert sink.events == []
