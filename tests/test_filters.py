"""Tests for role-scoped row filters."""
from uuid import uuid4

import pytest

from civic_core.errors import AuthorizationError
from civic_core.filters import ALL_ROWS, IssueOrder, RowFilter, for_identity, for_issue
from civic_core.models import IssueStatus, UserRole
from civic_core.schemas import Identity


def make_identity(role: UserRole, is_admin: bool = False) -> Identity:
    return Identity(id=uuid4(), full_name="Someone", email=f"{uuid4().hex}@example.com", role=role, is_admin=is_admin)


class TestPredicates:

    def test_citizen_sees_own_reports(self):
        citizen = make_identity(UserRole.CITIZEN)
        assert for_identity(citizen) == RowFilter(field="reported_by", value=citizen.id)

    @pytest.mark.parametrize("role", [UserRole.WORKER, UserRole.OFFICER])
    def test_staff_see_assigned_issues(self, role):
        staff = make_identity(role)
        assert for_identity(staff) == RowFilter(field="assigned_to", value=staff.id)

    def test_admin_view_is_unfiltered(self):
        admin = make_identity(UserRole.OFFICER, is_admin=True)
        predicate = for_identity(admin, admin_view=True)
        assert predicate.is_unfiltered
        assert predicate.describe() == "all rows"

    @pytest.mark.parametrize("role", [UserRole.CITIZEN, UserRole.WORKER, UserRole.OFFICER])
    def test_admin_view_requires_admin_scope(self, role):
        with pytest.raises(AuthorizationError):
            for_identity(make_identity(role), admin_view=True)

    def test_matches_compares_json_and_native_values(self):
        user_id = uuid4()
        predicate = RowFilter(field="assigned_to", value=user_id)

        assert predicate.matches({"assigned_to": str(user_id)})
        assert predicate.matches({"assigned_to": user_id})
        assert not predicate.matches({"assigned_to": str(uuid4())})
        assert not predicate.matches({"assigned_to": None})
        assert not predicate.matches({})

    def test_unfiltered_matches_everything(self):
        assert ALL_ROWS.matches({"anything": 1})

    def test_issue_predicate(self):
        issue_id = uuid4()
        assert for_issue(issue_id).describe() == f"issue_id=eq.{issue_id}"


class TestQueryApplication:

    def test_apply_uses_same_predicate_as_feed(self, lifecycle, store, citizen, other_citizen, pothole):
        mine = lifecycle.submit_issue(citizen, pothole).issue
        lifecycle.submit_issue(other_citizen, pothole)

        records = store.query(for_identity(citizen))

        assert [r.id for r in records] == [mine.id]
        assert all(for_identity(citizen).matches(r.model_dump(mode="json")) for r in records)

    def test_order_by_status(self, lifecycle, store, citizen, admin, pothole):
        first = lifecycle.submit_issue(citizen, pothole).issue
        second = lifecycle.submit_issue(citizen, pothole).issue
        lifecycle.transition(first.id, IssueStatus.IN_PROGRESS, admin)

        records = store.query(ALL_ROWS, IssueOrder.STATUS)

        assert [r.id for r in records] == [first.id, second.id]

    def test_order_newest_first(self, lifecycle, store, citizen, pothole):
        first = lifecycle.submit_issue(citizen, pothole).issue
        second = lifecycle.submit_issue(citizen, pothole).issue

        assert [r.id for r in store.query(ALL_ROWS)] == [second.id, first.id]
