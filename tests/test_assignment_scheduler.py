import itertools
from datetime import date, datetime, timedelta, timezone

import pytest

from route_planner.exceptions import (
    DuplicateActiveAssignmentError,
    InvalidStatusTransitionError,
    NoActiveAssignmentError,
    RouteValidationError,
)
from route_planner.models.domain import (
    AssignmentStatus,
    Outlet,
    Recurrence,
    RecurrencePattern,
    RouteStatus,
    TeamAssignee,
    UserAssignee,
)
from route_planner.persistence.base import OUTLETS, ROUTE_ASSIGNMENTS
from route_planner.persistence.memory import InMemoryRecordStore
from route_planner.services.assignments.recurrence import next_occurrence, week_start
from route_planner.services.assignments.scheduler import AssignmentScheduler
from route_planner.services.routes.service import RouteService
from route_planner.services.routing.optimizer import RouteOptimizer
from route_planner.services.routing.providers import HaversineProvider

ORG = "org-1"
NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
MONDAY = date(2024, 3, 4)


class RacingStore(InMemoryRecordStore):
    """Lets a competing assignment land between the duplicate check and our insert."""

    def __init__(self):
        super().__init__()
        self.competitor = None

    def insert(self, table, organization_id, records):
        if table == ROUTE_ASSIGNMENTS and self.competitor is not None:
            competitor, self.competitor = self.competitor, None
            super().insert(table, organization_id, [competitor])
        return super().insert(table, organization_id, records)


class BrokenInsertStore(InMemoryRecordStore):
    """Refuses new assignment rows once armed, like a connection dropped mid-transfer."""

    def __init__(self):
        super().__init__()
        self.broken = False

    def insert(self, table, organization_id, records):
        if table == ROUTE_ASSIGNMENTS and self.broken:
            raise ConnectionError("connection reset")
        return super().insert(table, organization_id, records)


def _ticking_clock():
    ticks = itertools.count()
    return lambda: NOW + timedelta(seconds=next(ticks))


def _scheduler(store):
    clock = _ticking_clock()
    routes = RouteService(store, RouteOptimizer(HaversineProvider()), clock=clock)
    return AssignmentScheduler(store, routes, clock=clock)


def _route(store, scheduler, name="Morning run"):
    store.insert(
        OUTLETS,
        ORG,
        [Outlet(id=f"{name}-outlet", name="Kiosk", address="", organization_id=ORG, latitude=21.5, longitude=39.2).to_record()],
    )
    return scheduler.routes.create_route(ORG, name, [f"{name}-outlet"])


def _statuses(store, route_id):
    rows = store.select(ROUTE_ASSIGNMENTS, ORG, {"route_id": route_id})
    return sorted(row["status"] for row in rows)


def test_assign_creates_assignment_and_activates_route():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)

    assignment = scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY, assigned_by="manager")

    assert assignment.status is AssignmentStatus.ASSIGNED
    assert assignment.completion_percentage == 0
    assert scheduler.active_assignment(ORG, route.id).id == assignment.id
    assert scheduler.routes.get_route(ORG, route.id).status is RouteStatus.ACTIVE


def test_second_assign_is_rejected_while_one_is_active():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    first = scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY)

    with pytest.raises(DuplicateActiveAssignmentError) as excinfo:
        scheduler.assign(ORG, route.id, TeamAssignee("t1"), MONDAY)

    assert excinfo.value.assignment_id == first.id
    assert _statuses(store, route.id) == ["assigned"]


def test_assign_is_allowed_after_rejection():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    first = scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY)
    scheduler.update_status(ORG, first.id, AssignmentStatus.REJECTED)

    second = scheduler.assign(ORG, route.id, UserAssignee("u2"), MONDAY)

    assert scheduler.active_assignment(ORG, route.id).id == second.id


def test_concurrent_assign_loses_to_earlier_row():
    store = RacingStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    store.competitor = {
        "id": "competitor",
        "route_id": route.id,
        "assignee_type": "user",
        "assignee_id": "u9",
        "assigned_date": MONDAY.isoformat(),
        "status": "assigned",
        "created_at": "2024-03-01T00:00:00+00:00",
    }

    with pytest.raises(DuplicateActiveAssignmentError) as excinfo:
        scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY)

    assert excinfo.value.assignment_id == "competitor"
    rows = store.select(ROUTE_ASSIGNMENTS, ORG, {"route_id": route.id})
    assert [row["id"] for row in rows] == ["competitor"]


def test_archived_route_cannot_be_assigned():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    scheduler.routes.update_status(ORG, route.id, RouteStatus.ARCHIVED)

    with pytest.raises(RouteValidationError):
        scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY)


def test_transfer_writes_audit_trail():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    original = scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY, notes="Bring samples")

    replacement = scheduler.transfer(
        ORG, route.id, TeamAssignee("t7"), MONDAY + timedelta(days=1), assigned_by="manager", reason="coverage gap"
    )

    old = scheduler.get_assignment(ORG, original.id)
    assert old.status is AssignmentStatus.TRANSFERRED
    assert old.notes.startswith("Bring samples")
    assert "coverage gap" in old.notes
    assert "u1" in old.notes
    assert "--- TRANSFERRED on" in old.notes
    assert replacement.notes.startswith("TRANSFERRED FROM:")
    assert "user:u1" in replacement.notes
    assert replacement.assignee == TeamAssignee("t7")
    assert replacement.status is AssignmentStatus.ASSIGNED
    assert _statuses(store, route.id) == ["assigned", "transferred"]
    assert scheduler.active_assignment(ORG, route.id).id == replacement.id


def test_transfer_without_active_assignment_fails():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)

    with pytest.raises(NoActiveAssignmentError):
        scheduler.transfer(ORG, route.id, UserAssignee("u2"), MONDAY)


def test_transfer_to_same_assignee_is_rejected():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY)

    with pytest.raises(RouteValidationError):
        scheduler.transfer(ORG, route.id, UserAssignee("u1"), MONDAY)


def test_transfer_closes_generated_siblings_and_keeps_recurrence():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    weekly = Recurrence(RecurrencePattern.WEEKLY, day_of_week=0)
    scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY, recurrence=weekly)
    scheduler.generate_recurring_occurrences(ORG, MONDAY, horizon_days=14)

    replacement = scheduler.transfer(ORG, route.id, UserAssignee("u2"), MONDAY, reason="leave")

    assert replacement.recurrence == weekly
    assert _statuses(store, route.id) == ["assigned", "transferred", "transferred", "transferred"]


def test_failed_transfer_restores_closed_assignments():
    store = BrokenInsertStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    weekly = Recurrence(RecurrencePattern.WEEKLY, day_of_week=0)
    original = scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY, notes="Bring samples", recurrence=weekly)
    scheduler.generate_recurring_occurrences(ORG, MONDAY, horizon_days=7)
    before = sorted(store.select(ROUTE_ASSIGNMENTS, ORG, {"route_id": route.id}), key=lambda row: row["id"])
    store.broken = True

    with pytest.raises(ConnectionError):
        scheduler.transfer(ORG, route.id, UserAssignee("u2"), MONDAY, reason="leave")

    after = sorted(store.select(ROUTE_ASSIGNMENTS, ORG, {"route_id": route.id}), key=lambda row: row["id"])
    assert [(row["status"], row["notes"]) for row in after] == [(row["status"], row["notes"]) for row in before]
    assert _statuses(store, route.id) == ["assigned", "assigned"]
    assert scheduler.active_assignment(ORG, route.id).id == original.id


def test_recurring_generation_is_idempotent():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY, recurrence=Recurrence(RecurrencePattern.WEEKLY))

    created = scheduler.generate_recurring_occurrences(ORG, MONDAY, horizon_days=14)
    count = len(store.select(ROUTE_ASSIGNMENTS, ORG))
    again = scheduler.generate_recurring_occurrences(ORG, MONDAY, horizon_days=14)

    assert [item.assigned_date for item in created] == [date(2024, 3, 11), date(2024, 3, 18)]
    assert again == []
    assert len(store.select(ROUTE_ASSIGNMENTS, ORG)) == count == 3


def test_recurring_generation_respects_until_and_horizon():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    recurrence = Recurrence(RecurrencePattern.WEEKLY, until=date(2024, 3, 12))
    scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY, recurrence=recurrence)

    created = scheduler.generate_recurring_occurrences(ORG, MONDAY, horizon_days=30)

    assert [item.assigned_date for item in created] == [date(2024, 3, 11)]
    assert scheduler.generate_recurring_occurrences(ORG, date(2024, 3, 13), horizon_days=30) == []


def test_biweekly_occurrence_waits_for_horizon():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    recurrence = Recurrence(RecurrencePattern.BIWEEKLY)
    scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY, recurrence=recurrence)

    assert scheduler.generate_recurring_occurrences(ORG, MONDAY, horizon_days=7) == []
    created = scheduler.generate_recurring_occurrences(ORG, MONDAY, horizon_days=14)
    assert [item.assigned_date for item in created] == [date(2024, 3, 18)]


def test_completed_series_does_not_recur():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    assignment = scheduler.assign(
        ORG, route.id, UserAssignee("u1"), MONDAY, recurrence=Recurrence(RecurrencePattern.WEEKLY)
    )
    scheduler.update_status(ORG, assignment.id, AssignmentStatus.COMPLETED)

    assert scheduler.generate_recurring_occurrences(ORG, MONDAY, horizon_days=14) == []


def test_monthly_generation_clamps_to_month_end():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    scheduler.assign(
        ORG, route.id, UserAssignee("u1"), date(2023, 1, 31), recurrence=Recurrence(RecurrencePattern.MONTHLY)
    )

    created = scheduler.generate_recurring_occurrences(ORG, date(2023, 2, 1), horizon_days=30)

    assert [item.assigned_date for item in created] == [date(2023, 2, 28)]


@pytest.mark.parametrize(
    "start, expected",
    [
        (date(2024, 1, 31), date(2024, 2, 29)),
        (date(2023, 1, 31), date(2023, 2, 28)),
        (date(2024, 3, 31), date(2024, 4, 30)),
        (date(2024, 12, 15), date(2025, 1, 15)),
        (date(2026, 1, 31), date(2026, 2, 28)),
    ],
)
def test_monthly_step_clamps_day(start, expected):
    assert next_occurrence(start, RecurrencePattern.MONTHLY) == expected


def test_next_occurrence_by_pattern():
    assert next_occurrence(date(2024, 1, 31), RecurrencePattern.WEEKLY) == date(2024, 2, 7)
    assert next_occurrence(date(2024, 1, 31), RecurrencePattern.BIWEEKLY) == date(2024, 2, 14)
    assert next_occurrence(date(2024, 1, 31), RecurrencePattern.MONTHLY) == date(2024, 2, 29)
    assert week_start(date(2024, 3, 7)) == MONDAY


def test_status_updates_track_progress_and_complete_route():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    assignment = scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY)

    started = scheduler.update_status(ORG, assignment.id, AssignmentStatus.IN_PROGRESS, completion_percentage=40)
    assert started.actual_start_time is not None
    assert started.completion_percentage == 40

    with pytest.raises(InvalidStatusTransitionError):
        scheduler.update_status(ORG, assignment.id, AssignmentStatus.ACCEPTED)
    with pytest.raises(RouteValidationError):
        scheduler.update_status(ORG, assignment.id, AssignmentStatus.IN_PROGRESS, completion_percentage=140)

    done = scheduler.update_status(ORG, assignment.id, AssignmentStatus.COMPLETED)
    assert done.completion_percentage == 100
    assert done.actual_end_time is not None
    assert scheduler.routes.get_route(ORG, route.id).status is RouteStatus.COMPLETED


def test_transferred_status_cannot_be_set_directly():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    route = _route(store, scheduler)
    assignment = scheduler.assign(ORG, route.id, UserAssignee("u1"), MONDAY)

    with pytest.raises(InvalidStatusTransitionError):
        scheduler.update_status(ORG, assignment.id, AssignmentStatus.TRANSFERRED)


def test_week_view_places_dated_and_recurring_assignments():
    store = InMemoryRecordStore()
    scheduler = _scheduler(store)
    weekly = _route(store, scheduler, "Weekly")
    dated = _route(store, scheduler, "Dated")
    scheduler.assign(
        ORG, weekly.id, UserAssignee("u1"), MONDAY, recurrence=Recurrence(RecurrencePattern.WEEKLY, day_of_week=2)
    )
    scheduler.assign(ORG, dated.id, UserAssignee("u1"), date(2024, 3, 12))
    other = _route(store, scheduler, "Other")
    scheduler.assign(ORG, other.id, UserAssignee("u2"), date(2024, 3, 13))

    week = scheduler.assignments_for_week(ORG, UserAssignee("u1"), date(2024, 3, 14))

    assert list(week) == [date(2024, 3, 11) + timedelta(days=offset) for offset in range(7)]
    assert [item.route_id for item in week[date(2024, 3, 12)]] == [dated.id]
    assert [item.route_id for item in week[date(2024, 3, 13)]] == [weekly.id]
    assert week[date(2024, 3, 11)] == []

    first_week = scheduler.assignments_for_week(ORG, UserAssignee("u1"), MONDAY)
    assert [item.route_id for item in first_week[MONDAY]] == [weekly.id]
    assert [item.route_id for item in first_week[date(2024, 3, 6)]] == [weekly.id]
