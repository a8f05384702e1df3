"""Route assignment scheduling: assign, transfer and recurring occurrences."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from ...config import settings as app_settings
from ...exceptions import (
    DuplicateActiveAssignmentError,
    InvalidStatusTransitionError,
    NoActiveAssignmentError,
    RecordNotFoundError,
    RouteValidationError,
)
from ...models.domain import (
    NON_TERMINAL_ASSIGNMENT_STATUSES,
    Assignee,
    AssignmentStatus,
    Recurrence,
    RouteAssignment,
    RouteStatus,
    assignee_label,
)
from ...persistence.base import ROUTE_ASSIGNMENTS, RecordStore
from ..routes.service import RouteService
from .recurrence import next_occurrence, week_start

logger = logging.getLogger(__name__)

ASSIGNMENT_TRANSITIONS: dict[AssignmentStatus, frozenset[AssignmentStatus]] = {
    AssignmentStatus.ASSIGNED: frozenset(
        {AssignmentStatus.ACCEPTED, AssignmentStatus.REJECTED, AssignmentStatus.IN_PROGRESS, AssignmentStatus.COMPLETED}
    ),
    AssignmentStatus.ACCEPTED: frozenset(
        {AssignmentStatus.IN_PROGRESS, AssignmentStatus.REJECTED, AssignmentStatus.COMPLETED}
    ),
    AssignmentStatus.IN_PROGRESS: frozenset({AssignmentStatus.COMPLETED}),
    AssignmentStatus.COMPLETED: frozenset(),
    AssignmentStatus.REJECTED: frozenset(),
    AssignmentStatus.TRANSFERRED: frozenset(),
}

# Occurrences are generated only from series that are still live.
RECURRENCE_SOURCE_STATUSES = frozenset({AssignmentStatus.ASSIGNED, AssignmentStatus.ACCEPTED})

_ACTIVE_STATUS_VALUES = [status.value for status in NON_TERMINAL_ASSIGNMENT_STATUSES]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _created_key(assignment: RouteAssignment) -> tuple:
    created = assignment.created_at.isoformat() if assignment.created_at else ""
    return (created, assignment.id)


class AssignmentScheduler:
    def __init__(
        self,
        store: RecordStore | None = None,
        routes: RouteService | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        if store is None:
            from ...persistence import get_record_store

            store = get_record_store()
        self.store = store
        self.clock = clock or _utcnow
        self.id_factory = id_factory or _new_id
        self.routes = routes or RouteService(store, clock=self.clock, id_factory=self.id_factory)

    def _active(self, organization_id: str, route_id: str) -> list[RouteAssignment]:
        rows = self.store.select(
            ROUTE_ASSIGNMENTS, organization_id, {"route_id": route_id, "status": _ACTIVE_STATUS_VALUES}
        )
        assignments = [RouteAssignment.from_record(row) for row in rows]
        return sorted(assignments, key=lambda item: (item.assigned_date, item.id))

    def active_assignment(self, organization_id: str, route_id: str) -> Optional[RouteAssignment]:
        """The earliest non-terminal assignment on the route, if any."""
        active = self._active(organization_id, route_id)
        return active[0] if active else None

    def get_assignment(self, organization_id: str, assignment_id: str) -> RouteAssignment:
        rows = self.store.select(ROUTE_ASSIGNMENTS, organization_id, {"id": assignment_id})
        if not rows:
            raise RecordNotFoundError(ROUTE_ASSIGNMENTS, assignment_id)
        return RouteAssignment.from_record(rows[0])

    def assign(
        self,
        organization_id: str,
        route_id: str,
        assignee: Assignee,
        assigned_date: date,
        *,
        assigned_by: str | None = None,
        notes: str | None = None,
        recurrence: Recurrence | None = None,
    ) -> RouteAssignment:
        route = self.routes.get_route(organization_id, route_id)
        if route.status in (RouteStatus.ARCHIVED, RouteStatus.COMPLETED):
            raise RouteValidationError(f"Route {route_id} is {route.status.value} and cannot be assigned.")

        existing = self.active_assignment(organization_id, route_id)
        if existing is not None:
            raise DuplicateActiveAssignmentError(route_id, existing.id)

        assignment = RouteAssignment(
            id=self.id_factory(),
            route_id=route_id,
            assignee=assignee,
            assigned_by=assigned_by,
            assigned_date=assigned_date,
            status=AssignmentStatus.ASSIGNED,
            completion_percentage=0,
            recurrence=recurrence,
            notes=notes or "",
            created_at=self.clock(),
        )
        self.store.insert(ROUTE_ASSIGNMENTS, organization_id, [assignment.to_record()])

        # A concurrent assign may have slipped in between the check and the insert.
        active = self._active(organization_id, route_id)
        if len(active) > 1:
            winner = min(active, key=_created_key)
            if winner.id != assignment.id:
                self.store.delete(ROUTE_ASSIGNMENTS, organization_id, {"id": assignment.id})
                raise DuplicateActiveAssignmentError(route_id, winner.id)

        if route.status is RouteStatus.DRAFT:
            self.routes.update_status(organization_id, route_id, RouteStatus.ACTIVE)
        logger.info(f"Assigned route {route_id} to {assignee_label(assignee)} for {assigned_date.isoformat()}")
        return assignment

    def transfer(
        self,
        organization_id: str,
        route_id: str,
        new_assignee: Assignee,
        transfer_date: date,
        *,
        assigned_by: str | None = None,
        reason: str | None = None,
    ) -> RouteAssignment:
        active = self._active(organization_id, route_id)
        if not active:
            raise NoActiveAssignmentError(route_id)
        current = active[0]
        if current.assignee == new_assignee:
            raise RouteValidationError(f"Route {route_id} is already assigned to {assignee_label(new_assignee)}.")

        stamp = self.clock().isoformat(timespec="seconds")
        previous = assignee_label(current.assignee)
        notes = f"TRANSFERRED FROM: {previous}\n"
        if reason:
            notes += f"Reason: {reason}"
        replacement = RouteAssignment(
            id=self.id_factory(),
            route_id=route_id,
            assignee=new_assignee,
            assigned_by=assigned_by,
            assigned_date=transfer_date,
            status=AssignmentStatus.ASSIGNED,
            completion_percentage=0,
            recurrence=current.recurrence,
            notes=notes,
            created_at=self.clock(),
        )

        closed: list[RouteAssignment] = []
        try:
            for assignment in active:
                audit = (
                    f"\n--- TRANSFERRED on {stamp} ---\n"
                    f"From: {assignee_label(assignment.assignee)}\n"
                    f"To: {assignee_label(new_assignee)}\n"
                    f"Reason: {reason or 'No reason provided'}"
                )
                self.store.update(
                    ROUTE_ASSIGNMENTS,
                    organization_id,
                    assignment.id,
                    {"status": AssignmentStatus.TRANSFERRED.value, "notes": assignment.notes + audit},
                )
                closed.append(assignment)
            self.store.insert(ROUTE_ASSIGNMENTS, organization_id, [replacement.to_record()])
        except Exception as exc:
            logger.warning(f"Transfer of route {route_id} failed, restoring {len(closed)} assignment(s): {exc}")
            for assignment in closed:
                self.store.update(
                    ROUTE_ASSIGNMENTS,
                    organization_id,
                    assignment.id,
                    {"status": assignment.status.value, "notes": assignment.notes},
                )
            raise

        logger.info(
            f"Transferred route {route_id} from {previous} to {assignee_label(new_assignee)} "
            f"({len(active)} assignment(s) closed)"
        )
        return replacement

    def generate_recurring_occurrences(
        self,
        organization_id: str,
        as_of: date,
        horizon_days: int | None = None,
    ) -> list[RouteAssignment]:
        """Create the missing occurrences of every live recurring series up to the horizon.

        Running it again with the same arguments creates nothing.
        """
        horizon = horizon_days if horizon_days is not None else app_settings.recurrence_horizon_days
        window_end = as_of + timedelta(days=horizon)

        assignments = [RouteAssignment.from_record(row) for row in self.store.select(ROUTE_ASSIGNMENTS, organization_id)]
        taken = {(item.route_id, item.assignee.id, item.assigned_date) for item in assignments}
        sources = sorted(
            (
                item
                for item in assignments
                if item.recurrence is not None
                and item.status in RECURRENCE_SOURCE_STATUSES
                and (item.recurrence.until is None or item.recurrence.until >= as_of)
            ),
            key=lambda item: (item.assigned_date, item.id),
        )

        created: list[RouteAssignment] = []
        for source in sources:
            recurrence = source.recurrence
            cursor = next_occurrence(source.assigned_date, recurrence.pattern)
            while cursor <= window_end and (recurrence.until is None or cursor <= recurrence.until):
                key = (source.route_id, source.assignee.id, cursor)
                if cursor >= as_of and key not in taken:
                    occurrence = RouteAssignment(
                        id=self.id_factory(),
                        route_id=source.route_id,
                        assignee=source.assignee,
                        assigned_by=source.assigned_by,
                        assigned_date=cursor,
                        status=AssignmentStatus.ASSIGNED,
                        recurrence=recurrence,
                        notes=f"Recurring occurrence of assignment {source.id}",
                        created_at=self.clock(),
                    )
                    self.store.insert(ROUTE_ASSIGNMENTS, organization_id, [occurrence.to_record()])
                    taken.add(key)
                    created.append(occurrence)
                cursor = next_occurrence(cursor, recurrence.pattern)

        if created:
            logger.info(f"Generated {len(created)} recurring occurrence(s) up to {window_end.isoformat()}")
        return created

    def update_status(
        self,
        organization_id: str,
        assignment_id: str,
        status: AssignmentStatus,
        completion_percentage: int | None = None,
    ) -> RouteAssignment:
        assignment = self.get_assignment(organization_id, assignment_id)
        if completion_percentage is not None and not 0 <= completion_percentage <= 100:
            raise RouteValidationError("completion_percentage must be between 0 and 100.")
        if status is not assignment.status and status not in ASSIGNMENT_TRANSITIONS[assignment.status]:
            raise InvalidStatusTransitionError("assignment", assignment.status.value, status.value)

        now = self.clock()
        changes: dict = {"status": status.value}
        if completion_percentage is not None:
            changes["completion_percentage"] = completion_percentage
        if status is AssignmentStatus.IN_PROGRESS and assignment.actual_start_time is None:
            changes["actual_start_time"] = now.isoformat()
        if status is AssignmentStatus.COMPLETED:
            changes["completion_percentage"] = 100
            if assignment.actual_end_time is None:
                changes["actual_end_time"] = now.isoformat()
        record = self.store.update(ROUTE_ASSIGNMENTS, organization_id, assignment_id, changes)

        if status is AssignmentStatus.COMPLETED and not self._active(organization_id, assignment.route_id):
            route = self.routes.get_route(organization_id, assignment.route_id)
            if route.status is RouteStatus.ACTIVE:
                self.routes.update_status(organization_id, route.id, RouteStatus.COMPLETED)
        return RouteAssignment.from_record(record)

    def assignments_for_week(
        self,
        organization_id: str,
        assignee: Assignee,
        week_of: date,
    ) -> dict[date, list[RouteAssignment]]:
        """Assignments per day of the Monday-based week containing ``week_of``.

        Dated rows land on their date; recurring rows also land on their
        ``day_of_week`` for every day inside the series' lifetime.
        """
        start = week_start(week_of)
        days = [start + timedelta(days=offset) for offset in range(7)]
        rows = self.store.select(
            ROUTE_ASSIGNMENTS,
            organization_id,
            {"assignee_type": assignee.kind, "assignee_id": assignee.id},
            order_by="assigned_date",
        )
        assignments = [RouteAssignment.from_record(row) for row in rows]

        week: dict[date, list[RouteAssignment]] = {day: [] for day in days}
        for assignment in assignments:
            if assignment.assigned_date in week:
                week[assignment.assigned_date].append(assignment)
        for assignment in assignments:
            recurrence = assignment.recurrence
            if recurrence is None or recurrence.day_of_week is None or not assignment.is_active:
                continue
            for day in days:
                if day.weekday() != recurrence.day_of_week or day < assignment.assigned_date:
                    continue
                if recurrence.until is not None and day > recurrence.until:
                    continue
                if any(item.route_id == assignment.route_id for item in week[day]):
                    continue
                week[day].append(assignment)
        return week
