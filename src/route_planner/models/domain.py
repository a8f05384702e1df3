"""Domain models for outlets, routes, stops and assignments."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Optional, Union


class OutletStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class RouteStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"
    COMPLETED = "completed"


class OptimizationType(str, Enum):
    DISTANCE = "distance"
    TIME = "time"
    BALANCED = "balanced"
    CUSTOM = "custom"


class StopStatus(str, Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    TRANSFERRED = "transferred"


NON_TERMINAL_ASSIGNMENT_STATUSES = frozenset(
    {AssignmentStatus.ASSIGNED, AssignmentStatus.ACCEPTED, AssignmentStatus.IN_PROGRESS}
)


class RecurrencePattern(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


def _iso(value: date | datetime | None) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _has_valid_coordinates(latitude: float | None, longitude: float | None) -> bool:
    if latitude is None or longitude is None:
        return False
    return not (latitude == 0 and longitude == 0)


@dataclass(frozen=True, slots=True)
class UserAssignee:
    id: str
    kind: ClassVar[str] = "user"


@dataclass(frozen=True, slots=True)
class TeamAssignee:
    id: str
    kind: ClassVar[str] = "team"


Assignee = Union[UserAssignee, TeamAssignee]


def assignee_from_record(assignee_type: str, assignee_id: str) -> Assignee:
    if assignee_type == UserAssignee.kind:
        return UserAssignee(assignee_id)
    if assignee_type == TeamAssignee.kind:
        return TeamAssignee(assignee_id)
    raise ValueError(f"Unknown assignee type: {assignee_type!r}")


def assignee_label(assignee: Assignee) -> str:
    return f"{assignee.kind}:{assignee.id}"


@dataclass(slots=True)
class Outlet:
    """A physical location that can be visited on a route."""

    id: str
    name: str
    address: str
    organization_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: OutletStatus = OutletStatus.ACTIVE

    @property
    def has_coordinates(self) -> bool:
        return _has_valid_coordinates(self.latitude, self.longitude)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "organization_id": self.organization_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "status": self.status.value,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Outlet":
        return cls(
            id=record["id"],
            name=record.get("name") or "",
            address=record.get("address") or "",
            organization_id=record.get("organization_id") or "",
            latitude=record.get("latitude"),
            longitude=record.get("longitude"),
            status=OutletStatus(record.get("status") or OutletStatus.ACTIVE.value),
        )


@dataclass(slots=True)
class GeoStop:
    """One visitable location as seen by the optimizer."""

    id: str
    latitude: Optional[float]
    longitude: Optional[float]
    service_duration_min: float = 0.0
    priority: int = 0
    name: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return _has_valid_coordinates(self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class Anchor:
    """Fixed start or end point of a route that is not itself a stop."""

    latitude: float
    longitude: float
    label: Optional[str] = None


@dataclass(slots=True)
class LocationRef:
    """Persisted start/end location: an outlet reference or a free-text address."""

    outlet_id: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {}
        if self.outlet_id:
            record["outlet_id"] = self.outlet_id
        if self.address:
            record["address"] = self.address
        if self.latitude is not None and self.longitude is not None:
            record["latitude"] = self.latitude
            record["longitude"] = self.longitude
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any] | None) -> Optional["LocationRef"]:
        if not record:
            return None
        return cls(
            outlet_id=record.get("outlet_id"),
            address=record.get("address"),
            latitude=record.get("latitude"),
            longitude=record.get("longitude"),
        )


@dataclass(slots=True)
class RouteStop:
    id: str
    route_id: str
    outlet_id: str
    stop_order: int
    estimated_duration: float = 30.0
    status: StopStatus = StopStatus.PENDING
    priority: int = 0
    estimated_arrival_time: Optional[datetime] = None
    estimated_departure_time: Optional[datetime] = None
    distance_from_previous: Optional[float] = None
    travel_time_from_previous: Optional[float] = None
    notes: Optional[str] = None

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "route_id": self.route_id,
            "outlet_id": self.outlet_id,
            "stop_order": self.stop_order,
            "estimated_duration": self.estimated_duration,
            "status": self.status.value,
            "priority": self.priority,
            "estimated_arrival_time": _iso(self.estimated_arrival_time),
            "estimated_departure_time": _iso(self.estimated_departure_time),
            "distance_from_previous": self.distance_from_previous,
            "travel_time_from_previous": self.travel_time_from_previous,
            "notes": self.notes,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "RouteStop":
        return cls(
            id=record["id"],
            route_id=record["route_id"],
            outlet_id=record["outlet_id"],
            stop_order=int(record["stop_order"]),
            estimated_duration=float(record.get("estimated_duration") or 0.0),
            status=StopStatus(record.get("status") or StopStatus.PENDING.value),
            priority=int(record.get("priority") or 0),
            estimated_arrival_time=parse_datetime(record.get("estimated_arrival_time")),
            estimated_departure_time=parse_datetime(record.get("estimated_departure_time")),
            distance_from_previous=record.get("distance_from_previous"),
            travel_time_from_previous=record.get("travel_time_from_previous"),
            notes=record.get("notes"),
        )


@dataclass(slots=True)
class Route:
    """The planning aggregate persisted for an organization."""

    id: str
    organization_id: str
    name: str
    created_by: Optional[str] = None
    description: Optional[str] = None
    status: RouteStatus = RouteStatus.DRAFT
    optimization_type: OptimizationType = OptimizationType.BALANCED
    route_date: Optional[date] = None
    start_location: Optional[LocationRef] = None
    end_location: Optional[LocationRef] = None
    total_estimated_duration: float = 0.0
    total_estimated_distance: float = 0.0
    total_stops: int = 0
    optimized_route_data: Optional[dict] = None
    last_optimized_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    stops: list[RouteStop] = field(default_factory=list)

    @property
    def is_optimized(self) -> bool:
        return self.optimized_route_data is not None

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "created_by": self.created_by,
            "description": self.description,
            "status": self.status.value,
            "optimization_type": self.optimization_type.value,
            "route_date": _iso(self.route_date),
            "start_location": self.start_location.to_record() if self.start_location else None,
            "end_location": self.end_location.to_record() if self.end_location else None,
            "total_estimated_duration": self.total_estimated_duration,
            "total_estimated_distance": self.total_estimated_distance,
            "total_stops": self.total_stops,
            "optimized_route_data": self.optimized_route_data,
            "last_optimized_at": _iso(self.last_optimized_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any], stops: list[RouteStop] | None = None) -> "Route":
        return cls(
            id=record["id"],
            organization_id=record["organization_id"],
            name=record["name"],
            created_by=record.get("created_by"),
            description=record.get("description"),
            status=RouteStatus(record.get("status") or RouteStatus.DRAFT.value),
            optimization_type=OptimizationType(
                record.get("optimization_type") or OptimizationType.BALANCED.value
            ),
            route_date=parse_date(record.get("route_date")),
            start_location=LocationRef.from_record(record.get("start_location")),
            end_location=LocationRef.from_record(record.get("end_location")),
            total_estimated_duration=float(record.get("total_estimated_duration") or 0.0),
            total_estimated_distance=float(record.get("total_estimated_distance") or 0.0),
            total_stops=int(record.get("total_stops") or 0),
            optimized_route_data=record.get("optimized_route_data"),
            last_optimized_at=parse_datetime(record.get("last_optimized_at")),
            created_at=parse_datetime(record.get("created_at")),
            updated_at=parse_datetime(record.get("updated_at")),
            stops=sorted(stops or [], key=lambda stop: stop.stop_order),
        )


@dataclass(frozen=True, slots=True)
class Recurrence:
    """Cadence on which an assignment spawns sibling occurrences."""

    pattern: RecurrencePattern = RecurrencePattern.WEEKLY
    day_of_week: Optional[int] = None
    until: Optional[date] = None

    def __post_init__(self) -> None:
        if self.day_of_week is not None and not 0 <= self.day_of_week <= 6:
            raise ValueError(f"day_of_week must be within 0..6, got {self.day_of_week}")


@dataclass(slots=True)
class RouteAssignment:
    """Binding of a route to a user or team for a given date."""

    id: str
    route_id: str
    assignee: Assignee
    assigned_by: Optional[str]
    assigned_date: date
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    completion_percentage: int = 0
    recurrence: Optional[Recurrence] = None
    notes: str = ""
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    performance_score: Optional[float] = None
    created_at: Optional[datetime] = None

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    @property
    def is_active(self) -> bool:
        return self.status in NON_TERMINAL_ASSIGNMENT_STATUSES

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "route_id": self.route_id,
            "assignee_type": self.assignee.kind,
            "assignee_id": self.assignee.id,
            "assigned_by": self.assigned_by,
            "assigned_date": _iso(self.assigned_date),
            "status": self.status.value,
            "completion_percentage": self.completion_percentage,
            "is_recurring": self.is_recurring,
            "day_of_week": self.recurrence.day_of_week if self.recurrence else None,
            "recurrence_pattern": self.recurrence.pattern.value if self.recurrence else None,
            "recurring_until": _iso(self.recurrence.until) if self.recurrence else None,
            "notes": self.notes,
            "actual_start_time": _iso(self.actual_start_time),
            "actual_end_time": _iso(self.actual_end_time),
            "performance_score": self.performance_score,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "RouteAssignment":
        recurrence = None
        if record.get("is_recurring"):
            recurrence = Recurrence(
                pattern=RecurrencePattern(record.get("recurrence_pattern") or RecurrencePattern.WEEKLY.value),
                day_of_week=record.get("day_of_week"),
                until=parse_date(record.get("recurring_until")),
            )
        return cls(
            id=record["id"],
            route_id=record["route_id"],
            assignee=assignee_from_record(record["assignee_type"], record["assignee_id"]),
            assigned_by=record.get("assigned_by"),
            assigned_date=parse_date(record["assigned_date"]),
            status=AssignmentStatus(record.get("status") or AssignmentStatus.ASSIGNED.value),
            completion_percentage=int(record.get("completion_percentage") or 0),
            recurrence=recurrence,
            notes=record.get("notes") or "",
            actual_start_time=parse_datetime(record.get("actual_start_time")),
            actual_end_time=parse_datetime(record.get("actual_end_time")),
            performance_score=record.get("performance_score"),
            created_at=parse_datetime(record.get("created_at")),
        )
