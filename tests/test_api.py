import math
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from route_planner.api import dependencies
from route_planner.api.dependencies import get_optimizer, get_route_service, get_scheduler
from route_planner.config import settings
from route_planner.main import app
from route_planner.models.domain import Outlet
from route_planner.persistence.base import OUTLETS
from route_planner.persistence.memory import InMemoryRecordStore
from route_planner.services.assignments.scheduler import AssignmentScheduler
from route_planner.services.routes.service import RouteService
from route_planner.services.routing.optimizer import RouteOptimizer

ORG = "org-1"
NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class PlanarProvider:
    name = "planar"

    def table(self, coordinates, *, avoid_tolls=False, avoid_highways=False):
        distances = [[math.dist(a, b) * 1000.0 for b in coordinates] for a in coordinates]
        durations = [[value * 60.0 / 1000.0 for value in row] for row in distances]
        return {"distances": distances, "durations": durations}


@pytest.fixture()
def client():
    store = InMemoryRecordStore()
    store.insert(
        OUTLETS,
        ORG,
        [
            Outlet(id=outlet_id, name=f"Outlet {outlet_id}", address="", organization_id=ORG, latitude=lat, longitude=lon).to_record()
            for outlet_id, lat, lon in [("O1", 10.0, 10.0), ("O2", 10.0, 13.0), ("O3", 10.0, 11.0), ("O4", None, None)]
        ],
    )
    optimizer = RouteOptimizer(PlanarProvider())
    service = RouteService(store, optimizer, clock=lambda: NOW)
    scheduler = AssignmentScheduler(store, service, clock=lambda: NOW)

    app.dependency_overrides[get_optimizer] = lambda: optimizer
    app.dependency_overrides[get_route_service] = lambda: service
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, outlet_ids, **extra):
    response = client.post(
        "/api/routes",
        json={
            "organization_id": ORG,
            "name": "Downtown Loop",
            "outlet_ids": outlet_ids,
            "route_date": "2024-03-04",
            "optimization_type": "distance",
            **extra,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health_endpoints(client):
    assert client.get("/api/health").json() == {"status": "ok"}
    assert client.get("/").json()["status"] == "running"


def test_create_and_fetch_route(client):
    created = _create(client, ["O1", "O2", "O3"])

    assert created["status"] == "draft"
    assert [stop["outlet_id"] for stop in created["stops"]] == ["O1", "O2", "O3"]

    fetched = client.get(f"/api/routes/{created['id']}", params={"organization_id": ORG})
    assert fetched.status_code == 200
    assert fetched.json()["total_stops"] == 3

    listed = client.get("/api/routes", params={"organization_id": ORG, "status": "draft"})
    assert [route["id"] for route in listed.json()] == [created["id"]]


def test_unknown_route_is_404(client):
    response = client.get("/api/routes/missing", params={"organization_id": ORG})

    assert response.status_code == 404


def test_invalid_payload_is_422(client):
    response = client.post("/api/routes", json={"organization_id": ORG, "name": "No stops", "outlet_ids": []})

    assert response.status_code == 422


def test_optimize_route_persists_order(client):
    created = _create(client, ["O1", "O2", "O3"])

    response = client.post(f"/api/routes/{created['id']}/optimize", json={"organization_id": ORG})

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["optimization"]["order"] == ["O1", "O3", "O2"]
    assert body["optimization"]["total_distance"] == pytest.approx(3.0)
    assert [(stop["outlet_id"], stop["stop_order"]) for stop in body["route"]["stops"]] == [
        ("O1", 1),
        ("O3", 2),
        ("O2", 3),
    ]
    assert body["route"]["optimized_route_data"]["order"] == ["O1", "O3", "O2"]


def test_optimize_route_csv(client):
    created = _create(client, ["O1", "O2", "O3"])

    response = client.post(f"/api/routes/{created['id']}/optimize.csv", json={"organization_id": ORG})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("route_id,sequence,outlet_id")
    assert len(lines) == 4


def test_optimize_without_two_geocoded_stops_is_422(client):
    created = _create(client, ["O1", "O4"])

    response = client.post(f"/api/routes/{created['id']}/optimize", json={"organization_id": ORG})

    assert response.status_code == 422
    assert "fewer than 2 geocoded stops" in response.json()["detail"]


def test_optimize_preview_does_not_need_a_route(client):
    response = client.post(
        "/api/routes/optimize-preview",
        json={
            "optimization_type": "distance",
            "stops": [
                {"id": "A", "latitude": 10.0, "longitude": 10.0},
                {"id": "B", "latitude": 10.0, "longitude": 12.0},
                {"id": "C", "latitude": 10.0, "longitude": 11.0},
            ],
            "start": {"latitude": 10.0, "longitude": 10.0},
        },
    )

    assert response.status_code == 200, response.text
    assert response.json()["order"] == ["A", "C", "B"]


def test_preview_without_osrm_url_is_503(client, monkeypatch):
    monkeypatch.setattr(settings, "routing_provider", "osrm")
    monkeypatch.setattr(settings, "osrm_base_url", None)
    del app.dependency_overrides[get_optimizer]
    dependencies._build_optimizer.cache_clear()
    try:
        response = client.post(
            "/api/routes/optimize-preview",
            json={
                "stops": [
                    {"id": "A", "latitude": 10.0, "longitude": 10.0},
                    {"id": "B", "latitude": 10.0, "longitude": 12.0},
                ],
            },
        )
    finally:
        dependencies._build_optimizer.cache_clear()

    assert response.status_code == 503
    assert response.json()["detail"] == "OSRM base URL is not configured."


def test_assign_then_duplicate_is_409_and_transfer_succeeds(client):
    created = _create(client, ["O1", "O2"])
    payload = {
        "organization_id": ORG,
        "route_id": created["id"],
        "assignee_type": "user",
        "assignee_id": "u1",
        "assigned_date": "2024-03-04",
    }

    first = client.post("/api/assignments", json=payload)
    assert first.status_code == 201, first.text
    assert first.json()["status"] == "assigned"

    second = client.post("/api/assignments", json={**payload, "assignee_id": "u2"})
    assert second.status_code == 409

    transfer = client.post(
        "/api/assignments/transfer",
        json={
            "organization_id": ORG,
            "route_id": created["id"],
            "new_assignee_type": "team",
            "new_assignee_id": "t1",
            "transfer_date": "2024-03-05",
            "reason": "Driver on leave",
        },
    )
    assert transfer.status_code == 201, transfer.text
    assert transfer.json()["assignee_type"] == "team"

    active = client.get(f"/api/assignments/route/{created['id']}/active", params={"organization_id": ORG})
    assert active.json()["id"] == transfer.json()["id"]


def test_transfer_without_assignment_is_409(client):
    created = _create(client, ["O1", "O2"])

    response = client.post(
        "/api/assignments/transfer",
        json={
            "organization_id": ORG,
            "route_id": created["id"],
            "new_assignee_type": "user",
            "new_assignee_id": "u2",
            "transfer_date": "2024-03-05",
        },
    )

    assert response.status_code == 409


def test_week_view_lists_every_day(client):
    created = _create(client, ["O1", "O2"])
    client.post(
        "/api/assignments",
        json={
            "organization_id": ORG,
            "route_id": created["id"],
            "assignee_type": "user",
            "assignee_id": "u1",
            "assigned_date": "2024-03-06",
        },
    )

    response = client.get(
        "/api/assignments/week",
        params={"organization_id": ORG, "assignee_type": "user", "assignee_id": "u1", "week_of": "2024-03-08"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["week_start"] == "2024-03-04"
    assert len(body["days"]) == 7
    assert [item["route_id"] for item in body["days"]["2024-03-06"]] == [created["id"]]
    assert body["days"]["2024-03-04"] == []
