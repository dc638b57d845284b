import pytest
from fastapi.testclient import TestClient

from conftest import seed_user
from main import app

DEPLOYMENTS = "/api/deployment_management/deployments"
MAINTENANCE = "/api/maintenance_management/maintenance"
VEHICLES = "/api/vehicle_management/vehicles"


@pytest.fixture()
def client(db):
    # No context manager: startup would replace the in-memory database
    return TestClient(app)


@pytest.fixture()
def vehicle(client):
    response = client.post(f"{VEHICLES}/register_vehicle", json={
        "registration_number": "KA01EV0001",
        "make": "Tata",
        "model": "Nexon EV",
        "year": 2023,
        "battery_capacity": 40.5,
        "created_by": "admin_1",
    })
    assert response.status_code == 200
    return response.json()["vehicle_id"]


def deployment_body(vehicle_id, pilot_id, start, end):
    return {
        "vehicle_id": vehicle_id,
        "pilot_id": pilot_id,
        "start_time": start,
        "estimated_end_time": end,
        "start_location": {"latitude": 12.97, "longitude": 77.59, "address": "Hub A"},
        "purpose": "delivery",
        "created_by": "dispatcher_1",
    }


def test_root(client):
    assert client.get("/").json() == {"message": "Fleet scheduling API running"}


def test_create_and_conflict(client, vehicle):
    seed_user("pilot_p")
    seed_user("pilot_q")

    created = client.post(f"{DEPLOYMENTS}/create_deployment",
                          json=deployment_body(vehicle, "pilot_p", "2030-01-01T10:00:00", "2030-01-01T12:00:00"))
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "scheduled"
    assert body["vehicle_snapshot"]["status"] == "deployed"
    assert body["pilot_snapshot"]["user_id"] == "pilot_p"

    clash = client.post(f"{DEPLOYMENTS}/create_deployment",
                        json=deployment_body(vehicle, "pilot_q", "2030-01-01T11:00:00", "2030-01-01T13:00:00"))
    assert clash.status_code == 409
    detail = clash.json()["detail"]
    assert detail["error"] == "ResourceUnavailable"
    assert detail["conflicting_id"] == body["deployment_id"]


def test_non_pilot_is_forbidden(client, vehicle):
    seed_user("emp_1", role="employee")
    response = client.post(f"{DEPLOYMENTS}/create_deployment",
                           json=deployment_body(vehicle, "emp_1", "2030-01-01T10:00:00", "2030-01-01T12:00:00"))
    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "NotAuthorizedToPilot"


def test_inverted_window_is_422(client, vehicle):
    seed_user("pilot_p")
    response = client.post(f"{DEPLOYMENTS}/create_deployment",
                           json=deployment_body(vehicle, "pilot_p", "2030-01-01T12:00:00", "2030-01-01T10:00:00"))
    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "estimated_end_time"


def test_illegal_status_update_reports_edge(client, vehicle):
    seed_user("pilot_p")
    dep_id = client.post(f"{DEPLOYMENTS}/create_deployment",
                         json=deployment_body(vehicle, "pilot_p", "2030-01-01T10:00:00", "2030-01-01T12:00:00")
                         ).json()["deployment_id"]

    response = client.put(f"{DEPLOYMENTS}/{dep_id}/status", json={"new_status": "completed", "actor_id": "pilot_p"})
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert (detail["from_status"], detail["to_status"]) == ("scheduled", "completed")

    ok = client.put(f"{DEPLOYMENTS}/{dep_id}/status", json={"new_status": "in_progress", "actor_id": "pilot_p"})
    assert ok.status_code == 200
    assert ok.json()["status"] == "in_progress"

    history = client.get(f"{DEPLOYMENTS}/{dep_id}/history").json()
    assert [h["new_status"] for h in history] == ["scheduled", "in_progress"]


def test_unknown_deployment_is_404(client):
    response = client.get(f"{DEPLOYMENTS}/DEP_404_300101")
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "RecordNotFound"


def test_cancel_releases_vehicle(client, vehicle):
    seed_user("pilot_p")
    dep_id = client.post(f"{DEPLOYMENTS}/create_deployment",
                         json=deployment_body(vehicle, "pilot_p", "2030-01-01T10:00:00", "2030-01-01T12:00:00")
                         ).json()["deployment_id"]

    response = client.put(f"{DEPLOYMENTS}/{dep_id}/cancel", json={"actor_id": "ops_1", "reason": "weather"})
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert client.get(f"{VEHICLES}/{vehicle}").json()["status"] == "available"


def test_commitments_are_ordered(client, vehicle):
    seed_user("pilot_p")
    for start, end in (("2030-01-01T14:00:00", "2030-01-01T15:00:00"),
                       ("2030-01-01T10:00:00", "2030-01-01T12:00:00")):
        client.post(f"{DEPLOYMENTS}/create_deployment", json=deployment_body(vehicle, "pilot_p", start, end))
    client.post(f"{MAINTENANCE}/schedule_maintenance", json={
        "vehicle_id": vehicle,
        "unavailable_from": "2030-01-01T08:00:00",
        "unavailable_to": "2030-01-01T09:00:00",
        "maintenance_type": "battery_check",
        "description": "Pre-shift battery check",
        "created_by": "tech_1",
    })

    vehicle_view = client.get(f"{VEHICLES}/{vehicle}/commitments").json()
    assert [c["kind"] for c in vehicle_view] == ["maintenance", "deployment", "deployment"]
    assert [c["start"] for c in vehicle_view] == [
        "2030-01-01T08:00:00", "2030-01-01T10:00:00", "2030-01-01T14:00:00",
    ]

    pilot_view = client.get(f"{DEPLOYMENTS}/pilots/pilot_p/commitments").json()
    assert [c["start"] for c in pilot_view] == ["2030-01-01T10:00:00", "2030-01-01T14:00:00"]


def test_schedule_maintenance_and_update(client, vehicle):
    created = client.post(f"{MAINTENANCE}/schedule_maintenance", json={
        "vehicle_id": vehicle,
        "unavailable_from": "2030-01-01T08:00:00",
        "unavailable_to": "2030-01-01T09:00:00",
        "maintenance_type": "routine_service",
        "description": "Quarterly service",
        "priority": "high",
        "created_by": "tech_1",
    })
    assert created.status_code == 201
    maint_id = created.json()["maintenance_id"]
    assert maint_id.startswith("MAINT_")

    started = client.put(f"{MAINTENANCE}/{maint_id}/status", json={"new_status": "in_progress", "actor_id": "tech_1"})
    assert started.status_code == 200
    assert client.get(f"{VEHICLES}/{vehicle}").json()["status"] == "maintenance"

    done = client.put(f"{MAINTENANCE}/{maint_id}/status", json={"new_status": "completed", "actor_id": "tech_1"})
    assert done.json()["status"] == "completed"
    assert client.get(f"{VEHICLES}/{vehicle}").json()["status"] == "available"


def test_retire_with_open_work_is_409(client, vehicle):
    seed_user("pilot_p")
    client.post(f"{DEPLOYMENTS}/create_deployment",
                json=deployment_body(vehicle, "pilot_p", "2030-01-01T10:00:00", "2030-01-01T12:00:00"))
    response = client.put(f"{VEHICLES}/{vehicle}/retire", json={"actor_id": "admin_1"})
    assert response.status_code == 409


def test_available_and_registration_lookup(client, vehicle):
    seed_user("pilot_p")
    dep_id = client.post(f"{DEPLOYMENTS}/create_deployment",
                         json=deployment_body(vehicle, "pilot_p", "2030-01-01T10:00:00", "2030-01-01T12:00:00")
                         ).json()["deployment_id"]

    busy = client.get(f"{VEHICLES}/available", params={"start": "2030-01-01T11:00:00", "end": "2030-01-01T13:00:00"})
    assert busy.status_code == 200
    assert busy.json() == []

    free = client.get(f"{VEHICLES}/available", params={"start": "2030-01-01T12:00:00", "end": "2030-01-01T13:00:00"})
    assert [v["vehicle_id"] for v in free.json()] == [vehicle]

    client.put(f"{DEPLOYMENTS}/{dep_id}/status", json={"new_status": "in_progress", "actor_id": "pilot_p"})
    lookup = client.get(f"{VEHICLES}/registration/KA01EV0001")
    assert lookup.status_code == 200
    body = lookup.json()
    assert body["current_deployment"]["deployment_id"] == dep_id
    assert body["deployable"] is False

    assert client.get(f"{VEHICLES}/registration/ZZ99ZZ9999").status_code == 404
