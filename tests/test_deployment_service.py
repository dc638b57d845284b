import asyncio
from datetime import timedelta

import pytest

from app.core.config import COLLECTION_DEPLOYMENTS, COLLECTION_HISTORY
from app.core.exceptions import (
    ConcurrencyConflict, IllegalTransition, NotAuthorizedToPilot, RecordNotFound,
    ResourceUnavailable, ValidationError,
)
from app.models.deployment import DeploymentStatus, Location, LocationUpdate
from app.models.maintenance import MaintenanceCreate
from app.services import deployment_service, history_service, maintenance_service, resource_lock
from app.services.vehicle_service import get_vehicle_service
from app.utiles.custom_helpers import _now_utc
from conftest import at, deployment_request, register_vehicle, seed_user


def create(vehicle_id, pilot_id, start, end, **overrides):
    return asyncio.run(deployment_service.create_deployment_service(
        deployment_request(vehicle_id, pilot_id, start, end, **overrides)
    ))


def vehicle_status(vehicle_id):
    return asyncio.run(get_vehicle_service(vehicle_id)).status.value


def test_create_deployment_schedules_and_deploys_vehicle(vehicle_id, pilot_id):
    result = create(vehicle_id, pilot_id, at(10), at(12))

    assert result.deployment_id.startswith("DEP_001_")
    assert result.status == DeploymentStatus.SCHEDULED
    assert result.vehicle_snapshot.vehicle_id == vehicle_id
    assert result.vehicle_snapshot.status.value == "deployed"
    assert result.pilot_snapshot.user_id == pilot_id
    assert vehicle_status(vehicle_id) == "deployed"

    history = asyncio.run(history_service.list_entries(result.deployment_id))
    assert len(history) == 1
    assert history[0].entry_type == "created"
    assert history[0].new_status == "scheduled"
    assert history[0].actor_id == "dispatcher_1"


def test_overlap_rejected_adjacent_allowed(vehicle_id, pilot_id):
    other_pilot = seed_user("pilot_q")
    create(vehicle_id, pilot_id, at(10), at(12))

    with pytest.raises(ResourceUnavailable) as exc:
        create(vehicle_id, other_pilot, at(11), at(13))
    assert exc.value.resource_kind == "vehicle"

    adjacent = create(vehicle_id, other_pilot, at(12), at(14))
    assert adjacent.status == DeploymentStatus.SCHEDULED


def test_pilot_cannot_be_double_booked(db, pilot_id):
    first_vehicle = register_vehicle("KA01EV0001")
    second_vehicle = register_vehicle("KA01EV0002")
    create(first_vehicle, pilot_id, at(10), at(12))

    with pytest.raises(ResourceUnavailable) as exc:
        create(second_vehicle, pilot_id, at(11, 30), at(13))
    assert exc.value.resource_kind == "pilot"
    # the rejected request left no trace on the second vehicle
    assert vehicle_status(second_vehicle) == "available"


def test_cancel_frees_vehicle_and_window(vehicle_id, pilot_id):
    other_pilot = seed_user("pilot_q")
    first = create(vehicle_id, pilot_id, at(10), at(12))

    result = asyncio.run(deployment_service.cancel_deployment_service(first.deployment_id, "ops_1", "weather"))
    assert result.status == DeploymentStatus.CANCELLED
    assert vehicle_status(vehicle_id) == "available"

    retry = create(vehicle_id, other_pilot, at(11), at(13))
    assert retry.status == DeploymentStatus.SCHEDULED

    cancelled = asyncio.run(deployment_service.get_deployment_service(first.deployment_id))
    assert cancelled.cancellation_reason == "weather"


def test_cancel_keeps_vehicle_deployed_while_other_deployments_remain(vehicle_id, pilot_id):
    first = create(vehicle_id, pilot_id, at(10), at(12))
    create(vehicle_id, pilot_id, at(12), at(14))

    asyncio.run(deployment_service.cancel_deployment_service(first.deployment_id, "ops_1"))
    assert vehicle_status(vehicle_id) == "deployed"


def test_employee_cannot_pilot(vehicle_id, db):
    employee = seed_user("emp_1", role="employee")
    with pytest.raises(NotAuthorizedToPilot):
        create(vehicle_id, employee, at(10), at(12))
    assert vehicle_status(vehicle_id) == "available"


def test_inactive_pilot_cannot_pilot(vehicle_id, db):
    inactive = seed_user("pilot_inactive", is_active=False)
    with pytest.raises(NotAuthorizedToPilot):
        create(vehicle_id, inactive, at(10), at(12))


def test_unknown_pilot_and_vehicle(vehicle_id, pilot_id):
    with pytest.raises(RecordNotFound):
        create(vehicle_id, "nobody", at(10), at(12))
    with pytest.raises(RecordNotFound):
        create("VEH_999_300101", pilot_id, at(10), at(12))


def test_inverted_window_is_validation_error(vehicle_id, pilot_id):
    with pytest.raises(ValidationError) as exc:
        create(vehicle_id, pilot_id, at(12), at(10))
    assert exc.value.field == "estimated_end_time"


def test_out_of_range_start_location(vehicle_id, pilot_id):
    with pytest.raises(ValidationError) as exc:
        create(vehicle_id, pilot_id, at(10), at(12),
               start_location=Location(latitude=95, longitude=77.59, address="Nowhere"))
    assert exc.value.field == "start_location.latitude"


def test_vehicle_in_maintenance_is_unavailable(vehicle_id, pilot_id):
    now = _now_utc()
    asyncio.run(maintenance_service.schedule_maintenance_service(MaintenanceCreate(
        vehicle_id=vehicle_id,
        unavailable_from=now - timedelta(hours=1),
        unavailable_to=now + timedelta(hours=1),
        maintenance_type="battery_check",
        description="Battery health check",
        created_by="tech_1",
    )))
    assert vehicle_status(vehicle_id) == "maintenance"

    with pytest.raises(ResourceUnavailable):
        create(vehicle_id, pilot_id, now + timedelta(days=2), now + timedelta(days=2, hours=2))


def test_concurrent_overlapping_creates_only_one_wins(vehicle_id, pilot_id):
    other_pilot = seed_user("pilot_q")

    async def run():
        return await asyncio.gather(
            deployment_service.create_deployment_service(deployment_request(vehicle_id, pilot_id, at(10), at(12))),
            deployment_service.create_deployment_service(deployment_request(vehicle_id, other_pilot, at(11), at(13))),
            return_exceptions=True,
        )

    results = asyncio.run(run())
    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], (ResourceUnavailable, ConcurrencyConflict))


def test_create_waits_for_held_vehicle_lock(vehicle_id, pilot_id, monkeypatch):
    monkeypatch.setattr(resource_lock, "LOCK_TIMEOUT_SECONDS", 0.1)

    async def run():
        await resource_lock.acquire_lock(resource_lock.resource_key("vehicle", vehicle_id))
        await deployment_service.create_deployment_service(
            deployment_request(vehicle_id, pilot_id, at(10), at(12))
        )

    with pytest.raises(ConcurrencyConflict):
        asyncio.run(run())
    assert vehicle_status(vehicle_id) == "available"


def test_failed_history_append_rolls_back_creation(vehicle_id, pilot_id, db, monkeypatch):
    async def broken_append(*args, **kwargs):
        raise RuntimeError("history store unavailable")

    monkeypatch.setattr(history_service, "append_entry", broken_append)

    with pytest.raises(RuntimeError):
        create(vehicle_id, pilot_id, at(10), at(12))

    assert asyncio.run(db[COLLECTION_DEPLOYMENTS].count_documents({})) == 0
    assert vehicle_status(vehicle_id) == "available"


def test_status_lifecycle_sets_timestamps_and_history(vehicle_id, pilot_id):
    created = create(vehicle_id, pilot_id, at(10), at(12))
    dep_id = created.deployment_id

    started = asyncio.run(deployment_service.update_deployment_status_service(
        dep_id, DeploymentStatus.IN_PROGRESS, "pilot_p", "left hub"))
    assert started.status == DeploymentStatus.IN_PROGRESS
    assert asyncio.run(deployment_service.get_deployment_service(dep_id)).actual_start_time is not None

    done = asyncio.run(deployment_service.update_deployment_status_service(
        dep_id, DeploymentStatus.COMPLETED, "pilot_p", "back at hub"))
    assert done.status == DeploymentStatus.COMPLETED

    deployment = asyncio.run(deployment_service.get_deployment_service(dep_id))
    assert deployment.actual_end_time is not None
    assert vehicle_status(vehicle_id) == "available"

    history = asyncio.run(deployment_service.get_deployment_history_service(dep_id))
    assert [(h.previous_status, h.new_status) for h in history] == [
        (None, "scheduled"),
        ("scheduled", "in_progress"),
        ("in_progress", "completed"),
    ]
    assert history[2].note == "back at hub"


def test_illegal_transition_leaves_status_unchanged(vehicle_id, pilot_id, db):
    dep_id = create(vehicle_id, pilot_id, at(10), at(12)).deployment_id

    with pytest.raises(IllegalTransition) as exc:
        asyncio.run(deployment_service.update_deployment_status_service(
            dep_id, DeploymentStatus.COMPLETED, "pilot_p"))
    assert (exc.value.from_status, exc.value.to_status) == ("scheduled", "completed")

    assert asyncio.run(deployment_service.get_deployment_service(dep_id)).status == DeploymentStatus.SCHEDULED
    assert asyncio.run(db[COLLECTION_HISTORY].count_documents({"parent_id": dep_id})) == 1


def test_cancel_completed_deployment_is_illegal(vehicle_id, pilot_id):
    dep_id = create(vehicle_id, pilot_id, at(10), at(12)).deployment_id
    asyncio.run(deployment_service.update_deployment_status_service(dep_id, "in_progress", "pilot_p"))
    asyncio.run(deployment_service.update_deployment_status_service(dep_id, "completed", "pilot_p"))

    with pytest.raises(IllegalTransition):
        asyncio.run(deployment_service.cancel_deployment_service(dep_id, "ops_1", "too late"))


def test_location_update_appends_history_only(vehicle_id, pilot_id):
    dep_id = create(vehicle_id, pilot_id, at(10), at(12)).deployment_id
    asyncio.run(deployment_service.update_deployment_status_service(dep_id, "in_progress", "pilot_p"))

    entry = asyncio.run(deployment_service.record_location_update_service(
        dep_id, LocationUpdate(latitude=12.98, longitude=77.6, battery_level=81, speed=32.5, actor_id="pilot_p")
    ))
    assert entry.entry_type == "location_update"
    assert entry.previous_status is None and entry.new_status is None

    deployment = asyncio.run(deployment_service.get_deployment_service(dep_id))
    assert deployment.status == DeploymentStatus.IN_PROGRESS
    assert deployment.current_location.latitude == 12.98


@pytest.mark.parametrize("update, field", [
    (dict(latitude=-91, longitude=0), "location.latitude"),
    (dict(latitude=0, longitude=181), "location.longitude"),
    (dict(latitude=0, longitude=0, battery_level=120), "battery_level"),
    (dict(latitude=0, longitude=0, speed=-1), "speed"),
])
def test_location_update_validation(vehicle_id, pilot_id, update, field):
    dep_id = create(vehicle_id, pilot_id, at(10), at(12)).deployment_id
    with pytest.raises(ValidationError) as exc:
        asyncio.run(deployment_service.record_location_update_service(dep_id, LocationUpdate(**update)))
    assert exc.value.field == field


def test_list_deployments_filters(vehicle_id, pilot_id):
    other_pilot = seed_user("pilot_q")
    first = create(vehicle_id, pilot_id, at(10), at(12))
    create(vehicle_id, other_pilot, at(13), at(14))
    asyncio.run(deployment_service.cancel_deployment_service(first.deployment_id, "ops_1"))

    by_pilot = asyncio.run(deployment_service.list_deployments_service(pilot_id=other_pilot))
    assert [d.pilot_id for d in by_pilot] == [other_pilot]

    cancelled = asyncio.run(deployment_service.list_deployments_service(vehicle_id=vehicle_id, status="cancelled"))
    assert [d.deployment_id for d in cancelled] == [first.deployment_id]


def test_location_update_rejected_after_completion(vehicle_id, pilot_id, db):
    dep_id = create(vehicle_id, pilot_id, at(10), at(12)).deployment_id
    asyncio.run(deployment_service.update_deployment_status_service(dep_id, "in_progress", "pilot_p"))
    asyncio.run(deployment_service.update_deployment_status_service(dep_id, "completed", "pilot_p"))

    with pytest.raises(ValidationError) as exc:
        asyncio.run(deployment_service.record_location_update_service(
            dep_id, LocationUpdate(latitude=12.9, longitude=77.6)))
    assert exc.value.field == "deployment_id"
    assert asyncio.run(db[COLLECTION_HISTORY].count_documents({"entry_type": "location_update"})) == 0


def test_location_update_waits_for_deployment_locks(vehicle_id, pilot_id, db, monkeypatch):
    dep_id = create(vehicle_id, pilot_id, at(10), at(12)).deployment_id
    monkeypatch.setattr(resource_lock, "LOCK_TIMEOUT_SECONDS", 0.1)

    async def run():
        # a status change on the same deployment is mid-flight
        await resource_lock.acquire_lock(resource_lock.resource_key("vehicle", vehicle_id))
        await deployment_service.record_location_update_service(
            dep_id, LocationUpdate(latitude=12.9, longitude=77.6, actor_id="pilot_p"))

    with pytest.raises(ConcurrencyConflict):
        asyncio.run(run())
    assert asyncio.run(db[COLLECTION_HISTORY].count_documents({"entry_type": "location_update"})) == 0
