# app/services/maintenance_service.py
"""
Maintenance windows reserve a vehicle without a pilot. They share the
conflict detector and the vehicle lock with deployments, so a window and a
deployment can never overlap on the same vehicle.
"""
import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

from app.core.config import COLLECTION_MAINTENANCE, COLLECTION_VEHICLES
from app.core.exceptions import ConcurrencyConflict, RecordNotFound, ResourceUnavailable
from app.db.mongodb import get_db
from app.models.history import HistoryEntry
from app.models.maintenance import (
    MaintenanceCreate, MaintenanceOut, MaintenanceStatus, ScheduleMaintenanceResult,
)
from app.models.vehicle import VehicleStatus
from app.services import history_service, identifier_service
from app.services.conflict_service import RESOURCE_VEHICLE, ensure_no_conflict, validate_interval
from app.services.resource_lock import hold_resources, resource_key
from app.services.status_machine import MAINTENANCE_MACHINE
from app.services.vehicle_service import get_vehicle_doc, settle_vehicle_status, transition_vehicle
from app.utiles.custom_helpers import _now_utc, _normalize_id, _strip_mongo_id, _to_naive_utc
from app.utiles.logger import get_logger

logger = get_logger(__name__)

PARENT_KIND = "maintenance"

def _window_is_active(start: datetime, end: datetime, now: datetime) -> bool:
    return start <= now < end

async def _get_maintenance_doc(maintenance_id: str) -> dict:
    doc = await get_db()[COLLECTION_MAINTENANCE].find_one({"maintenance_id": _normalize_id(maintenance_id)})
    if not doc:
        logger.warning("Maintenance window not found: %s", maintenance_id)
        raise RecordNotFound("Maintenance", maintenance_id)
    return _strip_mongo_id(doc)

# ----------------------------
# Schedule
# ----------------------------
async def schedule_maintenance_service(payload: MaintenanceCreate, now: Optional[datetime] = None) -> ScheduleMaintenanceResult:
    """
    Reserve [unavailable_from, unavailable_to) on a vehicle for upkeep.
    If the window has already started the vehicle goes into maintenance now.
    """
    start = _to_naive_utc(payload.unavailable_from)
    end = _to_naive_utc(payload.unavailable_to)
    logger.info("Scheduling %s for vehicle %s in [%s, %s)", payload.maintenance_type, payload.vehicle_id, start, end)

    validate_interval(start, end, field="unavailable_to")
    vehicle = await get_vehicle_doc(payload.vehicle_id)
    if vehicle["status"] == VehicleStatus.RETIRED.value:
        raise ResourceUnavailable(
            f"Vehicle {payload.vehicle_id} is retired",
            resource_kind=RESOURCE_VEHICLE, resource_id=payload.vehicle_id,
        )

    return await asyncio.shield(_schedule_under_lock(payload, start, end, now))

async def _schedule_under_lock(payload: MaintenanceCreate, start: datetime, end: datetime,
                               now: Optional[datetime]) -> ScheduleMaintenanceResult:
    vehicle_id = _normalize_id(payload.vehicle_id)

    async with hold_resources(resource_key(RESOURCE_VEHICLE, vehicle_id)):
        vehicle = await get_vehicle_doc(vehicle_id)
        if vehicle["status"] == VehicleStatus.RETIRED.value:
            raise ResourceUnavailable(f"Vehicle {vehicle_id} is retired",
                                      resource_kind=RESOURCE_VEHICLE, resource_id=vehicle_id)
        await ensure_no_conflict(RESOURCE_VEHICLE, vehicle_id, start, end)

        created_at = _now_utc()
        now = now or created_at
        doc = {
            "vehicle_id": vehicle_id,
            "unavailable_from": start,
            "unavailable_to": end,
            "maintenance_type": payload.maintenance_type,
            "description": payload.description,
            "priority": payload.priority,
            "status": MaintenanceStatus.SCHEDULED.value,
            "started_at": None,
            "completed_at": None,
            "created_by": payload.created_by,
            "created_at": created_at,
            "updated_at": created_at,
        }
        maintenance_id = await identifier_service.insert_with_generated_id(
            COLLECTION_MAINTENANCE, "maintenance_id", identifier_service.KIND_MAINTENANCE, doc, day=created_at,
        )

        previous_vehicle_status = vehicle["status"]
        vehicle_changed = False
        try:
            if _window_is_active(start, end, now) and previous_vehicle_status != VehicleStatus.MAINTENANCE.value:
                await transition_vehicle(vehicle_id, previous_vehicle_status, VehicleStatus.MAINTENANCE,
                                         f"Maintenance window {maintenance_id} active")
                vehicle_changed = True
            await history_service.append_entry(
                PARENT_KIND, maintenance_id, "created",
                new_status=MaintenanceStatus.SCHEDULED.value,
                actor_id=payload.created_by,
                note=payload.description,
                recorded_at=created_at,
            )
        except Exception:
            logger.exception("Maintenance %s failed after insert; rolling back", maintenance_id)
            await get_db()[COLLECTION_MAINTENANCE].delete_one({"maintenance_id": maintenance_id})
            if vehicle_changed:
                await transition_vehicle(vehicle_id, VehicleStatus.MAINTENANCE, previous_vehicle_status,
                                         f"Rollback of maintenance {maintenance_id}")
            raise

    logger.info("Maintenance scheduled: %s for vehicle %s", maintenance_id, vehicle_id)
    return ScheduleMaintenanceResult(maintenance_id=maintenance_id, status=MaintenanceStatus.SCHEDULED)

# ----------------------------
# Status transitions
# ----------------------------
async def update_maintenance_status_service(
    maintenance_id: str,
    new_status: MaintenanceStatus,
    actor_id: str,
    note: Optional[str] = None,
) -> MaintenanceOut:
    window = await _get_maintenance_doc(maintenance_id)
    MAINTENANCE_MACHINE.validate(window["status"], new_status)
    return await asyncio.shield(_transition_under_lock(window, new_status, actor_id, note))

async def _transition_under_lock(window: dict, new_status, actor_id: str, note: Optional[str]) -> MaintenanceOut:
    maintenance_id = window["maintenance_id"]
    vehicle_id = window["vehicle_id"]
    db = get_db()

    async with hold_resources(resource_key(RESOURCE_VEHICLE, vehicle_id)):
        window = await _get_maintenance_doc(maintenance_id)
        old_status = window["status"]
        new_value = MAINTENANCE_MACHINE.validate(old_status, new_status)

        now = _now_utc()
        updates = {"status": new_value, "updated_at": now}
        if new_value == MaintenanceStatus.IN_PROGRESS.value and not window.get("started_at"):
            updates["started_at"] = now
        if new_value in (MaintenanceStatus.COMPLETED.value, MaintenanceStatus.FAILED.value):
            updates["completed_at"] = now

        result = await db[COLLECTION_MAINTENANCE].update_one(
            {"maintenance_id": maintenance_id, "status": old_status},
            {"$set": updates},
        )
        if not result.matched_count:
            raise ConcurrencyConflict(
                f"Maintenance {maintenance_id} changed status concurrently; retry the operation",
                maintenance_id=maintenance_id,
            )

        try:
            await settle_vehicle_status(vehicle_id, f"Maintenance {maintenance_id} {new_value}", now)
            await history_service.append_entry(
                PARENT_KIND, maintenance_id, "status_change",
                previous_status=old_status, new_status=new_value,
                actor_id=actor_id, note=note, recorded_at=now,
            )
        except Exception:
            logger.exception("Status change of %s failed; restoring %s", maintenance_id, old_status)
            restore = {key: window.get(key) for key in updates}
            await db[COLLECTION_MAINTENANCE].update_one(
                {"maintenance_id": maintenance_id, "status": new_value},
                {"$set": restore},
            )
            await settle_vehicle_status(vehicle_id, f"Restore after failed update of {maintenance_id}")
            raise

    logger.info("Maintenance %s status changed from %s to %s", maintenance_id, old_status, new_value)
    return await get_maintenance_service(maintenance_id)

# ----------------------------
# Batch activation
# ----------------------------
async def activate_due_maintenance_service(now: Optional[datetime] = None) -> List[str]:
    """
    Bring vehicle status in line with maintenance windows at `now`.
    Vehicles whose scheduled window has started go into maintenance, and
    vehicles left in maintenance after their window ended are released.
    Triggered explicitly (e.g. by an operator or cron hitting the endpoint).
    Returns the vehicle ids that changed status.
    """
    now = _to_naive_utc(now) if now else _now_utc()
    logger.info("Running maintenance activation sweep at %s", now)
    db = get_db()

    cursor = db[COLLECTION_MAINTENANCE].find({
        "status": MaintenanceStatus.SCHEDULED.value,
        "unavailable_from": {"$lte": now},
        "unavailable_to": {"$gt": now},
    }, {"_id": 0, "vehicle_id": 1})
    due = [doc["vehicle_id"] async for doc in cursor]

    cursor = db[COLLECTION_VEHICLES].find({"status": VehicleStatus.MAINTENANCE.value}, {"_id": 0, "vehicle_id": 1})
    held = [doc["vehicle_id"] async for doc in cursor]

    moved = []
    for vehicle_id in dict.fromkeys(due + held):
        async with hold_resources(resource_key(RESOURCE_VEHICLE, vehicle_id)):
            before = (await get_vehicle_doc(vehicle_id))["status"]
            after = await settle_vehicle_status(vehicle_id, "Maintenance sweep", now)
        if before != after:
            moved.append(vehicle_id)

    logger.info("Maintenance sweep moved %s vehicles", len(moved))
    return moved


# ----------------------------
# Reads
# ----------------------------
async def get_maintenance_service(maintenance_id: str) -> MaintenanceOut:
    return MaintenanceOut(**await _get_maintenance_doc(maintenance_id))

async def get_due_maintenance_service(days_ahead: int = 7, now: Optional[datetime] = None) -> List[MaintenanceOut]:
    """Scheduled windows starting within the next `days_ahead` days (including overdue ones)."""
    now = _to_naive_utc(now) if now else _now_utc()
    cutoff = now + timedelta(days=days_ahead)
    cursor = get_db()[COLLECTION_MAINTENANCE].find(
        {"status": MaintenanceStatus.SCHEDULED.value, "unavailable_from": {"$lte": cutoff}},
        {"_id": 0},
    ).sort("unavailable_from", 1)
    return [MaintenanceOut(**doc) async for doc in cursor]

async def get_maintenance_history_service(maintenance_id: str) -> List[HistoryEntry]:
    window = await _get_maintenance_doc(maintenance_id)
    return await history_service.list_entries(window["maintenance_id"])
