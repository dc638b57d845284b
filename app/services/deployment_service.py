# app/services/deployment_service.py
"""
Deployment lifecycle: eligibility → conflict checks → record creation →
history → status transitions.

Every write that depends on a conflict check runs while the vehicle and pilot
locks are held, and inside asyncio.shield so that a caller giving up midway
cannot cancel it between the record write and its paired vehicle/history
writes. If a later step fails, the earlier writes are compensated before the
error propagates.
"""
import asyncio
from datetime import datetime
from typing import List, Optional

from app.core.config import COLLECTION_DEPLOYMENTS, COLLECTION_USERS
from app.core.exceptions import (
    ConcurrencyConflict, NotAuthorizedToPilot, RecordNotFound, ResourceUnavailable, ValidationError,
)
from app.db.mongodb import get_db
from app.models.deployment import (
    CreateDeploymentResult, DeploymentCreate, DeploymentOut, DeploymentStatus,
    LocationUpdate, StatusUpdateResult,
)
from app.models.history import HistoryEntry
from app.models.pilot import PILOT_ROLE, PilotSnapshot
from app.models.vehicle import VehicleOut, VehicleStatus
from app.services import history_service, identifier_service
from app.services.conflict_service import (
    RESOURCE_PILOT, RESOURCE_VEHICLE, ensure_no_conflict, validate_interval,
)
from app.services.resource_lock import hold_resources, resource_key
from app.services.status_machine import DEPLOYMENT_MACHINE
from app.services.vehicle_service import (
    get_vehicle_doc, is_deployable, settle_vehicle_status, transition_vehicle,
)
from app.utiles.custom_helpers import _now_utc, _normalize_id, _strip_mongo_id, _to_naive_utc
from app.utiles.logger import get_logger

logger = get_logger(__name__)

PARENT_KIND = "deployment"


# ----------------------------
# Validation helpers
# ----------------------------
def validate_coordinates(latitude: float, longitude: float, field: str = "location") -> None:
    if latitude is None or not -90 <= latitude <= 90:
        raise ValidationError(f"{field}.latitude", "Latitude must be between -90 and 90")
    if longitude is None or not -180 <= longitude <= 180:
        raise ValidationError(f"{field}.longitude", "Longitude must be between -180 and 180")


def _validate_telemetry(battery_level: Optional[float], speed: Optional[float]) -> None:
    if battery_level is not None and not 0 <= battery_level <= 100:
        raise ValidationError("battery_level", "Battery level must be between 0 and 100")
    if speed is not None and speed < 0:
        raise ValidationError("speed", "Speed cannot be negative")


def _ensure_deployable(vehicle: dict) -> None:
    if not is_deployable(vehicle["status"]):
        logger.warning("Vehicle %s is %s and cannot be deployed", vehicle["vehicle_id"], vehicle["status"])
        raise ResourceUnavailable(
            f"Vehicle {vehicle['vehicle_id']} is {vehicle['status']} and not available for deployment",
            resource_kind=RESOURCE_VEHICLE, resource_id=vehicle["vehicle_id"],
        )


async def get_eligible_pilot(pilot_id: str) -> PilotSnapshot:
    """
    The assigned user must currently hold the pilot role and be active.
    An unknown user id raises RecordNotFound (404), not NotAuthorizedToPilot.
    """
    doc = await get_db()[COLLECTION_USERS].find_one({"user_id": pilot_id}, {"_id": 0})
    if not doc:
        raise RecordNotFound("Pilot", pilot_id)
    pilot = PilotSnapshot(
        user_id=doc["user_id"],
        full_name=doc.get("full_name"),
        role=doc.get("role", ""),
        is_active=bool(doc.get("is_active", False)),
        license_number=doc.get("license_number"),
    )
    if pilot.role != PILOT_ROLE:
        logger.warning("User %s has role %s and cannot pilot", pilot_id, pilot.role)
        raise NotAuthorizedToPilot(pilot_id, f"User {pilot_id} does not hold the pilot role")
    if not pilot.is_active:
        logger.warning("Pilot %s is inactive", pilot_id)
        raise NotAuthorizedToPilot(pilot_id, f"Pilot {pilot_id} is not active")
    return pilot


async def _get_deployment_doc(deployment_id: str) -> dict:
    doc = await get_db()[COLLECTION_DEPLOYMENTS].find_one({"deployment_id": _normalize_id(deployment_id)})
    if not doc:
        logger.warning("Deployment not found: %s", deployment_id)
        raise RecordNotFound("Deployment", deployment_id)
    return _strip_mongo_id(doc)


def _lock_keys(vehicle_id: str, pilot_id: str):
    return resource_key(RESOURCE_VEHICLE, vehicle_id), resource_key(RESOURCE_PILOT, pilot_id)


# ----------------------------
# Create
# ----------------------------
async def create_deployment_service(payload: DeploymentCreate) -> CreateDeploymentResult:
    """
    Assign a vehicle and a pilot to a time window.

    Raises ValidationError, NotAuthorizedToPilot, ResourceUnavailable,
    ConcurrencyConflict or GenerationExhausted, plus RecordNotFound when the
    vehicle or pilot id does not exist.
    """
    start = _to_naive_utc(payload.start_time)
    end = _to_naive_utc(payload.estimated_end_time)
    logger.info("Creating deployment → vehicle=%s, pilot=%s, window=[%s, %s)",
                payload.vehicle_id, payload.pilot_id, start, end)

    validate_interval(start, end, field="estimated_end_time")
    validate_coordinates(payload.start_location.latitude, payload.start_location.longitude, "start_location")
    if payload.end_location:
        validate_coordinates(payload.end_location.latitude, payload.end_location.longitude, "end_location")

    pilot = await get_eligible_pilot(payload.pilot_id)
    _ensure_deployable(await get_vehicle_doc(payload.vehicle_id))

    return await asyncio.shield(_create_under_lock(payload, start, end, pilot))


async def _create_under_lock(payload: DeploymentCreate, start: datetime, end: datetime,
                             pilot: PilotSnapshot) -> CreateDeploymentResult:
    vehicle_id, pilot_id = payload.vehicle_id, payload.pilot_id

    async with hold_resources(*_lock_keys(vehicle_id, pilot_id)):
        # Re-read under the lock; the pre-check above may be stale
        vehicle = await get_vehicle_doc(vehicle_id)
        _ensure_deployable(vehicle)
        await ensure_no_conflict(RESOURCE_VEHICLE, vehicle_id, start, end)
        await ensure_no_conflict(RESOURCE_PILOT, pilot_id, start, end)

        now = _now_utc()
        doc = {
            "vehicle_id": vehicle_id,
            "pilot_id": pilot_id,
            "start_time": start,
            "estimated_end_time": end,
            "actual_start_time": None,
            "actual_end_time": None,
            "start_location": payload.start_location.model_dump(),
            "end_location": payload.end_location.model_dump() if payload.end_location else None,
            "current_location": None,
            "purpose": payload.purpose,
            "description": payload.description,
            "status": DeploymentStatus.SCHEDULED.value,
            "created_by": payload.created_by,
            "cancellation_reason": None,
            "created_at": now,
            "updated_at": now,
        }
        deployment_id = await identifier_service.insert_with_generated_id(
            COLLECTION_DEPLOYMENTS, "deployment_id", identifier_service.KIND_DEPLOYMENT, doc, day=now,
        )

        vehicle_changed = False
        try:
            if vehicle["status"] == VehicleStatus.AVAILABLE.value:
                await transition_vehicle(vehicle_id, VehicleStatus.AVAILABLE, VehicleStatus.DEPLOYED,
                                         f"Assigned to deployment {deployment_id}")
                vehicle_changed = True
            await history_service.append_entry(
                PARENT_KIND, deployment_id, "created",
                new_status=DeploymentStatus.SCHEDULED.value,
                actor_id=payload.created_by,
                note=payload.purpose,
                recorded_at=now,
            )
        except Exception:
            logger.exception("Deployment %s failed after insert; rolling back", deployment_id)
            await _rollback_creation(deployment_id, vehicle_id, vehicle_changed)
            raise

        vehicle = await get_vehicle_doc(vehicle_id)

    logger.info("Deployment created: %s (vehicle=%s, pilot=%s)", deployment_id, vehicle_id, pilot_id)
    return CreateDeploymentResult(
        deployment_id=deployment_id,
        status=DeploymentStatus.SCHEDULED,
        vehicle_snapshot=VehicleOut(**vehicle),
        pilot_snapshot=pilot,
    )


async def _rollback_creation(deployment_id: str, vehicle_id: str, vehicle_changed: bool) -> None:
    # The record never became a committed deployment, so removing it is not a delete of history
    await get_db()[COLLECTION_DEPLOYMENTS].delete_one({"deployment_id": deployment_id})
    if vehicle_changed:
        await transition_vehicle(vehicle_id, VehicleStatus.DEPLOYED, VehicleStatus.AVAILABLE,
                                 f"Rollback of deployment {deployment_id}")


# ----------------------------
# Status transitions
# ----------------------------
def _derived_timestamps(deployment: dict, new_status: str, now: datetime) -> dict:
    updates = {}
    if new_status == DeploymentStatus.IN_PROGRESS.value and not deployment.get("actual_start_time"):
        updates["actual_start_time"] = now
    elif new_status == DeploymentStatus.COMPLETED.value:
        updates["actual_end_time"] = now
    elif new_status == DeploymentStatus.CANCELLED.value and deployment["status"] == DeploymentStatus.IN_PROGRESS.value:
        updates["actual_end_time"] = now
    return updates


async def update_deployment_status_service(
    deployment_id: str,
    new_status: DeploymentStatus,
    actor_id: str,
    note: Optional[str] = None,
    cancellation_reason: Optional[str] = None,
) -> StatusUpdateResult:
    """
    Move a deployment along its lifecycle and record the change.
    An illegal edge raises IllegalTransition and leaves the record untouched.
    """
    deployment = await _get_deployment_doc(deployment_id)
    logger.info("Updating deployment %s: %s -> %s by %s",
                deployment["deployment_id"], deployment["status"], new_status, actor_id)
    DEPLOYMENT_MACHINE.validate(deployment["status"], new_status)

    return await asyncio.shield(
        _transition_under_lock(deployment, new_status, actor_id, note, cancellation_reason)
    )


async def _transition_under_lock(deployment: dict, new_status, actor_id: str,
                                 note: Optional[str], cancellation_reason: Optional[str]) -> StatusUpdateResult:
    deployment_id = deployment["deployment_id"]
    vehicle_id = deployment["vehicle_id"]
    db = get_db()

    async with hold_resources(*_lock_keys(vehicle_id, deployment["pilot_id"])):
        deployment = await _get_deployment_doc(deployment_id)
        old_status = deployment["status"]
        new_value = DEPLOYMENT_MACHINE.validate(old_status, new_status)

        now = _now_utc()
        updates = {"status": new_value, "updated_at": now}
        updates.update(_derived_timestamps(deployment, new_value, now))
        if cancellation_reason is not None:
            updates["cancellation_reason"] = cancellation_reason

        result = await db[COLLECTION_DEPLOYMENTS].update_one(
            {"deployment_id": deployment_id, "status": old_status},
            {"$set": updates},
        )
        if not result.matched_count:
            raise ConcurrencyConflict(
                f"Deployment {deployment_id} changed status concurrently; retry the operation",
                deployment_id=deployment_id,
            )

        try:
            if DEPLOYMENT_MACHINE.is_terminal(new_value):
                await settle_vehicle_status(vehicle_id, f"Deployment {deployment_id} {new_value}", now)
            await history_service.append_entry(
                PARENT_KIND, deployment_id, "status_change",
                previous_status=old_status, new_status=new_value,
                actor_id=actor_id, note=note, recorded_at=now,
            )
        except Exception:
            logger.exception("Status change of %s failed; restoring %s", deployment_id, old_status)
            restore = {key: deployment.get(key) for key in updates}
            await db[COLLECTION_DEPLOYMENTS].update_one(
                {"deployment_id": deployment_id, "status": new_value},
                {"$set": restore},
            )
            await settle_vehicle_status(vehicle_id, f"Restore after failed update of {deployment_id}")
            raise

    logger.info("Deployment %s status changed from %s to %s", deployment_id, old_status, new_value)
    return StatusUpdateResult(status=new_value, updated_at=now)


async def cancel_deployment_service(deployment_id: str, actor_id: str, reason: Optional[str] = None) -> StatusUpdateResult:
    """Cancel from scheduled or in_progress; the vehicle is released as part of the transition."""
    logger.info("Cancelling deployment %s by %s. Reason: %s", deployment_id, actor_id, reason)
    return await update_deployment_status_service(
        deployment_id, DeploymentStatus.CANCELLED, actor_id,
        note=reason, cancellation_reason=reason or "",
    )


# ----------------------------
# Location tracking
# ----------------------------
async def record_location_update_service(deployment_id: str, update: LocationUpdate) -> HistoryEntry:
    """Append a location/telemetry entry. Status is not touched."""
    validate_coordinates(update.latitude, update.longitude)
    _validate_telemetry(update.battery_level, update.speed)

    deployment = await _get_deployment_doc(deployment_id)
    deployment_id = deployment["deployment_id"]

    # complete and cancel take the same locks
    async with hold_resources(*_lock_keys(deployment["vehicle_id"], deployment["pilot_id"])):
        deployment = await _get_deployment_doc(deployment_id)
        if DEPLOYMENT_MACHINE.is_terminal(deployment["status"]):
            raise ValidationError(
                "deployment_id", f"Deployment {deployment_id} is {deployment['status']} and no longer tracked",
            )

        now = _now_utc()
        entry = await history_service.append_entry(
            PARENT_KIND, deployment_id, "location_update",
            actor_id=update.actor_id,
            latitude=update.latitude,
            longitude=update.longitude,
            battery_level=update.battery_level,
            speed=update.speed,
            recorded_at=now,
        )
        await get_db()[COLLECTION_DEPLOYMENTS].update_one(
            {"deployment_id": deployment_id},
            {"$set": {
                "current_location": {"latitude": update.latitude, "longitude": update.longitude, "address": None},
                "updated_at": now,
            }},
        )

    logger.debug("Location recorded for %s: (%s, %s)", deployment_id, update.latitude, update.longitude)
    return entry


# ----------------------------
# Reads
# ----------------------------
async def get_deployment_service(deployment_id: str) -> DeploymentOut:
    return DeploymentOut(**await _get_deployment_doc(deployment_id))


async def list_deployments_service(
    vehicle_id: Optional[str] = None,
    pilot_id: Optional[str] = None,
    status: Optional[DeploymentStatus] = None,
    limit: int = 50,
    skip: int = 0,
) -> List[DeploymentOut]:
    query = {}
    if vehicle_id:
        query["vehicle_id"] = vehicle_id
    if pilot_id:
        query["pilot_id"] = pilot_id
    if status:
        query["status"] = DeploymentStatus(status).value

    cursor = get_db()[COLLECTION_DEPLOYMENTS].find(query, {"_id": 0}).sort("start_time", 1).skip(skip).limit(limit)
    results = [DeploymentOut(**doc) async for doc in cursor]
    logger.info("Deployment search found %s records", len(results))
    return results


async def get_deployment_history_service(deployment_id: str) -> List[HistoryEntry]:
    deployment = await _get_deployment_doc(deployment_id)
    return await history_service.list_entries(deployment["deployment_id"])
