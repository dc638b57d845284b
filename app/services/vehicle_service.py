from datetime import datetime
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from app.core.config import COLLECTION_VEHICLES, COLLECTION_DEPLOYMENTS, COLLECTION_MAINTENANCE
from app.core.exceptions import ConcurrencyConflict, RecordNotFound, ResourceUnavailable, ValidationError
from app.db.mongodb import get_db
from app.models.deployment import DeploymentOut, DeploymentStatus, VehicleDeploymentStatus
from app.models.maintenance import MaintenanceStatus
from app.models.vehicle import VehicleCreate, VehicleOut, VehicleStatus
from app.services import identifier_service
from app.services.conflict_service import RESOURCE_VEHICLE, get_active_commitments, has_conflict, validate_interval
from app.services.resource_lock import hold_resources, resource_key
from app.services.status_machine import VEHICLE_MACHINE, DEPLOYMENT_MACHINE
from app.utiles.custom_helpers import _now_utc, _normalize_id, _strip_mongo_id, _to_naive_utc
from app.utiles.logger import get_logger

logger = get_logger(__name__)


# ---------------- Service: Register Vehicle ----------------
async def register_vehicle_service(vehicle: VehicleCreate) -> VehicleOut:
    """
    Register a new vehicle.
    - Rejects a duplicate registration number
    - Mints a VEH_<SEQ>_<YYMMDD> id and inserts with status 'available'
    """
    logger.info("Attempting to register vehicle → Registration=%s", vehicle.registration_number)
    db = get_db()

    exists = await db[COLLECTION_VEHICLES].find_one({"registration_number": vehicle.registration_number})
    if exists:
        logger.warning("Vehicle registration failed: duplicate registration %s", vehicle.registration_number)
        raise ValidationError("registration_number", "Registration number already exists")

    now = _now_utc()
    doc = vehicle.model_dump()
    doc.update({
        "status": VehicleStatus.AVAILABLE.value,
        "created_at": now,
        "updated_at": now,
    })
    try:
        vehicle_id = await identifier_service.insert_with_generated_id(
            COLLECTION_VEHICLES, "vehicle_id", identifier_service.KIND_VEHICLE, doc, day=now,
        )
    except DuplicateKeyError:
        # race: another request registered the same number first
        logger.warning("Vehicle registration lost race on registration %s", vehicle.registration_number)
        raise ValidationError("registration_number", "Registration number already exists")

    logger.info("Vehicle registered successfully: vehicle_id=%s", vehicle_id)
    return VehicleOut(**doc, vehicle_id=vehicle_id)


# ---------------- Service: Lookup ----------------
async def get_vehicle_doc(vehicle_id: str) -> dict:
    doc = await get_db()[COLLECTION_VEHICLES].find_one({"vehicle_id": _normalize_id(vehicle_id)})
    if not doc:
        logger.error("Vehicle not found → vehicle_id=%s", vehicle_id)
        raise RecordNotFound("Vehicle", vehicle_id)
    return _strip_mongo_id(doc)


async def get_vehicle_service(vehicle_id: str) -> VehicleOut:
    return VehicleOut(**await get_vehicle_doc(vehicle_id))


async def search_vehicles_service(status: Optional[VehicleStatus] = None, limit: int = 100) -> List[VehicleOut]:
    query = {}
    if status:
        query["status"] = VehicleStatus(status).value
    vehicles = await get_db()[COLLECTION_VEHICLES].find(query, {"_id": 0}).sort("vehicle_id", 1).to_list(limit)
    logger.info("Search completed. Found %s vehicles", len(vehicles))
    return [VehicleOut(**v) for v in vehicles]


async def find_free_vehicles_service(start: datetime, end: datetime, limit: int = 50) -> List[VehicleOut]:
    """
    Vehicles that could take a deployment over [start, end): deployable
    status and no open deployment or maintenance window in that window.
    """
    start, end = _to_naive_utc(start), _to_naive_utc(end)
    validate_interval(start, end)
    logger.info("Searching free vehicles for [%s, %s)", start, end)

    cursor = get_db()[COLLECTION_VEHICLES].find(
        {"status": {"$in": [VehicleStatus.AVAILABLE.value, VehicleStatus.DEPLOYED.value]}}, {"_id": 0},
    ).sort("vehicle_id", 1)

    free = []
    async for doc in cursor:
        if await has_conflict(RESOURCE_VEHICLE, doc["vehicle_id"], start, end):
            continue
        free.append(VehicleOut(**doc))
        if len(free) >= limit:
            break

    logger.info("Found %s free vehicles", len(free))
    return free


async def get_vehicle_by_registration_service(registration_number: str) -> VehicleDeploymentStatus:
    registration_number = registration_number.strip().upper()
    db = get_db()
    doc = await db[COLLECTION_VEHICLES].find_one({"registration_number": registration_number}, {"_id": 0})
    if not doc:
        logger.error("Vehicle not found → registration=%s", registration_number)
        raise RecordNotFound("Vehicle", registration_number)

    current = await db[COLLECTION_DEPLOYMENTS].find_one(
        {"vehicle_id": doc["vehicle_id"], "status": DeploymentStatus.IN_PROGRESS.value}, {"_id": 0},
    )
    return VehicleDeploymentStatus(
        vehicle=VehicleOut(**doc),
        current_deployment=DeploymentOut(**current) if current else None,
        deployable=is_deployable(doc["status"]) and current is None,
    )


# ---------------- Status transitions ----------------
async def transition_vehicle(vehicle_id: str, expected: VehicleStatus, new: VehicleStatus, reason: str = "") -> str:
    """
    The single write path for Vehicle.status.
    Validates the edge against the vehicle machine, then compare-and-sets on
    the expected current status so a concurrent writer cannot be overwritten.
    """
    new_value = VEHICLE_MACHINE.validate(expected, new)
    expected_value = VehicleStatus(expected).value
    result = await get_db()[COLLECTION_VEHICLES].update_one(
        {"vehicle_id": vehicle_id, "status": expected_value},
        {"$set": {"status": new_value, "updated_at": _now_utc()}},
    )
    if not result.matched_count:
        logger.warning("Vehicle %s was not in status %s at write time", vehicle_id, expected_value)
        raise ConcurrencyConflict(
            f"Vehicle {vehicle_id} changed status concurrently; retry the operation",
            vehicle_id=vehicle_id, expected_status=expected_value,
        )
    logger.info("Vehicle %s status changed from %s to %s. Reason: %s", vehicle_id, expected_value, new_value, reason)
    return new_value


async def _holding_maintenance(vehicle_id: str, now: datetime) -> bool:
    doc = await get_db()[COLLECTION_MAINTENANCE].find_one({
        "vehicle_id": vehicle_id,
        "$or": [
            {"status": MaintenanceStatus.IN_PROGRESS.value},
            {
                "status": MaintenanceStatus.SCHEDULED.value,
                "unavailable_from": {"$lte": now},
                "unavailable_to": {"$gt": now},
            },
        ],
    }, {"_id": 1})
    return doc is not None


async def _lapsed_windows(vehicle_id: str, now: datetime) -> set:
    cursor = get_db()[COLLECTION_MAINTENANCE].find({
        "vehicle_id": vehicle_id,
        "status": MaintenanceStatus.SCHEDULED.value,
        "unavailable_to": {"$lte": now},
    }, {"_id": 0, "maintenance_id": 1})
    return {doc["maintenance_id"] async for doc in cursor}


async def settle_vehicle_status(vehicle_id: str, reason: str = "", now: Optional[datetime] = None) -> str:
    """
    Move the vehicle to the status its commitments imply: maintenance while a
    window holds it, deployed while any deployment is open, otherwise available.
    Retired vehicles are left alone.
    """
    now = now or _now_utc()
    vehicle = await get_vehicle_doc(vehicle_id)
    current = VehicleStatus(vehicle["status"])
    if current == VehicleStatus.RETIRED:
        return current.value

    if await _holding_maintenance(vehicle_id, now):
        target = VehicleStatus.MAINTENANCE
    elif await get_db()[COLLECTION_DEPLOYMENTS].find_one(
        {"vehicle_id": vehicle_id, "status": {"$in": DEPLOYMENT_MACHINE.non_terminal()}}, {"_id": 1}
    ):
        target = VehicleStatus.DEPLOYED
    else:
        target = VehicleStatus.AVAILABLE

    if target == current:
        return current.value
    return await transition_vehicle(vehicle_id, current, target, reason)


# ---------------- Service: Retire Vehicle ----------------
async def retire_vehicle_service(vehicle_id: str, actor_id: str, reason: Optional[str] = None,
                                 now: Optional[datetime] = None) -> VehicleOut:
    """
    Retire a vehicle. Vehicles are never deleted.
    Refused while any deployment or maintenance window still holds it. A
    scheduled window that ended without being started no longer does.
    """
    vehicle_id = _normalize_id(vehicle_id)
    now = now or _now_utc()
    logger.info("Retiring vehicle → vehicle_id=%s by %s", vehicle_id, actor_id)

    async with hold_resources(resource_key(RESOURCE_VEHICLE, vehicle_id)):
        vehicle = await get_vehicle_doc(vehicle_id)
        VEHICLE_MACHINE.validate(vehicle["status"], VehicleStatus.RETIRED)

        lapsed = await _lapsed_windows(vehicle_id, now)
        open_commitments = [
            c for c in await get_active_commitments(RESOURCE_VEHICLE, vehicle_id) if c.record_id not in lapsed
        ]
        if open_commitments:
            first = open_commitments[0]
            raise ResourceUnavailable(
                f"Vehicle {vehicle_id} still has open {first.kind} {first.record_id}",
                resource_kind=RESOURCE_VEHICLE, resource_id=vehicle_id, conflicting_id=first.record_id,
            )

        await transition_vehicle(vehicle_id, vehicle["status"], VehicleStatus.RETIRED, reason or f"Retired by {actor_id}")

    return await get_vehicle_service(vehicle_id)


def is_deployable(status: str) -> bool:
    """A vehicle can take a new deployment unless it is in maintenance or retired."""
    return status in (VehicleStatus.AVAILABLE.value, VehicleStatus.DEPLOYED.value)
