# app/services/conflict_service.py
"""
Interval conflict detection over half-open [start, end) windows.

Vehicles are committed by deployments and maintenance windows, pilots by
deployments only. Only non-terminal records hold a resource.
"""
from datetime import datetime
from typing import List, Optional

from app.core.config import COLLECTION_DEPLOYMENTS, COLLECTION_MAINTENANCE
from app.core.exceptions import ResourceUnavailable, ValidationError
from app.db.mongodb import get_db
from app.models.commitment import Commitment
from app.services.status_machine import DEPLOYMENT_MACHINE, MAINTENANCE_MACHINE
from app.utiles.logger import get_logger

logger = get_logger(__name__)

RESOURCE_VEHICLE = "vehicle"
RESOURCE_PILOT = "pilot"
RESOURCE_KINDS = (RESOURCE_VEHICLE, RESOURCE_PILOT)


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


def validate_interval(start: datetime, end: datetime, field: str = "end") -> None:
    if start is None or end is None:
        raise ValidationError(field, "Both start and end of the window are required")
    if end <= start:
        raise ValidationError(field, f"Window end {end.isoformat()} must be after start {start.isoformat()}")


async def get_active_commitments(resource_kind: str, resource_id: str) -> List[Commitment]:
    """All non-terminal commitments holding a resource, ordered by start time."""
    if resource_kind not in RESOURCE_KINDS:
        raise ValidationError("resource_kind", f"Unknown resource kind '{resource_kind}'")

    db = get_db()
    owner_field = "vehicle_id" if resource_kind == RESOURCE_VEHICLE else "pilot_id"
    commitments = []

    cursor = db[COLLECTION_DEPLOYMENTS].find(
        {owner_field: resource_id, "status": {"$in": DEPLOYMENT_MACHINE.non_terminal()}},
        {"_id": 0, "deployment_id": 1, "start_time": 1, "estimated_end_time": 1},
    )
    async for doc in cursor:
        commitments.append(Commitment(
            start=doc["start_time"], end=doc["estimated_end_time"],
            record_id=doc["deployment_id"], kind="deployment",
        ))

    if resource_kind == RESOURCE_VEHICLE:
        cursor = db[COLLECTION_MAINTENANCE].find(
            {"vehicle_id": resource_id, "status": {"$in": MAINTENANCE_MACHINE.non_terminal()}},
            {"_id": 0, "maintenance_id": 1, "unavailable_from": 1, "unavailable_to": 1},
        )
        async for doc in cursor:
            commitments.append(Commitment(
                start=doc["unavailable_from"], end=doc["unavailable_to"],
                record_id=doc["maintenance_id"], kind="maintenance",
            ))

    commitments.sort(key=lambda c: (c.start, c.end, c.record_id))
    return commitments


async def find_conflict(
    resource_kind: str,
    resource_id: str,
    start: datetime,
    end: datetime,
    exclude_record_id: Optional[str] = None,
) -> Optional[Commitment]:
    validate_interval(start, end)
    for commitment in await get_active_commitments(resource_kind, resource_id):
        if exclude_record_id and commitment.record_id == exclude_record_id:
            continue
        if intervals_overlap(start, end, commitment.start, commitment.end):
            return commitment
    return None


async def has_conflict(
    resource_kind: str,
    resource_id: str,
    start: datetime,
    end: datetime,
    exclude_record_id: Optional[str] = None,
) -> bool:
    return await find_conflict(resource_kind, resource_id, start, end, exclude_record_id) is not None


async def ensure_no_conflict(
    resource_kind: str,
    resource_id: str,
    start: datetime,
    end: datetime,
    exclude_record_id: Optional[str] = None,
) -> None:
    conflict = await find_conflict(resource_kind, resource_id, start, end, exclude_record_id)
    if conflict:
        logger.warning(
            "Conflict: %s %s window [%s, %s) overlaps %s %s",
            resource_kind, resource_id, start, end, conflict.kind, conflict.record_id,
        )
        raise ResourceUnavailable(
            f"{resource_kind.title()} {resource_id} is already committed to "
            f"{conflict.kind} {conflict.record_id} in that window",
            resource_kind=resource_kind, resource_id=resource_id, conflicting_id=conflict.record_id,
        )
