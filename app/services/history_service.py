# app/services/history_service.py
from datetime import datetime
from typing import List, Optional

from app.core.config import COLLECTION_HISTORY
from app.db.mongodb import get_db
from app.models.history import HistoryEntry
from app.utiles.custom_helpers import _now_utc, _gen_entry_id, _strip_mongo_id
from app.utiles.logger import get_logger

logger = get_logger(__name__)

# History is append-only: this module exposes no update or delete.


async def append_entry(
    parent_kind: str,
    parent_id: str,
    entry_type: str,
    previous_status: Optional[str] = None,
    new_status: Optional[str] = None,
    actor_id: Optional[str] = None,
    note: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    battery_level: Optional[float] = None,
    speed: Optional[float] = None,
    recorded_at: Optional[datetime] = None,
) -> HistoryEntry:
    entry = HistoryEntry(
        entry_id=_gen_entry_id(),
        parent_kind=parent_kind,
        parent_id=parent_id,
        entry_type=entry_type,
        previous_status=previous_status,
        new_status=new_status,
        actor_id=actor_id,
        note=note,
        latitude=latitude,
        longitude=longitude,
        battery_level=battery_level,
        speed=speed,
        recorded_at=recorded_at or _now_utc(),
    )
    await get_db()[COLLECTION_HISTORY].insert_one(entry.model_dump())
    logger.info("History %s appended for %s %s (%s -> %s)",
                entry_type, parent_kind, parent_id, previous_status, new_status)
    return entry


async def list_entries(parent_id: str) -> List[HistoryEntry]:
    cursor = get_db()[COLLECTION_HISTORY].find({"parent_id": parent_id}).sort([("recorded_at", 1), ("_id", 1)])
    return [HistoryEntry(**_strip_mongo_id(doc)) async for doc in cursor]
