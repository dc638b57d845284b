# app/models/history.py
from pydantic import BaseModel, ConfigDict
from typing import Optional, Literal
from datetime import datetime

EntryType = Literal["created", "status_change", "location_update"]


class HistoryEntry(BaseModel):
    """Append-only record of one status transition or location update."""
    model_config = ConfigDict(frozen=True)

    entry_id: str
    parent_kind: Literal["deployment", "maintenance"]
    parent_id: str
    entry_type: EntryType
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    actor_id: Optional[str] = None
    note: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    battery_level: Optional[float] = None
    speed: Optional[float] = None
    recorded_at: datetime
