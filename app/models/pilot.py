# app/models/pilot.py
from pydantic import BaseModel
from typing import Optional

PILOT_ROLE = "pilot"


# Pilots live in the shared users collection, owned by the account layer.
class PilotSnapshot(BaseModel):
    user_id: str
    full_name: Optional[str] = None
    role: str
    is_active: bool
    license_number: Optional[str] = None
