# app/models/commitment.py
from pydantic import BaseModel
from typing import Literal
from datetime import datetime


class Commitment(BaseModel):
    """One non-terminal reservation of a vehicle or pilot over [start, end)."""
    start: datetime
    end: datetime
    record_id: str
    kind: Literal["deployment", "maintenance"]
