# app/models/vehicle.py
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    DEPLOYED = "deployed"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class VehicleCreate(BaseModel):
    registration_number: str = Field(..., examples=["KA-01-EV-1234"], max_length=20)
    make: str = Field(..., examples=["Tata"], max_length=50)
    model: str = Field(..., examples=["Nexon EV"], max_length=50)
    year: int = Field(..., ge=2015)
    battery_capacity: float = Field(..., gt=0, description="Battery capacity in kWh")
    created_by: str = Field(..., description="User registering the vehicle")

    @field_validator("registration_number")
    @classmethod
    def normalize_registration(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("registration_number cannot be empty")
        return v


class VehicleRetire(BaseModel):
    actor_id: str
    reason: Optional[str] = None


class VehicleOut(BaseModel):
    vehicle_id: str
    registration_number: str
    make: str
    model: str
    year: int
    battery_capacity: float
    status: VehicleStatus
    created_by: str
    created_at: datetime
    updated_at: datetime
