# app/models/deployment.py
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Literal
from datetime import datetime

from app.models.vehicle import VehicleOut
from app.models.pilot import PilotSnapshot


class DeploymentStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


DeploymentPurpose = Literal[
    "passenger_trip", "delivery", "maintenance", "testing", "relocation", "emergency"
]


# Range checks on coordinates happen in the service so that they surface as
# scheduling ValidationErrors rather than request-parsing errors.
class Location(BaseModel):
    latitude: float
    longitude: float
    address: Optional[str] = Field(None, max_length=200)


class DeploymentCreate(BaseModel):
    vehicle_id: str = Field(..., examples=["VEH_001_261018"])
    pilot_id: str = Field(..., examples=["USR_pilot_01"])
    start_time: datetime
    estimated_end_time: datetime
    start_location: Location
    end_location: Optional[Location] = None
    purpose: DeploymentPurpose
    description: Optional[str] = Field(None, max_length=500)
    created_by: str

    @field_validator("vehicle_id", "pilot_id", "created_by")
    @classmethod
    def strip_ids(cls, v: str) -> str:
        return v.strip()


class DeploymentStatusUpdate(BaseModel):
    new_status: DeploymentStatus
    actor_id: str
    note: Optional[str] = Field(None, max_length=500)


class DeploymentCancel(BaseModel):
    actor_id: str
    reason: Optional[str] = Field(None, max_length=500)


class LocationUpdate(BaseModel):
    latitude: float
    longitude: float
    battery_level: Optional[float] = None
    speed: Optional[float] = None
    actor_id: Optional[str] = None


class DeploymentOut(BaseModel):
    deployment_id: str
    vehicle_id: str
    pilot_id: str
    start_time: datetime
    estimated_end_time: datetime
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    start_location: Location
    end_location: Optional[Location] = None
    current_location: Optional[Location] = None
    purpose: str
    description: Optional[str] = None
    status: DeploymentStatus
    created_by: str
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CreateDeploymentResult(BaseModel):
    deployment_id: str
    status: DeploymentStatus
    vehicle_snapshot: VehicleOut
    pilot_snapshot: PilotSnapshot


class StatusUpdateResult(BaseModel):
    status: DeploymentStatus
    updated_at: datetime


class VehicleDeploymentStatus(BaseModel):
    """A vehicle together with the deployment it is currently out on, if any."""
    vehicle: VehicleOut
    current_deployment: Optional[DeploymentOut] = None
    deployable: bool
