# app/models/maintenance.py
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import datetime


class MaintenanceStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


MaintenanceType = Literal[
    "routine_service",
    "battery_check",
    "tire_replacement",
    "brake_service",
    "emergency_repair",
    "software_update",
    "charging_system_check",
    "motor_service",
    "body_repair",
    "electrical_repair",
]


class MaintenanceCreate(BaseModel):
    vehicle_id: str
    unavailable_from: datetime
    unavailable_to: datetime
    maintenance_type: MaintenanceType
    description: str = Field(..., max_length=1000)
    priority: Literal["low", "medium", "high", "critical", "emergency"] = "medium"
    created_by: str


class MaintenanceStatusUpdate(BaseModel):
    new_status: MaintenanceStatus
    actor_id: str
    note: Optional[str] = Field(None, max_length=500)


class MaintenanceOut(BaseModel):
    maintenance_id: str
    vehicle_id: str
    unavailable_from: datetime
    unavailable_to: datetime
    maintenance_type: str
    description: str
    priority: str
    status: MaintenanceStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_by: str
    created_at: datetime
    updated_at: datetime


class ScheduleMaintenanceResult(BaseModel):
    maintenance_id: str
    status: MaintenanceStatus
