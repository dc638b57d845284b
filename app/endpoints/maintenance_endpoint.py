from fastapi import APIRouter
from typing import List
from app.models.history import HistoryEntry
from app.models.maintenance import (
    MaintenanceCreate, MaintenanceOut, MaintenanceStatusUpdate, ScheduleMaintenanceResult,
)
from app.services import maintenance_service
from app.utiles.decoratores import handle_exceptions
from app.utiles.logger import get_logger

# Configure logger for this module
logger = get_logger(__name__)

# Create API router for maintenance scheduling
router = APIRouter(prefix="/maintenance", tags=["Maintenance Scheduling"])


@router.post("/schedule_maintenance", response_model=ScheduleMaintenanceResult, status_code=201)
@handle_exceptions
async def schedule_maintenance(payload: MaintenanceCreate):
    """
    Endpoint to reserve a vehicle for upkeep.

    Args:
        payload (MaintenanceCreate): Vehicle, window, type and description.

    Returns:
        ScheduleMaintenanceResult: The minted maintenance id and its status.
    """
    logger.info("API Request → Schedule maintenance for vehicle %s", payload.vehicle_id)
    result = await maintenance_service.schedule_maintenance_service(payload)
    logger.info("API Response → Maintenance scheduled: %s", result.maintenance_id)
    return result


@router.get("/due", response_model=List[MaintenanceOut])
@handle_exceptions
async def due_maintenance(days_ahead: int = 7):
    logger.info("API Request → Due maintenance within %s days", days_ahead)
    return await maintenance_service.get_due_maintenance_service(days_ahead)


@router.post("/activate_due")
@handle_exceptions
async def activate_due_maintenance():
    """
    Endpoint: Move vehicles into maintenance for windows that have started.
    Meant to be called by an operator or an external cron.
    """
    logger.info("API Request → Maintenance activation sweep")
    moved = await maintenance_service.activate_due_maintenance_service()
    return {"activated_vehicles": moved, "count": len(moved)}


@router.get("/{maintenance_id}", response_model=MaintenanceOut)
@handle_exceptions
async def get_maintenance(maintenance_id: str):
    return await maintenance_service.get_maintenance_service(maintenance_id)


@router.get("/{maintenance_id}/history", response_model=List[HistoryEntry])
@handle_exceptions
async def get_maintenance_history(maintenance_id: str):
    return await maintenance_service.get_maintenance_history_service(maintenance_id)


@router.put("/{maintenance_id}/status", response_model=MaintenanceOut)
@handle_exceptions
async def update_maintenance_status(maintenance_id: str, payload: MaintenanceStatusUpdate):
    logger.info("API Request → Update maintenance %s to %s", maintenance_id, payload.new_status)
    result = await maintenance_service.update_maintenance_status_service(
        maintenance_id, payload.new_status, payload.actor_id, payload.note
    )
    logger.info("API Response → Maintenance %s is now %s", maintenance_id, result.status)
    return result
