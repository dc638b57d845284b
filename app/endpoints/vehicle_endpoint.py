from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter
from app.models.commitment import Commitment
from app.models.deployment import VehicleDeploymentStatus
from app.models.vehicle import VehicleCreate, VehicleOut, VehicleRetire, VehicleStatus
from app.services.conflict_service import get_active_commitments
from app.services.vehicle_service import (
    register_vehicle_service,
    get_vehicle_service,
    search_vehicles_service,
    retire_vehicle_service,
    find_free_vehicles_service,
    get_vehicle_by_registration_service,
)
from app.utiles.decoratores import handle_exceptions
from app.utiles.logger import get_logger

# Initialize logger
logger = get_logger(__name__)

# APIRouter for vehicle management
router = APIRouter(prefix="/vehicles", tags=["Vehicle Management"])

# ======================================================
# Vehicle Routes
# Registration, lookup, retirement and commitment views.
# Status is never set directly here; it follows deployments and maintenance.
# ======================================================

# ---------------- Register Vehicle ----------------
@router.post("/register_vehicle", response_model=VehicleOut)
@handle_exceptions
async def register_vehicle(vehicle: VehicleCreate):
    """
    Endpoint: Register a new vehicle.
    Calls service layer → register_vehicle_service.
    """
    logger.info("API Request → Register Vehicle: Registration=%s", vehicle.registration_number)
    response = await register_vehicle_service(vehicle)
    logger.info("API Response → Vehicle registered successfully: ID=%s", response.vehicle_id)
    return response


# ---------------- Search Vehicles ----------------
@router.get("/search_vehicle", response_model=List[VehicleOut])
@handle_exceptions
async def search_vehicle(status: Optional[VehicleStatus] = None, limit: int = 100):
    """
    Endpoint: List vehicles, optionally filtered by status.
    """
    logger.info("API Request → Search Vehicle (Status=%s)", status)
    response = await search_vehicles_service(status, limit)
    logger.info("API Response → Search completed, found=%s vehicles", len(response))
    return response


# ---------------- Free Vehicles ----------------
@router.get("/available", response_model=List[VehicleOut])
@handle_exceptions
async def available_vehicles(start: datetime, end: datetime, limit: int = 50):
    """
    Endpoint: Vehicles with no deployment or maintenance in [start, end).
    """
    logger.info("API Request → Free vehicles for [%s, %s)", start, end)
    response = await find_free_vehicles_service(start, end, limit)
    logger.info("API Response → %s free vehicles", len(response))
    return response


# ---------------- Lookup by Registration ----------------
@router.get("/registration/{registration_number}", response_model=VehicleDeploymentStatus)
@handle_exceptions
async def vehicle_by_registration(registration_number: str):
    logger.info("API Request → Vehicle by registration: %s", registration_number)
    return await get_vehicle_by_registration_service(registration_number)


# ---------------- Get Vehicle ----------------
@router.get("/{vehicle_id}", response_model=VehicleOut)
@handle_exceptions
async def get_vehicle(vehicle_id: str):
    logger.info("API Request → Get Vehicle: ID=%s", vehicle_id)
    return await get_vehicle_service(vehicle_id)


# ---------------- Retire Vehicle ----------------
@router.put("/{vehicle_id}/retire", response_model=VehicleOut)
@handle_exceptions
async def retire_vehicle(vehicle_id: str, req: VehicleRetire):
    """
    Endpoint: Retire a vehicle (vehicles are never deleted).
    Rejected while deployments or maintenance windows still hold it.
    """
    logger.info("API Request → Retire Vehicle: ID=%s by %s", vehicle_id, req.actor_id)
    response = await retire_vehicle_service(vehicle_id, req.actor_id, req.reason)
    logger.info("API Response → Vehicle retired: ID=%s", vehicle_id)
    return response


# ---------------- Active Commitments ----------------
@router.get("/{vehicle_id}/commitments", response_model=List[Commitment])
@handle_exceptions
async def vehicle_commitments(vehicle_id: str):
    """
    Endpoint: Open deployments and maintenance windows for a vehicle, ordered by start.
    """
    logger.info("API Request → Vehicle commitments: ID=%s", vehicle_id)
    return await get_active_commitments("vehicle", vehicle_id)
