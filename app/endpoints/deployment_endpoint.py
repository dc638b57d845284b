# endpoints/deployment_endpoint.py

from fastapi import APIRouter
from typing import List, Optional
from app.models.commitment import Commitment
from app.models.deployment import (
    CreateDeploymentResult, DeploymentCancel, DeploymentCreate, DeploymentOut,
    DeploymentStatus, DeploymentStatusUpdate, LocationUpdate, StatusUpdateResult,
)
from app.models.history import HistoryEntry
from app.services import deployment_service
from app.services.conflict_service import get_active_commitments
from app.utiles.decoratores import handle_exceptions
from app.utiles.logger import get_logger

# Initialize logger for this module
logger = get_logger(__name__)

# APIRouter for deployment management
router = APIRouter(prefix="/deployments", tags=["Deployments"])

# ======================================================
# Deployment Routes
# Exposes the deployment lifecycle over REST
# ======================================================


# ---------------- Create Deployment ----------------
@router.post("/create_deployment", response_model=CreateDeploymentResult, status_code=201)
@handle_exceptions
async def create_deployment(payload: DeploymentCreate):
    """
    Endpoint: Assign a vehicle and pilot to a time window.
    Calls service layer → deployment_service.create_deployment_service.
    """
    logger.info("API Request → Create Deployment: vehicle=%s, pilot=%s", payload.vehicle_id, payload.pilot_id)
    result = await deployment_service.create_deployment_service(payload)
    logger.info("API Response → Deployment created: %s", result.deployment_id)
    return result


# ---------------- Search Deployments ----------------
@router.get("/search_deployment", response_model=List[DeploymentOut])
@handle_exceptions
async def search_deployments(
    vehicle_id: Optional[str] = None,
    pilot_id: Optional[str] = None,
    status: Optional[DeploymentStatus] = None,
    limit: int = 50,
    skip: int = 0
):
    logger.info("API Request → Search Deployments: vehicle=%s, pilot=%s, status=%s", vehicle_id, pilot_id, status)
    results = await deployment_service.list_deployments_service(vehicle_id, pilot_id, status, limit, skip)
    logger.info("API Response → Search completed. Found %s deployments", len(results))
    return results


# ---------------- Pilot Commitments ----------------
@router.get("/pilots/{pilot_id}/commitments", response_model=List[Commitment])
@handle_exceptions
async def pilot_commitments(pilot_id: str):
    """
    Endpoint: Open deployments for a pilot, ordered by start.
    """
    logger.info("API Request → Pilot commitments: pilot_id=%s", pilot_id)
    return await get_active_commitments("pilot", pilot_id)


# ---------------- Get Deployment ----------------
@router.get("/{deployment_id}", response_model=DeploymentOut)
@handle_exceptions
async def get_deployment(deployment_id: str):
    logger.info("API Request → Get Deployment: %s", deployment_id)
    return await deployment_service.get_deployment_service(deployment_id)


# ---------------- Deployment History ----------------
@router.get("/{deployment_id}/history", response_model=List[HistoryEntry])
@handle_exceptions
async def get_deployment_history(deployment_id: str):
    logger.info("API Request → Deployment history: %s", deployment_id)
    return await deployment_service.get_deployment_history_service(deployment_id)


# ---------------- Update Status ----------------
@router.put("/{deployment_id}/status", response_model=StatusUpdateResult)
@handle_exceptions
async def update_deployment_status(deployment_id: str, payload: DeploymentStatusUpdate):
    """
    Endpoint: Move a deployment along its lifecycle.
    Illegal transitions are rejected with the attempted edge in the response.
    """
    logger.info("API Request → Update Deployment Status: %s -> %s", deployment_id, payload.new_status)
    result = await deployment_service.update_deployment_status_service(
        deployment_id, payload.new_status, payload.actor_id, payload.note
    )
    logger.info("API Response → Deployment %s is now %s", deployment_id, result.status)
    return result


# ---------------- Cancel Deployment ----------------
@router.put("/{deployment_id}/cancel", response_model=StatusUpdateResult)
@handle_exceptions
async def cancel_deployment(deployment_id: str, payload: DeploymentCancel):
    """
    Endpoint: Cancel a scheduled or in-progress deployment and release its vehicle.
    """
    logger.info("API Request → Cancel Deployment: %s", deployment_id)
    result = await deployment_service.cancel_deployment_service(deployment_id, payload.actor_id, payload.reason)
    logger.info("API Response → Deployment %s cancelled", deployment_id)
    return result


# ---------------- Location Update ----------------
@router.post("/{deployment_id}/location", response_model=HistoryEntry)
@handle_exceptions
async def record_location(deployment_id: str, payload: LocationUpdate):
    """
    Endpoint: Record a location/telemetry sample for a running deployment.
    """
    logger.info("API Request → Location update for %s", deployment_id)
    return await deployment_service.record_location_update_service(deployment_id, payload)
