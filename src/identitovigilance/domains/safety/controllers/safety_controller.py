"""
Safety controller - collision alerts, identity checks and wristbands
"""

from typing import List, Optional
from fastapi import APIRouter, Path, Query, Depends
import logging

from ..models.safety import (
    CollisionAlert,
    IdentityCheck,
    Wristband,
    WristbandScanResult,
    AlertCreateRequest,
    AlertActionRequest,
    AlertResolutionRequest,
    CollisionCheckRequest,
    IdentityCheckRequest,
    WristbandPrintRequest,
    WristbandScanRequest,
    WristbandReprintRequest,
    WristbandDeactivateRequest,
)
from ..services.alert_service import CollisionAlertService
from ..services.check_service import IdentityCheckRecorder
from ..services.wristband_service import WristbandService
from ....core.dependencies import get_alert_service, get_check_recorder, get_wristband_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/safety", tags=["safety"])


# Collision alerts

@router.post("/alerts", response_model=CollisionAlert, status_code=201)
async def create_collision_alert(
    request: AlertCreateRequest,
    service: CollisionAlertService = Depends(get_alert_service)
) -> CollisionAlert:
    return await service.create_collision_alert(
        request.identity_id,
        request.type,
        request.severity,
        request.message,
        context=request.context,
        encounter_id=request.encounter_id,
        location=request.location
    )


@router.get("/alerts", response_model=List[CollisionAlert])
async def get_active_alerts(
    identity_id: Optional[str] = Query(None, description="Filter by identity"),
    service: CollisionAlertService = Depends(get_alert_service)
) -> List[CollisionAlert]:
    return await service.get_active_alerts(identity_id)


@router.post("/alerts/{alert_id}/acknowledge", response_model=CollisionAlert)
async def acknowledge_alert(
    request: AlertActionRequest,
    alert_id: str = Path(..., description="Alert ID"),
    service: CollisionAlertService = Depends(get_alert_service)
) -> CollisionAlert:
    return await service.acknowledge_alert(alert_id, request.actor)


@router.post("/alerts/{alert_id}/resolve", response_model=CollisionAlert)
async def resolve_alert(
    request: AlertResolutionRequest,
    alert_id: str = Path(..., description="Alert ID"),
    service: CollisionAlertService = Depends(get_alert_service)
) -> CollisionAlert:
    return await service.resolve_alert(alert_id, request.reason, request.actor)


@router.post("/alerts/{alert_id}/false-positive", response_model=CollisionAlert)
async def mark_alert_false_positive(
    request: AlertResolutionRequest,
    alert_id: str = Path(..., description="Alert ID"),
    service: CollisionAlertService = Depends(get_alert_service)
) -> CollisionAlert:
    return await service.mark_alert_false_positive(alert_id, request.reason, request.actor)


@router.post("/collisions/check", response_model=List[CollisionAlert])
async def check_for_collisions(
    request: CollisionCheckRequest,
    service: CollisionAlertService = Depends(get_alert_service)
) -> List[CollisionAlert]:
    """
    Evaluate collision conditions for a patient arriving at a location

    Returns only the alerts raised by this call; conditions that already
    have an active alert for the encounter are not raised again.
    """
    return await service.check_for_collisions(request.identity_id, request.location, request.encounter_id)


# Identity checks

@router.post("/checks", response_model=IdentityCheck, status_code=201)
async def record_identity_check(
    request: IdentityCheckRequest,
    recorder: IdentityCheckRecorder = Depends(get_check_recorder)
) -> IdentityCheck:
    return await recorder.record_identity_check(request)


@router.get("/checks/encounter/{encounter_id}", response_model=List[IdentityCheck])
async def get_checks_by_encounter(
    encounter_id: str = Path(..., description="Encounter ID"),
    recorder: IdentityCheckRecorder = Depends(get_check_recorder)
) -> List[IdentityCheck]:
    return await recorder.get_checks_by_encounter(encounter_id)


@router.get("/checks/identity/{identity_id}", response_model=List[IdentityCheck])
async def get_identity_check_history(
    identity_id: str = Path(..., description="Identity ID"),
    recorder: IdentityCheckRecorder = Depends(get_check_recorder)
) -> List[IdentityCheck]:
    return await recorder.get_identity_check_history(identity_id)


# Wristbands

@router.post("/wristbands", response_model=Wristband, status_code=201)
async def generate_wristband(
    request: WristbandPrintRequest,
    service: WristbandService = Depends(get_wristband_service)
) -> Wristband:
    return await service.generate_wristband(
        request.identity_id,
        request.encounter_id,
        request.printed_by,
        request.print_location
    )


@router.post("/wristbands/scan", response_model=WristbandScanResult)
async def verify_wristband_scan(
    request: WristbandScanRequest,
    service: WristbandService = Depends(get_wristband_service)
) -> WristbandScanResult:
    return await service.verify_wristband_scan(request)


@router.post("/wristbands/{wristband_id}/reprint", response_model=Wristband, status_code=201)
async def reprint_wristband(
    request: WristbandReprintRequest,
    wristband_id: str = Path(..., description="Wristband ID"),
    service: WristbandService = Depends(get_wristband_service)
) -> Wristband:
    return await service.reprint_wristband(
        wristband_id,
        request.reprinted_by,
        request.reason,
        print_location=request.print_location
    )


@router.post("/wristbands/{wristband_id}/deactivate", response_model=Wristband)
async def deactivate_wristband(
    request: WristbandDeactivateRequest,
    wristband_id: str = Path(..., description="Wristband ID"),
    service: WristbandService = Depends(get_wristband_service)
) -> Wristband:
    return await service.deactivate_wristband(wristband_id, request.reason)
