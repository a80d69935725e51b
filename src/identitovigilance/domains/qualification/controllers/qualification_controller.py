"""
Qualification controller - national identifier teleservice requests
"""

from typing import List, Dict, Optional
from fastapi import APIRouter, Path, Query, Depends
from datetime import timedelta
import logging

from ..models.qualification import QualificationRequest, QualificationStartRequest, TeleserviceResponse
from ..services.qualification_service import QualificationService
from ....core.dependencies import get_qualification_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/qualification", tags=["qualification"])


@router.post("/identities/{identity_id}", response_model=QualificationRequest, status_code=201)
async def request_qualification(
    request: QualificationStartRequest,
    identity_id: str = Path(..., description="Identity ID"),
    service: QualificationService = Depends(get_qualification_service)
) -> QualificationRequest:
    """
    Query the national teleservice for an identity

    The returned request carries the outcome: success or provisional when
    an identifier was attached, no_match, error, or expired on timeout.
    """
    return await service.request_qualification(identity_id, request.request_type, request.requested_by)


@router.get("/identities/{identity_id}/requests", response_model=List[QualificationRequest])
async def list_requests(
    identity_id: str = Path(..., description="Identity ID"),
    service: QualificationService = Depends(get_qualification_service)
) -> List[QualificationRequest]:
    return await service.list_requests(identity_id)


@router.get("/requests/{request_id}", response_model=QualificationRequest)
async def get_request(
    request_id: str = Path(..., description="Request ID"),
    service: QualificationService = Depends(get_qualification_service)
) -> QualificationRequest:
    return await service.get_request(request_id)


@router.post("/requests/{request_id}/response", response_model=QualificationRequest)
async def apply_qualification_response(
    response: TeleserviceResponse,
    request_id: str = Path(..., description="Request ID"),
    service: QualificationService = Depends(get_qualification_service)
) -> QualificationRequest:
    """Apply a teleservice answer delivered after the request was submitted"""
    return await service.apply_qualification_response(request_id, response)


@router.post("/requests/expire")
async def expire_stale_requests(
    max_age_minutes: Optional[int] = Query(None, gt=0, description="Override the configured maximum request age"),
    service: QualificationService = Depends(get_qualification_service)
) -> Dict[str, int]:
    max_age = timedelta(minutes=max_age_minutes) if max_age_minutes else None
    return {"expired": await service.expire_stale_requests(max_age)}
