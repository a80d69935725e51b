"""
Identity controller - HTTP endpoint handlers
"""

from typing import List
from fastapi import APIRouter, Path, Query, Depends, Response
import logging

from ..models.identity import (
    PatientIdentity,
    IdentityStatus,
    PatientAlias,
    IdentityVerification,
    IdentityCreateRequest,
    TraitUpdateRequest,
    VerificationRequest,
    DocumentVerificationRequest,
    NationalIdInvalidationRequest,
    AliasCreateRequest,
    QualityScoreResponse,
)
from ..services.identity_service import IdentityService
from ....core.dependencies import get_identity_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/identities", tags=["identities"])


@router.post("", response_model=PatientIdentity, status_code=201)
async def create_identity(
    request: IdentityCreateRequest,
    service: IdentityService = Depends(get_identity_service)
) -> PatientIdentity:
    """
    Register a new patient identity

    Identities start provisional unless registered as fictitious (test)
    or anonymous (emergency) records.
    """
    return await service.create_identity(request)


@router.get("", response_model=List[PatientIdentity])
async def list_identities_by_status(
    status: IdentityStatus = Query(..., description="Identity status to list"),
    service: IdentityService = Depends(get_identity_service)
) -> List[PatientIdentity]:
    return await service.list_identities_by_status(status)


@router.get("/without-national-id", response_model=List[PatientIdentity])
async def list_identities_without_national_id(
    service: IdentityService = Depends(get_identity_service)
) -> List[PatientIdentity]:
    """Active identities still waiting for a qualified national identifier"""
    return await service.list_identities_without_national_id()


@router.get("/by-national-id/{value}", response_model=PatientIdentity)
async def get_identity_by_national_id(
    value: str = Path(..., description="National identifier"),
    service: IdentityService = Depends(get_identity_service)
) -> PatientIdentity:
    return await service.get_identity_by_national_id(value)


@router.get("/by-local-id/{local_id}", response_model=PatientIdentity)
async def get_identity_by_local_id(
    local_id: str = Path(..., description="Facility identifier"),
    service: IdentityService = Depends(get_identity_service)
) -> PatientIdentity:
    return await service.get_identity_by_local_id(local_id)


@router.get("/{identity_id}", response_model=PatientIdentity)
async def get_identity(
    identity_id: str = Path(..., description="Identity ID"),
    service: IdentityService = Depends(get_identity_service)
) -> PatientIdentity:
    return await service.get_identity(identity_id)


@router.patch("/{identity_id}/traits", response_model=PatientIdentity)
async def update_traits(
    request: TraitUpdateRequest,
    identity_id: str = Path(..., description="Identity ID"),
    service: IdentityService = Depends(get_identity_service)
) -> PatientIdentity:
    """
    Correct identity traits

    Only the traits present in the request body are changed. The correction
    is recorded as a verification with its discrepancies.
    """
    return await service.update_traits(
        identity_id,
        request.changes.model_dump(exclude_unset=True),
        request.verified_by,
        document_type=request.document_type,
        expected_version=request.expected_version
    )


@router.post("/{identity_id}/verifications", response_model=IdentityVerification, status_code=201)
async def record_verification(
    request: VerificationRequest,
    identity_id: str = Path(..., description="Identity ID"),
    service: IdentityService = Depends(get_identity_service)
) -> IdentityVerification:
    return await service.record_verification(
        identity_id,
        request.verification_type,
        request.verified_by,
        result=request.result,
        discrepancies=request.discrepancies,
        target_status=request.target_status,
        expected_version=request.expected_version,
        document_type=request.document_type,
        document_number=request.document_number,
        document_expiry_date=request.document_expiry_date,
        notes=request.notes
    )


@router.post("/{identity_id}/documents", response_model=IdentityVerification, status_code=201)
async def verify_with_document(
    request: DocumentVerificationRequest,
    identity_id: str = Path(..., description="Identity ID"),
    service: IdentityService = Depends(get_identity_service)
) -> IdentityVerification:
    """Verify the identity against a physical document or health card"""
    return await service.verify_with_document(
        identity_id,
        request.document_type,
        request.document_number,
        request.document_expiry_date,
        request.verified_by,
        discrepancies=request.discrepancies,
        expected_version=request.expected_version
    )


@router.get("/{identity_id}/verifications", response_model=List[IdentityVerification])
async def get_verification_history(
    identity_id: str = Path(..., description="Identity ID"),
    service: IdentityService = Depends(get_identity_service)
) -> List[IdentityVerification]:
    return await service.get_verification_history(identity_id)


@router.post("/{identity_id}/national-id/invalidate", response_model=PatientIdentity)
async def invalidate_national_id(
    request: NationalIdInvalidationRequest,
    identity_id: str = Path(..., description="Identity ID"),
    service: IdentityService = Depends(get_identity_service)
) -> PatientIdentity:
    return await service.invalidate_national_id(identity_id, request.reason, request.invalidated_by)


@router.post("/{identity_id}/aliases", response_model=PatientAlias, status_code=201)
async def add_alias(
    request: AliasCreateRequest,
    identity_id: str = Path(..., description="Identity ID"),
    service: IdentityService = Depends(get_identity_service)
) -> PatientAlias:
    return await service.add_alias(identity_id, request)


@router.get("/{identity_id}/aliases", response_model=List[PatientAlias])
async def get_aliases(
    identity_id: str = Path(..., description="Identity ID"),
    service: IdentityService = Depends(get_identity_service)
) -> List[PatientAlias]:
    return await service.get_aliases(identity_id)


@router.delete("/{identity_id}/aliases/{alias_id}", status_code=204)
async def remove_alias(
    identity_id: str = Path(..., description="Identity ID"),
    alias_id: str = Path(..., description="Alias ID"),
    service: IdentityService = Depends(get_identity_service)
) -> Response:
    await service.remove_alias(identity_id, alias_id)
    return Response(status_code=204)


@router.get("/{identity_id}/quality", response_model=QualityScoreResponse)
async def get_quality_score(
    identity_id: str = Path(..., description="Identity ID"),
    service: IdentityService = Depends(get_identity_service)
) -> QualityScoreResponse:
    identity = await service.get_identity(identity_id)
    score = await service.get_quality_score(identity_id)
    return QualityScoreResponse(identity_id=identity_id, quality_score=score, status=identity.status)
