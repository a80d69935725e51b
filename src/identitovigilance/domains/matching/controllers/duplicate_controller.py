"""
Duplicate controller - HTTP endpoints for duplicate detection and merges
"""

from typing import List, Optional
from fastapi import APIRouter, Path, Query, Depends
import logging

from ..models.duplicate import (
    DuplicateCandidate,
    DuplicateCase,
    CaseStatus,
    CaseCreateRequest,
    InvestigationRequest,
    ResolutionRequest,
    MergeRequest,
)
from ..services.duplicate_service import DuplicateService
from ...identity.models.identity import PatientIdentity, PatientTraits
from ....core.dependencies import get_duplicate_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/duplicates", tags=["duplicates"])


@router.get("/candidates/{identity_id}", response_model=List[DuplicateCandidate])
async def find_duplicate_candidates(
    identity_id: str = Path(..., description="Identity ID"),
    service: DuplicateService = Depends(get_duplicate_service)
) -> List[DuplicateCandidate]:
    """
    Score possible duplicates of an identity

    Candidates share the birth date or the normalized birth family name and
    reach at least the policy floor. Best matches come first.
    """
    return await service.find_duplicate_candidates(identity_id)


@router.post("/search", response_model=List[DuplicateCandidate])
async def search_potential_duplicates(
    traits: PatientTraits,
    service: DuplicateService = Depends(get_duplicate_service)
) -> List[DuplicateCandidate]:
    """Look for registered identities matching traits before registering a new one"""
    return await service.search_potential_duplicates(traits)


@router.post("/detect/{identity_id}", response_model=List[DuplicateCase])
async def detect_duplicates(
    identity_id: str = Path(..., description="Identity ID"),
    service: DuplicateService = Depends(get_duplicate_service)
) -> List[DuplicateCase]:
    return await service.detect_duplicates(identity_id)


@router.post("/cases", response_model=DuplicateCase, status_code=201)
async def create_duplicate_case(
    request: CaseCreateRequest,
    service: DuplicateService = Depends(get_duplicate_service)
) -> DuplicateCase:
    return await service.create_duplicate_case(
        request.primary_identity_id,
        request.secondary_identity_id,
        detection_method=request.detection_method,
        notes=request.notes
    )


@router.get("/cases", response_model=List[DuplicateCase])
async def list_duplicate_cases(
    status: Optional[CaseStatus] = Query(None, description="Filter by case status"),
    service: DuplicateService = Depends(get_duplicate_service)
) -> List[DuplicateCase]:
    return await service.list_duplicate_cases(status)


@router.get("/cases/{case_id}", response_model=DuplicateCase)
async def get_duplicate_case(
    case_id: str = Path(..., description="Case ID"),
    service: DuplicateService = Depends(get_duplicate_service)
) -> DuplicateCase:
    return await service.get_duplicate_case(case_id)


@router.post("/cases/{case_id}/investigate", response_model=DuplicateCase)
async def start_investigation(
    request: InvestigationRequest,
    case_id: str = Path(..., description="Case ID"),
    service: DuplicateService = Depends(get_duplicate_service)
) -> DuplicateCase:
    return await service.start_investigation(case_id, request.assigned_to)


@router.post("/cases/{case_id}/resolve", response_model=DuplicateCase)
async def resolve_duplicate_case(
    request: ResolutionRequest,
    case_id: str = Path(..., description="Case ID"),
    service: DuplicateService = Depends(get_duplicate_service)
) -> DuplicateCase:
    """
    Resolve an open duplicate case

    A merge decision merges the other identity of the pair into the chosen
    survivor in the same atomic write as the case update.
    """
    return await service.resolve_duplicate_case(case_id, request)


@router.post("/merge", response_model=PatientIdentity)
async def merge_identities(
    request: MergeRequest,
    service: DuplicateService = Depends(get_duplicate_service)
) -> PatientIdentity:
    return await service.merge_identities(request.survivor_id, request.merged_id, request.merged_by)
