"""
Monitoring controller - compliance, audits, metrics and exports
"""

from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Path, Query, Depends
from fastapi.responses import PlainTextResponse
import logging

from ..models.audit import (
    AuditCompleteRequest,
    AuditCreateRequest,
    AuditFinding,
    AuditRunRequest,
    AuditStatus,
    IdentityAudit,
    IdentityMetrics,
    PolicyCheckResult,
)
from ..services.audit_service import AuditService
from ...identity.models.identity import PatientIdentity
from ....core.dependencies import get_audit_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/monitoring", tags=["monitoring"])


@router.get("/quality", response_model=List[PatientIdentity])
async def get_patients_below_quality_threshold(
    threshold: Optional[int] = Query(None, ge=0, le=100, description="Defaults to the policy minimum"),
    service: AuditService = Depends(get_audit_service)
) -> List[PatientIdentity]:
    return await service.get_patients_below_quality_threshold(threshold)


@router.get("/compliance/{identity_id}", response_model=PolicyCheckResult)
async def validate_against_policy(
    identity_id: str = Path(..., description="Identity ID"),
    enforce: bool = Query(False, description="Fail with 422 when the identity is not compliant"),
    service: AuditService = Depends(get_audit_service)
) -> PolicyCheckResult:
    return await service.validate_against_policy(identity_id, enforce=enforce)


@router.post("/audits", response_model=IdentityAudit)
async def run_compliance_audit(
    request: AuditRunRequest,
    service: AuditService = Depends(get_audit_service)
) -> IdentityAudit:
    """Audit the facility in one pass; the completed audit is stored"""
    return await service.run_compliance_audit(request.auditor_id)


@router.post("/audits/manual", response_model=IdentityAudit, status_code=201)
async def create_audit(
    request: AuditCreateRequest,
    service: AuditService = Depends(get_audit_service)
) -> IdentityAudit:
    return await service.create_audit(request.auditor_id, request.scope)


@router.get("/audits", response_model=List[IdentityAudit])
async def list_audits(
    status: Optional[AuditStatus] = Query(None, description="Filter by audit status"),
    service: AuditService = Depends(get_audit_service)
) -> List[IdentityAudit]:
    return await service.list_audits(status)


@router.get("/audits/{audit_id}", response_model=IdentityAudit)
async def get_audit(
    audit_id: str = Path(..., description="Audit ID"),
    service: AuditService = Depends(get_audit_service)
) -> IdentityAudit:
    return await service.get_audit(audit_id)


@router.post("/audits/{audit_id}/findings", response_model=IdentityAudit)
async def add_audit_finding(
    finding: AuditFinding,
    audit_id: str = Path(..., description="Audit ID"),
    service: AuditService = Depends(get_audit_service)
) -> IdentityAudit:
    return await service.add_audit_finding(audit_id, finding)


@router.post("/audits/{audit_id}/complete", response_model=IdentityAudit)
async def complete_audit(
    request: AuditCompleteRequest,
    audit_id: str = Path(..., description="Audit ID"),
    service: AuditService = Depends(get_audit_service)
) -> IdentityAudit:
    return await service.complete_audit(audit_id, request.recommendations)


@router.get("/metrics", response_model=IdentityMetrics)
async def get_identity_metrics(
    period_start: Optional[datetime] = Query(None, description="Start of the period, inclusive"),
    period_end: Optional[datetime] = Query(None, description="End of the period, inclusive"),
    service: AuditService = Depends(get_audit_service)
) -> IdentityMetrics:
    return await service.get_identity_metrics(period_start, period_end)


@router.get("/export", response_class=PlainTextResponse)
async def export_for_monitoring(
    service: AuditService = Depends(get_audit_service)
) -> PlainTextResponse:
    """CSV export of active identities for national monitoring"""
    csv = await service.export_for_monitoring()
    return PlainTextResponse(
        csv,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=identity_monitoring.csv"}
    )
