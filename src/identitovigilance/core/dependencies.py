"""
Dependency injection for the application
"""

from fastapi import Request, Depends

from ..domains.identity.services.identity_service import IdentityService
from ..domains.matching.services.duplicate_service import DuplicateService
from ..domains.safety.services.alert_service import CollisionAlertService
from ..domains.safety.services.check_service import IdentityCheckRecorder
from ..domains.safety.services.wristband_service import WristbandService
from ..domains.qualification.services.qualification_service import QualificationService
from ..domains.monitoring.services.audit_service import AuditService


async def get_service_context(request: Request):
    """Get the service context built at startup"""
    return request.app.state.identitovigilance


async def get_identity_service(context=Depends(get_service_context)) -> IdentityService:
    return context.identity_service


async def get_duplicate_service(context=Depends(get_service_context)) -> DuplicateService:
    return context.duplicate_service


async def get_alert_service(context=Depends(get_service_context)) -> CollisionAlertService:
    return context.alert_service


async def get_check_recorder(context=Depends(get_service_context)) -> IdentityCheckRecorder:
    return context.check_recorder


async def get_wristband_service(context=Depends(get_service_context)) -> WristbandService:
    return context.wristband_service


async def get_qualification_service(context=Depends(get_service_context)) -> QualificationService:
    return context.qualification_service


async def get_audit_service(context=Depends(get_service_context)) -> AuditService:
    return context.audit_service
