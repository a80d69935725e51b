"""
Identity check recorder
"""

from typing import List
import logging

from ..models.safety import (
    IdentityCheck,
    IdentityCheckRequest,
    CheckType,
    CheckResult,
    CollisionType,
    AlertSeverity,
)
from ..repositories.safety_repository import CheckRepository
from .alert_service import CollisionAlertService
from ...identity.repositories.identity_repository import IdentityRepository
from ....core.errors import NotFoundError


logger = logging.getLogger(__name__)

# Wrong-patient errors at these points harm the patient directly
CRITICAL_CHECK_TYPES = (CheckType.PROCEDURE, CheckType.MEDICATION)


class IdentityCheckRecorder:
    """Records point-of-care identity checks and flags discrepancies"""

    def __init__(
        self,
        check_repository: CheckRepository,
        identity_repository: IdentityRepository,
        alert_service: CollisionAlertService
    ):
        self.check_repository = check_repository
        self.identity_repository = identity_repository
        self.alert_service = alert_service

    async def record_identity_check(self, request: IdentityCheckRequest) -> IdentityCheck:
        if await self.identity_repository.get(request.identity_id) is None:
            raise NotFoundError("Identity", request.identity_id)

        check = IdentityCheck(**request.model_dump())
        await self.check_repository.create(check)

        if check.result == CheckResult.DISCREPANCY:
            severity = AlertSeverity.CRITICAL if check.check_type in CRITICAL_CHECK_TYPES else AlertSeverity.WARNING
            await self.alert_service.create_collision_alert(
                check.identity_id,
                CollisionType.IDENTITY_MISMATCH,
                severity,
                f"Identity discrepancy during {check.check_type.value} check: "
                f"{check.discrepancy_details or 'no details given'}",
                context={"check_id": check.id, "method": check.method.value, "checked_by": check.checked_by},
                encounter_id=check.encounter_id,
                location=check.location,
            )
        else:
            logger.debug(f"Identity check {check.id} for {check.identity_id}: {check.result.value}")

        return check

    async def get_checks_by_encounter(self, encounter_id: str) -> List[IdentityCheck]:
        return await self.check_repository.list_for_encounter(encounter_id)

    async def get_identity_check_history(self, identity_id: str) -> List[IdentityCheck]:
        return await self.check_repository.list_for_identity(identity_id)
