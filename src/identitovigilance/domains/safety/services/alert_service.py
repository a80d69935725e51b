"""
Collision alert service - raising, deduplicating and closing safety alerts
"""

from typing import Optional, List, Dict, Any
from datetime import timedelta
import logging

from ..models.safety import (
    CollisionAlert,
    CollisionType,
    AlertSeverity,
    AlertStatus,
    CheckResult,
    IdentityCheck,
)
from ..repositories.safety_repository import AlertRepository, CheckRepository
from ...identity.models.identity import PatientIdentity, QualificationStatus, utcnow
from ...identity.repositories.identity_repository import IdentityRepository
from ...identity.services.policy import PolicyProvider
from ....core.errors import NotFoundError, InvalidTransitionError


logger = logging.getLogger(__name__)

ALERT_TRANSITIONS = {
    AlertStatus.ACTIVE: (AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE),
    AlertStatus.ACKNOWLEDGED: (AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE),
    AlertStatus.RESOLVED: (),
    AlertStatus.FALSE_POSITIVE: (),
}


class CollisionAlertService:
    """Service layer for collision alerts"""

    def __init__(
        self,
        alert_repository: AlertRepository,
        check_repository: CheckRepository,
        identity_repository: IdentityRepository,
        policy_provider: PolicyProvider
    ):
        self.alert_repository = alert_repository
        self.check_repository = check_repository
        self.identity_repository = identity_repository
        self.policy_provider = policy_provider

    async def create_collision_alert(
        self,
        identity_id: str,
        alert_type: CollisionType,
        severity: AlertSeverity,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        encounter_id: Optional[str] = None,
        location: Optional[str] = None
    ) -> CollisionAlert:
        """Persist a new active alert. Storage errors are not caught here."""
        alert = CollisionAlert(
            identity_id=identity_id,
            type=alert_type,
            severity=severity,
            message=message,
            context=context or {},
            encounter_id=encounter_id,
            location=location,
        )
        await self.alert_repository.create(alert)

        log = logger.error if alert.severity == AlertSeverity.CRITICAL else logger.warning
        log(f"{alert.severity.value.upper()} {alert.type.value} alert {alert.id} for identity {identity_id}: {message}")
        return alert

    async def check_for_collisions(self, identity_id: str, location: str, encounter_id: str) -> List[CollisionAlert]:
        """Evaluate collision conditions for a patient at ``location``; returns newly raised alerts"""
        identity = await self.identity_repository.get(identity_id)
        if identity is None:
            raise NotFoundError("Identity", identity_id)

        policy = await self.policy_provider.get_policy()
        since = utcnow() - timedelta(minutes=policy.presence_window_minutes)

        conditions = []

        elsewhere = [
            check for check in self._current_presence(
                await self.check_repository.list_for_identity(identity_id, since=since)
            )
            if check.location != location
        ]
        if elsewhere:
            latest = elsewhere[0]
            conditions.append((
                CollisionType.SAME_ROOM,
                AlertSeverity.CRITICAL,
                f"Patient was checked at {latest.location} within the last "
                f"{policy.presence_window_minutes} minutes",
                {"other_location": latest.location, "other_check_id": latest.id,
                 "checked_at": latest.checked_at.isoformat()},
            ))

        encounter_checks = await self.check_repository.list_for_encounter(encounter_id)
        if encounter_checks and encounter_checks[0].result == CheckResult.DISCREPANCY:
            conditions.append((
                CollisionType.IDENTITY_MISMATCH,
                AlertSeverity.WARNING,
                "Latest identity check for this encounter reported a discrepancy",
                {"check_id": encounter_checks[0].id},
            ))

        if self._national_id_invalid(identity):
            conditions.append((
                CollisionType.NATIONAL_ID_MISMATCH,
                AlertSeverity.WARNING,
                "National identifier attached to this identity is invalid",
                {"oid": identity.national_id.oid},
            ))

        raised = []
        for alert_type, severity, message, context in conditions:
            if await self.alert_repository.find_active(identity_id, alert_type, encounter_id):
                continue
            raised.append(await self.create_collision_alert(
                identity_id, alert_type, severity, message,
                context=context, encounter_id=encounter_id, location=location
            ))
        return raised

    @staticmethod
    def _current_presence(checks: List[IdentityCheck]) -> List[IdentityCheck]:
        """Latest check of each encounter, newest first; earlier checks are superseded moves"""
        latest: Dict[str, IdentityCheck] = {}
        for check in checks:
            latest.setdefault(check.encounter_id, check)
        return list(latest.values())

    @staticmethod
    def _national_id_invalid(identity: PatientIdentity) -> bool:
        return identity.national_id is not None and identity.national_id.status == QualificationStatus.INVALID

    async def get_alert(self, alert_id: str) -> CollisionAlert:
        alert = await self.alert_repository.get(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id)
        return alert

    async def get_active_alerts(self, identity_id: Optional[str] = None) -> List[CollisionAlert]:
        return await self.alert_repository.find_active(identity_id)

    async def _transition(self, alert_id: str, new_status: AlertStatus) -> CollisionAlert:
        alert = await self.get_alert(alert_id)
        if new_status not in ALERT_TRANSITIONS[alert.status]:
            raise InvalidTransitionError(
                f"Alert {alert_id} cannot move from {alert.status.value} to {new_status.value}"
            )
        alert.status = new_status
        return alert

    async def acknowledge_alert(self, alert_id: str, acknowledged_by: str) -> CollisionAlert:
        alert = await self._transition(alert_id, AlertStatus.ACKNOWLEDGED)
        alert.acknowledged_by = acknowledged_by
        alert.acknowledged_at = utcnow()
        return await self.alert_repository.save(alert)

    async def resolve_alert(self, alert_id: str, resolution: str, resolved_by: str) -> CollisionAlert:
        alert = await self._transition(alert_id, AlertStatus.RESOLVED)
        alert.resolution = resolution
        alert.resolved_by = resolved_by
        alert.resolved_at = utcnow()
        await self.alert_repository.save(alert)
        logger.info(f"Alert {alert_id} resolved by {resolved_by}")
        return alert

    async def mark_alert_false_positive(self, alert_id: str, reason: str, marked_by: str) -> CollisionAlert:
        alert = await self._transition(alert_id, AlertStatus.FALSE_POSITIVE)
        alert.resolution = reason
        alert.resolved_by = marked_by
        alert.resolved_at = utcnow()
        await self.alert_repository.save(alert)
        logger.info(f"Alert {alert_id} marked false positive by {marked_by}")
        return alert
