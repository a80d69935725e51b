"""
Wristband service - printing, scanning and replacing identification wristbands
"""

from typing import Optional
from uuid import uuid4
import logging

from ..models.safety import (
    Wristband,
    WristbandStatus,
    WristbandScanRequest,
    WristbandScanResult,
    CollisionType,
    AlertSeverity,
)
from ..repositories.safety_repository import WristbandRepository
from .alert_service import CollisionAlertService
from ...identity.models.identity import PatientIdentity, utcnow
from ...identity.repositories.identity_repository import IdentityRepository
from ....core.errors import NotFoundError, ConflictError, InvalidTransitionError


logger = logging.getLogger(__name__)


def generate_barcode(identity: PatientIdentity) -> str:
    return f"WB{identity.local_id}-{uuid4().hex[:8]}".upper()


class WristbandService:
    """Service layer for patient wristbands"""

    def __init__(
        self,
        wristband_repository: WristbandRepository,
        identity_repository: IdentityRepository,
        alert_service: CollisionAlertService
    ):
        self.wristband_repository = wristband_repository
        self.identity_repository = identity_repository
        self.alert_service = alert_service

    async def _active_identity(self, identity_id: str) -> PatientIdentity:
        identity = await self.identity_repository.get(identity_id)
        if identity is None:
            raise NotFoundError("Identity", identity_id)
        if identity.is_merged:
            raise ConflictError(f"Identity {identity_id} was merged into {identity.merged_into}", record_id=identity_id)
        return identity

    async def get_wristband(self, wristband_id: str) -> Wristband:
        wristband = await self.wristband_repository.get(wristband_id)
        if wristband is None:
            raise NotFoundError("Wristband", wristband_id)
        return wristband

    async def get_active_wristband(self, identity_id: str, encounter_id: str) -> Optional[Wristband]:
        return await self.wristband_repository.get_active(identity_id, encounter_id)

    async def generate_wristband(
        self,
        identity_id: str,
        encounter_id: str,
        printed_by: str,
        print_location: str
    ) -> Wristband:
        """Print the first wristband of an encounter; later prints go through reprint"""
        identity = await self._active_identity(identity_id)
        existing = await self.wristband_repository.get_active(identity_id, encounter_id)
        if existing:
            raise ConflictError(
                f"Wristband {existing.id} is already active for encounter {encounter_id}",
                record_id=existing.id
            )

        wristband = Wristband(
            identity_id=identity.id,
            encounter_id=encounter_id,
            barcode=generate_barcode(identity),
            printed_by=printed_by,
            print_location=print_location,
        )
        await self.wristband_repository.create(wristband)
        logger.info(f"Printed wristband {wristband.barcode} for {identity_id} at {print_location}")
        return wristband

    async def verify_wristband_scan(self, request: WristbandScanRequest) -> WristbandScanResult:
        """Compare a scanned barcode with the active wristband; a mismatch raises a critical alert"""
        wristband = await self.wristband_repository.get_active(request.identity_id, request.encounter_id)

        if wristband is not None and wristband.barcode == request.scanned_barcode:
            wristband.verified_at = utcnow()
            wristband.verified_by = request.scanned_by
            await self.wristband_repository.save(wristband)
            return WristbandScanResult(matched=True, wristband=wristband)

        alert = await self.alert_service.create_collision_alert(
            request.identity_id,
            CollisionType.WRISTBAND_MISMATCH,
            AlertSeverity.CRITICAL,
            "Scanned wristband does not match the active wristband"
            if wristband else "No active wristband for this encounter",
            context={
                "scanned_barcode": request.scanned_barcode,
                "expected_barcode": wristband.barcode if wristband else None,
                "scanned_by": request.scanned_by,
            },
            encounter_id=request.encounter_id,
            location=request.location,
        )
        return WristbandScanResult(matched=False, wristband=wristband, alert=alert)

    async def reprint_wristband(
        self,
        wristband_id: str,
        reprinted_by: str,
        reason: str,
        print_location: Optional[str] = None
    ) -> Wristband:
        """Retire an active wristband and print its replacement"""
        old = await self.get_wristband(wristband_id)
        if old.status != WristbandStatus.ACTIVE:
            raise InvalidTransitionError(f"Wristband {wristband_id} is {old.status.value} and cannot be reprinted")
        identity = await self._active_identity(old.identity_id)

        replacement = Wristband(
            identity_id=identity.id,
            encounter_id=old.encounter_id,
            barcode=generate_barcode(identity),
            printed_by=reprinted_by,
            print_location=print_location or old.print_location,
        )
        old.status = WristbandStatus.REPRINTED
        old.replaced_by = replacement.id
        old.deactivation_reason = reason

        # retire first so a conflict leaves no second active band
        await self.wristband_repository.save(old)
        await self.wristband_repository.create(replacement)
        logger.info(f"Reprinted wristband {old.id} as {replacement.id}: {reason}")
        return replacement

    async def deactivate_wristband(self, wristband_id: str, reason: str) -> Wristband:
        wristband = await self.get_wristband(wristband_id)
        if wristband.status != WristbandStatus.ACTIVE:
            raise InvalidTransitionError(f"Wristband {wristband_id} is already {wristband.status.value}")

        wristband.status = WristbandStatus.DEACTIVATED
        wristband.deactivation_reason = reason
        return await self.wristband_repository.save(wristband)
