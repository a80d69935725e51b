"""
Identity service - business logic layer for identity records
"""

from typing import Optional, List, Dict, Any
from datetime import date
from enum import Enum
import logging

from ..models.identity import (
    PatientIdentity,
    PatientTraits,
    PatientAlias,
    NationalIdentifier,
    IdentityVerification,
    IdentityStatus,
    VerificationType,
    VerificationResult,
    DocumentType,
    QualificationStatus,
    TraitDiscrepancy,
    DiscrepancyResolution,
    IdentityCreateRequest,
    AliasCreateRequest,
    utcnow,
)
from ..repositories.identity_repository import IdentityRepository
from .policy import PolicyProvider
from .quality import quality_score
from .status_machine import VerificationStateMachine
from ....core.errors import NotFoundError, ValidationError, ConflictError, InvalidTransitionError


logger = logging.getLogger(__name__)

INITIAL_STATUSES = (IdentityStatus.PROVISIONAL, IdentityStatus.FICTITIOUS, IdentityStatus.ANONYMOUS)

# Verification types that only dedicated workflows may record
WORKFLOW_ONLY_TYPES = (VerificationType.TELESERVICE, VerificationType.NATIONAL_ID_INVALIDATION)


def _display(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class IdentityService:
    """Service layer for identity lifecycle operations"""

    def __init__(self, repository: IdentityRepository, policy_provider: PolicyProvider):
        self.repository = repository
        self.policy_provider = policy_provider

    async def _state_machine(self) -> VerificationStateMachine:
        policy = await self.policy_provider.get_policy()
        return VerificationStateMachine(policy.demotion_rule)

    async def create_identity(self, request: IdentityCreateRequest) -> PatientIdentity:
        """Register a new identity (provisional unless test/anonymous)"""
        status = IdentityStatus(request.status)
        if status not in INITIAL_STATUSES:
            raise InvalidTransitionError(
                f"Identities are created provisional, fictitious or anonymous, not {status.value}"
            )

        if status == IdentityStatus.PROVISIONAL:
            policy = await self.policy_provider.get_policy()
            missing = [trait for trait in policy.required_traits if not getattr(request.traits, trait, None)]
            if missing:
                raise ValidationError(f"Missing required traits: {', '.join(missing)}")
        self._validate_traits(request.traits)

        if await self.repository.get_by_local_id(request.local_id):
            raise ConflictError(f"Local identifier {request.local_id} is already registered")
        if request.national_id is not None:
            await self._ensure_national_id_free(request.national_id)

        identity = PatientIdentity(
            local_id=request.local_id,
            traits=request.traits,
            status=status,
            national_id=request.national_id,
        )
        identity.quality_score = quality_score(identity.traits, identity.national_id, identity.status)

        await self.repository.create(identity)
        logger.info(f"Created identity {identity.id} (local {identity.local_id}, quality {identity.quality_score})")
        return identity

    async def get_identity(self, identity_id: str) -> PatientIdentity:
        identity = await self.repository.get(identity_id)
        if identity is None:
            raise NotFoundError("Identity", identity_id)
        return identity

    async def get_identity_by_local_id(self, local_id: str) -> PatientIdentity:
        identity = await self.repository.get_by_local_id(local_id)
        if identity is None:
            raise NotFoundError("Identity", local_id)
        return identity

    async def get_identity_by_national_id(self, value: str) -> PatientIdentity:
        """Active identity holding the national identifier ``value``"""
        identity = await self.repository.get_by_national_id(value)
        if identity is None:
            raise NotFoundError("Identity with national identifier", value)
        return identity

    async def list_identities_by_status(self, status: IdentityStatus) -> List[PatientIdentity]:
        return await self.repository.list_by_status(IdentityStatus(status))

    async def list_identities_without_national_id(self) -> List[PatientIdentity]:
        """Active identities with no national identifier, or one that is not qualified"""
        return await self.repository.list_without_qualified_national_id()

    async def _load_mutable(self, identity_id: str, expected_version: Optional[int] = None) -> PatientIdentity:
        identity = await self.get_identity(identity_id)
        if identity.is_merged:
            raise ConflictError(
                f"Identity {identity_id} was merged into {identity.merged_into} and is read-only",
                record_id=identity_id
            )
        if expected_version is not None and identity.version != expected_version:
            raise ConflictError(
                f"Identity {identity_id} is at version {identity.version}, not {expected_version}",
                record_id=identity_id
            )
        return identity

    async def _ensure_national_id_free(self, national_id: NationalIdentifier, owner_id: Optional[str] = None) -> None:
        """A national identifier belongs to at most one active identity"""
        holder = await self.repository.get_by_national_id(national_id.value)
        if holder is not None and holder.id != owner_id:
            raise ConflictError(
                f"National identifier is already attached to identity {holder.id}",
                record_id=holder.id
            )

    @staticmethod
    def _validate_traits(traits: PatientTraits) -> None:
        if traits.birth_date and traits.birth_date > date.today():
            raise ValidationError(f"Birth date {traits.birth_date.isoformat()} is in the future")

    async def update_traits(
        self,
        identity_id: str,
        changes: Dict[str, Any],
        verified_by: str,
        document_type: Optional[DocumentType] = None,
        expected_version: Optional[int] = None
    ) -> PatientIdentity:
        """
        Correct traits and record the verification that justified it.

        Every changed non-empty value is logged as a corrected discrepancy,
        which makes the verification partial: corrections never advance the
        identity status on their own.
        """
        unknown = set(changes) - set(PatientTraits.model_fields)
        if unknown:
            raise ValidationError(f"Unknown traits: {', '.join(sorted(unknown))}")

        identity = await self._load_mutable(identity_id, expected_version)

        current = identity.traits.model_dump()
        try:
            updated = PatientTraits.model_validate({**current, **changes})
        except ValueError as e:
            raise ValidationError(f"Invalid traits: {e}")
        self._validate_traits(updated)

        new_values = updated.model_dump()
        discrepancies = []
        for trait in changes:
            existing = current.get(trait)
            if existing and existing != new_values.get(trait):
                discrepancies.append(TraitDiscrepancy(
                    trait=trait,
                    system_value=_display(existing),
                    verified_value=_display(new_values.get(trait)),
                    resolution=DiscrepancyResolution.CORRECTED,
                ))

        identity.traits = updated
        machine = await self._state_machine()
        machine.apply(
            identity,
            VerificationType.DOCUMENT if document_type else VerificationType.PATIENT_CONFIRMATION,
            verified_by,
            result=VerificationResult.SUCCESS,
            discrepancies=discrepancies,
            document_type=document_type,
        )

        await self.repository.save(identity)
        await self.repository.append_audit(identity.id, "traits_updated", {
            "traits": sorted(changes),
            "discrepancies": len(discrepancies),
            "by": verified_by
        })
        return identity

    async def record_verification(
        self,
        identity_id: str,
        verification_type: VerificationType,
        verified_by: str,
        result: VerificationResult = VerificationResult.SUCCESS,
        discrepancies: Optional[List[TraitDiscrepancy]] = None,
        target_status: Optional[IdentityStatus] = None,
        expected_version: Optional[int] = None,
        document_type: Optional[DocumentType] = None,
        document_number: Optional[str] = None,
        document_expiry_date: Optional[date] = None,
        notes: Optional[str] = None
    ) -> IdentityVerification:
        """Record a verification event and apply the status transition it causes"""
        verification_type = VerificationType(verification_type)
        if verification_type in WORKFLOW_ONLY_TYPES:
            raise ValidationError(
                f"{verification_type.value} verifications are recorded by the qualification workflow"
            )

        identity = await self._load_mutable(identity_id, expected_version)
        machine = await self._state_machine()
        verification = machine.apply(
            identity,
            verification_type,
            verified_by,
            result=result,
            discrepancies=discrepancies,
            target_status=target_status,
            document_type=document_type,
            document_number=document_number,
            document_expiry_date=document_expiry_date,
            notes=notes,
        )

        await self.repository.save(identity)
        await self.repository.append_audit(identity.id, "verification_recorded", {
            "type": verification_type.value,
            "result": verification.result.value,
            "previous_status": verification.previous_status.value,
            "new_status": verification.new_status.value,
        })
        return verification

    async def verify_with_document(
        self,
        identity_id: str,
        document_type: DocumentType,
        document_number: str,
        document_expiry_date: Optional[date],
        verified_by: str,
        discrepancies: Optional[List[TraitDiscrepancy]] = None,
        expected_version: Optional[int] = None
    ) -> IdentityVerification:
        """Check the identity against a physical document or health card"""
        if document_expiry_date and document_expiry_date < date.today():
            raise ValidationError(f"Document {document_number} expired on {document_expiry_date.isoformat()}")

        document_type = DocumentType(document_type)
        verification_type = (
            VerificationType.HEALTH_CARD if document_type == DocumentType.HEALTH_CARD
            else VerificationType.DOCUMENT
        )
        return await self.record_verification(
            identity_id,
            verification_type,
            verified_by,
            discrepancies=discrepancies,
            expected_version=expected_version,
            document_type=document_type,
            document_number=document_number,
            document_expiry_date=document_expiry_date,
        )

    async def qualify(
        self,
        identity_id: str,
        national_id: NationalIdentifier,
        verified_by: str
    ) -> PatientIdentity:
        """Attach a qualified national identifier and move the identity to qualified"""
        identity = await self._load_mutable(identity_id)
        await self._ensure_national_id_free(national_id, identity.id)

        identity.national_id = national_id.model_copy(update={
            "status": QualificationStatus.QUALIFIED,
            "validated_at": utcnow(),
            "validated_by": verified_by,
        })
        machine = await self._state_machine()
        machine.apply(identity, VerificationType.TELESERVICE, verified_by)

        await self.repository.save(identity)
        await self.repository.append_audit(identity.id, "qualified", {"oid": national_id.oid, "by": verified_by})
        return identity

    async def attach_provisional_national_id(
        self,
        identity_id: str,
        national_id: NationalIdentifier,
        verified_by: str
    ) -> PatientIdentity:
        """Keep a provisional identifier; the teleservice call is recorded as partial"""
        identity = await self._load_mutable(identity_id)
        await self._ensure_national_id_free(national_id, identity.id)
        identity.national_id = national_id.model_copy(update={"status": QualificationStatus.PROVISIONAL})

        machine = await self._state_machine()
        machine.apply(
            identity,
            VerificationType.TELESERVICE,
            verified_by,
            result=VerificationResult.PARTIAL,
            notes="Teleservice returned a provisional identifier",
        )

        await self.repository.save(identity)
        await self.repository.append_audit(identity.id, "provisional_national_id", {"by": verified_by})
        return identity

    async def invalidate_national_id(self, identity_id: str, reason: str, invalidated_by: str) -> PatientIdentity:
        """Mark the national identifier invalid and demote a qualified identity per policy"""
        identity = await self._load_mutable(identity_id)
        if identity.national_id is None:
            raise ValidationError(f"Identity {identity_id} has no national identifier")
        if identity.national_id.status == QualificationStatus.INVALID:
            raise InvalidTransitionError(f"National identifier of {identity_id} is already invalid")

        identity.national_id.status = QualificationStatus.INVALID
        machine = await self._state_machine()
        verification = machine.apply(
            identity,
            VerificationType.NATIONAL_ID_INVALIDATION,
            invalidated_by,
            notes=reason,
        )

        await self.repository.save(identity)
        await self.repository.append_audit(identity.id, "national_id_invalidated", {
            "reason": reason,
            "new_status": verification.new_status.value
        })
        logger.warning(f"National identifier of {identity.id} invalidated: {reason}")
        return identity

    async def add_alias(self, identity_id: str, request: AliasCreateRequest) -> PatientAlias:
        if request.valid_from and request.valid_to and request.valid_to < request.valid_from:
            raise ValidationError("Alias validity ends before it starts")

        identity = await self._load_mutable(identity_id)
        alias = PatientAlias(identity_id=identity.id, **request.model_dump())
        identity.aliases.append(alias)

        await self.repository.save(identity)
        await self.repository.append_audit(identity.id, "alias_added", {"alias_id": alias.id, "type": alias.type.value})
        return alias

    async def get_aliases(self, identity_id: str) -> List[PatientAlias]:
        identity = await self.get_identity(identity_id)
        return list(identity.aliases)

    async def remove_alias(self, identity_id: str, alias_id: str) -> None:
        identity = await self._load_mutable(identity_id)
        remaining = [alias for alias in identity.aliases if alias.id != alias_id]
        if len(remaining) == len(identity.aliases):
            raise NotFoundError("Alias", alias_id)

        identity.aliases = remaining
        await self.repository.save(identity)
        await self.repository.append_audit(identity.id, "alias_removed", {"alias_id": alias_id})

    async def get_verification_history(self, identity_id: str) -> List[IdentityVerification]:
        identity = await self.get_identity(identity_id)
        return list(identity.verification_history)

    async def get_quality_score(self, identity_id: str) -> int:
        identity = await self.get_identity(identity_id)
        return quality_score(identity.traits, identity.national_id, identity.status)
