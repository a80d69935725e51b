"""
Verification state machine

Owns the identity status lifecycle:

    provisional -> validated -> qualified
         \\            |            |
          +-------> doubtful <-----+

fictitious and anonymous are terminal. Every call to ``apply`` appends exactly
one IdentityVerification carrying the previous and new status, and the
identity status is only ever changed here.
"""

from typing import Dict, FrozenSet, Iterable, List, Optional
from datetime import date
import logging

from ..models.identity import (
    PatientIdentity,
    IdentityStatus,
    IdentityVerification,
    VerificationType,
    VerificationResult,
    TraitDiscrepancy,
    DocumentType,
    utcnow,
)
from ..models.policy import DemotionRule
from .quality import quality_score
from ....core.errors import InvalidTransitionError


logger = logging.getLogger(__name__)


TERMINAL_STATUSES: FrozenSet[IdentityStatus] = frozenset({
    IdentityStatus.FICTITIOUS,
    IdentityStatus.ANONYMOUS,
})

ALLOWED_TRANSITIONS: Dict[IdentityStatus, FrozenSet[IdentityStatus]] = {
    IdentityStatus.PROVISIONAL: frozenset({IdentityStatus.VALIDATED, IdentityStatus.QUALIFIED, IdentityStatus.DOUBTFUL}),
    IdentityStatus.VALIDATED: frozenset({IdentityStatus.QUALIFIED, IdentityStatus.DOUBTFUL}),
    IdentityStatus.QUALIFIED: frozenset({IdentityStatus.VALIDATED, IdentityStatus.DOUBTFUL}),
    IdentityStatus.DOUBTFUL: frozenset({IdentityStatus.VALIDATED, IdentityStatus.QUALIFIED}),
    IdentityStatus.FICTITIOUS: frozenset(),
    IdentityStatus.ANONYMOUS: frozenset(),
}

# Effect of a successful verification of each type
QUALIFY = "qualify"
VALIDATE = "validate"
NEUTRAL = "neutral"
INVALIDATE = "invalidate"

VERIFICATION_EFFECTS: Dict[VerificationType, str] = {
    VerificationType.TELESERVICE: QUALIFY,
    VerificationType.DOCUMENT: VALIDATE,
    VerificationType.HEALTH_CARD: VALIDATE,
    VerificationType.PATIENT_CONFIRMATION: NEUTRAL,
    VerificationType.FAMILY_CONFIRMATION: NEUTRAL,
    VerificationType.CROSS_REFERENCE: NEUTRAL,
    VerificationType.BIOMETRIC: NEUTRAL,
    VerificationType.NATIONAL_ID_INVALIDATION: INVALIDATE,
}


class VerificationStateMachine:
    """Computes and applies status transitions for verification events"""

    def __init__(self, demotion_rule: DemotionRule = DemotionRule.ALWAYS_DOUBTFUL):
        self.demotion_rule = DemotionRule(demotion_rule)

    @staticmethod
    def effective_result(
        result: VerificationResult,
        discrepancies: Iterable[TraitDiscrepancy]
    ) -> VerificationResult:
        """A 'success' that found discrepancies is recorded as partial"""
        if result == VerificationResult.SUCCESS and list(discrepancies):
            return VerificationResult.PARTIAL
        return result

    def next_status(
        self,
        current: IdentityStatus,
        verification_type: VerificationType,
        result: VerificationResult,
        history: Iterable[IdentityVerification] = ()
    ) -> IdentityStatus:
        if current in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"Identity status '{current.value}' is terminal and accepts no verification"
            )

        effect = VERIFICATION_EFFECTS.get(verification_type)
        if effect is None:
            raise InvalidTransitionError(f"Unhandled verification type: {verification_type}")

        if effect == INVALIDATE:
            if current == IdentityStatus.QUALIFIED:
                return self._demotion_target(history)
            return current

        if result == VerificationResult.FAILURE:
            return IdentityStatus.DOUBTFUL
        if result == VerificationResult.PARTIAL:
            # discrepancies must be resolved before advancing
            return current

        if effect == QUALIFY:
            return IdentityStatus.QUALIFIED
        if effect == VALIDATE and current in (IdentityStatus.PROVISIONAL, IdentityStatus.DOUBTFUL):
            return IdentityStatus.VALIDATED
        return current

    def _demotion_target(self, history: Iterable[IdentityVerification]) -> IdentityStatus:
        if self.demotion_rule == DemotionRule.VALIDATED_IF_DOCUMENT:
            for verification in history:
                if (VERIFICATION_EFFECTS.get(verification.verification_type) == VALIDATE
                        and verification.result == VerificationResult.SUCCESS):
                    return IdentityStatus.VALIDATED
        return IdentityStatus.DOUBTFUL

    @staticmethod
    def is_allowed(current: IdentityStatus, new: IdentityStatus) -> bool:
        return current == new or new in ALLOWED_TRANSITIONS[current]

    def apply(
        self,
        identity: PatientIdentity,
        verification_type: VerificationType,
        verified_by: str,
        result: VerificationResult = VerificationResult.SUCCESS,
        discrepancies: Optional[List[TraitDiscrepancy]] = None,
        target_status: Optional[IdentityStatus] = None,
        document_type: Optional[DocumentType] = None,
        document_number: Optional[str] = None,
        document_expiry_date: Optional[date] = None,
        notes: Optional[str] = None
    ) -> IdentityVerification:
        """
        Record one verification event on ``identity`` (mutated in place).

        Raises InvalidTransitionError when the identity is terminal, when the
        computed move leaves the allowed graph, or when the caller asked for a
        target status other than the one the rules produce.
        """
        discrepancies = list(discrepancies or [])
        result = self.effective_result(VerificationResult(result), discrepancies)
        previous = IdentityStatus(identity.status)
        new = self.next_status(previous, VerificationType(verification_type), result, identity.verification_history)

        if not self.is_allowed(previous, new):
            raise InvalidTransitionError(f"Transition {previous.value} -> {new.value} is not allowed")

        if target_status is not None and IdentityStatus(target_status) != new:
            raise InvalidTransitionError(
                f"A {result.value} {VerificationType(verification_type).value} verification moves "
                f"{previous.value} to {new.value}, not {IdentityStatus(target_status).value}"
            )

        verification = IdentityVerification(
            identity_id=identity.id,
            verification_type=verification_type,
            verified_by=verified_by,
            document_type=document_type,
            document_number=document_number,
            document_expiry_date=document_expiry_date,
            result=result,
            discrepancies=discrepancies,
            notes=notes,
            previous_status=previous,
            new_status=new,
        )

        identity.status = new
        identity.verification_history.append(verification)
        identity.quality_score = quality_score(identity.traits, identity.national_id, new)
        identity.updated_at = utcnow()

        if new != previous:
            logger.info(f"Identity {identity.id} status {previous.value} -> {new.value} ({verification.verification_type.value})")

        return verification
