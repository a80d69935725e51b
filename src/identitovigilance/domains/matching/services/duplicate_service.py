"""
Duplicate service - candidate search, duplicate cases and identity merges
"""

from typing import Optional, List, Dict, Any
import logging

from ..models.duplicate import (
    DuplicateCandidate,
    DuplicateCase,
    DuplicateResolution,
    CaseStatus,
    DetectionMethod,
    MatchClassification,
    ResolutionDecision,
    ResolutionRequest,
    MergePlan,
)
from ..repositories.duplicate_repository import DuplicateCaseRepository, MergeRepository
from .matcher import compare_traits, match_score
from ...identity.models.identity import PatientIdentity, PatientTraits
from ...identity.repositories.identity_repository import IdentityRepository
from ...identity.services.normalization import normalize
from ...identity.services.policy import PolicyProvider
from ....core.errors import NotFoundError, ValidationError, ConflictError, InvalidTransitionError
from ....core.locks import LockManager


logger = logging.getLogger(__name__)

CASE_OUTCOMES = {
    ResolutionDecision.MERGE: CaseStatus.MERGED,
    ResolutionDecision.LINK: CaseStatus.CONFIRMED_DUPLICATE,
    ResolutionDecision.NOT_DUPLICATE: CaseStatus.NOT_DUPLICATE,
    ResolutionDecision.NO_ACTION: CaseStatus.DISMISSED,
}

AUTO_CASE_CLASSIFICATIONS = (MatchClassification.EXACT, MatchClassification.PROBABLE)

PAIR_LOCK_ATTEMPTS = 3


class DuplicateService:
    """Service layer for duplicate detection and resolution"""

    def __init__(
        self,
        identity_repository: IdentityRepository,
        case_repository: DuplicateCaseRepository,
        merge_repository: MergeRepository,
        policy_provider: PolicyProvider,
        lock_manager: LockManager
    ):
        self.identity_repository = identity_repository
        self.case_repository = case_repository
        self.merge_repository = merge_repository
        self.policy_provider = policy_provider
        self.lock_manager = lock_manager

    async def _get_identity(self, identity_id: str) -> PatientIdentity:
        identity = await self.identity_repository.get(identity_id)
        if identity is None:
            raise NotFoundError("Identity", identity_id)
        return identity

    async def _candidate_pool(self, traits: PatientTraits) -> Dict[str, PatientIdentity]:
        """Active identities sharing the birth date or the normalized birth family name"""
        pool: Dict[str, PatientIdentity] = {}
        if traits.birth_date:
            for other in await self.identity_repository.find_by_birth_date(traits.birth_date):
                pool[other.id] = other
        family_name = normalize(traits.birth_family_name)
        if family_name:
            for other in await self.identity_repository.find_by_family_name(family_name):
                pool[other.id] = other
        return pool

    async def _score_pool(
        self,
        traits: PatientTraits,
        pool: Dict[str, PatientIdentity],
        exclude_id: Optional[str] = None
    ) -> List[DuplicateCandidate]:
        policy = await self.policy_provider.get_policy()
        candidates = []
        for other in pool.values():
            if other.id == exclude_id or other.is_merged:
                continue
            candidate = compare_traits(traits, other, policy)
            if candidate is not None:
                candidates.append(candidate)

        candidates.sort(key=lambda c: c.match_score, reverse=True)
        return candidates

    async def find_duplicate_candidates(self, identity_id: str) -> List[DuplicateCandidate]:
        """Scored candidates sharing a birth date or family name, best first"""
        identity = await self._get_identity(identity_id)
        pool = await self._candidate_pool(identity.traits)
        candidates = await self._score_pool(identity.traits, pool, exclude_id=identity.id)
        logger.info(f"Found {len(candidates)} duplicate candidates for {identity_id} among {len(pool)} records")
        return candidates

    async def search_potential_duplicates(self, traits: PatientTraits) -> List[DuplicateCandidate]:
        """
        Search registered identities matching ``traits`` before registration.

        Nothing is stored. At least a birth date or a birth family name is
        needed to narrow the search.
        """
        if not traits.birth_date and not normalize(traits.birth_family_name):
            raise ValidationError("Searching needs a birth date or a birth family name")

        pool = await self._candidate_pool(traits)
        candidates = await self._score_pool(traits, pool)
        logger.info(f"Pre-registration search matched {len(candidates)} of {len(pool)} records")
        return candidates

    async def detect_duplicates(self, identity_id: str) -> List[DuplicateCase]:
        """Open automatic cases for exact and probable candidates"""
        opened = []
        for candidate in await self.find_duplicate_candidates(identity_id):
            if candidate.classification not in AUTO_CASE_CLASSIFICATIONS:
                continue
            if await self.case_repository.find_open_for_pair(identity_id, candidate.identity_id):
                continue
            case = DuplicateCase(
                primary_identity_id=identity_id,
                secondary_identity_id=candidate.identity_id,
                detection_method=DetectionMethod.AUTOMATIC,
                match_score=candidate.match_score,
            )
            await self.case_repository.create(case)
            opened.append(case)

        if opened:
            logger.warning(f"Opened {len(opened)} automatic duplicate cases for {identity_id}")
        return opened

    async def create_duplicate_case(
        self,
        primary_identity_id: str,
        secondary_identity_id: str,
        detection_method: DetectionMethod = DetectionMethod.MANUAL,
        notes: Optional[str] = None
    ) -> DuplicateCase:
        if primary_identity_id == secondary_identity_id:
            raise ValidationError("A duplicate case needs two different identities")

        primary = await self._get_identity(primary_identity_id)
        secondary = await self._get_identity(secondary_identity_id)
        for identity in (primary, secondary):
            if identity.is_merged:
                raise ConflictError(f"Identity {identity.id} is already merged", record_id=identity.id)

        existing = await self.case_repository.find_open_for_pair(primary.id, secondary.id)
        if existing:
            raise ConflictError(f"Case {existing.id} is already open for this pair", record_id=existing.id)

        case = DuplicateCase(
            primary_identity_id=primary.id,
            secondary_identity_id=secondary.id,
            detection_method=DetectionMethod(detection_method),
            match_score=match_score(primary.traits, secondary.traits),
            notes=notes,
        )
        await self.case_repository.create(case)
        logger.info(f"Created duplicate case {case.id} ({primary.id} / {secondary.id}, score {case.match_score})")
        return case

    async def get_duplicate_case(self, case_id: str) -> DuplicateCase:
        case = await self.case_repository.get(case_id)
        if case is None:
            raise NotFoundError("Duplicate case", case_id)
        return case

    async def list_duplicate_cases(self, status: Optional[CaseStatus] = None) -> List[DuplicateCase]:
        return await self.case_repository.list_cases(status)

    async def start_investigation(self, case_id: str, assigned_to: str) -> DuplicateCase:
        case = await self.get_duplicate_case(case_id)
        if case.status != CaseStatus.PENDING:
            raise InvalidTransitionError(f"Case {case_id} is {case.status.value}, only pending cases can be investigated")

        case.status = CaseStatus.INVESTIGATING
        case.assigned_to = assigned_to
        return await self.case_repository.save(case)

    async def resolve_duplicate_case(self, case_id: str, request: ResolutionRequest) -> DuplicateCase:
        """
        Close an open case with a decision.

        The pair is locked for the whole resolution. A merge decision writes
        the merge and the case outcome together; if either fails nothing is
        written.
        """
        case = await self.get_duplicate_case(case_id)
        decision = ResolutionDecision(request.decision)

        for _ in range(PAIR_LOCK_ATTEMPTS):
            pair = case.pair()
            async with self.lock_manager.acquire_all(*pair):
                case = await self.get_duplicate_case(case_id)
                if case.pair() != pair:
                    # redirected by a merge while we waited; lock the new pair
                    logger.debug(f"Case {case_id} pair changed while locking, retrying")
                    continue
                return await self._resolve_locked(case, decision, request)

        raise ConflictError(f"Case {case_id} kept changing while it was being resolved", record_id=case_id)

    async def _resolve_locked(
        self,
        case: DuplicateCase,
        decision: ResolutionDecision,
        request: ResolutionRequest
    ) -> DuplicateCase:
        if not case.is_open:
            raise InvalidTransitionError(f"Case {case.id} is already {case.status.value}")

        resolution = DuplicateResolution(
            decision=decision,
            survivor_id=request.survivor_id,
            rationale=request.rationale,
            resolved_by=request.resolved_by,
        )

        if decision == ResolutionDecision.MERGE:
            if not request.survivor_id or not case.involves(request.survivor_id):
                raise ValidationError("A merge decision needs a survivor from the case pair")
            merged_id = (
                case.secondary_identity_id if request.survivor_id == case.primary_identity_id
                else case.primary_identity_id
            )
            await self._merge_locked(request.survivor_id, merged_id, request.resolved_by, case, resolution)
            return case

        case.status = CASE_OUTCOMES[decision]
        case.resolution = resolution
        await self.case_repository.save(case)

        logger.info(f"Resolved duplicate case {case.id}: {decision.value}")
        return case

    async def merge_identities(self, survivor_id: str, merged_id: str, merged_by: str) -> PatientIdentity:
        """Merge ``merged_id`` into ``survivor_id``; returns the survivor"""
        if survivor_id == merged_id:
            raise ValidationError("An identity cannot be merged into itself")

        async with self.lock_manager.acquire_pair(survivor_id, merged_id):
            return await self._merge_locked(survivor_id, merged_id, merged_by)

    async def _merge_locked(
        self,
        survivor_id: str,
        merged_id: str,
        merged_by: str,
        resolving_case: Optional[DuplicateCase] = None,
        resolution: Optional[DuplicateResolution] = None
    ) -> PatientIdentity:
        # records are re-read under the pair lock
        survivor = await self._get_identity(survivor_id)
        merged = await self._get_identity(merged_id)
        if merged.merged_into == survivor.id:
            raise ConflictError(f"Identity {merged.id} is already merged into {survivor.id}", record_id=merged.id)
        for identity in (survivor, merged):
            if identity.is_merged:
                raise ConflictError(
                    f"Identity {identity.id} was merged into {identity.merged_into}",
                    record_id=identity.id
                )

        plan = MergePlan(survivor=survivor, merged=merged)
        audit = plan.audit

        absorbed = [merged.id] + merged.merged_from
        for record_id in absorbed:
            if record_id not in survivor.merged_from and record_id != survivor.id:
                survivor.merged_from.append(record_id)
        merged.merged_into = survivor.id

        for previous in await self.identity_repository.get_many(merged.merged_from):
            if previous.merged_into == merged.id:
                previous.merged_into = survivor.id
                plan.repointed.append(previous)
                audit.append(self._audit_entry(previous.id, "merge_repointed", {
                    "from": merged.id, "to": survivor.id, "by": merged_by
                }))

        survivor.aliases.extend(
            alias.model_copy(update={"identity_id": survivor.id}) for alias in merged.aliases
        )
        survivor.verification_history.extend(
            verification.model_copy(update={"identity_id": survivor.id, "source_identity_id": merged.id})
            for verification in merged.verification_history
        )
        survivor.verification_history.sort(key=lambda v: v.verified_at)

        plan.cases = await self._redirect_cases(survivor, merged, merged_by, resolving_case)
        if resolving_case is not None:
            resolving_case.status = CaseStatus.MERGED
            resolving_case.resolution = resolution
            plan.cases.append(resolving_case)

        audit.append(self._audit_entry(survivor.id, "merge_survivor", {
            "merged_id": merged.id, "absorbed": absorbed, "by": merged_by
        }))
        audit.append(self._audit_entry(merged.id, "merged_into", {
            "survivor_id": survivor.id, "by": merged_by
        }))

        await self.merge_repository.apply_merge(plan)
        logger.warning(
            f"Merged identity {merged.id} into {survivor.id} "
            f"({len(plan.repointed)} repointed, {len(plan.cases)} cases updated)"
        )
        return survivor

    async def _redirect_cases(
        self,
        survivor: PatientIdentity,
        merged: PatientIdentity,
        merged_by: str,
        resolving_case: Optional[DuplicateCase]
    ) -> List[DuplicateCase]:
        """Point open cases of the merged record at the survivor"""
        skip_id = resolving_case.id if resolving_case else None
        open_pairs = {
            case.pair() for case in await self.case_repository.find_open_for_identity(survivor.id)
            if case.id != skip_id and not case.involves(merged.id)
        }

        updated = []
        for case in await self.case_repository.find_open_for_identity(merged.id):
            if case.id == skip_id:
                continue
            if case.primary_identity_id == merged.id:
                case.primary_identity_id = survivor.id
            if case.secondary_identity_id == merged.id:
                case.secondary_identity_id = survivor.id

            if case.primary_identity_id == case.secondary_identity_id or case.pair() in open_pairs:
                case.status = CaseStatus.DISMISSED
                case.resolution = DuplicateResolution(
                    decision=ResolutionDecision.NO_ACTION,
                    survivor_id=survivor.id,
                    rationale=f"Superseded by merge of {merged.id} into {survivor.id}",
                    resolved_by=merged_by,
                )
            else:
                open_pairs.add(case.pair())
            updated.append(case)
        return updated

    @staticmethod
    def _audit_entry(identity_id: str, action: str, details: Dict[str, Any]) -> Dict[str, Any]:
        return {"identity_id": identity_id, "action": action, "details": details}
