import asyncio
from contextlib import asynccontextmanager
from datetime import date

import pytest

from identitovigilance.core.errors import ConflictError, InvalidTransitionError, ValidationError
from identitovigilance.core.locks import LocalLockManager
from identitovigilance.domains.identity.models.identity import (
    AliasCreateRequest,
    AliasType,
    PatientTraits,
    VerificationType,
)
from identitovigilance.domains.matching.models.duplicate import (
    CaseStatus,
    DetectionMethod,
    MatchClassification,
    ResolutionDecision,
    ResolutionRequest,
)

from factories import create_request, make_traits


@pytest.fixture
async def martin(identity_service):
    return await identity_service.create_identity(create_request("L1"))


@pytest.fixture
async def jehan(identity_service):
    return await identity_service.create_identity(create_request("L2", birth_given_name="JEHAN"))


@pytest.fixture
async def durand(identity_service):
    return await identity_service.create_identity(create_request(
        "L3", birth_family_name="DURAND", birth_given_name="PAUL", birth_date=date(1950, 3, 3)
    ))


def resolution(decision, survivor_id=None):
    return ResolutionRequest(decision=decision, survivor_id=survivor_id, rationale="checked", resolved_by="dim-1")


async def test_candidates_are_scored_and_filtered(duplicate_service, martin, jehan, durand):
    candidates = await duplicate_service.find_duplicate_candidates(martin.id)

    assert [c.identity_id for c in candidates] == [jehan.id]
    assert candidates[0].match_score == 95
    assert candidates[0].classification == MatchClassification.EXACT


async def test_search_before_registration(duplicate_service, martin, durand):
    candidates = await duplicate_service.search_potential_duplicates(make_traits(birth_given_name="JEHAN"))

    assert [c.identity_id for c in candidates] == [martin.id]
    assert candidates[0].classification == MatchClassification.EXACT


async def test_search_needs_a_narrowing_trait(duplicate_service, martin):
    with pytest.raises(ValidationError):
        await duplicate_service.search_potential_duplicates(PatientTraits(birth_given_name="JEAN"))


async def test_detection_opens_one_case_per_pair(duplicate_service, martin, jehan):
    opened = await duplicate_service.detect_duplicates(martin.id)

    assert len(opened) == 1
    assert opened[0].detection_method == DetectionMethod.AUTOMATIC
    assert await duplicate_service.detect_duplicates(jehan.id) == []


async def test_case_needs_two_identities(duplicate_service, martin):
    with pytest.raises(ValidationError):
        await duplicate_service.create_duplicate_case(martin.id, martin.id)


async def test_case_score_is_frozen(duplicate_service, identity_service, martin, jehan):
    case = await duplicate_service.create_duplicate_case(martin.id, jehan.id, notes="same mother")
    await identity_service.update_traits(jehan.id, {"birth_given_name": "JEAN"}, "nurse-1")

    stored = await duplicate_service.get_duplicate_case(case.id)

    assert stored.match_score == 95
    assert stored.notes == "same mother"
    with pytest.raises(ConflictError):
        await duplicate_service.create_duplicate_case(jehan.id, martin.id)


async def test_investigation_only_from_pending(duplicate_service, martin, jehan):
    case = await duplicate_service.create_duplicate_case(martin.id, jehan.id)

    case = await duplicate_service.start_investigation(case.id, "dim-1")
    assert case.status == CaseStatus.INVESTIGATING
    assert case.assigned_to == "dim-1"

    with pytest.raises(InvalidTransitionError):
        await duplicate_service.start_investigation(case.id, "dim-2")


async def test_not_duplicate_closes_case(duplicate_service, martin, jehan):
    case = await duplicate_service.create_duplicate_case(martin.id, jehan.id)

    closed = await duplicate_service.resolve_duplicate_case(case.id, resolution(ResolutionDecision.NOT_DUPLICATE))

    assert closed.status == CaseStatus.NOT_DUPLICATE
    assert closed.resolution.resolved_by == "dim-1"
    with pytest.raises(InvalidTransitionError):
        await duplicate_service.resolve_duplicate_case(case.id, resolution(ResolutionDecision.NO_ACTION))
    assert await duplicate_service.list_duplicate_cases(CaseStatus.PENDING) == []


async def test_merge_decision_needs_survivor_from_pair(duplicate_service, martin, jehan, durand):
    case = await duplicate_service.create_duplicate_case(martin.id, jehan.id)

    with pytest.raises(ValidationError):
        await duplicate_service.resolve_duplicate_case(case.id, resolution(ResolutionDecision.MERGE))
    with pytest.raises(ValidationError):
        await duplicate_service.resolve_duplicate_case(case.id, resolution(ResolutionDecision.MERGE, durand.id))

    assert (await duplicate_service.get_duplicate_case(case.id)).is_open


async def test_merge_decision_merges_and_closes_case(duplicate_service, identity_service, martin, jehan):
    case = await duplicate_service.create_duplicate_case(martin.id, jehan.id)

    closed = await duplicate_service.resolve_duplicate_case(case.id, resolution(ResolutionDecision.MERGE, martin.id))

    assert closed.status == CaseStatus.MERGED
    assert (await duplicate_service.get_duplicate_case(case.id)).status == CaseStatus.MERGED
    assert (await identity_service.get_identity(jehan.id)).merged_into == martin.id


async def test_merge_moves_aliases_and_history(duplicate_service, identity_service, identity_repository, martin, jehan):
    alias = await identity_service.add_alias(
        jehan.id, AliasCreateRequest(type=AliasType.SPELLING_VARIANT, family_name="MARTIN", given_name="JEHAN")
    )
    verification = await identity_service.record_verification(jehan.id, VerificationType.DOCUMENT, "nurse-1")

    survivor = await duplicate_service.merge_identities(martin.id, jehan.id, "dim-1")

    assert jehan.id in survivor.merged_from
    assert [a.family_name for a in await identity_service.get_aliases(martin.id)] == ["MARTIN"]
    assert alias.id in [a.id for a in survivor.aliases]
    copied = [v for v in survivor.verification_history if v.source_identity_id == jehan.id]
    assert [v.id for v in copied] == [verification.id]
    assert copied[0].verified_at == verification.verified_at
    assert "merge_survivor" in identity_repository.actions_for(martin.id)
    assert "merged_into" in identity_repository.actions_for(jehan.id)


async def test_merge_twice_conflicts(duplicate_service, identity_service, martin, jehan):
    await duplicate_service.merge_identities(martin.id, jehan.id, "dim-1")

    with pytest.raises(ConflictError):
        await duplicate_service.merge_identities(martin.id, jehan.id, "dim-1")
    with pytest.raises(ConflictError):
        await identity_service.record_verification(jehan.id, VerificationType.DOCUMENT, "nurse-1")

    survivor = await identity_service.get_identity(martin.id)
    assert survivor.merged_from.count(jehan.id) == 1


async def test_self_merge_is_rejected(duplicate_service, martin):
    with pytest.raises(ValidationError):
        await duplicate_service.merge_identities(martin.id, martin.id, "dim-1")


async def test_merge_chain_is_flattened(duplicate_service, identity_service, martin, jehan, durand):
    await duplicate_service.merge_identities(jehan.id, martin.id, "dim-1")
    survivor = await duplicate_service.merge_identities(durand.id, jehan.id, "dim-1")

    assert set(survivor.merged_from) == {jehan.id, martin.id}
    assert (await identity_service.get_identity(martin.id)).merged_into == durand.id
    assert (await identity_service.get_identity(jehan.id)).merged_into == durand.id


async def test_merge_redirects_open_cases(duplicate_service, martin, jehan, durand):
    pair_case = await duplicate_service.create_duplicate_case(martin.id, jehan.id)
    other_case = await duplicate_service.create_duplicate_case(jehan.id, durand.id)

    await duplicate_service.merge_identities(martin.id, jehan.id, "dim-1")

    dismissed = await duplicate_service.get_duplicate_case(pair_case.id)
    assert dismissed.status == CaseStatus.DISMISSED
    assert dismissed.resolution.decision == ResolutionDecision.NO_ACTION

    redirected = await duplicate_service.get_duplicate_case(other_case.id)
    assert redirected.is_open
    assert redirected.pair() == frozenset((martin.id, durand.id))


async def test_failed_merge_writes_nothing(duplicate_service, identity_service, merge_repository, martin, jehan):
    merge_repository.fail_with = RuntimeError("transaction aborted")

    with pytest.raises(RuntimeError):
        await duplicate_service.merge_identities(martin.id, jehan.id, "dim-1")

    assert (await identity_service.get_identity(jehan.id)).merged_into is None
    assert (await identity_service.get_identity(martin.id)).merged_from == []


async def test_concurrent_opposite_merges_leave_one_survivor(duplicate_service, identity_service, martin, jehan):
    results = await asyncio.gather(
        duplicate_service.merge_identities(martin.id, jehan.id, "dim-1"),
        duplicate_service.merge_identities(jehan.id, martin.id, "dim-2"),
        return_exceptions=True,
    )

    assert sum(isinstance(result, ConflictError) for result in results) == 1
    records = [await identity_service.get_identity(martin.id), await identity_service.get_identity(jehan.id)]
    assert sum(record.is_merged for record in records) == 1


class MergeWhileLockingManager(LocalLockManager):
    """Runs ``before_first_lock`` once, just before the first key is taken"""

    def __init__(self, before_first_lock):
        super().__init__()
        self.before_first_lock = before_first_lock
        self.locked = []

    @asynccontextmanager
    async def lock(self, key):
        if self.before_first_lock is not None:
            hook, self.before_first_lock = self.before_first_lock, None
            await hook()
        self.locked.append(key)
        async with super().lock(key):
            yield


async def test_resolution_locks_the_redirected_pair(duplicate_service, martin, jehan, durand):
    case = await duplicate_service.create_duplicate_case(jehan.id, durand.id)
    manager = MergeWhileLockingManager(lambda: duplicate_service.merge_identities(martin.id, jehan.id, "dim-2"))
    duplicate_service.lock_manager = manager

    resolved = await duplicate_service.resolve_duplicate_case(case.id, resolution(ResolutionDecision.NOT_DUPLICATE))

    assert resolved.status == CaseStatus.NOT_DUPLICATE
    assert resolved.pair() == frozenset((martin.id, durand.id))
    assert set(manager.locked[-2:]) == {martin.id, durand.id}
