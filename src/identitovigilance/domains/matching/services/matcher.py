"""
Duplicate matcher - trait-level match scoring
"""

from typing import Optional, List, Tuple

from ..models.duplicate import DuplicateCandidate, MatchClassification, TraitDifference
from ...identity.models.identity import PatientIdentity, PatientTraits
from ...identity.models.policy import IdentitovigilancePolicy
from ...identity.services.normalization import normalize, similarity


EXACT_MATCH_SCORE = 95
FUZZY_NAME_THRESHOLD = 0.8

NAME_EXACT_POINTS = 15
NAME_FUZZY_POINTS = 10
BIRTH_DATE_POINTS = 40
SEX_POINTS = 10
BIRTH_PLACE_POINTS = 20
MAX_POSSIBLE = 2 * NAME_EXACT_POINTS + BIRTH_DATE_POINTS + SEX_POINTS + BIRTH_PLACE_POINTS


def _name_points(first: Optional[str], second: Optional[str]) -> int:
    a, b = normalize(first), normalize(second)
    if not a or not b:
        return 0
    if a == b:
        return NAME_EXACT_POINTS
    if similarity(a, b) > FUZZY_NAME_THRESHOLD:
        return NAME_FUZZY_POINTS
    return 0


def _birth_place_code(traits: PatientTraits) -> Optional[str]:
    if traits.birth_place and traits.birth_place.code:
        return traits.birth_place.code.strip()
    return None


def score_traits(first: PatientTraits, second: PatientTraits) -> Tuple[int, List[str]]:
    """Earned points out of MAX_POSSIBLE and the names of the traits that scored"""
    earned = 0
    matched = []

    family = _name_points(first.birth_family_name, second.birth_family_name)
    if family:
        earned += family
        matched.append("birth_family_name")

    given = _name_points(first.birth_given_name, second.birth_given_name)
    if given:
        earned += given
        matched.append("birth_given_name")

    # dates are never fuzzy-matched
    if first.birth_date and second.birth_date and first.birth_date == second.birth_date:
        earned += BIRTH_DATE_POINTS
        matched.append("birth_date")

    if first.sex and second.sex and first.sex == second.sex:
        earned += SEX_POINTS
        matched.append("sex")

    place = _birth_place_code(first)
    if place and place == _birth_place_code(second):
        earned += BIRTH_PLACE_POINTS
        matched.append("birth_place")

    return earned, matched


def match_score(first: PatientTraits, second: PatientTraits) -> int:
    """Symmetric match score in [0, 100]; missing traits earn nothing"""
    earned, _ = score_traits(first, second)
    return round(100 * earned / MAX_POSSIBLE)


def classify(score: int, policy: IdentitovigilancePolicy) -> Optional[MatchClassification]:
    """exact / probable / possible, or None below the policy floor"""
    if score >= EXACT_MATCH_SCORE:
        return MatchClassification.EXACT
    if score >= policy.duplicate_threshold:
        return MatchClassification.PROBABLE
    if score >= policy.possible_floor:
        return MatchClassification.POSSIBLE
    return None


def _display(value) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "code"):
        return value.code
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return str(value)


def trait_differences(first: PatientTraits, second: PatientTraits) -> List[TraitDifference]:
    differences = []
    for trait in ("birth_family_name", "birth_given_name", "birth_date", "sex", "birth_place"):
        value1 = _display(getattr(first, trait))
        value2 = _display(getattr(second, trait))
        if trait in ("birth_family_name", "birth_given_name"):
            same = normalize(value1) == normalize(value2)
        else:
            same = value1 == value2
        if not same:
            differences.append(TraitDifference(trait=trait, value1=value1, value2=value2))
    return differences


def compare_traits(
    traits: PatientTraits,
    other: PatientIdentity,
    policy: IdentitovigilancePolicy
) -> Optional[DuplicateCandidate]:
    """Candidate describing ``other`` as a match for ``traits``, or None below the floor"""
    earned, matched = score_traits(traits, other.traits)
    score = round(100 * earned / MAX_POSSIBLE)
    classification = classify(score, policy)
    if classification is None:
        return None

    return DuplicateCandidate(
        identity_id=other.id,
        match_score=score,
        matched_traits=matched,
        classification=classification,
        differences=trait_differences(traits, other.traits),
    )


def compare(
    identity: PatientIdentity,
    other: PatientIdentity,
    policy: IdentitovigilancePolicy
) -> Optional[DuplicateCandidate]:
    """Candidate describing ``other`` as a duplicate of ``identity``, or None"""
    return compare_traits(identity.traits, other, policy)
