"""
Identity quality scoring
"""

from typing import Optional

from ..models.identity import (
    PatientTraits,
    NationalIdentifier,
    IdentityStatus,
    QualificationStatus,
)


TRAIT_WEIGHTS = {
    "birth_family_name": 10,
    "birth_given_name": 10,
    "birth_date": 10,
    "sex": 5,
    "birth_place": 5,
}

STATUS_WEIGHTS = {
    IdentityStatus.QUALIFIED: 20,
    IdentityStatus.VALIDATED: 15,
    IdentityStatus.PROVISIONAL: 5,
    IdentityStatus.DOUBTFUL: 0,
    IdentityStatus.FICTITIOUS: 0,
    IdentityStatus.ANONYMOUS: 0,
}

MAX_QUALITY_SCORE = 100


def quality_score(
    traits: PatientTraits,
    national_id: Optional[NationalIdentifier],
    status: IdentityStatus
) -> int:
    """
    Completeness/trust score in [0, 100].

    Trait completeness is worth up to 40 points, the national identifier up
    to 40 (20 for being present, plus 20 when qualified or 10 when
    provisional) and the identity status up to 20.
    """
    score = 0

    for trait, weight in TRAIT_WEIGHTS.items():
        if getattr(traits, trait, None):
            score += weight

    if national_id is not None:
        score += 20
        if national_id.status == QualificationStatus.QUALIFIED:
            score += 20
        elif national_id.status == QualificationStatus.PROVISIONAL:
            score += 10

    score += STATUS_WEIGHTS[IdentityStatus(status)]

    return min(score, MAX_QUALITY_SCORE)
