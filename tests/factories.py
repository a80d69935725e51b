"""
Builders for identity test data
"""

from datetime import date
from typing import Optional

from identitovigilance.domains.identity.models.identity import (
    BirthPlace,
    IdentityCreateRequest,
    IdentityStatus,
    NationalIdentifier,
    PatientTraits,
    QualificationStatus,
    Sex,
)
from identitovigilance.domains.qualification.models.qualification import TeleserviceOutcome, TeleserviceResponse

BIRTH_DATE = date(1980, 5, 1)
NIR = "180057505612345"
OID = "1.2.250.1.213.1.4.8"


def make_traits(**overrides) -> PatientTraits:
    values = {
        "birth_family_name": "MARTIN",
        "birth_given_name": "JEAN",
        "birth_date": BIRTH_DATE,
        "sex": Sex.MALE,
        "birth_place": BirthPlace(code="75056", label="Paris"),
    }
    values.update(overrides)
    return PatientTraits(**values)


def create_request(
    local_id: str,
    status: IdentityStatus = IdentityStatus.PROVISIONAL,
    national_id: Optional[NationalIdentifier] = None,
    **traits
) -> IdentityCreateRequest:
    return IdentityCreateRequest(
        local_id=local_id,
        traits=make_traits(**traits),
        status=status,
        national_id=national_id,
    )


def make_national_id(value: str = NIR, status: QualificationStatus = QualificationStatus.PROVISIONAL) -> NationalIdentifier:
    return NationalIdentifier(value=value, oid=OID, status=status)


def teleservice_response(
    outcome: TeleserviceOutcome = TeleserviceOutcome.QUALIFIED,
    identifier_value: Optional[str] = NIR
) -> TeleserviceResponse:
    return TeleserviceResponse(outcome=outcome, identifier_value=identifier_value, oid=OID)
