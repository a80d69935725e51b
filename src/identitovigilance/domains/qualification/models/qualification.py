"""
National identifier qualification models
"""

from typing import Optional
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field

from ...identity.models.identity import PatientTraits, NationalIdType, new_id, utcnow


class QualificationRequestType(str, Enum):
    VERIFICATION = "verification"  # check the traits against a known identifier
    SEARCH = "search"  # look the identifier up from traits


class QualificationRequestStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    PROVISIONAL = "provisional"
    NO_MATCH = "no_match"
    ERROR = "error"
    EXPIRED = "expired"


class TeleserviceOutcome(str, Enum):
    QUALIFIED = "qualified"
    PROVISIONAL = "provisional"
    NOT_FOUND = "not_found"
    ERROR = "error"


class TeleserviceResponse(BaseModel):
    outcome: TeleserviceOutcome
    identifier_value: Optional[str] = None
    oid: Optional[str] = None
    identifier_type: NationalIdType = NationalIdType.PERMANENT
    returned_traits: Optional[PatientTraits] = None
    error_message: Optional[str] = None
    received_at: datetime = Field(default_factory=utcnow)


class QualificationRequest(BaseModel):
    id: str = Field(default_factory=new_id)
    identity_id: str
    request_type: QualificationRequestType = QualificationRequestType.SEARCH
    requested_at: datetime = Field(default_factory=utcnow)
    requested_by: str
    traits: PatientTraits
    status: QualificationRequestStatus = QualificationRequestStatus.PENDING
    response: Optional[TeleserviceResponse] = None
    error_message: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def is_pending(self) -> bool:
        return self.status == QualificationRequestStatus.PENDING


class QualificationStartRequest(BaseModel):
    request_type: QualificationRequestType = QualificationRequestType.SEARCH
    requested_by: str
