"""
Identity domain models
"""

from typing import Optional, List
from datetime import datetime, date, timezone
from enum import Enum
from uuid import uuid4
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class IdentityStatus(str, Enum):
    """Identity status lifecycle"""
    PROVISIONAL = "provisional"  # not verified
    VALIDATED = "validated"  # verified against an identity document
    QUALIFIED = "qualified"  # verified via the national teleservice
    DOUBTFUL = "doubtful"  # potential issues identified
    FICTITIOUS = "fictitious"  # test records only
    ANONYMOUS = "anonymous"  # emergency / unidentified patient


class VerificationType(str, Enum):
    DOCUMENT = "document"
    HEALTH_CARD = "health_card"
    TELESERVICE = "teleservice"
    PATIENT_CONFIRMATION = "patient_confirmation"
    FAMILY_CONFIRMATION = "family_confirmation"
    CROSS_REFERENCE = "cross_reference"
    BIOMETRIC = "biometric"
    NATIONAL_ID_INVALIDATION = "national_id_invalidation"


class VerificationResult(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class DocumentType(str, Enum):
    NATIONAL_ID_CARD = "national_id_card"
    PASSPORT = "passport"
    RESIDENCE_PERMIT = "residence_permit"
    DRIVING_LICENCE = "driving_licence"
    HEALTH_CARD = "health_card"
    FAMILY_RECORD_BOOK = "family_record_book"
    BIRTH_CERTIFICATE = "birth_certificate"
    OTHER = "other"


class Sex(str, Enum):
    MALE = "M"
    FEMALE = "F"
    INDETERMINATE = "I"


class NationalIdType(str, Enum):
    PERMANENT = "permanent"
    TEMPORARY = "temporary"
    PROVISIONAL = "provisional"


class NationalIdSource(str, Enum):
    TELESERVICE = "teleservice"
    HEALTH_CARD = "health_card"
    IMPORT = "import"
    MANUAL = "manual"


class QualificationStatus(str, Enum):
    QUALIFIED = "qualified"
    PROVISIONAL = "provisional"
    INVALID = "invalid"


class AliasType(str, Enum):
    MAIDEN_NAME = "maiden_name"
    MARRIED_NAME = "married_name"
    PSEUDONYM = "pseudonym"
    PREVIOUS_NAME = "previous_name"
    SPELLING_VARIANT = "spelling_variant"


class DiscrepancyResolution(str, Enum):
    CORRECTED = "corrected"
    KEPT_SYSTEM = "kept_system"
    KEPT_VERIFIED = "kept_verified"
    PENDING = "pending"


class BirthPlace(BaseModel):
    """Place of birth; code is the official municipality/country code"""
    code: str
    label: Optional[str] = None
    country: Optional[str] = None


class PatientTraits(BaseModel):
    """Birth (regulated) traits plus local extended traits"""
    birth_family_name: Optional[str] = None
    birth_given_name: Optional[str] = None
    birth_date: Optional[date] = None
    sex: Optional[Sex] = None
    birth_place: Optional[BirthPlace] = None

    usual_name: Optional[str] = None
    given_names: List[str] = Field(default_factory=list)
    preferred_name: Optional[str] = None


class NationalIdentifier(BaseModel):
    value: str
    oid: str
    type: NationalIdType = NationalIdType.PERMANENT
    source: NationalIdSource = NationalIdSource.TELESERVICE
    status: QualificationStatus = QualificationStatus.PROVISIONAL
    retrieved_at: datetime = Field(default_factory=utcnow)
    validated_at: Optional[datetime] = None
    validated_by: Optional[str] = None


class TraitDiscrepancy(BaseModel):
    trait: str
    system_value: Optional[str] = None
    verified_value: Optional[str] = None
    resolution: DiscrepancyResolution = DiscrepancyResolution.PENDING


class IdentityVerification(BaseModel):
    """Append-only record of one verification event"""
    id: str = Field(default_factory=new_id)
    identity_id: str
    verification_type: VerificationType
    verified_at: datetime = Field(default_factory=utcnow)
    verified_by: str
    document_type: Optional[DocumentType] = None
    document_number: Optional[str] = None
    document_expiry_date: Optional[date] = None
    result: VerificationResult
    discrepancies: List[TraitDiscrepancy] = Field(default_factory=list)
    notes: Optional[str] = None
    previous_status: IdentityStatus
    new_status: IdentityStatus
    source_identity_id: Optional[str] = None  # set when attached by a merge


class PatientAlias(BaseModel):
    id: str = Field(default_factory=new_id)
    identity_id: str
    type: AliasType
    family_name: str
    given_name: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    created_at: datetime = Field(default_factory=utcnow)


class PatientIdentity(BaseModel):
    """Root identity record"""
    id: str = Field(default_factory=new_id)
    local_id: str
    national_id: Optional[NationalIdentifier] = None
    traits: PatientTraits
    status: IdentityStatus = IdentityStatus.PROVISIONAL
    quality_score: int = 0
    verification_history: List[IdentityVerification] = Field(default_factory=list)
    aliases: List[PatientAlias] = Field(default_factory=list)
    merged_from: List[str] = Field(default_factory=list)
    merged_into: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def is_merged(self) -> bool:
        return self.merged_into is not None


class IdentityCreateRequest(BaseModel):
    local_id: str
    traits: PatientTraits
    status: IdentityStatus = IdentityStatus.PROVISIONAL
    national_id: Optional[NationalIdentifier] = None


class TraitUpdateRequest(BaseModel):
    changes: PatientTraits
    verified_by: str
    document_type: Optional[DocumentType] = None
    expected_version: Optional[int] = None


class VerificationRequest(BaseModel):
    verification_type: VerificationType
    verified_by: str
    result: VerificationResult = VerificationResult.SUCCESS
    discrepancies: List[TraitDiscrepancy] = Field(default_factory=list)
    document_type: Optional[DocumentType] = None
    document_number: Optional[str] = None
    document_expiry_date: Optional[date] = None
    notes: Optional[str] = None
    target_status: Optional[IdentityStatus] = None
    expected_version: Optional[int] = None


class AliasCreateRequest(BaseModel):
    type: AliasType
    family_name: str
    given_name: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None


class QualityScoreResponse(BaseModel):
    identity_id: str
    quality_score: int
    status: IdentityStatus


class DocumentVerificationRequest(BaseModel):
    document_type: DocumentType
    document_number: str
    document_expiry_date: Optional[date] = None
    verified_by: str
    discrepancies: List[TraitDiscrepancy] = Field(default_factory=list)
    expected_version: Optional[int] = None


class NationalIdInvalidationRequest(BaseModel):
    reason: str
    invalidated_by: str
