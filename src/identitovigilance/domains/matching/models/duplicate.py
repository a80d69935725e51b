"""
Duplicate detection and resolution models
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from pydantic import BaseModel, Field

from ...identity.models.identity import PatientIdentity, new_id, utcnow


class MatchClassification(str, Enum):
    EXACT = "exact"
    PROBABLE = "probable"
    POSSIBLE = "possible"


class DetectionMethod(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    MERGE_REQUEST = "merge_request"


class CaseStatus(str, Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    CONFIRMED_DUPLICATE = "confirmed_duplicate"
    NOT_DUPLICATE = "not_duplicate"
    MERGED = "merged"
    DISMISSED = "dismissed"


OPEN_CASE_STATUSES = (CaseStatus.PENDING, CaseStatus.INVESTIGATING)


class ResolutionDecision(str, Enum):
    MERGE = "merge"
    LINK = "link"
    NOT_DUPLICATE = "not_duplicate"
    NO_ACTION = "no_action"


class TraitDifference(BaseModel):
    trait: str
    value1: Optional[str] = None
    value2: Optional[str] = None


class DuplicateCandidate(BaseModel):
    """Scored pairing between an identity and a possible match (never persisted)"""
    identity_id: str
    match_score: int
    matched_traits: List[str] = Field(default_factory=list)
    classification: MatchClassification
    differences: List[TraitDifference] = Field(default_factory=list)


class DuplicateResolution(BaseModel):
    decision: ResolutionDecision
    survivor_id: Optional[str] = None
    rationale: str
    resolved_at: datetime = Field(default_factory=utcnow)
    resolved_by: Optional[str] = None


class DuplicateCase(BaseModel):
    id: str = Field(default_factory=new_id)
    primary_identity_id: str
    secondary_identity_id: str
    detection_method: DetectionMethod
    detected_at: datetime = Field(default_factory=utcnow)
    match_score: int
    status: CaseStatus = CaseStatus.PENDING
    assigned_to: Optional[str] = None
    resolution: Optional[DuplicateResolution] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_CASE_STATUSES

    def involves(self, identity_id: str) -> bool:
        return identity_id in (self.primary_identity_id, self.secondary_identity_id)

    def pair(self) -> frozenset:
        return frozenset((self.primary_identity_id, self.secondary_identity_id))


class CaseCreateRequest(BaseModel):
    primary_identity_id: str
    secondary_identity_id: str
    detection_method: DetectionMethod = DetectionMethod.MANUAL
    notes: Optional[str] = None


class ResolutionRequest(BaseModel):
    decision: ResolutionDecision
    survivor_id: Optional[str] = None
    rationale: str
    resolved_by: str


class InvestigationRequest(BaseModel):
    assigned_to: str


class MergeRequest(BaseModel):
    survivor_id: str
    merged_id: str
    merged_by: str


@dataclass
class MergePlan:
    """
    Every record a merge writes. Applied by MergeRepository.apply_merge in
    one all-or-nothing unit; the versions carried by each record are the
    versions read before the merge.
    """
    survivor: PatientIdentity
    merged: PatientIdentity
    repointed: List[PatientIdentity] = field(default_factory=list)
    cases: List[DuplicateCase] = field(default_factory=list)
    audit: List[Dict[str, Any]] = field(default_factory=list)
