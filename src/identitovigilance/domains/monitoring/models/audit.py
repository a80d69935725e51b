"""
Compliance audit and monitoring models
"""

from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field

from ...identity.models.identity import new_id, utcnow


class FindingCategory(str, Enum):
    MISSING_NATIONAL_ID = "missing_national_id"
    UNVALIDATED = "unvalidated"
    INCOMPLETE = "incomplete"
    DUPLICATE = "duplicate"
    QUALITY = "quality"


class FindingSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AuditFinding(BaseModel):
    identity_id: str
    category: FindingCategory
    description: str
    severity: FindingSeverity
    recommendation: Optional[str] = None


class AuditSummary(BaseModel):
    total_identities: int = 0
    with_national_id: int = 0
    national_id_qualified: int = 0
    qualified: int = 0
    validated: int = 0
    provisional: int = 0
    doubtful: int = 0
    duplicate_candidates: int = 0
    average_quality_score: float = 0.0


class AuditStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AuditScope(BaseModel):
    """What an audit covers; no identity ids means every active identity"""
    identity_ids: List[str] = Field(default_factory=list)


class IdentityAudit(BaseModel):
    id: str = Field(default_factory=new_id)
    facility_id: str
    auditor_id: str
    audit_date: datetime = Field(default_factory=utcnow)
    scope: AuditScope = Field(default_factory=AuditScope)
    status: AuditStatus = AuditStatus.IN_PROGRESS
    findings: List[AuditFinding] = Field(default_factory=list)
    summary: AuditSummary = Field(default_factory=AuditSummary)
    recommendations: List[str] = Field(default_factory=list)
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def is_open(self) -> bool:
        return self.status == AuditStatus.IN_PROGRESS


class PolicyCheckResult(BaseModel):
    identity_id: str
    compliant: bool
    violations: List[str] = Field(default_factory=list)


class IdentityMetrics(BaseModel):
    facility_id: str
    generated_at: datetime = Field(default_factory=utcnow)
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    total_identities: int = 0
    national_id_qualification_rate: float = 0.0
    identity_validation_rate: float = 0.0
    duplicate_rate: float = 0.0
    average_quality_score: float = 0.0
    status_counts: Dict[str, int] = Field(default_factory=dict)
    verifications_by_type: Dict[str, int] = Field(default_factory=dict)
    collisions_by_type: Dict[str, int] = Field(default_factory=dict)


class AuditRunRequest(BaseModel):
    auditor_id: str


class AuditCreateRequest(BaseModel):
    auditor_id: str
    scope: AuditScope = Field(default_factory=AuditScope)


class AuditCompleteRequest(BaseModel):
    recommendations: List[str] = Field(default_factory=list)
