"""
Patient safety models - collision alerts, identity checks and wristbands
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field

from ...identity.models.identity import new_id, utcnow


class CollisionType(str, Enum):
    SAME_ROOM = "same_room"  # same patient present in two locations
    SAME_APPOINTMENT = "same_appointment"  # double booking
    IDENTITY_MISMATCH = "identity_mismatch"
    WRISTBAND_MISMATCH = "wristband_mismatch"
    PHOTO_MISMATCH = "photo_mismatch"
    NATIONAL_ID_MISMATCH = "national_id_mismatch"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


class CheckType(str, Enum):
    ADMISSION = "admission"
    PROCEDURE = "procedure"
    MEDICATION = "medication"
    LAB = "lab"
    IMAGING = "imaging"
    DISCHARGE = "discharge"
    OTHER = "other"


class CheckMethod(str, Enum):
    WRISTBAND_SCAN = "wristband_scan"
    VERBAL_CONFIRMATION = "verbal_confirmation"
    PHOTO_MATCH = "photo_match"
    DOCUMENT_CHECK = "document_check"
    BIOMETRIC = "biometric"


class CheckResult(str, Enum):
    CONFIRMED = "confirmed"
    DISCREPANCY = "discrepancy"
    UNABLE_TO_CONFIRM = "unable_to_confirm"


class WristbandStatus(str, Enum):
    ACTIVE = "active"
    REPRINTED = "reprinted"
    DEACTIVATED = "deactivated"


class CollisionAlert(BaseModel):
    id: str = Field(default_factory=new_id)
    identity_id: str
    type: CollisionType
    severity: AlertSeverity
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    status: AlertStatus = AlertStatus.ACTIVE
    encounter_id: Optional[str] = None
    location: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0


class IdentityCheck(BaseModel):
    """Point-of-care identity confirmation (append-only)"""
    id: str = Field(default_factory=new_id)
    identity_id: str
    encounter_id: Optional[str] = None
    check_type: CheckType
    checked_by: str
    checked_at: datetime = Field(default_factory=utcnow)
    location: str
    method: CheckMethod
    traits_verified: List[str] = Field(default_factory=list)
    result: CheckResult
    discrepancy_details: Optional[str] = None
    action: Optional[str] = None


class Wristband(BaseModel):
    id: str = Field(default_factory=new_id)
    identity_id: str
    encounter_id: str
    barcode: str
    printed_at: datetime = Field(default_factory=utcnow)
    printed_by: str
    print_location: str
    status: WristbandStatus = WristbandStatus.ACTIVE
    replaced_by: Optional[str] = None
    deactivation_reason: Optional[str] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0


class AlertCreateRequest(BaseModel):
    identity_id: str
    type: CollisionType
    severity: AlertSeverity
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    encounter_id: Optional[str] = None
    location: Optional[str] = None


class AlertActionRequest(BaseModel):
    actor: str


class AlertResolutionRequest(BaseModel):
    actor: str
    reason: str


class CollisionCheckRequest(BaseModel):
    identity_id: str
    location: str
    encounter_id: str


class IdentityCheckRequest(BaseModel):
    identity_id: str
    encounter_id: Optional[str] = None
    check_type: CheckType
    checked_by: str
    location: str
    method: CheckMethod
    traits_verified: List[str] = Field(default_factory=list)
    result: CheckResult
    discrepancy_details: Optional[str] = None
    action: Optional[str] = None


class WristbandPrintRequest(BaseModel):
    identity_id: str
    encounter_id: str
    printed_by: str
    print_location: str


class WristbandScanRequest(BaseModel):
    identity_id: str
    encounter_id: str
    scanned_barcode: str
    scanned_by: str
    location: str


class WristbandScanResult(BaseModel):
    matched: bool
    wristband: Optional[Wristband] = None
    alert: Optional[CollisionAlert] = None


class WristbandReprintRequest(BaseModel):
    reprinted_by: str
    reason: str
    print_location: Optional[str] = None


class WristbandDeactivateRequest(BaseModel):
    reason: str
