"""
Facility identitovigilance policy
"""

from typing import List
from enum import Enum
from pydantic import BaseModel, Field

from .identity import VerificationType


class DemotionRule(str, Enum):
    """Where a qualified identity lands when its national identifier is invalidated"""
    ALWAYS_DOUBTFUL = "always_doubtful"
    VALIDATED_IF_DOCUMENT = "validated_if_document"


class IdentitovigilancePolicy(BaseModel):
    facility_id: str = "default"
    required_traits: List[str] = Field(
        default_factory=lambda: ["birth_family_name", "birth_given_name", "birth_date", "sex"]
    )
    mandatory_verifications: List[VerificationType] = Field(
        default_factory=lambda: [VerificationType.DOCUMENT]
    )
    duplicate_threshold: int = Field(default=75, ge=0, le=100)
    possible_floor: int = Field(default=50, ge=0, le=100)
    quality_minimum: int = Field(default=60, ge=0, le=100)
    national_id_required: bool = False
    demotion_rule: DemotionRule = DemotionRule.ALWAYS_DOUBTFUL
    presence_window_minutes: int = Field(default=240, gt=0)
