"""
Policy provider - read-only access to the facility identitovigilance policy
"""

from abc import ABC, abstractmethod
from typing import Optional
import logging

from ..models.policy import IdentitovigilancePolicy, DemotionRule
from ....core.config import PolicyConfig


logger = logging.getLogger(__name__)


class PolicyProvider(ABC):
    """Source of the current facility policy"""

    @abstractmethod
    async def get_policy(self) -> IdentitovigilancePolicy:
        pass


class StaticPolicyProvider(PolicyProvider):
    """Serves one policy built from configuration"""

    def __init__(self, policy: Optional[IdentitovigilancePolicy] = None):
        self.policy = policy or IdentitovigilancePolicy()

    @classmethod
    def from_config(cls, config: PolicyConfig) -> "StaticPolicyProvider":
        policy = IdentitovigilancePolicy(
            facility_id=config.facility_id,
            required_traits=config.required_traits,
            mandatory_verifications=config.mandatory_verifications,
            duplicate_threshold=config.duplicate_threshold,
            possible_floor=config.possible_floor,
            quality_minimum=config.quality_minimum,
            national_id_required=config.national_id_required,
            demotion_rule=DemotionRule(config.demotion_rule),
            presence_window_minutes=config.presence_window_minutes,
        )
        logger.info(f"Loaded identitovigilance policy for facility {policy.facility_id}")
        return cls(policy)

    async def get_policy(self) -> IdentitovigilancePolicy:
        return self.policy
