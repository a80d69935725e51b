"""
Base Teleservice Provider Interface

Defines the standard interface that every national identifier teleservice
client must implement. This keeps the qualification workflow independent of
the transport used to reach the national service.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
import logging

from ..core.config import TeleserviceConfig
from ..domains.qualification.models.qualification import QualificationRequest, TeleserviceResponse

logger = logging.getLogger(__name__)


class TeleserviceUnavailable(Exception):
    """The teleservice could not be reached or answered with a server error"""


@dataclass
class ProviderConfig:
    """Base configuration for teleservice providers"""
    endpoint: str = ""
    api_key: Optional[str] = None
    oid: str = ""
    timeout_seconds: float = 10
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    @classmethod
    def from_teleservice_config(cls, config: TeleserviceConfig) -> "ProviderConfig":
        return cls(
            endpoint=config.endpoint,
            api_key=config.api_key,
            oid=config.oid,
            timeout_seconds=config.timeout_seconds,
        )


class BaseTeleserviceProvider(ABC):
    """
    Abstract base class for all teleservice providers

    ``submit`` returns the service answer, including not-found and
    service-level errors, and raises TeleserviceUnavailable when no answer
    could be obtained.
    """

    def __init__(self, config: Optional[ProviderConfig] = None):
        self.config = config or ProviderConfig()
        self.provider_name = self.__class__.__name__.replace('TeleserviceProvider', '').lower()
        self._initialized = False

        # Statistics
        self.total_calls = 0
        self.failed_calls = 0

    @abstractmethod
    async def initialize(self) -> None:
        """Set up connections or credentials needed by the provider"""

    @abstractmethod
    async def submit(self, request: QualificationRequest) -> TeleserviceResponse:
        pass

    async def health_check(self) -> Dict[str, Any]:
        return {
            'status': 'healthy' if self._initialized else 'not_initialized',
            'provider': self.provider_name,
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            'provider': self.provider_name,
            'initialized': self._initialized,
            'total_calls': self.total_calls,
            'failed_calls': self.failed_calls,
            'config': {
                'endpoint': self.config.endpoint,
                'timeout_seconds': self.config.timeout_seconds,
            }
        }

    async def cleanup(self) -> None:
        """Release provider resources on shutdown"""
        self._initialized = False
