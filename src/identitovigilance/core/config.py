"""
Centralized configuration management for the identitovigilance service
"""

import os
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class DatabaseConfig:
    """Database configuration settings"""
    uri: str = field(default_factory=lambda: os.getenv("MONGODB_URI", "mongodb://localhost:27017"))
    name: str = field(default_factory=lambda: os.getenv("IDV_DB", "identitovigilance"))
    max_pool_size: int = field(default_factory=lambda: int(os.getenv("MONGO_POOL_SIZE", "50")))
    min_pool_size: int = field(default_factory=lambda: int(os.getenv("MONGO_MIN_POOL_SIZE", "10")))
    max_idle_time_ms: int = field(default_factory=lambda: int(os.getenv("MONGO_MAX_IDLE_TIME_MS", "10000")))
    server_selection_timeout_ms: int = field(default_factory=lambda: int(os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000")))

    # Collection names
    identities_collection: str = "patient_identities"
    identity_audit_collection: str = "identity_audit"
    duplicate_cases_collection: str = "duplicate_cases"
    collision_alerts_collection: str = "collision_alerts"
    identity_checks_collection: str = "identity_checks"
    wristbands_collection: str = "wristbands"
    qualification_requests_collection: str = "qualification_requests"
    audits_collection: str = "identity_audits"


@dataclass
class RedisConfig:
    """Redis configuration settings (distributed merge locks)"""
    enabled: bool = field(default_factory=lambda: os.getenv("REDIS_LOCKS_ENABLED", "false").lower() == "true")
    host: str = field(default_factory=lambda: os.getenv("REDIS_HOST", "localhost"))
    port: int = field(default_factory=lambda: int(os.getenv("REDIS_PORT", "6379")))
    password: Optional[str] = field(default_factory=lambda: os.getenv("REDIS_PASSWORD"))
    db: int = field(default_factory=lambda: int(os.getenv("REDIS_DB", "0")))
    max_connections: int = field(default_factory=lambda: int(os.getenv("REDIS_POOL_SIZE", "50")))

    # Lock settings
    lock_prefix: str = field(default_factory=lambda: os.getenv("REDIS_LOCK_PREFIX", "idv:lock"))
    lock_timeout_seconds: float = field(default_factory=lambda: float(os.getenv("REDIS_LOCK_TIMEOUT", "30")))
    lock_blocking_timeout_seconds: float = field(default_factory=lambda: float(os.getenv("REDIS_LOCK_WAIT", "10")))


@dataclass
class TeleserviceConfig:
    """National identifier teleservice settings"""
    provider_name: str = field(default_factory=lambda: os.getenv("TELESERVICE_PROVIDER", "http"))
    endpoint: str = field(default_factory=lambda: os.getenv("TELESERVICE_ENDPOINT", "https://teleservice.example.org/ins/v1"))
    api_key: Optional[str] = field(default_factory=lambda: os.getenv("TELESERVICE_API_KEY"))
    oid: str = field(default_factory=lambda: os.getenv("TELESERVICE_OID", "1.2.250.1.213.1.4.8"))
    timeout_seconds: float = field(default_factory=lambda: float(os.getenv("TELESERVICE_TIMEOUT", "10")))
    request_max_age_minutes: int = field(default_factory=lambda: int(os.getenv("TELESERVICE_REQUEST_MAX_AGE", "60")))


@dataclass
class RetryConfig:
    """Bounded retry policy for transient persistence failures"""
    attempts: int = field(default_factory=lambda: int(os.getenv("PERSISTENCE_RETRY_ATTEMPTS", "3")))
    wait_base_seconds: float = field(default_factory=lambda: float(os.getenv("PERSISTENCE_RETRY_WAIT", "0.2")))
    wait_max_seconds: float = field(default_factory=lambda: float(os.getenv("PERSISTENCE_RETRY_WAIT_MAX", "2")))


@dataclass
class PolicyConfig:
    """Default identitovigilance policy for the facility"""
    facility_id: str = field(default_factory=lambda: os.getenv("FACILITY_ID", "default"))
    required_traits: List[str] = field(default_factory=lambda: _env_list(
        "POLICY_REQUIRED_TRAITS", "birth_family_name,birth_given_name,birth_date,sex"))
    mandatory_verifications: List[str] = field(default_factory=lambda: _env_list(
        "POLICY_MANDATORY_VERIFICATIONS", "document"))
    duplicate_threshold: int = field(default_factory=lambda: int(os.getenv("POLICY_DUPLICATE_THRESHOLD", "75")))
    possible_floor: int = field(default_factory=lambda: int(os.getenv("POLICY_POSSIBLE_FLOOR", "50")))
    quality_minimum: int = field(default_factory=lambda: int(os.getenv("POLICY_QUALITY_MINIMUM", "60")))
    national_id_required: bool = field(default_factory=lambda: os.getenv("POLICY_NATIONAL_ID_REQUIRED", "false").lower() == "true")
    demotion_rule: str = field(default_factory=lambda: os.getenv("POLICY_DEMOTION_RULE", "always_doubtful"))
    presence_window_minutes: int = field(default_factory=lambda: int(os.getenv("POLICY_PRESENCE_WINDOW", "240")))


@dataclass
class LoggingConfig:
    """Logging configuration settings"""
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = field(default_factory=lambda: os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    # File logging
    log_file: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE"))
    max_file_size: int = field(default_factory=lambda: int(os.getenv("LOG_MAX_FILE_SIZE", "10485760")))  # 10MB
    backup_count: int = field(default_factory=lambda: int(os.getenv("LOG_BACKUP_COUNT", "5")))


@dataclass
class ApplicationConfig:
    """Main application configuration"""
    app_name: str = field(default_factory=lambda: os.getenv("APP_NAME", "Identitovigilance Service"))
    app_version: str = field(default_factory=lambda: os.getenv("APP_VERSION", "1.0.0"))
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")

    # Server settings
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))

    # Component configurations
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    teleservice: TeleserviceConfig = field(default_factory=TeleserviceConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self):
        """Validate configuration after initialization"""
        self.validate()

    def validate(self):
        """Validate configuration settings"""
        errors = []

        if not self.database.uri:
            errors.append("Database URI is required")
        if not self.database.name:
            errors.append("Database name is required")

        if self.redis.enabled and not (1 <= self.redis.port <= 65535):
            errors.append("Redis port must be between 1 and 65535")

        if self.teleservice.timeout_seconds <= 0:
            errors.append("Teleservice timeout must be positive")
        if self.teleservice.provider_name == "http" and not self.teleservice.endpoint:
            errors.append("Teleservice endpoint is required when using the HTTP provider")

        if self.retry.attempts < 1:
            errors.append("Retry attempts must be at least 1")

        if not (0 <= self.policy.possible_floor <= self.policy.duplicate_threshold <= 100):
            errors.append("Policy thresholds must satisfy 0 <= possible_floor <= duplicate_threshold <= 100")
        if self.policy.demotion_rule not in ("always_doubtful", "validated_if_document"):
            errors.append(f"Unknown demotion rule: {self.policy.demotion_rule}")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (for logging/debugging)"""
        config_dict = {}
        for field_name, field_value in self.__dict__.items():
            if hasattr(field_value, '__dict__'):
                config_dict[field_name] = field_value.__dict__.copy()
                # Mask sensitive values
                if field_name == 'teleservice' and config_dict[field_name].get('api_key'):
                    config_dict[field_name]['api_key'] = '***masked***'
                elif field_name == 'redis' and config_dict[field_name].get('password'):
                    config_dict[field_name]['password'] = '***masked***'
            else:
                config_dict[field_name] = field_value
        return config_dict


@lru_cache(maxsize=1)
def get_config() -> ApplicationConfig:
    """
    Get application configuration singleton.
    Uses LRU cache to ensure same instance is returned.
    """
    config = ApplicationConfig()
    logger.info(f"Configuration loaded for environment: {config.environment}")
    return config


# Convenience functions for common config access patterns
def get_database_config() -> DatabaseConfig:
    """Get database configuration"""
    return get_config().database


def get_redis_config() -> RedisConfig:
    """Get Redis configuration"""
    return get_config().redis


def get_retry_config() -> RetryConfig:
    """Get persistence retry configuration"""
    return get_config().retry
