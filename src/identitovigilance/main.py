"""
Identitovigilance Service
Controller/Service/Repository pattern over MongoDB
"""

import logging
from logging.handlers import RotatingFileHandler
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import ApplicationConfig, LoggingConfig, get_config
from .core.database import DatabaseManager
from .core.errors import IdentitovigilanceError, ConflictError, ComplianceViolation
from .core.locks import LockManager, create_lock_manager
from .providers import BaseTeleserviceProvider, ProviderConfig, create_provider

# Import domain controllers
from .domains.identity.controllers.identity_controller import router as identity_router
from .domains.matching.controllers.duplicate_controller import router as duplicate_router
from .domains.safety.controllers.safety_controller import router as safety_router
from .domains.qualification.controllers.qualification_controller import router as qualification_router
from .domains.monitoring.controllers.monitoring_controller import router as monitoring_router

# Repositories and services
from .domains.identity.repositories.identity_repository import MongoIdentityRepository
from .domains.identity.services.identity_service import IdentityService
from .domains.identity.services.policy import PolicyProvider, StaticPolicyProvider
from .domains.matching.repositories.duplicate_repository import MongoDuplicateCaseRepository, MongoMergeRepository
from .domains.matching.services.duplicate_service import DuplicateService
from .domains.safety.repositories.safety_repository import (
    MongoAlertRepository,
    MongoCheckRepository,
    MongoWristbandRepository,
)
from .domains.safety.services.alert_service import CollisionAlertService
from .domains.safety.services.check_service import IdentityCheckRecorder
from .domains.safety.services.wristband_service import WristbandService
from .domains.qualification.repositories.qualification_repository import MongoQualificationRequestRepository
from .domains.qualification.services.qualification_service import QualificationService
from .domains.monitoring.repositories.audit_repository import MongoAuditRepository
from .domains.monitoring.services.audit_service import AuditService

logger = logging.getLogger(__name__)


def setup_logging(config: LoggingConfig) -> None:
    """Configure the root logger, with an optional rotating log file"""
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    formatter = logging.Formatter(config.format)

    if not root.handlers:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    if config.log_file:
        file_handler = RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


class ServiceContext:
    """Centralized service context for dependency injection"""

    def __init__(self, config: Optional[ApplicationConfig] = None):
        self.config = config or get_config()
        self.db_manager: Optional[DatabaseManager] = None
        self.lock_manager: Optional[LockManager] = None
        self.provider: Optional[BaseTeleserviceProvider] = None
        self.policy_provider: Optional[PolicyProvider] = None

        self.identity_service = None
        self.duplicate_service = None
        self.alert_service = None
        self.check_recorder = None
        self.wristband_service = None
        self.qualification_service = None
        self.audit_service = None
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize all connections and services"""
        if self._initialized:
            return

        logger.info("Initializing identitovigilance service context...")

        self.db_manager = DatabaseManager(self.config.database)
        await self.db_manager.initialize()

        self.lock_manager = create_lock_manager(self.config.redis)
        self.policy_provider = StaticPolicyProvider.from_config(self.config.policy)

        logger.info(f"Initializing teleservice provider: {self.config.teleservice.provider_name}")
        self.provider = create_provider(
            self.config.teleservice.provider_name,
            config=ProviderConfig.from_teleservice_config(self.config.teleservice)
        )
        await self.provider.initialize()

        retry = self.config.retry
        self.build_services(
            identity_repository=MongoIdentityRepository(self.db_manager, retry),
            case_repository=MongoDuplicateCaseRepository(self.db_manager, retry),
            merge_repository=MongoMergeRepository(self.db_manager),
            alert_repository=MongoAlertRepository(self.db_manager, retry),
            check_repository=MongoCheckRepository(self.db_manager, retry),
            wristband_repository=MongoWristbandRepository(self.db_manager, retry),
            request_repository=MongoQualificationRequestRepository(self.db_manager, retry),
            audit_repository=MongoAuditRepository(self.db_manager, retry),
        )
        logger.info("Identitovigilance service context initialized successfully")

    def build_services(
        self,
        identity_repository,
        case_repository,
        merge_repository,
        alert_repository,
        check_repository,
        wristband_repository,
        request_repository,
        audit_repository
    ) -> None:
        """Wire services over the given repositories; lock manager, policy and provider must be set"""
        self.identity_service = IdentityService(identity_repository, self.policy_provider)
        self.duplicate_service = DuplicateService(
            identity_repository, case_repository, merge_repository, self.policy_provider, self.lock_manager
        )
        self.alert_service = CollisionAlertService(
            alert_repository, check_repository, identity_repository, self.policy_provider
        )
        self.check_recorder = IdentityCheckRecorder(check_repository, identity_repository, self.alert_service)
        self.wristband_service = WristbandService(wristband_repository, identity_repository, self.alert_service)

        teleservice = self.config.teleservice
        self.qualification_service = QualificationService(
            request_repository,
            self.identity_service,
            self.provider,
            timeout_seconds=teleservice.timeout_seconds,
            default_oid=teleservice.oid,
            max_request_age=timedelta(minutes=teleservice.request_max_age_minutes)
        )
        self.audit_service = AuditService(
            identity_repository, case_repository, alert_repository, audit_repository, self.policy_provider
        )
        self._initialized = True

    async def health_check(self):
        database = await self.db_manager.health_check() if self.db_manager else {"status": "not_configured"}
        provider = await self.provider.health_check() if self.provider else {"status": "not_configured"}
        return {"database": database, "teleservice": provider}

    async def cleanup(self) -> None:
        """Cleanup all connections"""
        logger.info("Cleaning up identitovigilance service context...")

        if self.provider:
            await self.provider.cleanup()
        if self.lock_manager:
            await self.lock_manager.close()
        if self.db_manager:
            await self.db_manager.cleanup()

        logger.info("Cleanup complete")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(IdentitovigilanceError)
    async def handle_domain_error(request: Request, exc: IdentitovigilanceError):
        content = {"detail": exc.message, "error": type(exc).__name__}
        if isinstance(exc, ConflictError) and exc.record_id:
            content["record_id"] = exc.record_id
        if isinstance(exc, ComplianceViolation):
            content["violations"] = exc.violations
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=content)


def create_app(context: Optional[ServiceContext] = None) -> FastAPI:
    """Build the FastAPI application around a service context"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage service lifecycle"""
        app.state.identitovigilance = context or ServiceContext()
        setup_logging(app.state.identitovigilance.config.logging)
        logger.info("Starting identitovigilance service...")
        await app.state.identitovigilance.initialize()
        logger.info("Identitovigilance service started successfully")

        yield

        logger.info("Shutting down identitovigilance service...")
        await app.state.identitovigilance.cleanup()
        logger.info("Identitovigilance service shutdown complete")

    app = FastAPI(
        title="Identitovigilance Service",
        version="1.0.0",
        description="Patient identity verification, deduplication and safety alerts",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include domain routers
    app.include_router(identity_router)
    app.include_router(duplicate_router)
    app.include_router(safety_router)
    app.include_router(qualification_router)
    app.include_router(monitoring_router)

    @app.get("/health")
    async def health_check(request: Request):
        """Basic health check endpoint"""
        service_context = request.app.state.identitovigilance
        components = await service_context.health_check()
        healthy = components["database"].get("status") in ("healthy", "not_configured")
        return {
            "status": "healthy" if healthy else "unhealthy",
            "version": app.version,
            "components": components,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    uvicorn.run(
        "identitovigilance.main:app",
        host=config.host,
        port=config.port,
        log_level=config.logging.level.lower(),
        reload=config.debug
    )
