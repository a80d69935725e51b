import pytest

from identitovigilance.core.config import ApplicationConfig
from identitovigilance.core.locks import LocalLockManager
from identitovigilance.domains.identity.models.policy import IdentitovigilancePolicy
from identitovigilance.domains.identity.services.policy import StaticPolicyProvider
from identitovigilance.main import ServiceContext

from fakes import (
    FakeTeleserviceProvider,
    InMemoryAlertRepository,
    InMemoryAuditRepository,
    InMemoryCheckRepository,
    InMemoryDuplicateCaseRepository,
    InMemoryIdentityRepository,
    InMemoryMergeRepository,
    InMemoryQualificationRequestRepository,
    InMemoryWristbandRepository,
)
from factories import teleservice_response


@pytest.fixture
def policy():
    return IdentitovigilancePolicy()


@pytest.fixture
def identity_repository():
    return InMemoryIdentityRepository()


@pytest.fixture
def case_repository():
    return InMemoryDuplicateCaseRepository()


@pytest.fixture
def merge_repository(identity_repository, case_repository):
    return InMemoryMergeRepository(identity_repository, case_repository)


@pytest.fixture
def alert_repository():
    return InMemoryAlertRepository()


@pytest.fixture
def check_repository():
    return InMemoryCheckRepository()


@pytest.fixture
def wristband_repository():
    return InMemoryWristbandRepository()


@pytest.fixture
def audit_repository():
    return InMemoryAuditRepository()


@pytest.fixture
def request_repository():
    return InMemoryQualificationRequestRepository()


@pytest.fixture
def provider():
    return FakeTeleserviceProvider(response=teleservice_response())


@pytest.fixture
def context(
    policy,
    provider,
    identity_repository,
    case_repository,
    merge_repository,
    alert_repository,
    check_repository,
    wristband_repository,
    request_repository,
    audit_repository
):
    """Service context wired over in-memory repositories"""
    config = ApplicationConfig()
    config.teleservice.timeout_seconds = 0.05

    context = ServiceContext(config)
    context.lock_manager = LocalLockManager()
    context.policy_provider = StaticPolicyProvider(policy)
    context.provider = provider
    context.build_services(
        identity_repository=identity_repository,
        case_repository=case_repository,
        merge_repository=merge_repository,
        alert_repository=alert_repository,
        check_repository=check_repository,
        wristband_repository=wristband_repository,
        request_repository=request_repository,
        audit_repository=audit_repository,
    )
    return context


@pytest.fixture
def identity_service(context):
    return context.identity_service


@pytest.fixture
def duplicate_service(context):
    return context.duplicate_service


@pytest.fixture
def alert_service(context):
    return context.alert_service


@pytest.fixture
def check_recorder(context):
    return context.check_recorder


@pytest.fixture
def wristband_service(context):
    return context.wristband_service


@pytest.fixture
def qualification_service(context):
    return context.qualification_service


@pytest.fixture
def audit_service(context):
    return context.audit_service
