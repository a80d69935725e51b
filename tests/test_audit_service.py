from datetime import timedelta

import pytest

from identitovigilance.core.errors import ComplianceViolation, InvalidTransitionError, NotFoundError, ValidationError
from identitovigilance.domains.identity.models.identity import IdentityStatus, VerificationType, utcnow
from identitovigilance.domains.monitoring.models.audit import (
    AuditFinding,
    AuditScope,
    AuditStatus,
    FindingCategory,
    FindingSeverity,
)
from identitovigilance.domains.monitoring.services.audit_service import FRAME_COLUMNS
from identitovigilance.domains.safety.models.safety import AlertSeverity, CollisionType

from factories import create_request, make_national_id


@pytest.fixture
async def provisional(identity_service):
    return await identity_service.create_identity(create_request("L1"))


@pytest.fixture
async def qualified(identity_service):
    identity = await identity_service.create_identity(create_request("L2", birth_given_name="PAUL"))
    await identity_service.record_verification(identity.id, VerificationType.DOCUMENT, "nurse-1")
    return await identity_service.qualify(identity.id, make_national_id(), "nurse-1")


async def test_provisional_identity_is_not_compliant(audit_service, provisional):
    result = await audit_service.validate_against_policy(provisional.id)

    assert not result.compliant
    assert "Missing successful document verification" in result.violations
    assert any("below the minimum" in violation for violation in result.violations)


async def test_enforced_check_raises(audit_service, provisional):
    with pytest.raises(ComplianceViolation) as exc_info:
        await audit_service.validate_against_policy(provisional.id, enforce=True)
    assert exc_info.value.violations


async def test_verified_qualified_identity_is_compliant(audit_service, qualified):
    result = await audit_service.validate_against_policy(qualified.id, enforce=True)

    assert result.compliant
    assert result.violations == []


async def test_policy_check_of_unknown_identity(audit_service):
    with pytest.raises(NotFoundError):
        await audit_service.validate_against_policy("missing")


async def test_low_quality_identities_are_listed(audit_service, provisional, qualified):
    below = await audit_service.get_patients_below_quality_threshold()

    assert [identity.id for identity in below] == [provisional.id]
    assert len(await audit_service.get_patients_below_quality_threshold(threshold=101)) == 2


async def test_compliance_audit(audit_service, identity_service, duplicate_service, provisional, qualified):
    await identity_service.create_identity(create_request("TEST-1", status=IdentityStatus.FICTITIOUS))
    await duplicate_service.create_duplicate_case(provisional.id, qualified.id)

    audit = await audit_service.run_compliance_audit("auditor-1")

    assert audit.status == AuditStatus.COMPLETED
    assert audit.summary.total_identities == 2
    assert audit.summary.qualified == 1
    assert audit.summary.provisional == 1
    assert audit.summary.duplicate_candidates == 1
    categories = {finding.category for finding in audit.findings}
    assert categories == {
        FindingCategory.MISSING_NATIONAL_ID,
        FindingCategory.UNVALIDATED,
        FindingCategory.QUALITY,
        FindingCategory.DUPLICATE,
    }
    assert all(finding.identity_id == provisional.id for finding in audit.findings)
    assert "Resolve 1 open duplicate cases" in audit.recommendations


async def test_identity_metrics(audit_service, alert_service, provisional, qualified):
    await alert_service.create_collision_alert(
        provisional.id, CollisionType.WRISTBAND_MISMATCH, AlertSeverity.CRITICAL, "wrong band"
    )

    metrics = await audit_service.get_identity_metrics()

    assert metrics.total_identities == 2
    assert metrics.national_id_qualification_rate == 0.5
    assert metrics.identity_validation_rate == 0.5
    assert metrics.duplicate_rate == 0.0
    assert metrics.status_counts == {"provisional": 1, "qualified": 1}
    assert metrics.verifications_by_type == {"document": 1, "teleservice": 1}
    assert metrics.collisions_by_type == {"wristband_mismatch": 1}


async def test_metrics_of_empty_facility(audit_service):
    metrics = await audit_service.get_identity_metrics()

    assert metrics.total_identities == 0
    assert metrics.status_counts == {}


async def test_monitoring_export_is_csv(audit_service, provisional, qualified):
    csv = await audit_service.export_for_monitoring()

    lines = csv.strip().splitlines()
    assert lines[0] == ",".join(FRAME_COLUMNS)
    assert len(lines) == 3


async def test_audit_lifecycle(audit_service, provisional, qualified):
    audit = await audit_service.create_audit("auditor-1")
    assert audit.status == AuditStatus.IN_PROGRESS

    finding = AuditFinding(
        identity_id=provisional.id,
        category=FindingCategory.INCOMPLETE,
        description="Birth place missing on the admission form",
        severity=FindingSeverity.LOW,
    )
    await audit_service.add_audit_finding(audit.id, finding)
    completed = await audit_service.complete_audit(audit.id)

    assert completed.status == AuditStatus.COMPLETED
    assert completed.completed_at is not None
    assert completed.findings == [finding]
    assert completed.summary.total_identities == 2
    assert completed.recommendations == ["Complete the mandatory traits of 1 identities"]
    assert (await audit_service.get_audit(audit.id)).status == AuditStatus.COMPLETED


async def test_completed_audit_is_closed(audit_service, provisional):
    audit = await audit_service.create_audit("auditor-1")
    await audit_service.complete_audit(audit.id, ["Train the admission desk"])

    stored = await audit_service.get_audit(audit.id)
    assert stored.recommendations == ["Train the admission desk"]

    with pytest.raises(InvalidTransitionError):
        await audit_service.add_audit_finding(audit.id, AuditFinding(
            identity_id=provisional.id,
            category=FindingCategory.QUALITY,
            description="late",
            severity=FindingSeverity.LOW,
        ))
    with pytest.raises(InvalidTransitionError):
        await audit_service.complete_audit(audit.id)


async def test_audit_scope_limits_the_summary(audit_service, duplicate_service, provisional, qualified):
    await duplicate_service.create_duplicate_case(provisional.id, qualified.id)

    audit = await audit_service.create_audit("auditor-1", AuditScope(identity_ids=[qualified.id, "missing"]))
    completed = await audit_service.complete_audit(audit.id)

    assert completed.summary.total_identities == 1
    assert completed.summary.qualified == 1
    assert completed.summary.duplicate_candidates == 1


async def test_unknown_audit_is_not_found(audit_service):
    with pytest.raises(NotFoundError):
        await audit_service.get_audit("missing")


async def test_compliance_audit_is_stored(audit_service, provisional):
    audit = await audit_service.run_compliance_audit("auditor-1")

    stored = await audit_service.get_audit(audit.id)
    assert stored.status == AuditStatus.COMPLETED
    assert stored.findings == audit.findings
    assert [a.id for a in await audit_service.list_audits(AuditStatus.COMPLETED)] == [audit.id]
    assert await audit_service.list_audits(AuditStatus.IN_PROGRESS) == []


async def test_metrics_period(audit_service, alert_service, provisional, qualified):
    await alert_service.create_collision_alert(
        provisional.id, CollisionType.WRISTBAND_MISMATCH, AlertSeverity.CRITICAL, "wrong band"
    )
    now = utcnow()

    current = await audit_service.get_identity_metrics(period_start=now - timedelta(hours=1))
    assert current.total_identities == 2
    assert current.collisions_by_type == {"wristband_mismatch": 1}
    assert current.period_start == now - timedelta(hours=1)

    before = await audit_service.get_identity_metrics(period_end=now - timedelta(days=1))
    assert before.total_identities == 0
    assert before.verifications_by_type == {}
    assert before.collisions_by_type == {}


async def test_metrics_period_must_be_ordered(audit_service):
    now = utcnow()
    with pytest.raises(ValidationError):
        await audit_service.get_identity_metrics(period_start=now, period_end=now - timedelta(days=1))
