"""
Audit service - policy compliance, facility audits and monitoring exports
"""

from typing import Optional, List, Dict, Iterable
from datetime import datetime, timezone
from collections import Counter
import logging

import pandas as pd

from ..models.audit import (
    AuditFinding,
    AuditScope,
    AuditStatus,
    AuditSummary,
    FindingCategory,
    FindingSeverity,
    IdentityAudit,
    IdentityMetrics,
    PolicyCheckResult,
)
from ...identity.models.identity import (
    utcnow,
    PatientIdentity,
    IdentityStatus,
    QualificationStatus,
    VerificationResult,
    VerificationType,
)
from ...identity.models.policy import IdentitovigilancePolicy
from ...identity.repositories.identity_repository import IdentityRepository
from ...identity.services.policy import PolicyProvider
from ...matching.models.duplicate import DuplicateCase, OPEN_CASE_STATUSES
from ...matching.repositories.duplicate_repository import DuplicateCaseRepository
from ...safety.repositories.safety_repository import AlertRepository
from ..repositories.audit_repository import AuditRepository
from ....core.errors import NotFoundError, ComplianceViolation, InvalidTransitionError, ValidationError


logger = logging.getLogger(__name__)

FRAME_COLUMNS = [
    "identity_id",
    "local_id",
    "status",
    "national_id_status",
    "has_national_id",
    "national_id_qualified",
    "quality_score",
    "verification_count",
    "merged_from_count",
    "updated_at",
]

RECOMMENDATIONS = {
    FindingCategory.MISSING_NATIONAL_ID: "Run teleservice qualification for {count} identities without a national identifier",
    FindingCategory.UNVALIDATED: "Verify {count} provisional or doubtful identities against an identity document",
    FindingCategory.INCOMPLETE: "Complete the mandatory traits of {count} identities",
    FindingCategory.DUPLICATE: "Resolve {count} open duplicate cases",
    FindingCategory.QUALITY: "Review {count} identities below the quality minimum",
}


def missing_traits(identity: PatientIdentity, policy: IdentitovigilancePolicy) -> List[str]:
    return [trait for trait in policy.required_traits if not getattr(identity.traits, trait, None)]


def has_qualified_national_id(identity: PatientIdentity) -> bool:
    return identity.national_id is not None and identity.national_id.status == QualificationStatus.QUALIFIED


def policy_violations(identity: PatientIdentity, policy: IdentitovigilancePolicy) -> List[str]:
    """Human-readable list of the ways ``identity`` fails ``policy``"""
    violations = []

    missing = missing_traits(identity, policy)
    if missing:
        violations.append(f"Missing required traits: {', '.join(missing)}")

    if policy.national_id_required and not has_qualified_national_id(identity):
        violations.append("A qualified national identifier is required")

    succeeded = {
        verification.verification_type for verification in identity.verification_history
        if verification.result == VerificationResult.SUCCESS
    }
    for required in policy.mandatory_verifications:
        if required not in succeeded:
            violations.append(f"Missing successful {VerificationType(required).value} verification")

    if identity.quality_score < policy.quality_minimum:
        violations.append(f"Quality score {identity.quality_score} is below the minimum of {policy.quality_minimum}")

    if identity.status == IdentityStatus.DOUBTFUL:
        violations.append("Identity is doubtful")

    return violations


def identity_frame(identities: Iterable[PatientIdentity]) -> pd.DataFrame:
    rows = [
        {
            "identity_id": identity.id,
            "local_id": identity.local_id,
            "status": identity.status.value,
            "national_id_status": identity.national_id.status.value if identity.national_id else None,
            "has_national_id": identity.national_id is not None,
            "national_id_qualified": has_qualified_national_id(identity),
            "quality_score": identity.quality_score,
            "verification_count": len(identity.verification_history),
            "merged_from_count": len(identity.merged_from),
            "updated_at": identity.updated_at.isoformat(),
        }
        for identity in identities
    ]
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)


def _counts(series: pd.Series) -> Dict[str, int]:
    return {str(key): int(value) for key, value in series.value_counts().items()}


def summarize(frame: pd.DataFrame, duplicate_candidates: int = 0) -> AuditSummary:
    if frame.empty:
        return AuditSummary(duplicate_candidates=duplicate_candidates)

    statuses = _counts(frame["status"])
    return AuditSummary(
        total_identities=len(frame),
        with_national_id=int(frame["has_national_id"].sum()),
        national_id_qualified=int(frame["national_id_qualified"].sum()),
        qualified=statuses.get(IdentityStatus.QUALIFIED.value, 0),
        validated=statuses.get(IdentityStatus.VALIDATED.value, 0),
        provisional=statuses.get(IdentityStatus.PROVISIONAL.value, 0),
        doubtful=statuses.get(IdentityStatus.DOUBTFUL.value, 0),
        duplicate_candidates=duplicate_candidates,
        average_quality_score=round(float(frame["quality_score"].mean()), 1),
    )


def recommendations_for(findings: Iterable[AuditFinding]) -> List[str]:
    by_category = Counter(finding.category for finding in findings)
    return [
        RECOMMENDATIONS[category].format(count=by_category[category])
        for category in FindingCategory if by_category[category]
    ]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def in_period(moment: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    """Inclusive on both ends; an open bound matches everything on that side"""
    return (start is None or moment >= start) and (end is None or moment <= end)


class AuditService:
    """Service layer for compliance checks and identity monitoring"""

    def __init__(
        self,
        identity_repository: IdentityRepository,
        case_repository: DuplicateCaseRepository,
        alert_repository: AlertRepository,
        audit_repository: AuditRepository,
        policy_provider: PolicyProvider
    ):
        self.identity_repository = identity_repository
        self.case_repository = case_repository
        self.alert_repository = alert_repository
        self.audit_repository = audit_repository
        self.policy_provider = policy_provider

    async def _open_cases(self) -> List[DuplicateCase]:
        cases = []
        for status in OPEN_CASE_STATUSES:
            cases.extend(await self.case_repository.list_cases(status))
        return cases

    async def get_patients_below_quality_threshold(self, threshold: Optional[int] = None) -> List[PatientIdentity]:
        if threshold is None:
            threshold = (await self.policy_provider.get_policy()).quality_minimum
        return await self.identity_repository.list_below_quality(threshold)

    async def validate_against_policy(self, identity_id: str, enforce: bool = False) -> PolicyCheckResult:
        """Check one identity against the facility policy; raise instead of reporting when ``enforce``"""
        identity = await self.identity_repository.get(identity_id)
        if identity is None:
            raise NotFoundError("Identity", identity_id)

        policy = await self.policy_provider.get_policy()
        violations = policy_violations(identity, policy)
        if violations and enforce:
            raise ComplianceViolation(identity_id, violations)

        return PolicyCheckResult(identity_id=identity_id, compliant=not violations, violations=violations)

    def _identity_findings(self, identity: PatientIdentity, policy: IdentitovigilancePolicy) -> List[AuditFinding]:
        findings = []

        if identity.national_id is None:
            findings.append(AuditFinding(
                identity_id=identity.id,
                category=FindingCategory.MISSING_NATIONAL_ID,
                description="No national identifier attached",
                severity=FindingSeverity.HIGH if policy.national_id_required else FindingSeverity.MEDIUM,
                recommendation="Request teleservice qualification",
            ))

        if identity.status in (IdentityStatus.PROVISIONAL, IdentityStatus.DOUBTFUL):
            findings.append(AuditFinding(
                identity_id=identity.id,
                category=FindingCategory.UNVALIDATED,
                description=f"Identity is {identity.status.value}",
                severity=FindingSeverity.HIGH if identity.status == IdentityStatus.DOUBTFUL else FindingSeverity.MEDIUM,
                recommendation="Verify against an identity document",
            ))

        missing = missing_traits(identity, policy)
        if missing:
            findings.append(AuditFinding(
                identity_id=identity.id,
                category=FindingCategory.INCOMPLETE,
                description=f"Missing traits: {', '.join(missing)}",
                severity=FindingSeverity.HIGH,
            ))

        if identity.quality_score < policy.quality_minimum:
            findings.append(AuditFinding(
                identity_id=identity.id,
                category=FindingCategory.QUALITY,
                description=f"Quality score {identity.quality_score} below {policy.quality_minimum}",
                severity=FindingSeverity.MEDIUM,
            ))

        return findings

    async def _audited_identities(self, scope: AuditScope) -> List[PatientIdentity]:
        """Identities an audit covers; test records are always skipped"""
        if scope.identity_ids:
            identities = []
            for identity_id in dict.fromkeys(scope.identity_ids):
                identity = await self.identity_repository.get(identity_id)
                if identity is not None and not identity.is_merged:
                    identities.append(identity)
        else:
            identities = await self.identity_repository.list_active()
        return [identity for identity in identities if identity.status != IdentityStatus.FICTITIOUS]

    async def _scoped_cases(self, scope: AuditScope) -> List[DuplicateCase]:
        cases = await self._open_cases()
        if not scope.identity_ids:
            return cases
        audited = set(scope.identity_ids)
        return [case for case in cases if audited & set(case.pair())]

    async def _load_open_audit(self, audit_id: str) -> IdentityAudit:
        audit = await self.get_audit(audit_id)
        if not audit.is_open:
            raise InvalidTransitionError(f"Audit {audit_id} is already {audit.status.value}")
        return audit

    async def create_audit(self, auditor_id: str, scope: Optional[AuditScope] = None) -> IdentityAudit:
        """Open an audit; findings are added until it is completed"""
        policy = await self.policy_provider.get_policy()
        audit = IdentityAudit(
            facility_id=policy.facility_id,
            auditor_id=auditor_id,
            scope=scope or AuditScope(),
        )
        await self.audit_repository.create(audit)
        logger.info(f"Audit {audit.id} opened by {auditor_id}")
        return audit

    async def get_audit(self, audit_id: str) -> IdentityAudit:
        audit = await self.audit_repository.get(audit_id)
        if audit is None:
            raise NotFoundError("Audit", audit_id)
        return audit

    async def list_audits(self, status: Optional[AuditStatus] = None) -> List[IdentityAudit]:
        return await self.audit_repository.list_audits(status)

    async def add_audit_finding(self, audit_id: str, finding: AuditFinding) -> IdentityAudit:
        audit = await self._load_open_audit(audit_id)
        audit.findings.append(finding)
        return await self.audit_repository.save(audit)

    async def complete_audit(self, audit_id: str, recommendations: Optional[List[str]] = None) -> IdentityAudit:
        """
        Close an audit with a summary of its scope

        Recommendations given by the auditor are kept as is; without them one
        recommendation is derived per finding category.
        """
        audit = await self._load_open_audit(audit_id)
        identities = await self._audited_identities(audit.scope)
        cases = await self._scoped_cases(audit.scope)
        return await self._complete(audit, identities, cases, recommendations)

    async def _complete(
        self,
        audit: IdentityAudit,
        identities: List[PatientIdentity],
        cases: List[DuplicateCase],
        recommendations: Optional[List[str]]
    ) -> IdentityAudit:
        audit.summary = summarize(identity_frame(identities), duplicate_candidates=len(cases))
        audit.recommendations = list(recommendations) if recommendations else recommendations_for(audit.findings)
        audit.status = AuditStatus.COMPLETED
        audit.completed_at = utcnow()
        await self.audit_repository.save(audit)
        logger.info(f"Audit {audit.id} completed: {audit.summary.total_identities} identities, "
                    f"{len(audit.findings)} findings")
        return audit

    async def run_compliance_audit(self, auditor_id: str, scope: Optional[AuditScope] = None) -> IdentityAudit:
        """Open, fill and complete an audit of the facility in one pass"""
        policy = await self.policy_provider.get_policy()
        audit = await self.create_audit(auditor_id, scope)
        identities = await self._audited_identities(audit.scope)
        cases = await self._scoped_cases(audit.scope)

        for identity in identities:
            audit.findings.extend(self._identity_findings(identity, policy))
        for case in cases:
            audit.findings.append(AuditFinding(
                identity_id=case.primary_identity_id,
                category=FindingCategory.DUPLICATE,
                description=f"Open duplicate case {case.id} with {case.secondary_identity_id} (score {case.match_score})",
                severity=FindingSeverity.MEDIUM,
                recommendation="Resolve the duplicate case",
            ))

        return await self._complete(audit, identities, cases, None)

    async def get_identity_metrics(
        self,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None
    ) -> IdentityMetrics:
        """
        Facility indicators, optionally restricted to a period

        The period selects identities by creation date, verifications by
        verification date and alerts by raise date.
        """
        start, end = _as_utc(period_start), _as_utc(period_end)
        if start and end and start > end:
            raise ValidationError("Metrics period starts after it ends")

        policy = await self.policy_provider.get_policy()
        identities = [
            identity for identity in await self.identity_repository.list_active()
            if in_period(identity.created_at, start, end)
        ]
        frame = identity_frame(identities)

        verification_types = pd.Series(
            [
                v.verification_type.value
                for identity in identities for v in identity.verification_history
                if in_period(v.verified_at, start, end)
            ],
            dtype="object"
        )
        alert_types = pd.Series(
            [
                alert.type.value for alert in await self.alert_repository.list_all()
                if in_period(alert.created_at, start, end)
            ],
            dtype="object"
        )

        if frame.empty:
            return IdentityMetrics(
                facility_id=policy.facility_id,
                period_start=start,
                period_end=end,
                collisions_by_type=_counts(alert_types),
            )

        total = len(frame)
        statuses = _counts(frame["status"])
        validated = statuses.get(IdentityStatus.VALIDATED.value, 0) + statuses.get(IdentityStatus.QUALIFIED.value, 0)
        in_cases = {identity_id for case in await self._open_cases() for identity_id in case.pair()}

        return IdentityMetrics(
            facility_id=policy.facility_id,
            period_start=start,
            period_end=end,
            total_identities=total,
            national_id_qualification_rate=round(float(frame["national_id_qualified"].mean()), 3),
            identity_validation_rate=round(validated / total, 3),
            duplicate_rate=round(len(in_cases & set(frame["identity_id"])) / total, 3),
            average_quality_score=round(float(frame["quality_score"].mean()), 1),
            status_counts=statuses,
            verifications_by_type=_counts(verification_types),
            collisions_by_type=_counts(alert_types),
        )

    async def export_for_monitoring(self) -> str:
        """CSV snapshot of every active identity for national monitoring"""
        frame = identity_frame(await self.identity_repository.list_active())
        logger.info(f"Exporting {len(frame)} identities for monitoring")
        return frame.to_csv(index=False)
