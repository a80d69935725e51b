"""
In-memory implementations of the persistence ports and the teleservice
provider. Stored records are copies, so services only affect the store
through the port methods, exactly as with MongoDB.
"""

import asyncio
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from identitovigilance.core.errors import ConflictError
from identitovigilance.domains.identity.models.identity import (
    IdentityStatus,
    PatientIdentity,
    QualificationStatus,
    utcnow,
)
from identitovigilance.domains.identity.repositories.identity_repository import IdentityRepository
from identitovigilance.domains.identity.services.normalization import normalize
from identitovigilance.domains.matching.models.duplicate import CaseStatus, DuplicateCase, MergePlan
from identitovigilance.domains.matching.repositories.duplicate_repository import (
    DuplicateCaseRepository,
    MergeRepository,
)
from identitovigilance.domains.monitoring.models.audit import AuditStatus, IdentityAudit
from identitovigilance.domains.monitoring.repositories.audit_repository import AuditRepository
from identitovigilance.domains.qualification.models.qualification import (
    QualificationRequest,
    QualificationRequestStatus,
    TeleserviceResponse,
)
from identitovigilance.domains.qualification.repositories.qualification_repository import (
    QualificationRequestRepository,
)
from identitovigilance.domains.safety.models.safety import (
    AlertStatus,
    CollisionAlert,
    CollisionType,
    IdentityCheck,
    Wristband,
    WristbandStatus,
)
from identitovigilance.domains.safety.repositories.safety_repository import (
    AlertRepository,
    CheckRepository,
    WristbandRepository,
)
from identitovigilance.providers.base_provider import BaseTeleserviceProvider, ProviderConfig


def _check_version(stored, record, kind: str) -> None:
    if stored is None or stored.version != record.version:
        raise ConflictError(f"{kind} {record.id} was modified concurrently", record_id=record.id)


class _VersionedStore:
    kind = "Record"

    def __init__(self):
        self.records: Dict[str, Any] = {}

    async def create(self, record):
        self.records[record.id] = record.model_copy(deep=True)
        return record

    async def get(self, record_id: str):
        stored = self.records.get(record_id)
        return stored.model_copy(deep=True) if stored else None

    async def save(self, record):
        _check_version(self.records.get(record.id), record, self.kind)
        record.updated_at = utcnow()
        record.version += 1
        self.records[record.id] = record.model_copy(deep=True)
        return record

    def _all(self) -> List[Any]:
        return [record.model_copy(deep=True) for record in self.records.values()]


class InMemoryIdentityRepository(_VersionedStore, IdentityRepository):
    kind = "Identity"

    def __init__(self):
        super().__init__()
        self.audit: List[Dict[str, Any]] = []

    async def create(self, identity: PatientIdentity) -> PatientIdentity:
        await super().create(identity)
        await self.append_audit(identity.id, "created", {"local_id": identity.local_id})
        return identity

    def _active(self) -> List[PatientIdentity]:
        return [identity for identity in self._all() if identity.merged_into is None]

    async def get_by_local_id(self, local_id: str) -> Optional[PatientIdentity]:
        for identity in self._all():
            if identity.local_id == local_id:
                return identity
        return None

    async def get_by_national_id(self, value: str) -> Optional[PatientIdentity]:
        for identity in self._active():
            if identity.national_id and identity.national_id.value == value:
                return identity
        return None

    async def get_many(self, identity_ids: List[str]) -> List[PatientIdentity]:
        return [identity for identity in self._all() if identity.id in set(identity_ids)]

    async def find_by_birth_date(self, birth_date: date) -> List[PatientIdentity]:
        return [identity for identity in self._active() if identity.traits.birth_date == birth_date]

    async def find_by_family_name(self, normalized_family_name: str) -> List[PatientIdentity]:
        return [
            identity for identity in self._active()
            if normalize(identity.traits.birth_family_name) == normalized_family_name
        ]

    async def list_active(self) -> List[PatientIdentity]:
        return self._active()

    async def list_below_quality(self, threshold: int) -> List[PatientIdentity]:
        below = [identity for identity in self._active() if identity.quality_score < threshold]
        return sorted(below, key=lambda identity: identity.quality_score)

    async def list_by_status(self, status: IdentityStatus) -> List[PatientIdentity]:
        return sorted(
            [identity for identity in self._active() if identity.status == status],
            key=lambda identity: identity.created_at
        )

    async def list_without_qualified_national_id(self) -> List[PatientIdentity]:
        return sorted(
            [
                identity for identity in self._active()
                if identity.national_id is None or identity.national_id.status != QualificationStatus.QUALIFIED
            ],
            key=lambda identity: identity.created_at
        )

    async def append_audit(self, identity_id: str, action: str, details: Dict[str, Any], session=None) -> None:
        self.audit.append({"identity_id": identity_id, "action": action, "details": details})

    def actions_for(self, identity_id: str) -> List[str]:
        return [entry["action"] for entry in self.audit if entry["identity_id"] == identity_id]


class InMemoryDuplicateCaseRepository(_VersionedStore, DuplicateCaseRepository):
    kind = "Duplicate case"

    async def find_open_for_identity(self, identity_id: str) -> List[DuplicateCase]:
        return [case for case in self._all() if case.is_open and case.involves(identity_id)]

    async def list_cases(self, status: Optional[CaseStatus] = None) -> List[DuplicateCase]:
        cases = [case for case in self._all() if status is None or case.status == status]
        return sorted(cases, key=lambda case: case.detected_at, reverse=True)


class InMemoryMergeRepository(MergeRepository):
    """Checks every version before writing anything"""

    def __init__(self, identities: InMemoryIdentityRepository, cases: InMemoryDuplicateCaseRepository):
        self.identities = identities
        self.cases = cases
        self.applied: List[MergePlan] = []
        self.fail_with: Optional[Exception] = None

    async def apply_merge(self, plan: MergePlan) -> None:
        if self.fail_with is not None:
            raise self.fail_with

        identities = [plan.survivor, plan.merged] + plan.repointed
        for identity in identities:
            _check_version(self.identities.records.get(identity.id), identity, "Identity")
        for case in plan.cases:
            _check_version(self.cases.records.get(case.id), case, "Duplicate case")

        for record, store in [(i, self.identities) for i in identities] + [(c, self.cases) for c in plan.cases]:
            record.updated_at = utcnow()
            record.version += 1
            store.records[record.id] = record.model_copy(deep=True)
        self.identities.audit.extend(plan.audit)
        self.applied.append(plan)


class InMemoryAlertRepository(_VersionedStore, AlertRepository):
    kind = "Alert"

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    async def create(self, alert: CollisionAlert) -> CollisionAlert:
        if self.fail_writes:
            raise RuntimeError("alert store unavailable")
        return await super().create(alert)

    async def find_active(
        self,
        identity_id: Optional[str] = None,
        alert_type: Optional[CollisionType] = None,
        encounter_id: Optional[str] = None
    ) -> List[CollisionAlert]:
        return [
            alert for alert in self._all()
            if alert.status == AlertStatus.ACTIVE
            and (identity_id is None or alert.identity_id == identity_id)
            and (alert_type is None or alert.type == alert_type)
            and (encounter_id is None or alert.encounter_id == encounter_id)
        ]

    async def list_all(self) -> List[CollisionAlert]:
        return self._all()


class InMemoryCheckRepository(CheckRepository):

    def __init__(self):
        self.records: List[IdentityCheck] = []

    async def create(self, check: IdentityCheck) -> IdentityCheck:
        self.records.append(check.model_copy(deep=True))
        return check

    def _newest_first(self, checks: List[IdentityCheck]) -> List[IdentityCheck]:
        return sorted(checks, key=lambda check: check.checked_at, reverse=True)

    async def list_for_encounter(self, encounter_id: str) -> List[IdentityCheck]:
        return self._newest_first([c for c in self.records if c.encounter_id == encounter_id])

    async def list_for_identity(self, identity_id: str, since: Optional[datetime] = None) -> List[IdentityCheck]:
        return self._newest_first([
            c for c in self.records
            if c.identity_id == identity_id and (since is None or c.checked_at >= since)
        ])


class InMemoryWristbandRepository(_VersionedStore, WristbandRepository):
    kind = "Wristband"

    async def get_active(self, identity_id: str, encounter_id: str) -> Optional[Wristband]:
        for wristband in self._all():
            if (wristband.identity_id == identity_id and wristband.encounter_id == encounter_id
                    and wristband.status == WristbandStatus.ACTIVE):
                return wristband
        return None


class InMemoryQualificationRequestRepository(_VersionedStore, QualificationRequestRepository):
    kind = "Qualification request"

    async def find_pending_before(self, cutoff: datetime) -> List[QualificationRequest]:
        return [
            request for request in self._all()
            if request.status == QualificationRequestStatus.PENDING and request.requested_at < cutoff
        ]

    async def list_for_identity(self, identity_id: str) -> List[QualificationRequest]:
        return [request for request in self._all() if request.identity_id == identity_id]


class InMemoryAuditRepository(_VersionedStore, AuditRepository):
    kind = "Audit"

    async def list_audits(self, status: Optional[AuditStatus] = None) -> List[IdentityAudit]:
        audits = [audit for audit in self._all() if status is None or audit.status == status]
        return sorted(audits, key=lambda audit: audit.audit_date, reverse=True)


class FakeTeleserviceProvider(BaseTeleserviceProvider):
    """Answers with a canned response, optionally after a delay or with an error"""

    def __init__(
        self,
        response: Optional[TeleserviceResponse] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None
    ):
        super().__init__(ProviderConfig(endpoint="memory://teleservice", oid="1.2.250.1.213.1.4.8"))
        self.response = response
        self.delay = delay
        self.error = error
        self.submitted: List[QualificationRequest] = []

    async def initialize(self) -> None:
        self._initialized = True

    async def submit(self, request: QualificationRequest) -> TeleserviceResponse:
        self.submitted.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response
