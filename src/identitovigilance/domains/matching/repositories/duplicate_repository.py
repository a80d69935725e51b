"""
Duplicate case and merge repositories - persistence ports and MongoDB adapters
"""

from abc import ABC, abstractmethod
from typing import Optional, List
import logging

from ..models.duplicate import DuplicateCase, CaseStatus, MergePlan, OPEN_CASE_STATUSES
from ...identity.models.identity import utcnow
from ...identity.repositories.identity_repository import identity_document
from ....core.database import BaseRepository, DatabaseManager, to_document
from ....core.errors import ConflictError


logger = logging.getLogger(__name__)

OPEN_STATUS_VALUES = [status.value for status in OPEN_CASE_STATUSES]


class DuplicateCaseRepository(ABC):
    """Persistence contract for duplicate cases; ``save`` is version-checked"""

    @abstractmethod
    async def create(self, case: DuplicateCase) -> DuplicateCase:
        pass

    @abstractmethod
    async def get(self, case_id: str) -> Optional[DuplicateCase]:
        pass

    @abstractmethod
    async def save(self, case: DuplicateCase) -> DuplicateCase:
        pass

    @abstractmethod
    async def find_open_for_identity(self, identity_id: str) -> List[DuplicateCase]:
        pass

    @abstractmethod
    async def list_cases(self, status: Optional[CaseStatus] = None) -> List[DuplicateCase]:
        pass

    async def find_open_for_pair(self, first_id: str, second_id: str) -> Optional[DuplicateCase]:
        for case in await self.find_open_for_identity(first_id):
            if case.involves(second_id) and first_id != second_id:
                return case
        return None


class MergeRepository(ABC):
    """
    Applies a MergePlan as one atomic unit: either every identity, case and
    audit entry in the plan is written, or none is. A version mismatch on
    any record raises ConflictError and rolls the whole plan back.
    """

    @abstractmethod
    async def apply_merge(self, plan: MergePlan) -> None:
        pass


class MongoDuplicateCaseRepository(BaseRepository, DuplicateCaseRepository):
    """Repository for duplicate case persistence"""

    def __init__(self, db_manager: DatabaseManager, retry_config=None):
        super().__init__(db_manager, "duplicate_cases", retry_config)

    async def create(self, case: DuplicateCase) -> DuplicateCase:
        await self.insert_one(to_document(case))
        return case

    async def get(self, case_id: str) -> Optional[DuplicateCase]:
        doc = await self.find_one({"id": case_id})
        return DuplicateCase.model_validate(doc) if doc else None

    async def save(self, case: DuplicateCase) -> DuplicateCase:
        expected = case.version
        case.updated_at = utcnow()
        if not await self.replace_versioned(to_document(case), expected):
            raise ConflictError(f"Duplicate case {case.id} was modified concurrently", record_id=case.id)
        case.version = expected + 1
        return case

    async def find_open_for_identity(self, identity_id: str) -> List[DuplicateCase]:
        docs = await self.find_many({
            "$or": [{"primary_identity_id": identity_id}, {"secondary_identity_id": identity_id}],
            "status": {"$in": OPEN_STATUS_VALUES}
        })
        return [DuplicateCase.model_validate(doc) for doc in docs]

    async def list_cases(self, status: Optional[CaseStatus] = None) -> List[DuplicateCase]:
        query = {"status": CaseStatus(status).value} if status else {}
        docs = await self.find_many(query, sort=[("detected_at", -1)])
        return [DuplicateCase.model_validate(doc) for doc in docs]


class MongoMergeRepository(MergeRepository):
    """Writes a merge inside a MongoDB multi-document transaction"""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.identities = BaseRepository(db_manager, "patient_identities")
        self.cases = BaseRepository(db_manager, "duplicate_cases")
        self.audit_collection = db_manager.get_collection("identity_audit")

    async def apply_merge(self, plan: MergePlan) -> None:
        now = utcnow()
        async with self.db_manager.transaction() as session:
            for identity in [plan.survivor, plan.merged] + plan.repointed:
                identity.updated_at = now
                if not await self.identities.replace_versioned(identity_document(identity), identity.version, session=session):
                    raise ConflictError(f"Identity {identity.id} changed during merge", record_id=identity.id)

            for case in plan.cases:
                case.updated_at = now
                if not await self.cases.replace_versioned(to_document(case), case.version, session=session):
                    raise ConflictError(f"Duplicate case {case.id} changed during merge", record_id=case.id)

            if plan.audit:
                await self.audit_collection.insert_many(
                    [dict(entry, timestamp=now) for entry in plan.audit],
                    session=session
                )

        for record in [plan.survivor, plan.merged] + plan.repointed + plan.cases:
            record.version += 1

        logger.info(f"Merge committed: {plan.merged.id} -> {plan.survivor.id}")
