"""
Audit repository - persistence port and MongoDB adapter for compliance audits
"""

from abc import ABC, abstractmethod
from typing import Optional, List

from ..models.audit import IdentityAudit, AuditStatus
from ...identity.models.identity import utcnow
from ....core.database import BaseRepository, DatabaseManager, to_document
from ....core.errors import ConflictError


class AuditRepository(ABC):
    """Persistence contract for audits; ``save`` is version-checked"""

    @abstractmethod
    async def create(self, audit: IdentityAudit) -> IdentityAudit:
        pass

    @abstractmethod
    async def get(self, audit_id: str) -> Optional[IdentityAudit]:
        pass

    @abstractmethod
    async def save(self, audit: IdentityAudit) -> IdentityAudit:
        pass

    @abstractmethod
    async def list_audits(self, status: Optional[AuditStatus] = None) -> List[IdentityAudit]:
        """Audits, most recent first"""


class MongoAuditRepository(BaseRepository, AuditRepository):
    """Repository for audit persistence"""

    def __init__(self, db_manager: DatabaseManager, retry_config=None):
        super().__init__(db_manager, "identity_audits", retry_config)

    async def create(self, audit: IdentityAudit) -> IdentityAudit:
        await self.insert_one(to_document(audit))
        return audit

    async def get(self, audit_id: str) -> Optional[IdentityAudit]:
        doc = await self.find_one({"id": audit_id})
        return IdentityAudit.model_validate(doc) if doc else None

    async def save(self, audit: IdentityAudit) -> IdentityAudit:
        expected = audit.version
        audit.updated_at = utcnow()
        if not await self.replace_versioned(to_document(audit), expected):
            raise ConflictError(f"Audit {audit.id} was modified concurrently", record_id=audit.id)
        audit.version = expected + 1
        return audit

    async def list_audits(self, status: Optional[AuditStatus] = None) -> List[IdentityAudit]:
        query = {"status": AuditStatus(status).value} if status else {}
        docs = await self.find_many(query, sort=[("audit_date", -1)])
        return [IdentityAudit.model_validate(doc) for doc in docs]
