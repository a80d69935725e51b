"""
Qualification request repository - persistence port and MongoDB adapter
"""

from abc import ABC, abstractmethod
from typing import Optional, List
from datetime import datetime

from ..models.qualification import QualificationRequest, QualificationRequestStatus
from ...identity.models.identity import utcnow
from ....core.database import BaseRepository, DatabaseManager, to_document
from ....core.errors import ConflictError


class QualificationRequestRepository(ABC):

    @abstractmethod
    async def create(self, request: QualificationRequest) -> QualificationRequest:
        pass

    @abstractmethod
    async def get(self, request_id: str) -> Optional[QualificationRequest]:
        pass

    @abstractmethod
    async def save(self, request: QualificationRequest) -> QualificationRequest:
        pass

    @abstractmethod
    async def find_pending_before(self, cutoff: datetime) -> List[QualificationRequest]:
        pass

    @abstractmethod
    async def list_for_identity(self, identity_id: str) -> List[QualificationRequest]:
        pass


class MongoQualificationRequestRepository(BaseRepository, QualificationRequestRepository):
    """Repository for teleservice request persistence"""

    def __init__(self, db_manager: DatabaseManager, retry_config=None):
        super().__init__(db_manager, "qualification_requests", retry_config)

    async def create(self, request: QualificationRequest) -> QualificationRequest:
        await self.insert_one(to_document(request))
        return request

    async def get(self, request_id: str) -> Optional[QualificationRequest]:
        doc = await self.find_one({"id": request_id})
        return QualificationRequest.model_validate(doc) if doc else None

    async def save(self, request: QualificationRequest) -> QualificationRequest:
        expected = request.version
        request.updated_at = utcnow()
        if not await self.replace_versioned(to_document(request), expected):
            raise ConflictError(f"Qualification request {request.id} was modified concurrently", record_id=request.id)
        request.version = expected + 1
        return request

    async def find_pending_before(self, cutoff: datetime) -> List[QualificationRequest]:
        docs = await self.find_many({
            "status": QualificationRequestStatus.PENDING.value,
            "requested_at": {"$lt": cutoff}
        })
        return [QualificationRequest.model_validate(doc) for doc in docs]

    async def list_for_identity(self, identity_id: str) -> List[QualificationRequest]:
        docs = await self.find_many({"identity_id": identity_id}, sort=[("requested_at", -1)])
        return [QualificationRequest.model_validate(doc) for doc in docs]
