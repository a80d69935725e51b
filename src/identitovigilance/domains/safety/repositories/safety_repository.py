"""
Safety repositories - alerts, identity checks and wristbands
"""

from abc import ABC, abstractmethod
from typing import Optional, List
from datetime import datetime

from ..models.safety import (
    CollisionAlert,
    CollisionType,
    AlertStatus,
    IdentityCheck,
    Wristband,
    WristbandStatus,
)
from ...identity.models.identity import utcnow
from ....core.database import BaseRepository, DatabaseManager, to_document
from ....core.errors import ConflictError


class AlertRepository(ABC):
    """Persistence contract for collision alerts; write failures are raised to the caller"""

    @abstractmethod
    async def create(self, alert: CollisionAlert) -> CollisionAlert:
        pass

    @abstractmethod
    async def get(self, alert_id: str) -> Optional[CollisionAlert]:
        pass

    @abstractmethod
    async def save(self, alert: CollisionAlert) -> CollisionAlert:
        pass

    @abstractmethod
    async def find_active(
        self,
        identity_id: Optional[str] = None,
        alert_type: Optional[CollisionType] = None,
        encounter_id: Optional[str] = None
    ) -> List[CollisionAlert]:
        pass

    @abstractmethod
    async def list_all(self) -> List[CollisionAlert]:
        pass


class CheckRepository(ABC):

    @abstractmethod
    async def create(self, check: IdentityCheck) -> IdentityCheck:
        pass

    @abstractmethod
    async def list_for_encounter(self, encounter_id: str) -> List[IdentityCheck]:
        """Checks of an encounter, newest first"""

    @abstractmethod
    async def list_for_identity(self, identity_id: str, since: Optional[datetime] = None) -> List[IdentityCheck]:
        """Checks of an identity, newest first"""


class WristbandRepository(ABC):

    @abstractmethod
    async def create(self, wristband: Wristband) -> Wristband:
        pass

    @abstractmethod
    async def get(self, wristband_id: str) -> Optional[Wristband]:
        pass

    @abstractmethod
    async def save(self, wristband: Wristband) -> Wristband:
        pass

    @abstractmethod
    async def get_active(self, identity_id: str, encounter_id: str) -> Optional[Wristband]:
        pass


class _VersionedMixin:
    """Version-checked save shared by the mutable safety records"""

    async def _save_versioned(self, record, kind: str):
        expected = record.version
        record.updated_at = utcnow()
        if not await self.replace_versioned(to_document(record), expected):
            raise ConflictError(f"{kind} {record.id} was modified concurrently", record_id=record.id)
        record.version = expected + 1
        return record


class MongoAlertRepository(_VersionedMixin, BaseRepository, AlertRepository):
    """Repository for collision alert persistence"""

    def __init__(self, db_manager: DatabaseManager, retry_config=None):
        super().__init__(db_manager, "collision_alerts", retry_config)

    async def create(self, alert: CollisionAlert) -> CollisionAlert:
        await self.insert_one(to_document(alert))
        return alert

    async def get(self, alert_id: str) -> Optional[CollisionAlert]:
        doc = await self.find_one({"id": alert_id})
        return CollisionAlert.model_validate(doc) if doc else None

    async def save(self, alert: CollisionAlert) -> CollisionAlert:
        return await self._save_versioned(alert, "Alert")

    async def find_active(
        self,
        identity_id: Optional[str] = None,
        alert_type: Optional[CollisionType] = None,
        encounter_id: Optional[str] = None
    ) -> List[CollisionAlert]:
        query = {"status": AlertStatus.ACTIVE.value}
        if identity_id:
            query["identity_id"] = identity_id
        if alert_type:
            query["type"] = CollisionType(alert_type).value
        if encounter_id:
            query["encounter_id"] = encounter_id
        docs = await self.find_many(query, sort=[("created_at", -1)])
        return [CollisionAlert.model_validate(doc) for doc in docs]

    async def list_all(self) -> List[CollisionAlert]:
        docs = await self.find_many({})
        return [CollisionAlert.model_validate(doc) for doc in docs]


class MongoCheckRepository(BaseRepository, CheckRepository):
    """Repository for identity check persistence"""

    def __init__(self, db_manager: DatabaseManager, retry_config=None):
        super().__init__(db_manager, "identity_checks", retry_config)

    async def create(self, check: IdentityCheck) -> IdentityCheck:
        await self.insert_one(to_document(check))
        return check

    async def list_for_encounter(self, encounter_id: str) -> List[IdentityCheck]:
        docs = await self.find_many({"encounter_id": encounter_id}, sort=[("checked_at", -1)])
        return [IdentityCheck.model_validate(doc) for doc in docs]

    async def list_for_identity(self, identity_id: str, since: Optional[datetime] = None) -> List[IdentityCheck]:
        query = {"identity_id": identity_id}
        if since:
            query["checked_at"] = {"$gte": since}
        docs = await self.find_many(query, sort=[("checked_at", -1)])
        return [IdentityCheck.model_validate(doc) for doc in docs]


class MongoWristbandRepository(_VersionedMixin, BaseRepository, WristbandRepository):
    """Repository for wristband persistence"""

    def __init__(self, db_manager: DatabaseManager, retry_config=None):
        super().__init__(db_manager, "wristbands", retry_config)

    async def create(self, wristband: Wristband) -> Wristband:
        await self.insert_one(to_document(wristband))
        return wristband

    async def get(self, wristband_id: str) -> Optional[Wristband]:
        doc = await self.find_one({"id": wristband_id})
        return Wristband.model_validate(doc) if doc else None

    async def save(self, wristband: Wristband) -> Wristband:
        return await self._save_versioned(wristband, "Wristband")

    async def get_active(self, identity_id: str, encounter_id: str) -> Optional[Wristband]:
        doc = await self.find_one({
            "identity_id": identity_id,
            "encounter_id": encounter_id,
            "status": WristbandStatus.ACTIVE.value
        })
        return Wristband.model_validate(doc) if doc else None
