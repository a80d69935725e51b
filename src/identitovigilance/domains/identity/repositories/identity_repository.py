"""
Identity repository - persistence port and MongoDB adapter
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
from datetime import date
import logging

from ..models.identity import PatientIdentity, IdentityStatus, QualificationStatus, utcnow
from ..services.normalization import normalize
from ....core.database import BaseRepository, DatabaseManager, to_document
from ....core.errors import ConflictError


logger = logging.getLogger(__name__)


class IdentityRepository(ABC):
    """
    Persistence contract for identity records.

    ``save`` is conditioned on ``identity.version`` being the stored version;
    on success the stored and in-memory version are both incremented, on
    mismatch ConflictError is raised and nothing is written. Search methods
    only return active (non-merged) identities.
    """

    @abstractmethod
    async def create(self, identity: PatientIdentity) -> PatientIdentity:
        pass

    @abstractmethod
    async def get(self, identity_id: str) -> Optional[PatientIdentity]:
        pass

    @abstractmethod
    async def get_by_local_id(self, local_id: str) -> Optional[PatientIdentity]:
        pass

    @abstractmethod
    async def get_by_national_id(self, value: str) -> Optional[PatientIdentity]:
        pass

    @abstractmethod
    async def get_many(self, identity_ids: List[str]) -> List[PatientIdentity]:
        pass

    @abstractmethod
    async def save(self, identity: PatientIdentity) -> PatientIdentity:
        pass

    @abstractmethod
    async def find_by_birth_date(self, birth_date: date) -> List[PatientIdentity]:
        pass

    @abstractmethod
    async def find_by_family_name(self, normalized_family_name: str) -> List[PatientIdentity]:
        pass

    @abstractmethod
    async def list_active(self) -> List[PatientIdentity]:
        pass

    @abstractmethod
    async def list_below_quality(self, threshold: int) -> List[PatientIdentity]:
        pass

    @abstractmethod
    async def list_by_status(self, status: IdentityStatus) -> List[PatientIdentity]:
        pass

    @abstractmethod
    async def list_without_qualified_national_id(self) -> List[PatientIdentity]:
        pass

    @abstractmethod
    async def append_audit(self, identity_id: str, action: str, details: Dict[str, Any]) -> None:
        pass


def match_keys(identity: PatientIdentity) -> Dict[str, Any]:
    """Denormalized search keys stored next to the identity"""
    traits = identity.traits
    return {
        "family_name": normalize(traits.birth_family_name),
        "birth_date": traits.birth_date.isoformat() if traits.birth_date else None,
    }


def identity_document(identity: PatientIdentity) -> Dict[str, Any]:
    doc = to_document(identity)
    doc["match_keys"] = match_keys(identity)
    return doc


def identity_from_document(doc: Dict[str, Any]) -> PatientIdentity:
    doc = dict(doc)
    doc.pop("match_keys", None)
    return PatientIdentity.model_validate(doc)


class MongoIdentityRepository(BaseRepository, IdentityRepository):
    """Repository for identity data persistence"""

    def __init__(self, db_manager: DatabaseManager, retry_config=None):
        super().__init__(db_manager, "patient_identities", retry_config)
        self.audit_collection = db_manager.get_collection("identity_audit")

    async def create(self, identity: PatientIdentity) -> PatientIdentity:
        await self.insert_one(identity_document(identity))
        await self.append_audit(identity.id, "created", {"local_id": identity.local_id, "status": identity.status.value})
        return identity

    async def get(self, identity_id: str) -> Optional[PatientIdentity]:
        doc = await self.find_one({"id": identity_id})
        return identity_from_document(doc) if doc else None

    async def get_by_local_id(self, local_id: str) -> Optional[PatientIdentity]:
        doc = await self.find_one({"local_id": local_id})
        return identity_from_document(doc) if doc else None

    async def get_by_national_id(self, value: str) -> Optional[PatientIdentity]:
        doc = await self.find_one({"national_id.value": value, "merged_into": None})
        return identity_from_document(doc) if doc else None

    async def get_many(self, identity_ids: List[str]) -> List[PatientIdentity]:
        if not identity_ids:
            return []
        docs = await self.find_many({"id": {"$in": list(identity_ids)}})
        return [identity_from_document(doc) for doc in docs]

    async def save(self, identity: PatientIdentity) -> PatientIdentity:
        expected = identity.version
        identity.updated_at = utcnow()
        written = await self.replace_versioned(identity_document(identity), expected)
        if not written:
            raise ConflictError(
                f"Identity {identity.id} was modified concurrently (expected version {expected})",
                record_id=identity.id
            )
        identity.version = expected + 1
        return identity

    async def find_by_birth_date(self, birth_date: date) -> List[PatientIdentity]:
        docs = await self.find_many({"match_keys.birth_date": birth_date.isoformat(), "merged_into": None})
        return [identity_from_document(doc) for doc in docs]

    async def find_by_family_name(self, normalized_family_name: str) -> List[PatientIdentity]:
        docs = await self.find_many({"match_keys.family_name": normalized_family_name, "merged_into": None})
        return [identity_from_document(doc) for doc in docs]

    async def list_active(self) -> List[PatientIdentity]:
        docs = await self.find_many({"merged_into": None})
        return [identity_from_document(doc) for doc in docs]

    async def list_below_quality(self, threshold: int) -> List[PatientIdentity]:
        docs = await self.find_many(
            {"merged_into": None, "quality_score": {"$lt": threshold}},
            sort=[("quality_score", 1)]
        )
        return [identity_from_document(doc) for doc in docs]

    async def list_by_status(self, status: IdentityStatus) -> List[PatientIdentity]:
        docs = await self.find_many(
            {"merged_into": None, "status": IdentityStatus(status).value},
            sort=[("created_at", 1)]
        )
        return [identity_from_document(doc) for doc in docs]

    async def list_without_qualified_national_id(self) -> List[PatientIdentity]:
        docs = await self.find_many(
            {"merged_into": None, "national_id.status": {"$ne": QualificationStatus.QUALIFIED.value}},
            sort=[("created_at", 1)]
        )
        return [identity_from_document(doc) for doc in docs]

    async def append_audit(self, identity_id: str, action: str, details: Dict[str, Any], session=None) -> None:
        """Create audit log entry"""
        await self.audit_collection.insert_one({
            "identity_id": identity_id,
            "action": action,
            "timestamp": utcnow(),
            "details": details
        }, session=session)
