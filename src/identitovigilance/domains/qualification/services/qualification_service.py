"""
Qualification service - national identifier retrieval through the teleservice
"""

from typing import Optional, List
from datetime import timedelta
import asyncio
import logging

from ..models.qualification import (
    QualificationRequest,
    QualificationRequestType,
    QualificationRequestStatus,
    TeleserviceOutcome,
    TeleserviceResponse,
)
from ..repositories.qualification_repository import QualificationRequestRepository
from ...identity.models.identity import NationalIdentifier, NationalIdSource, utcnow
from ...identity.services.identity_service import IdentityService
from ...identity.services.status_machine import TERMINAL_STATUSES
from ....core.errors import NotFoundError, ConflictError, InvalidTransitionError
from ....providers.base_provider import BaseTeleserviceProvider, TeleserviceUnavailable


logger = logging.getLogger(__name__)


class QualificationService:
    """
    Drives a qualification request through the remote teleservice.

    The identity is only touched once a usable answer is applied: timeouts,
    transport failures and negative answers leave it as it was.
    """

    def __init__(
        self,
        request_repository: QualificationRequestRepository,
        identity_service: IdentityService,
        provider: BaseTeleserviceProvider,
        timeout_seconds: float = 10,
        default_oid: str = "",
        max_request_age: timedelta = timedelta(minutes=60)
    ):
        self.request_repository = request_repository
        self.identity_service = identity_service
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.default_oid = default_oid
        self.max_request_age = max_request_age

    async def get_request(self, request_id: str) -> QualificationRequest:
        request = await self.request_repository.get(request_id)
        if request is None:
            raise NotFoundError("Qualification request", request_id)
        return request

    async def list_requests(self, identity_id: str) -> List[QualificationRequest]:
        return await self.request_repository.list_for_identity(identity_id)

    async def request_qualification(
        self,
        identity_id: str,
        request_type: QualificationRequestType,
        requested_by: str
    ) -> QualificationRequest:
        identity = await self.identity_service.get_identity(identity_id)
        if identity.is_merged:
            raise ConflictError(f"Identity {identity_id} was merged into {identity.merged_into}", record_id=identity_id)
        if identity.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(f"{identity.status.value} identities cannot be qualified")

        request = QualificationRequest(
            identity_id=identity.id,
            request_type=QualificationRequestType(request_type),
            requested_by=requested_by,
            traits=identity.traits,
        )
        await self.request_repository.create(request)

        try:
            response = await asyncio.wait_for(self.provider.submit(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Teleservice timed out after {self.timeout_seconds}s for request {request.id}")
            return await self._close(request, QualificationRequestStatus.EXPIRED, "Teleservice timed out")
        except TeleserviceUnavailable as e:
            logger.error(f"Teleservice unavailable for request {request.id}: {e}")
            return await self._close(request, QualificationRequestStatus.ERROR, str(e))
        except Exception as e:
            # never leave the request pending
            logger.exception(f"Teleservice provider failed for request {request.id}")
            await self._close(request, QualificationRequestStatus.ERROR, f"Provider failure: {e}")
            raise

        return await self.apply_qualification_response(request.id, response)

    async def _close(
        self,
        request: QualificationRequest,
        status: QualificationRequestStatus,
        error_message: Optional[str] = None
    ) -> QualificationRequest:
        request.status = status
        request.error_message = error_message
        return await self.request_repository.save(request)

    async def apply_qualification_response(
        self,
        request_id: str,
        response: TeleserviceResponse
    ) -> QualificationRequest:
        """Apply a teleservice answer to a pending request and its identity"""
        request = await self.get_request(request_id)
        if not request.is_pending:
            raise InvalidTransitionError(f"Request {request_id} is already {request.status.value}")
        request.response = response

        outcome = TeleserviceOutcome(response.outcome)
        if outcome in (TeleserviceOutcome.QUALIFIED, TeleserviceOutcome.PROVISIONAL) and not response.identifier_value:
            return await self._close(request, QualificationRequestStatus.ERROR, "Response carries no identifier")

        if outcome == TeleserviceOutcome.NOT_FOUND:
            logger.info(f"Teleservice found no identifier for request {request_id}")
            return await self._close(request, QualificationRequestStatus.NO_MATCH)
        if outcome == TeleserviceOutcome.ERROR:
            return await self._close(
                request, QualificationRequestStatus.ERROR, response.error_message or "Teleservice error"
            )

        national_id = NationalIdentifier(
            value=response.identifier_value,
            oid=response.oid or self.default_oid,
            type=response.identifier_type,
            source=NationalIdSource.TELESERVICE,
            retrieved_at=response.received_at,
        )

        try:
            if outcome == TeleserviceOutcome.QUALIFIED:
                await self.identity_service.qualify(request.identity_id, national_id, request.requested_by)
                status = QualificationRequestStatus.SUCCESS
            else:
                await self.identity_service.attach_provisional_national_id(
                    request.identity_id, national_id, request.requested_by
                )
                status = QualificationRequestStatus.PROVISIONAL
        except ConflictError as e:
            await self._close(request, QualificationRequestStatus.ERROR, e.message)
            raise

        logger.info(f"Qualification request {request_id} applied: {outcome.value}")
        return await self._close(request, status)

    async def expire_stale_requests(self, max_age: Optional[timedelta] = None) -> int:
        """Expire pending requests older than ``max_age``; returns how many were expired"""
        cutoff = utcnow() - (max_age or self.max_request_age)
        expired = 0
        for request in await self.request_repository.find_pending_before(cutoff):
            try:
                await self._close(request, QualificationRequestStatus.EXPIRED, "No response received")
                expired += 1
            except ConflictError:
                # answered concurrently
                logger.debug(f"Request {request.id} changed while expiring, skipped")
        if expired:
            logger.warning(f"Expired {expired} stale qualification requests")
        return expired
