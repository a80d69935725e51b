"""
HTTP Teleservice Provider

JSON-over-HTTPS client for the national identifier teleservice.
"""

import logging
from typing import Dict, Any, Optional

import aiohttp
from pydantic import ValidationError

from .base_provider import BaseTeleserviceProvider, ProviderConfig, TeleserviceUnavailable
from ..domains.identity.models.identity import PatientTraits, NationalIdType
from ..domains.qualification.models.qualification import (
    QualificationRequest,
    TeleserviceOutcome,
    TeleserviceResponse,
)

logger = logging.getLogger(__name__)

OUTCOMES = {
    "qualified": TeleserviceOutcome.QUALIFIED,
    "identite_qualifiee": TeleserviceOutcome.QUALIFIED,
    "provisional": TeleserviceOutcome.PROVISIONAL,
    "identite_provisoire": TeleserviceOutcome.PROVISIONAL,
    "not_found": TeleserviceOutcome.NOT_FOUND,
    "non_trouve": TeleserviceOutcome.NOT_FOUND,
}


def build_payload(request: QualificationRequest, oid: str) -> Dict[str, Any]:
    traits = request.traits
    payload = {
        "requestId": request.id,
        "requestType": request.request_type.value,
        "oid": oid,
        "traits": {
            "birthFamilyName": traits.birth_family_name,
            "birthGivenName": traits.birth_given_name,
            "givenNames": traits.given_names,
            "birthDate": traits.birth_date.strftime("%Y%m%d") if traits.birth_date else None,
            "sex": traits.sex.value if traits.sex else None,
            "birthPlaceCode": traits.birth_place.code if traits.birth_place else None,
        }
    }
    # drop empty traits the way the service expects
    payload["traits"] = {key: value for key, value in payload["traits"].items() if value}
    return payload


ID_TYPES = {
    "permanent": NationalIdType.PERMANENT,
    "nir": NationalIdType.PERMANENT,
    "temporary": NationalIdType.TEMPORARY,
    "nia": NationalIdType.TEMPORARY,
    "provisional": NationalIdType.PROVISIONAL,
}


def _malformed(reason: str) -> TeleserviceResponse:
    logger.warning(f"Malformed teleservice answer: {reason}")
    return TeleserviceResponse(
        outcome=TeleserviceOutcome.ERROR,
        error_message=f"Malformed teleservice answer: {reason}"
    )


def parse_response(data: Any, default_oid: str) -> TeleserviceResponse:
    """Map a teleservice answer to a response; answers that cannot be read become ERROR responses"""
    if not isinstance(data, dict):
        return _malformed(f"expected an object, got {type(data).__name__}")

    outcome = OUTCOMES.get(str(data.get("outcome", "")).lower(), TeleserviceOutcome.ERROR)
    identifier = data.get("identifier") or {}
    if not isinstance(identifier, dict):
        return _malformed("identifier is not an object")

    # a missing type means a permanent identifier
    raw_type = identifier.get("type") or NationalIdType.PERMANENT.value
    identifier_type = ID_TYPES.get(str(raw_type).lower())
    if identifier_type is None:
        return _malformed(f"unknown identifier type {raw_type!r}")

    returned: Optional[PatientTraits] = None
    traits = data.get("traits")
    if traits:
        if not isinstance(traits, dict):
            return _malformed("traits is not an object")
        birth_date = traits.get("birthDate")
        if isinstance(birth_date, str) and len(birth_date) == 8 and birth_date.isdigit():
            birth_date = f"{birth_date[:4]}-{birth_date[4:6]}-{birth_date[6:]}"
        try:
            returned = PatientTraits(
                birth_family_name=traits.get("birthFamilyName"),
                birth_given_name=traits.get("birthGivenName"),
                given_names=traits.get("givenNames") or [],
                birth_date=birth_date,
                sex=traits.get("sex"),
            )
        except ValidationError as e:
            return _malformed(f"invalid traits ({e.error_count()} errors)")

    value = identifier.get("value")
    try:
        return TeleserviceResponse(
            outcome=outcome,
            identifier_value=str(value) if value is not None else None,
            oid=identifier.get("oid") or default_oid,
            identifier_type=identifier_type,
            returned_traits=returned,
            error_message=data.get("message") if outcome == TeleserviceOutcome.ERROR else None,
        )
    except ValidationError as e:
        return _malformed(f"invalid identifier ({e.error_count()} errors)")


class HttpTeleserviceProvider(BaseTeleserviceProvider):
    """Teleservice reached over HTTP with a shared aiohttp session"""

    def __init__(self, config: Optional[ProviderConfig] = None, api_key: str = None, endpoint: str = None):
        super().__init__(config)

        # Allow override of key parameters
        if api_key:
            self.config.api_key = api_key
        if endpoint:
            self.config.endpoint = endpoint

        self.session: Optional[aiohttp.ClientSession] = None

    async def initialize(self) -> None:
        if self._initialized:
            return

        headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            **self.config.headers
        }
        if self.config.api_key:
            headers['X-API-Key'] = self.config.api_key

        self.session = aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        )
        self._initialized = True
        logger.info(f"HTTP teleservice provider initialized for {self.config.endpoint}")

    async def submit(self, request: QualificationRequest) -> TeleserviceResponse:
        if not self._initialized:
            await self.initialize()

        self.total_calls += 1
        payload = build_payload(request, self.config.oid)

        try:
            async with self.session.post(self.config.endpoint, json=payload) as response:
                if response.status == 200:
                    try:
                        data = await response.json()
                    except ValueError as e:
                        return _malformed(f"body is not JSON ({e})")
                    return parse_response(data, self.config.oid)

                error_text = await response.text()
                if response.status == 404:
                    return TeleserviceResponse(outcome=TeleserviceOutcome.NOT_FOUND)
                if response.status >= 500:
                    self.failed_calls += 1
                    logger.error(f"Teleservice error: {response.status} - {error_text}")
                    raise TeleserviceUnavailable(f"Teleservice returned {response.status}")

                logger.warning(f"Teleservice rejected request {request.id}: {response.status} - {error_text}")
                return TeleserviceResponse(
                    outcome=TeleserviceOutcome.ERROR,
                    error_message=f"Teleservice returned {response.status}: {error_text[:200]}"
                )

        except aiohttp.ClientError as e:
            self.failed_calls += 1
            logger.error(f"Teleservice transport error: {e}")
            raise TeleserviceUnavailable(str(e)) from e

    async def cleanup(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None
        await super().cleanup()
