import aiohttp
import pytest

from identitovigilance.domains.identity.models.identity import NationalIdType
from identitovigilance.domains.qualification.models.qualification import (
    QualificationRequest,
    QualificationRequestType,
    TeleserviceOutcome,
)
from identitovigilance.providers import (
    PROVIDER_REGISTRY,
    BaseTeleserviceProvider,
    HttpTeleserviceProvider,
    ProviderConfig,
    TeleserviceUnavailable,
    create_provider,
    get_provider_class,
)
from identitovigilance.providers.http_provider import build_payload, parse_response

from factories import OID, make_traits


class FakeResponse:

    def __init__(self, status, payload=None, text=""):
        self.status = status
        self.payload = payload
        self._text = text

    async def json(self):
        return self.payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.posted = []

    def post(self, url, json=None):
        self.posted.append((url, json))
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self):
        pass


def make_request():
    return QualificationRequest(
        identity_id="I1",
        request_type=QualificationRequestType.VERIFICATION,
        requested_by="nurse-1",
        traits=make_traits(given_names=["JEAN", "PIERRE"], birth_place=None),
    )


def http_provider(response=None, error=None):
    provider = HttpTeleserviceProvider(ProviderConfig(endpoint="https://teleservice.test/ins", oid=OID))
    provider.session = FakeSession(response, error)
    provider._initialized = True
    return provider


def test_registry_lists_http_provider():
    assert PROVIDER_REGISTRY["http"] is HttpTeleserviceProvider
    assert get_provider_class("HTTP") is HttpTeleserviceProvider

    provider = create_provider("http", config=ProviderConfig(endpoint="https://teleservice.test"), api_key="secret")
    assert isinstance(provider, BaseTeleserviceProvider)
    assert provider.config.api_key == "secret"


def test_unknown_provider_is_rejected():
    with pytest.raises(ValueError):
        get_provider_class("carrier-pigeon")


def test_provider_config_needs_positive_timeout():
    with pytest.raises(ValueError):
        ProviderConfig(timeout_seconds=0)


async def test_provider_interface():
    provider = HttpTeleserviceProvider(ProviderConfig(endpoint="https://teleservice.test"))

    for method in ("initialize", "submit", "health_check", "get_stats", "cleanup"):
        assert hasattr(provider, method)

    stats = provider.get_stats()
    assert stats["provider"] == "http"
    assert stats["initialized"] is False
    assert (await provider.health_check())["status"] == "not_initialized"


def test_payload_uses_compact_birth_date_and_drops_empty_traits():
    payload = build_payload(make_request(), OID)

    assert payload["requestType"] == "verification"
    assert payload["traits"]["birthDate"] == "19800501"
    assert payload["traits"]["givenNames"] == ["JEAN", "PIERRE"]
    assert "birthPlaceCode" not in payload["traits"]


def test_parse_qualified_answer():
    response = parse_response({
        "outcome": "identite_qualifiee",
        "identifier": {"value": "180057505612345", "type": "temporary"},
        "traits": {"birthFamilyName": "MARTIN", "birthDate": "19800501", "sex": "M"},
    }, OID)

    assert response.outcome == TeleserviceOutcome.QUALIFIED
    assert response.oid == OID
    assert response.identifier_type == NationalIdType.TEMPORARY
    assert response.returned_traits.birth_date.isoformat() == "1980-05-01"


def test_parse_unknown_outcome_is_an_error():
    response = parse_response({"outcome": "maintenance", "message": "closed for maintenance"}, OID)

    assert response.outcome == TeleserviceOutcome.ERROR
    assert response.error_message == "closed for maintenance"


def test_parse_missing_identifier_type_means_permanent():
    response = parse_response({"outcome": "qualified", "identifier": {"value": "1800599", "type": None}}, OID)

    assert response.outcome == TeleserviceOutcome.QUALIFIED
    assert response.identifier_type == NationalIdType.PERMANENT


def test_parse_national_type_codes():
    response = parse_response({"outcome": "qualified", "identifier": {"value": "1800599", "type": "NIA"}}, OID)

    assert response.identifier_type == NationalIdType.TEMPORARY


@pytest.mark.parametrize("data", [
    {"outcome": "qualified", "identifier": {"value": "1800599", "type": "passport"}},
    {"outcome": "qualified", "identifier": "1800599"},
    {"outcome": "qualified", "identifier": {"value": "1800599"}, "traits": {"birthDate": "1980-13-45"}},
    {"outcome": "qualified", "identifier": {"value": "1800599"}, "traits": {"sex": "X"}},
    ["qualified"],
])
def test_parse_malformed_answer_is_an_error(data):
    response = parse_response(data, OID)

    assert response.outcome == TeleserviceOutcome.ERROR
    assert response.error_message.startswith("Malformed teleservice answer")


async def test_submit_with_unreadable_body_is_an_error():
    class NotJson(FakeResponse):
        async def json(self):
            raise ValueError("Expecting value: line 1 column 1 (char 0)")

    provider = http_provider(NotJson(200))

    response = await provider.submit(make_request())

    assert response.outcome == TeleserviceOutcome.ERROR


async def test_submit_parses_success():
    provider = http_provider(FakeResponse(200, {"outcome": "qualified", "identifier": {"value": "180057505612345"}}))

    response = await provider.submit(make_request())

    assert response.outcome == TeleserviceOutcome.QUALIFIED
    assert provider.session.posted[0][0] == "https://teleservice.test/ins"
    assert provider.total_calls == 1


async def test_submit_maps_not_found():
    provider = http_provider(FakeResponse(404, text="no such patient"))

    response = await provider.submit(make_request())

    assert response.outcome == TeleserviceOutcome.NOT_FOUND


async def test_submit_reports_rejected_request():
    provider = http_provider(FakeResponse(400, text="birthDate malformed"))

    response = await provider.submit(make_request())

    assert response.outcome == TeleserviceOutcome.ERROR
    assert "birthDate malformed" in response.error_message


async def test_server_error_means_unavailable():
    provider = http_provider(FakeResponse(503, text="down"))

    with pytest.raises(TeleserviceUnavailable):
        await provider.submit(make_request())
    assert provider.failed_calls == 1


async def test_transport_error_means_unavailable():
    provider = http_provider(error=aiohttp.ClientConnectionError("connection refused"))

    with pytest.raises(TeleserviceUnavailable):
        await provider.submit(make_request())
    assert provider.failed_calls == 1
