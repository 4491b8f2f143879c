import httpx
import pytest

from auth.errors import (
    NetworkError,
    NoRefreshTokenError,
    NotAuthenticatedError,
    ProviderApiError,
    ProviderAuthError,
)
from tests.oauth_helpers import ORG_TOKEN_URL, ORG_URL, authenticated_record

CONTACT_PATH = "/services/data/v58.0/sobjects/Contact/003000000000001"
CONTACT_URL = f"{ORG_URL}{CONTACT_PATH}"


def _bearer(request: httpx.Request) -> str:
    return request.headers["authorization"]


@pytest.mark.asyncio
async def test_not_authenticated_fails_fast(sf_api, stub) -> None:
    with pytest.raises(NotAuthenticatedError):
        await sf_api.request("session-1", "GET", CONTACT_PATH)

    assert stub.requests == []


@pytest.mark.asyncio
async def test_missing_session_fails_fast(sf_api, stub) -> None:
    with pytest.raises(NotAuthenticatedError):
        await sf_api.request(None, "GET", CONTACT_PATH)

    assert stub.requests == []


@pytest.mark.asyncio
async def test_attaches_bearer_token(sf_api, sf_flow, stub) -> None:
    await sf_flow.token_store.set("session-1", authenticated_record())
    stub.add("GET", CONTACT_URL, json_body={"Id": "003000000000001"})

    result = await sf_api.request("session-1", "GET", CONTACT_PATH)

    assert result.status_code == 200
    assert result.data == {"Id": "003000000000001"}
    assert _bearer(stub.requests[0]) == "Bearer T1"


@pytest.mark.asyncio
async def test_401_refreshes_and_retries_once(sf_api, sf_flow, stub) -> None:
    await sf_flow.token_store.set("session-1", authenticated_record())
    stub.add("GET", CONTACT_URL, status_code=401, json_body=[{"errorCode": "INVALID_SESSION_ID"}])
    stub.add("GET", CONTACT_URL, json_body={"Id": "003000000000001"})
    stub.add("POST", ORG_TOKEN_URL, json_body={"access_token": "T2"})

    result = await sf_api.request("session-1", "GET", CONTACT_PATH)

    assert result.data == {"Id": "003000000000001"}
    gets = stub.calls("GET", CONTACT_URL)
    assert len(gets) == 2
    assert _bearer(gets[0]) == "Bearer T1"
    assert _bearer(gets[1]) == "Bearer T2"
    assert len(stub.calls("POST", ORG_TOKEN_URL)) == 1


@pytest.mark.asyncio
async def test_second_401_is_not_retried(sf_api, sf_flow, stub) -> None:
    await sf_flow.token_store.set("session-1", authenticated_record())
    stub.add("GET", CONTACT_URL, status_code=401, json_body=[{"message": "Session expired"}])
    stub.add("GET", CONTACT_URL, status_code=401, json_body=[{"message": "Session expired"}])
    stub.add("POST", ORG_TOKEN_URL, json_body={"access_token": "T2"})

    with pytest.raises(ProviderApiError) as excinfo:
        await sf_api.request("session-1", "GET", CONTACT_PATH)

    assert excinfo.value.status_code == 401
    assert excinfo.value.message == "Session expired"
    assert len(stub.calls("GET", CONTACT_URL)) == 2
    assert len(stub.calls("POST", ORG_TOKEN_URL)) == 1


@pytest.mark.asyncio
async def test_401_without_refresh_token(sf_api, sf_flow, stub) -> None:
    await sf_flow.token_store.set("session-1", authenticated_record(refresh_token=None))
    stub.add("GET", CONTACT_URL, status_code=401, json_body=[{"message": "Session expired"}])

    with pytest.raises(NoRefreshTokenError):
        await sf_api.request("session-1", "GET", CONTACT_PATH)

    assert len(stub.requests) == 1


@pytest.mark.asyncio
async def test_refresh_failure_leaves_stale_token(sf_api, sf_flow, stub) -> None:
    await sf_flow.token_store.set("session-1", authenticated_record())
    stub.add("GET", CONTACT_URL, status_code=401, json_body=[{"message": "Session expired"}])
    stub.add("POST", ORG_TOKEN_URL, status_code=400, json_body={"error": "invalid_grant"})

    with pytest.raises(ProviderAuthError):
        await sf_api.request("session-1", "GET", CONTACT_PATH)

    record = await sf_flow.token_store.get("session-1")
    assert record.access_token == "T1"
    assert len(stub.calls("GET", CONTACT_URL)) == 1


@pytest.mark.asyncio
async def test_non_401_errors_are_not_retried(sf_api, sf_flow, stub) -> None:
    await sf_flow.token_store.set("session-1", authenticated_record())
    stub.add(
        "GET",
        CONTACT_URL,
        status_code=404,
        json_body=[{"errorCode": "NOT_FOUND", "message": "The requested resource does not exist"}],
    )

    with pytest.raises(ProviderApiError) as excinfo:
        await sf_api.request("session-1", "GET", CONTACT_PATH)

    assert excinfo.value.status_code == 404
    assert excinfo.value.code == "NOT_FOUND"
    assert excinfo.value.message == "The requested resource does not exist"
    assert stub.calls("POST", ORG_TOKEN_URL) == []


@pytest.mark.asyncio
async def test_server_error_with_html_body(sf_api, sf_flow, stub) -> None:
    await sf_flow.token_store.set("session-1", authenticated_record())
    stub.add("GET", CONTACT_URL, status_code=503, text="<html>maintenance</html>")

    with pytest.raises(ProviderApiError) as excinfo:
        await sf_api.request("session-1", "GET", CONTACT_PATH)

    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "HTTP 503 Service Unavailable"
    assert excinfo.value.details["body"] == {"raw": "<html>maintenance</html>"}


@pytest.mark.asyncio
async def test_empty_success_body(sf_api, sf_flow, stub) -> None:
    await sf_flow.token_store.set("session-1", authenticated_record())
    stub.add("DELETE", CONTACT_URL, status_code=204)

    result = await sf_api.request("session-1", "DELETE", CONTACT_PATH)

    assert result.status_code == 204
    assert result.data == {"raw": ""}


@pytest.mark.asyncio
async def test_network_error(sf_api, sf_flow, stub) -> None:
    await sf_flow.token_store.set("session-1", authenticated_record())
    stub.add_error("GET", CONTACT_URL, httpx.ConnectError("connection refused"))

    with pytest.raises(NetworkError, match="connectivity"):
        await sf_api.request("session-1", "GET", CONTACT_PATH)
