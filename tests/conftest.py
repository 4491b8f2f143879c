import httpx
import pytest

from auth.oauth_server import OAuthFlow
from auth.token_store import MemoryTokenStore
from crmproxy.http import ProviderApiClient
from tests.oauth_helpers import ProviderStub, build_app, build_settings


@pytest.fixture
def stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def app_client(stub):
    _, test_client, _ = build_app(stub)
    return test_client


@pytest.fixture
def sf_flow(stub) -> OAuthFlow:
    return OAuthFlow(
        provider=build_settings().salesforce,
        token_store=MemoryTokenStore(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(stub)),
    )


@pytest.fixture
def sf_api(sf_flow, stub) -> ProviderApiClient:
    return ProviderApiClient(
        sf_flow,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(stub)),
    )

