import httpx
import pytest

from pebot.llm.auth import (
    IMDS_ENDPOINT,
    ApiKeyCredential,
    CredentialError,
    ManagedIdentityCredential,
    build_credential,
)


@pytest.fixture(autouse=True)
def clean_identity_env(monkeypatch):
    for key in ("IDENTITY_ENDPOINT", "IDENTITY_HEADER", "AZURE_CLIENT_ID"):
        monkeypatch.delenv(key, raising=False)


def _credential(handler) -> ManagedIdentityCredential:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ManagedIdentityCredential(http_client=http_client)


@pytest.mark.asyncio
async def test_api_key_headers() -> None:
    assert await ApiKeyCredential("secret").get_headers() == {"api-key": "secret"}


def test_build_credential_selects_mode() -> None:
    assert isinstance(build_credential(False, "secret"), ApiKeyCredential)
    assert isinstance(build_credential(True), ManagedIdentityCredential)


@pytest.mark.asyncio
async def test_managed_identity_token_is_cached() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})

    credential = _credential(handler)

    assert await credential.get_headers() == {"Authorization": "Bearer tok-1"}
    assert await credential.get_token() == "tok-1"
    assert len(calls) == 1
    request = calls[0]
    assert str(request.url).startswith(IMDS_ENDPOINT)
    assert request.headers["Metadata"] == "true"
    assert request.url.params["resource"] == "https://cognitiveservices.azure.com"


@pytest.mark.asyncio
async def test_app_service_identity_endpoint(monkeypatch) -> None:
    monkeypatch.setenv("IDENTITY_ENDPOINT", "http://localhost:42356/msi/token")
    monkeypatch.setenv("IDENTITY_HEADER", "header-value")
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"access_token": "tok-2", "expires_on": "4102444800"})

    assert await _credential(handler).get_token() == "tok-2"
    assert seen[0].url.host == "localhost"
    assert seen[0].headers["X-IDENTITY-HEADER"] == "header-value"
    assert seen[0].url.params["api-version"] == "2019-08-01"


@pytest.mark.asyncio
async def test_token_failure_raises_credential_error() -> None:
    credential = _credential(lambda request: httpx.Response(400, text="no identity"))

    with pytest.raises(CredentialError, match="Failed to acquire managed identity token"):
        await credential.get_token()


@pytest.mark.asyncio
async def test_missing_access_token_raises() -> None:
    credential = _credential(lambda request: httpx.Response(200, json={"expires_in": 3600}))

    with pytest.raises(CredentialError, match="missing access_token"):
        await credential.get_token()
