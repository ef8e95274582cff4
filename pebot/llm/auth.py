"""Authentication for Azure OpenAI requests."""

import logging
import os
import time
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

COGNITIVE_SERVICES_RESOURCE = "https://cognitiveservices.azure.com"
IMDS_ENDPOINT = "http://169.254.169.254/metadata/identity/oauth2/token"


class CredentialError(RuntimeError):
    """A bearer token could not be acquired."""


@dataclass
class CachedToken:
    """Bearer token with its expiry (unix timestamp)."""
    access_token: str
    expires_at: float

    @property
    def is_expired(self) -> bool:
        """Expired, with a 5 minute buffer."""
        return time.time() >= (self.expires_at - 300)


class ApiKeyCredential:
    """Static api-key authentication."""

    def __init__(self, api_key: str):
        self._api_key = api_key

    async def get_headers(self) -> dict[str, str]:
        return {"api-key": self._api_key}

    async def aclose(self) -> None:
        pass


class ManagedIdentityCredential:
    """Bearer tokens from the Azure managed identity endpoint.

    Uses the App Service endpoint (IDENTITY_ENDPOINT / IDENTITY_HEADER) when
    present, otherwise the instance metadata service.
    """

    def __init__(
        self,
        resource: str = COGNITIVE_SERVICES_RESOURCE,
        client_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._resource = resource
        self._client_id = client_id or os.getenv("AZURE_CLIENT_ID")
        self._http_client = http_client
        self._token: Optional[CachedToken] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    def _token_request(self) -> tuple[str, dict[str, str], dict[str, str]]:
        """Return (url, params, headers) for the available token endpoint."""
        identity_endpoint = os.getenv("IDENTITY_ENDPOINT")
        identity_header = os.getenv("IDENTITY_HEADER")
        params = {"resource": self._resource}
        if self._client_id:
            params["client_id"] = self._client_id

        if identity_endpoint and identity_header:
            params["api-version"] = "2019-08-01"
            return identity_endpoint, params, {"X-IDENTITY-HEADER": identity_header}

        params["api-version"] = "2018-02-01"
        return IMDS_ENDPOINT, params, {"Metadata": "true"}

    async def get_token(self) -> str:
        """Return a valid bearer token, refreshing it when close to expiry."""
        if self._token and not self._token.is_expired:
            return self._token.access_token

        url, params, headers = self._token_request()
        client = await self._get_http_client()
        try:
            response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CredentialError(f"Failed to acquire managed identity token: {e}") from e

        access_token = data.get("access_token")
        if not access_token:
            raise CredentialError("Managed identity response missing access_token")

        try:
            expires_at = float(data.get("expires_on", 0))
        except (TypeError, ValueError):
            expires_at = 0.0
        if not expires_at:
            expires_at = time.time() + float(data.get("expires_in", 3600))

        self._token = CachedToken(access_token=access_token, expires_at=expires_at)
        logger.info("Acquired managed identity token for Azure OpenAI")
        return access_token

    async def get_headers(self) -> dict[str, str]:
        token = await self.get_token()
        return {"Authorization": f"Bearer {token}"}

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()


def build_credential(use_managed_identity: bool, api_key: str = ""):
    """Select the credential for the configured auth mode."""
    if use_managed_identity:
        return ManagedIdentityCredential()
    return ApiKeyCredential(api_key)
