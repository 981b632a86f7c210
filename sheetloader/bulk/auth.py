"""
Token providers for the bulk API

The bulk client never holds credentials itself; it asks a provider for
``(base_url, token)`` before each job and calls ``refresh()`` when the
remote side answers 401.
"""
import time
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import httpx

from sheetloader.common.exceptions import AuthenticationError
from sheetloader.common.logging import get_logger

TOKEN_PATH = "/services/oauth2/token"


class TokenProvider(ABC):
    """Supplies the instance URL and a bearer token"""

    @abstractmethod
    def get_connection(self) -> Tuple[str, str]:
        """
        Returns:
            (base_url, access_token)

        Raises:
            AuthenticationError: If no token can be obtained
        """
        pass

    def refresh(self) -> None:
        """Drop any cached token so the next get_connection() re-authenticates"""
        pass


class StaticTokenProvider(TokenProvider):
    """Provider for a token acquired elsewhere (e.g. a CLI login)"""

    def __init__(self, base_url: str, access_token: str):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token

    def get_connection(self) -> Tuple[str, str]:
        return self.base_url, self.access_token


class ClientCredentialsTokenProvider(TokenProvider):
    """
    OAuth2 client-credentials flow

    The token is cached on the instance. Salesforce does not return an
    expiry for this grant, so ``token_ttl`` bounds how long it is reused.
    """

    def __init__(
        self,
        instance_url: str,
        client_id: str,
        client_secret: str,
        token_ttl: float = 3600.0,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize provider

        Args:
            instance_url: My-domain URL of the org
            client_id: Connected app consumer key
            client_secret: Connected app consumer secret
            token_ttl: Seconds before a cached token is considered stale
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests)
        """
        if not instance_url or not client_id or not client_secret:
            raise AuthenticationError(
                "Instance URL, client ID and client secret must be provided "
                "(SF_INSTANCE_URL, SF_CLIENT_ID, SF_CLIENT_SECRET)"
            )

        self.instance_url = instance_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_ttl = token_ttl
        self.timeout = timeout
        self.transport = transport
        self.logger = get_logger(self.__class__.__name__)

        self._base_url: Optional[str] = None
        self._token: Optional[str] = None
        self._acquired_at = 0.0

    def get_connection(self) -> Tuple[str, str]:
        if self._token is None or time.monotonic() - self._acquired_at > self.token_ttl:
            self._authenticate()
        return self._base_url, self._token

    def refresh(self) -> None:
        self._token = None

    def _authenticate(self) -> None:
        self.logger.info(f"Requesting access token from {self.instance_url}")
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    f"{self.instance_url}{TOKEN_PATH}",
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                    }
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            raise AuthenticationError(
                f"Authentication failed: {e.response.status_code} - {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise AuthenticationError(f"Authentication failed: {e}") from e

        token = payload.get("access_token")
        if not token:
            raise AuthenticationError("Authentication response did not contain an access token")

        self._token = token
        self._base_url = (payload.get("instance_url") or self.instance_url).rstrip("/")
        self._acquired_at = time.monotonic()
