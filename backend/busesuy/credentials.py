"""STM client-credentials token handling.

CredentialCache owns exactly one token slot for one client id/secret pair.
CredentialPool rotates several caches round-robin so that load is spread over
every configured pair.
"""

import logging
import random
import time
from typing import Callable, Optional, Sequence

import httpx

from busesuy.config import STM_TOKEN_URL, StmCredential
from busesuy.errors import AuthFailure
from busesuy.models import AuthToken

logger = logging.getLogger("busesuy.credentials")

EXPIRY_MARGIN_SEC = 60


class CredentialCache:
    """Single-slot bearer token cache for one STM credential."""

    def __init__(
        self,
        credential: StmCredential,
        token_url: str = STM_TOKEN_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        timeout: float = 10.0,
    ):
        self.credential = credential
        self.token_url = token_url
        self.http_client = http_client
        self.clock = clock
        self.timeout = timeout
        self._token: Optional[AuthToken] = None

    @property
    def state(self) -> str:
        if self._token is None:
            return "uninitialized"
        return "valid" if self.clock() < self._token.expires_at else "expired"

    def invalidate(self) -> None:
        self._token = None

    async def get_token(self) -> str:
        if self._token is not None and self.clock() < self._token.expires_at:
            return self._token.value

        # Expired or never issued: the slot is cleared before any request goes out
        self._token = None
        token = await self._request_token()
        self._token = token
        return token.value

    async def _request_token(self) -> AuthToken:
        masked = self.credential.masked_id
        form = {
            "grant_type": "client_credentials",
            "client_id": self.credential.client_id,
            "client_secret": self.credential.client_secret,
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}

        try:
            if self.http_client:
                resp = await self.http_client.post(self.token_url, data=form, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.token_url, data=form, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Network error fetching STM token for client {masked}: {type(e).__name__}")
            raise AuthFailure(f"STM token request failed: {type(e).__name__}") from e

        if not resp.is_success:
            logger.error(f"Failed to fetch STM token for client {masked}. Status: {resp.status_code}")
            raise AuthFailure(f"Failed to get STM access token: {resp.status_code}")

        try:
            data = resp.json()
            value = str(data["access_token"])
            expires_in = float(data["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Malformed STM token response for client {masked}")
            raise AuthFailure("Malformed STM token response") from e

        logger.debug(f"Issued STM token for client {masked}, expires in {expires_in:.0f}s")
        return AuthToken(value=value, expires_at=self.clock() + expires_in - EXPIRY_MARGIN_SEC)


class CredentialPool:
    """Round-robin over several CredentialCaches, starting at a random index."""

    def __init__(self, caches: Sequence[CredentialCache], start_index: Optional[int] = None):
        self.caches = list(caches)
        if start_index is None:
            start_index = random.randrange(len(self.caches)) if self.caches else 0
        self._index = start_index

    @classmethod
    def from_credentials(
        cls,
        credentials: Sequence[StmCredential],
        token_url: str = STM_TOKEN_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> "CredentialPool":
        return cls([
            CredentialCache(c, token_url=token_url, http_client=http_client, timeout=timeout)
            for c in credentials
        ])

    async def get_token(self) -> str:
        if not self.caches:
            logger.error("No STM credentials configured")
            raise AuthFailure("No STM credentials configured")

        cache = self.caches[self._index % len(self.caches)]
        self._index = (self._index + 1) % len(self.caches)
        return await cache.get_token()

    def invalidate(self) -> None:
        for cache in self.caches:
            cache.invalidate()
