"""OAuth2 client-credential exchange against the Microsoft identity platform."""

import logging
import time
from typing import Callable, Optional, Sequence

import httpx

from common.constants import TOKEN_TIMEOUT_SECONDS
from common.types import TokenResult
from portal.exceptions import AuthAcquisitionError

logger = logging.getLogger(__name__)


class IdentityProviderClient:
    """
    Acquires application tokens with the client-credential flow.

    No user interaction and no caching happens here; the token cache decides
    when a new token is needed.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        authority: str = "https://login.microsoftonline.com",
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._token_url = f"{authority.rstrip('/')}/{tenant_id}/oauth2/v2.0/token"
        self._client_id = client_id
        self._client_secret = client_secret
        self._http = http_client or httpx.AsyncClient(timeout=TOKEN_TIMEOUT_SECONDS)
        self._clock = clock

    async def close(self) -> None:
        await self._http.aclose()

    async def acquire_token(self, scopes: Sequence[str]) -> TokenResult:
        """
        Exchange the client credentials for an access token.

        Args:
            scopes: Resource scopes, e.g. ``https://graph.microsoft.com/.default``

        Returns:
            Access token with its absolute expiry timestamp

        Raises:
            AuthAcquisitionError: If the endpoint is unreachable, rejects the
                credentials, or returns no access token
        """
        form = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "scope": " ".join(scopes),
        }

        requested_at = self._clock()
        try:
            response = await self._http.post(self._token_url, data=form)
        except httpx.HTTPError as e:
            logger.error(f"Identity provider unreachable: {e}")
            raise AuthAcquisitionError(f"Failed to acquire access token: {e}") from e

        if response.status_code != 200:
            reason = _error_description(response)
            logger.error(f"Identity provider rejected token request: status={response.status_code} reason={reason}")
            raise AuthAcquisitionError(f"Failed to acquire access token: {reason}")

        body = response.json()
        access_token = body.get("access_token")
        if not access_token:
            raise AuthAcquisitionError("Failed to acquire access token: no access token returned")

        expires_in = int(body.get("expires_in", 3599))
        logger.info(f"Acquired application token (expires_in={expires_in}s)")

        return TokenResult(access_token=access_token, expires_at=requested_at + expires_in)


def _error_description(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    return body.get("error_description") or body.get("error") or f"HTTP {response.status_code}"
