"""In-process cache for the remote store bearer credential."""

import logging
import time
from typing import Callable, Optional, Sequence

from common.constants import GRAPH_SCOPES, TOKEN_REFRESH_MARGIN_SECONDS
from common.types import Credential
from portal.clients.identity_client import IdentityProviderClient

logger = logging.getLogger(__name__)


class TokenCache:
    """
    Hands out a bearer credential that is valid for at least the refresh margin.

    Concurrent callers that find the credential stale may each refresh it;
    the client-credential exchange is idempotent so the race only costs an
    extra round trip.
    """

    def __init__(
        self,
        identity_client: IdentityProviderClient,
        scopes: Sequence[str] = GRAPH_SCOPES,
        margin_seconds: int = TOKEN_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._identity_client = identity_client
        self._scopes = tuple(scopes)
        self._margin = margin_seconds
        self._clock = clock
        self._credential: Optional[Credential] = None

    def needs_refresh(self) -> bool:
        if self._credential is None:
            return True
        return self._clock() + self._margin >= self._credential.expires_at

    async def get_token(self, force_refresh: bool = False) -> Credential:
        """
        Return a usable credential, acquiring a new one when required.

        Args:
            force_refresh: Skip the cached credential unconditionally

        Returns:
            Credential valid for at least the refresh margin

        Raises:
            AuthAcquisitionError: If a new credential was needed and could not be acquired
        """
        if not force_refresh and not self.needs_refresh():
            return self._credential

        reason = "forced" if force_refresh else ("empty" if self._credential is None else "expiring")
        logger.debug(f"Refreshing remote store credential (reason={reason})")

        result = await self._identity_client.acquire_token(self._scopes)
        self._credential = Credential(token=result.access_token, expires_at=result.expires_at)
        return self._credential

    def invalidate(self) -> None:
        self._credential = None
