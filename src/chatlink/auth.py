"""
Authentication repository: owns the current token and resolves token providers.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from .errors import InvalidTokenError, MissingTokenError, MissingTokenProviderError
from .tokens import Token, TokenProvider
from .waiters import WaiterRegistry

logger = logging.getLogger(__name__)


def _consume_exception(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class AuthenticationRepository:
    """Holds the current token and de-duplicates token refreshes.

    Only one provider call runs at a time. Callers arriving while a refresh
    is in flight await that same refresh, unless they bring another
    provider: those wait for the running refresh to end and then resolve
    their own provider.

    A refreshed token is installed right away only when it belongs to the
    current user. A token for another user is handed back to the caller and
    installed later by the connection coordinator, after the old user's
    pending requests were released.
    """

    def __init__(self, *, token_timeout: float | None = 10.0) -> None:
        self._token: Token | None = None
        self._token_provider: TokenProvider | None = None
        self._refresh: asyncio.Task | None = None
        self._refresh_provider: TokenProvider | None = None
        self._token_timeout = token_timeout
        self._waiters: WaiterRegistry[Token] = WaiterRegistry("token", MissingTokenError)

    @property
    def current_token(self) -> Token | None:
        return self._token

    @property
    def current_user_id(self) -> str | None:
        return self._token.user_id if self._token is not None else None

    @property
    def token_provider(self) -> TokenProvider | None:
        """The last provider that resolved successfully."""
        return self._token_provider

    @property
    def is_refreshing(self) -> bool:
        return self._refresh is not None

    @property
    def token_waiters(self) -> WaiterRegistry[Token]:
        return self._waiters

    @property
    def token_waiter_count(self) -> int:
        return len(self._waiters)

    def set_token(self, token: Token, complete_waiters: bool = True) -> None:
        """Install ``token`` unconditionally."""
        with self._waiters.lock:
            self._token = token
            if complete_waiters:
                self._waiters.complete_all(token)
        logger.debug("Token set for user %s", token.user_id)

    def install_token(self, token: Token, release_waiters_with: Token | None) -> None:
        """Install ``token`` and release token waiters with ``release_waiters_with``.

        Passing None cancels the pending requests instead of letting them
        proceed with the new token.
        """
        with self._waiters.lock:
            self._token = token
            self._waiters.complete_all(release_waiters_with)

    async def refresh_token(self, provider: TokenProvider | None = None) -> Token:
        """Resolve a token through ``provider`` (or the stored provider).

        Raises:
            MissingTokenProviderError: No provider given and none stored.
            Any error raised by the provider, unchanged.
        """
        while self._refresh is not None and provider is not None and provider is not self._refresh_provider:
            logger.debug("Waiting for in-flight token refresh before switching provider")
            with contextlib.suppress(Exception):
                await asyncio.shield(self._refresh)

        if self._refresh is None:
            provider = provider or self._token_provider
            if provider is None:
                raise MissingTokenProviderError("No token provider to refresh the token with")
            self._refresh_provider = provider
            self._refresh = asyncio.ensure_future(self._run_refresh(provider))
            self._refresh.add_done_callback(_consume_exception)
        else:
            logger.debug("Joining in-flight token refresh")

        return await asyncio.shield(self._refresh)

    async def _run_refresh(self, provider: TokenProvider) -> Token:
        try:
            token = await provider()
        except Exception as e:
            logger.warning("Token provider failed: %s", e)
            raise
        finally:
            self._refresh = None
            self._refresh_provider = None

        if not isinstance(token, Token):
            raise InvalidTokenError(f"Token provider returned {type(token).__name__}, expected Token")

        self._token_provider = provider
        if self._token is not None and self._token.user_id == token.user_id:
            self.set_token(token)
        return token

    async def provide_token(self, timeout: float | None = None) -> Token:
        """Return the current token, waiting for one if there is none yet."""
        return await self._waiters.provide(
            lambda: self._token,
            timeout if timeout is not None else self._token_timeout,
        )

    def complete_token_waiters(self, token: Token | None) -> int:
        return self._waiters.complete_all(token)

    def invalidate_token_waiter(self, waiter_id: str) -> bool:
        return self._waiters.invalidate(waiter_id)

    def clear(self) -> None:
        """Forget token and provider, cancelling pending token waiters."""
        with self._waiters.lock:
            self._token = None
            self._token_provider = None
            self._waiters.complete_all(None)
        logger.debug("Authentication state cleared")
