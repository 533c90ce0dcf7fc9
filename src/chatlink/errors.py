"""
Client exceptions.
"""

from __future__ import annotations


class ClientError(Exception):
    """Base exception for client errors."""

    pass


class ClientNotActiveError(ClientError):
    """Raised when an operation requires a client in active mode."""

    pass


class ConnectionNotSuccessfulError(ClientError):
    """Raised when a connect attempt ended without a connection id."""

    def __init__(self, message: str = "Connection was not successful", underlying: BaseException | None = None):
        super().__init__(message)
        self.underlying = underlying
        self.__cause__ = underlying


class MissingTokenError(ClientError):
    """Raised when a token waiter resolved without a token."""

    pass


class MissingConnectionIdError(ClientError):
    """Raised when a connection id waiter resolved without a connection id."""

    pass


class ClientDeallocatedError(ClientError):
    """Raised when the owning client was closed mid-operation."""

    pass


class ConnectionWasNotInitiatedError(ClientError):
    """Raised when a reload is requested but there is nothing to reload."""

    pass


class InvalidTokenError(ClientError):
    """Raised when a token is malformed or does not match the user."""

    pass


class TokenExpiredError(ClientError):
    """Raised when the server rejects the connection because the token expired."""

    pass


class MissingTokenProviderError(ClientError):
    """Raised when a token refresh is requested without any provider."""

    pass


class NotConnectedError(ClientError):
    """Raised for pending requests released by a disconnect."""

    pass
