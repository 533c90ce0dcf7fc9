"""
Tokens and user identity.

A ``Token`` carries the user id it was issued for, so the token alone
identifies the current user. Raw values are JWTs; the client only reads
their payload. Signing helpers exist for development and test tooling:

- ``Token.development``: unsigned token accepted by servers with auth checks off
- ``sign_token`` / ``verify_token``: HS256 tokens via ``cryptography`` HMAC
"""

from __future__ import annotations

import base64
import json
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from .errors import InvalidTokenError

DEVELOPMENT_SIGNATURE = "devtoken"

_JWT_HEADER = {"alg": "HS256", "typ": "JWT"}


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _encode_segment(obj: dict[str, Any]) -> str:
    return _b64encode(json.dumps(obj, separators=(",", ":")).encode())


@dataclass(frozen=True)
class UserInfo:
    """The user a connection is opened for."""

    id: str
    name: str | None = None
    image_url: str | None = None
    extra_data: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.name is not None:
            data["name"] = self.name
        if self.image_url is not None:
            data["image_url"] = self.image_url
        data.update(self.extra_data)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserInfo:
        extra = {k: v for k, v in data.items() if k not in ("id", "name", "image_url")}
        return cls(
            id=data["id"],
            name=data.get("name"),
            image_url=data.get("image_url"),
            extra_data=extra,
        )


@dataclass(frozen=True)
class Token:
    """An auth token bound to a user id."""

    raw_value: str
    user_id: str
    expiration: float | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.raw_value == ""

    @property
    def is_expired(self) -> bool:
        if self.expiration is None:
            return False
        return time.time() >= self.expiration

    def __repr__(self) -> str:
        # Keep raw values out of logs.
        return f"Token(user_id={self.user_id!r}, expiration={self.expiration!r})"

    @classmethod
    def from_jwt(cls, raw_value: str) -> Token:
        """Build a token from a JWT, reading ``user_id`` and ``exp`` from its payload.

        The signature is not verified; that is the server's job.
        """
        parts = raw_value.split(".")
        if len(parts) != 3:
            raise InvalidTokenError("Token is not a JWT")
        try:
            payload = json.loads(_b64decode(parts[1]))
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidTokenError(f"Token payload is not valid JSON: {e}") from e
        if not isinstance(payload, dict) or not payload.get("user_id"):
            raise InvalidTokenError("Token payload has no user_id")
        exp = payload.get("exp")
        return cls(raw_value=raw_value, user_id=str(payload["user_id"]), expiration=float(exp) if exp else None)

    @classmethod
    def development(cls, user_id: str) -> Token:
        raw = ".".join(
            [
                _encode_segment(_JWT_HEADER),
                _encode_segment({"user_id": user_id}),
                DEVELOPMENT_SIGNATURE,
            ]
        )
        return cls(raw_value=raw, user_id=user_id)

    @classmethod
    def anonymous(cls, user_id: str | None = None) -> Token:
        return cls(raw_value="", user_id=user_id or f"anon-{uuid.uuid4().hex}")


def sign_token(secret: bytes, user_id: str, expires_at: float | None = None) -> Token:
    """Create an HS256-signed token for ``user_id``.

    Args:
        secret: Shared HMAC secret.
        user_id: User the token is issued for.
        expires_at: Optional expiry as a Unix timestamp.

    Returns:
        The signed ``Token``.
    """
    payload: dict[str, Any] = {"user_id": user_id}
    if expires_at is not None:
        payload["exp"] = int(expires_at)
    signing_input = f"{_encode_segment(_JWT_HEADER)}.{_encode_segment(payload)}"

    mac = hmac.HMAC(secret, hashes.SHA256())
    mac.update(signing_input.encode("ascii"))
    signature = _b64encode(mac.finalize())

    return Token(
        raw_value=f"{signing_input}.{signature}",
        user_id=user_id,
        expiration=float(payload["exp"]) if "exp" in payload else None,
    )


def verify_token(secret: bytes, token: Token) -> bool:
    """Check the HS256 signature of ``token``."""
    parts = token.raw_value.split(".")
    if len(parts) != 3:
        return False
    mac = hmac.HMAC(secret, hashes.SHA256())
    mac.update(f"{parts[0]}.{parts[1]}".encode("ascii"))
    try:
        mac.verify(_b64decode(parts[2]))
    except (InvalidSignature, ValueError):
        return False
    return True


#: Asynchronously resolves a token; failures are raised.
TokenProvider = Callable[[], Awaitable[Token]]


def static_token_provider(token: Token) -> TokenProvider:
    """Provider that always resolves to ``token``."""

    async def provide() -> Token:
        return token

    return provide
