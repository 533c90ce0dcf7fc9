"""
Websocket connect endpoint.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from urllib.parse import urlencode

from ..tokens import Token, UserInfo


@dataclass(frozen=True)
class ConnectEndpoint:
    """Where and as whom the transport connects.

    Two endpoints for the same user on the same server compare equal, so
    re-assigning an unchanged endpoint can be skipped.
    """

    base_url: str
    api_key: str
    user_info: UserInfo

    @property
    def user_id(self) -> str:
        return self.user_info.id

    @property
    def url(self) -> str:
        query = urlencode(
            {
                "api_key": self.api_key,
                "json": json.dumps({"user_id": self.user_info.id, "user_details": self.user_info.to_dict()}),
            }
        )
        return f"{self.base_url.rstrip('/')}/connect?{query}"

    def url_with_token(self, token: Token | None) -> str:
        if token is None or token.is_anonymous:
            return f"{self.url}&{urlencode({'auth_type': 'anonymous'})}"
        return f"{self.url}&{urlencode({'authorization': token.raw_value, 'auth_type': 'jwt'})}"
