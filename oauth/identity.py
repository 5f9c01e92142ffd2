"""Identity provider used by the OAuth endpoints.

User login itself happens elsewhere; this module only answers two
questions: who is making this request, and what does their profile look
like without credentials.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from fastapi import Request

from oauth.errors import TokenError
from oauth.jwt_utils import TokenCodec
from oauth.models import USERS_TABLE
from oauth.stores import Store

logger = logging.getLogger(__name__)

# Fields a user profile may expose
PUBLIC_USER_FIELDS = ("id", "email", "name", "created_at", "updated_at")


def bearer_token(request: Request) -> Optional[str]:
    """Token from an 'Authorization: Bearer <token>' header, if any."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer ") and len(auth_header) > 7:
        return auth_header[7:]
    return None


def sanitize_user(row: dict) -> dict:
    return {field: row.get(field) for field in PUBLIC_USER_FIELDS}


class IdentityProvider(ABC):
    """Contract for resolving the signed-in user."""

    @abstractmethod
    def resolve_current_user(self, request: Request) -> Optional[int]:
        ...

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[dict]:
        ...


class SessionIdentityProvider(IdentityProvider):
    """Resolves users from first-party session tokens.

    The browser presents its login session token as a Bearer header when it
    calls /oauth/authorize. Profiles are read from the users table.
    """

    def __init__(self, codec: TokenCodec, store: Store):
        self.codec = codec
        self.store = store

    def resolve_current_user(self, request: Request) -> Optional[int]:
        token = bearer_token(request)
        if not token:
            return None
        try:
            claims = self.codec.verify_session_token(token)
        except TokenError as e:
            logger.info(f"[AUTH] Session token rejected: {e.detail}")
            return None
        return claims.user_id

    def get_user(self, user_id: int) -> Optional[dict]:
        row = self.store.find_one(USERS_TABLE, id=user_id)
        return sanitize_user(row) if row else None
