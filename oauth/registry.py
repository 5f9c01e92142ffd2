"""Client registry plus the authorization code and access token stores."""

import hmac
import logging
import secrets
import time
from typing import Callable, Optional

from logging_config import audit
from oauth.errors import ErrorKind, OAuthError
from oauth.models import (
    ACCESS_TOKENS_TABLE,
    AUTH_CODE_TTL_SECONDS,
    AUTH_CODES_TABLE,
    CLIENTS_TABLE,
    AccessToken,
    AuthorizationCode,
    Client,
)
from oauth.stores import Store

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class ClientRegistry:
    """Looks up registered clients and checks their credentials."""

    def __init__(self, store: Store):
        self.store = store

    def validate_client_id(self, client_id: str) -> Client:
        row = self.store.find_one(CLIENTS_TABLE, client_id=client_id) if client_id else None
        if row is None:
            raise OAuthError(ErrorKind.INVALID_CLIENT)
        return Client.from_row(row)

    def validate_client(self, client_id: str, client_secret: str) -> Client:
        """Both id and secret must match the stored record."""
        client = self.validate_client_id(client_id)
        if not client_secret or not hmac.compare_digest(
            client.client_secret.encode(), client_secret.encode()
        ):
            raise OAuthError(ErrorKind.INVALID_CLIENT)
        return client

    @staticmethod
    def validate_redirect_uri(client: Client, redirect_uri: str) -> None:
        # Exact string match only, no prefix or pattern matching.
        if client.redirect_uri != redirect_uri:
            raise OAuthError(ErrorKind.REDIRECT_MISMATCH)

    def register(
        self,
        client_id: str,
        client_secret: str,
        name: str,
        redirect_uri: str,
        now: Optional[float] = None,
    ) -> tuple[Client, bool]:
        """Register a client unless the id is taken.

        Returns (client, created). An existing record is returned unchanged.
        """
        existing = self.store.find_one(CLIENTS_TABLE, client_id=client_id)
        if existing is not None:
            return Client.from_row(existing), False

        client = Client(
            client_id=client_id,
            client_secret=client_secret,
            name=name,
            redirect_uri=redirect_uri,
            created_at=int(now if now is not None else time.time()),
        )
        self.store.insert(CLIENTS_TABLE, client.to_row())
        logger.info(f"[CLIENT] Registered client {client_id}")
        return client, True


class AuthorizationCodeStore:
    """Issues one-time authorization codes and redeems them exactly once."""

    def __init__(self, store: Store, clock: Clock = time.time, ttl: int = AUTH_CODE_TTL_SECONDS):
        self.store = store
        self.clock = clock
        self.ttl = ttl

    def generate_authorization_code(self, client_id: str, user_id: int, redirect_uri: str) -> str:
        # 256 random bits; uniqueness rests on the keyspace, no collision retry.
        code = secrets.token_hex(32)
        # Full clock precision, so a code lives the whole TTL.
        now = self.clock()

        auth_code = AuthorizationCode(
            code=code,
            client_id=client_id,
            user_id=user_id,
            redirect_uri=redirect_uri,
            created_at=now,
            expires_at=now + self.ttl,
            used=False,
        )
        self.store.insert(AUTH_CODES_TABLE, auth_code.to_row())
        audit("code_issued", client_id=client_id, user_id=user_id)
        return code

    def redeem(self, code: str, client_id: str) -> AuthorizationCode:
        """Mark a code used and return it.

        The lookup is bound to client_id so a code issued to one client
        cannot be redeemed by another. The used flag is flipped with a
        conditional update; if another request flipped it first, this one
        reports the code as already used.
        """
        row = self.store.find_one(AUTH_CODES_TABLE, code=code, client_id=client_id) if code else None
        if row is None:
            raise OAuthError(ErrorKind.INVALID_AUTHORIZATION_CODE)

        auth_code = AuthorizationCode.from_row(row)
        now = self.clock()
        if not auth_code.is_valid(now):
            # Expiry wins over used: an expired code is invalid whatever its flag.
            if auth_code.is_expired(now):
                if auth_code.used:
                    audit("code_replay", client_id=client_id, user_id=auth_code.user_id, expired=True)
                raise OAuthError(ErrorKind.INVALID_AUTHORIZATION_CODE)
            audit("code_replay", client_id=client_id, user_id=auth_code.user_id)
            raise OAuthError(ErrorKind.AUTHORIZATION_CODE_USED)

        changed = self.store.update_where(
            AUTH_CODES_TABLE,
            {"used": True},
            code=code,
            client_id=client_id,
            used=False,
        )
        if changed != 1:
            audit("code_replay", client_id=client_id, user_id=auth_code.user_id, race=True)
            raise OAuthError(ErrorKind.AUTHORIZATION_CODE_USED)

        auth_code.used = True
        audit("code_redeemed", client_id=client_id, user_id=auth_code.user_id)
        return auth_code


class AccessTokenStore:
    """Records minted access tokens. Rows are audit records, never updated."""

    def __init__(self, store: Store, clock: Clock = time.time):
        self.store = store
        self.clock = clock

    def save(
        self,
        token: str,
        client_id: str,
        user_id: int,
        ttl: int,
        now: Optional[float] = None,
    ) -> AccessToken:
        now = int(now if now is not None else self.clock())
        access_token = AccessToken(
            token=token,
            client_id=client_id,
            user_id=user_id,
            created_at=now,
            expires_at=now + ttl,
        )
        self.store.insert(ACCESS_TOKENS_TABLE, access_token.to_row())
        return access_token

