"""OAuth 2.0 authorization code flow: authorize, token exchange, userinfo.

Each step runs its checks in a fixed order and the first failure wins,
so a caller always sees the same error for the same bad request.
"""

import logging
import time
from typing import Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from logging_config import audit
from oauth.errors import ErrorKind, OAuthError
from oauth.identity import IdentityProvider
from oauth.jwt_utils import TokenCodec
from oauth.models import AccessToken
from oauth.registry import AccessTokenStore, AuthorizationCodeStore, ClientRegistry
from oauth.stores import Store

logger = logging.getLogger(__name__)

RESPONSE_TYPE_CODE = "code"
GRANT_TYPE_AUTHORIZATION_CODE = "authorization_code"


def build_redirect_url(redirect_uri: str, code: str, state: Optional[str] = None) -> str:
    """Append code (and state, when given) to the redirect URI's query."""
    parts = urlsplit(redirect_uri)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in ("code", "state")]
    query.append(("code", code))
    if state:
        query.append(("state", state))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class OAuthService:
    """Composes the client registry, code store, token store and codec."""

    def __init__(
        self,
        store: Store,
        codec: TokenCodec,
        identity: IdentityProvider,
        clock: Callable[[], float] = time.time,
    ):
        self.codec = codec
        self.identity = identity
        self.clock = clock
        self.clients = ClientRegistry(store)
        self.codes = AuthorizationCodeStore(store, clock=clock)
        self.tokens = AccessTokenStore(store, clock=clock)

    def authorize(
        self,
        client_id: str,
        redirect_uri: str,
        response_type: str,
        user_id: Optional[int],
        state: Optional[str] = None,
    ) -> str:
        """Issue an authorization code and return the URL to redirect to.

        Checks, in order: response type, client id, redirect URI, signed-in
        user. The user check comes last so an unauthenticated request still
        learns about a bad client or redirect first.
        """
        if response_type != RESPONSE_TYPE_CODE:
            raise OAuthError(ErrorKind.UNSUPPORTED_RESPONSE_TYPE)

        client = self.clients.validate_client_id(client_id)
        self.clients.validate_redirect_uri(client, redirect_uri)

        if user_id is None:
            raise OAuthError(ErrorKind.AUTHENTICATION_REQUIRED)

        code = self.codes.generate_authorization_code(client.client_id, user_id, redirect_uri)
        logger.info(f"[AUTHORIZE] Code issued for client {client.client_id}, user {user_id}")
        return build_redirect_url(redirect_uri, code, state)

    def exchange_code(
        self,
        grant_type: str,
        code: str,
        redirect_uri: str,
        client_id: str,
        client_secret: str,
    ) -> AccessToken:
        """Trade an authorization code for an access token.

        Checks, in order: grant type, client credentials, redirect URI, then
        the code itself (bound to the client). The code is consumed with a
        conditional update before any token is minted.
        """
        if grant_type != GRANT_TYPE_AUTHORIZATION_CODE:
            raise OAuthError(ErrorKind.UNSUPPORTED_GRANT_TYPE)

        client = self.clients.validate_client(client_id, client_secret)
        self.clients.validate_redirect_uri(client, redirect_uri)

        auth_code = self.codes.redeem(code, client.client_id)

        now = self.clock()
        ttl = self.codec.access_token_ttl
        token = self.codec.create_access_token(auth_code.user_id, client.client_id, now=now, expires_in=ttl)
        access_token = self.tokens.save(token, client.client_id, auth_code.user_id, ttl, now=now)

        audit("token_minted", client_id=client.client_id, user_id=auth_code.user_id,
              expires_at=access_token.expires_at)
        logger.info(f"[TOKEN] Access token created for client {client.client_id}, user {auth_code.user_id}")
        return access_token

    def get_user_info(self, token: str) -> dict:
        """Resolve an OAuth access token to the owner's public profile."""
        claims = self.codec.verify_access_token(token)

        user = self.identity.get_user(claims.user_id)
        if user is None:
            logger.info(f"[USERINFO] Token for unknown user {claims.user_id}")
            raise OAuthError(ErrorKind.INVALID_TOKEN, "User not found")
        return user
