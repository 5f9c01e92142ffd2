"""JWT utilities for session and OAuth access tokens.

Provides stateless token generation and validation using PyJWT.
Two claim shapes share one signing secret:

    session:  {user_id, iat, exp}
    oauth:    {user_id, client_id, iat, exp, type: "oauth_access_token"}

The type claim keeps the two apart: an OAuth access token is never accepted
as a login session and a session token is never accepted at /oauth/userinfo.
"""

import logging
import os
import secrets
import time
from pathlib import Path
from typing import Optional

import jwt

from oauth.errors import TokenError
from oauth.models import OAUTH_ACCESS_TOKEN_TYPE, OAuthAccessClaims, SessionClaims

logger = logging.getLogger(__name__)

# JWT configuration
JWT_ALGORITHM = "HS256"
# Only the HMAC family is accepted on verification.
HMAC_ALGORITHMS = ["HS256", "HS384", "HS512"]
ACCESS_TOKEN_EXPIRE_SECONDS = 24 * 60 * 60  # 24 hours
SESSION_TOKEN_EXPIRE_SECONDS = 24 * 60 * 60

SECRET_FILE = Path.home() / ".simple-oauth-server" / "jwt_secret"


def get_or_create_secret(configured: Optional[str] = None, secret_file: Path = SECRET_FILE) -> str:
    """Resolve the JWT signing secret.

    Order: explicit value (env / config file), then the secret file,
    then a freshly generated secret which is written to the secret file
    so tokens stay valid across restarts.
    """
    if configured:
        return configured

    if secret_file.exists():
        try:
            secret = secret_file.read_text().strip()
            if secret:
                logger.info("[JWT] Loaded JWT secret from file")
                return secret
        except OSError as e:
            logger.warning(f"[JWT] Could not read JWT secret file: {e}")

    secret = secrets.token_urlsafe(64)
    try:
        secret_file.parent.mkdir(parents=True, exist_ok=True)
        secret_file.write_text(secret)
        os.chmod(secret_file, 0o600)
        logger.info("[JWT] Generated and saved new JWT secret")
    except OSError as e:
        logger.warning(f"[JWT] Could not save JWT secret to file: {e}")

    return secret


def sign(claims: dict, secret: str) -> str:
    """Sign a claim set with HMAC-SHA256."""
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def verify(token: str, secret: str) -> dict:
    """Check signature, algorithm and expiry; return the raw claims.

    Raises TokenError on any failure.
    """
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=HMAC_ALGORITHMS,
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")


def _int_claim(payload: dict, name: str) -> int:
    value = payload.get(name)
    if not isinstance(value, int) or isinstance(value, bool):
        raise TokenError(f"Token claim '{name}' missing or not an integer")
    return value


class TokenCodec:
    """Signs and verifies the bearer tokens handed out by this server."""

    def __init__(
        self,
        secret: str,
        access_token_ttl: int = ACCESS_TOKEN_EXPIRE_SECONDS,
        session_token_ttl: int = SESSION_TOKEN_EXPIRE_SECONDS,
    ):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self.access_token_ttl = access_token_ttl
        self.session_token_ttl = session_token_ttl

    def create_session_token(
        self,
        user_id: int,
        now: Optional[float] = None,
        expires_in: Optional[int] = None,
    ) -> str:
        """Create a login session token for a first-party user."""
        issued_at = int(now if now is not None else time.time())
        ttl = expires_in if expires_in is not None else self.session_token_ttl
        payload = {
            "user_id": user_id,
            "iat": issued_at,
            "exp": issued_at + ttl,
        }
        return sign(payload, self._secret)

    def create_access_token(
        self,
        user_id: int,
        client_id: str,
        now: Optional[float] = None,
        expires_in: Optional[int] = None,
    ) -> str:
        """Create an OAuth access token bound to a user and a client.

        Args:
            user_id: The resource owner
            client_id: The client the token was issued to
            now: Issue time in epoch seconds (defaults to the current time)
            expires_in: Token lifetime in seconds (defaults to access_token_ttl)

        Returns:
            A signed JWT string
        """
        issued_at = int(now if now is not None else time.time())
        ttl = expires_in if expires_in is not None else self.access_token_ttl
        payload = {
            "user_id": user_id,
            "client_id": client_id,
            "iat": issued_at,
            "exp": issued_at + ttl,
            "type": OAUTH_ACCESS_TOKEN_TYPE,
        }
        return sign(payload, self._secret)

    def verify_session_token(self, token: str) -> SessionClaims:
        """Verify a login session token.

        Tokens carrying a type claim (OAuth access tokens) are rejected.
        """
        payload = verify(token, self._secret)

        if "type" in payload:
            logger.debug("[JWT] Typed token presented as session token")
            raise TokenError("Token is not a session token")

        return SessionClaims(
            user_id=_int_claim(payload, "user_id"),
            iat=_int_claim(payload, "iat"),
            exp=_int_claim(payload, "exp"),
        )

    def verify_access_token(self, token: str) -> OAuthAccessClaims:
        """Verify an OAuth access token and return its claims."""
        payload = verify(token, self._secret)

        if payload.get("type") != OAUTH_ACCESS_TOKEN_TYPE:
            logger.debug("[JWT] Token is not an OAuth access token")
            raise TokenError("Token is not an OAuth access token")

        client_id = payload.get("client_id")
        if not isinstance(client_id, str) or not client_id:
            raise TokenError("Token claim 'client_id' missing")

        return OAuthAccessClaims(
            user_id=_int_claim(payload, "user_id"),
            client_id=client_id,
            iat=_int_claim(payload, "iat"),
            exp=_int_claim(payload, "exp"),
        )
