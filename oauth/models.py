"""Entities of the authorization code flow.

Rows travel through the store as plain dicts with epoch-second timestamps
(float for authorization codes, whose 10 minute window is checked to the
sub-second; int elsewhere). These dataclasses give them names and the
validity rules.
"""

from dataclasses import dataclass, asdict
from typing import Any, Optional

AUTH_CODE_TTL_SECONDS = 10 * 60
OAUTH_ACCESS_TOKEN_TYPE = "oauth_access_token"

CLIENTS_TABLE = "oauth_clients"
AUTH_CODES_TABLE = "authorization_codes"
ACCESS_TOKENS_TABLE = "access_tokens"
USERS_TABLE = "users"


@dataclass(frozen=True)
class Client:
    client_id: str
    client_secret: str
    name: str
    redirect_uri: str
    created_at: Optional[int] = None

    @classmethod
    def from_row(cls, row: dict) -> "Client":
        return cls(
            client_id=row["client_id"],
            client_secret=row["client_secret"],
            name=row.get("name", ""),
            redirect_uri=row["redirect_uri"],
            created_at=row.get("created_at"),
        )

    def to_row(self) -> dict:
        return asdict(self)

    def to_response(self) -> dict:
        """Public view of the client, without the secret."""
        return {
            "client_id": self.client_id,
            "name": self.name,
            "redirect_uri": self.redirect_uri,
            "created_at": self.created_at,
        }


@dataclass
class AuthorizationCode:
    code: str
    client_id: str
    user_id: int
    redirect_uri: str
    created_at: float
    expires_at: float
    used: bool = False

    @classmethod
    def from_row(cls, row: dict) -> "AuthorizationCode":
        return cls(
            code=row["code"],
            client_id=row["client_id"],
            user_id=int(row["user_id"]),
            redirect_uri=row["redirect_uri"],
            created_at=float(row["created_at"]),
            expires_at=float(row["expires_at"]),
            used=bool(row.get("used", False)),
        )

    def to_row(self) -> dict:
        return asdict(self)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def is_valid(self, now: float) -> bool:
        return not self.used and not self.is_expired(now)


@dataclass(frozen=True)
class AccessToken:
    token: str
    client_id: str
    user_id: int
    created_at: int
    expires_at: int

    @classmethod
    def from_row(cls, row: dict) -> "AccessToken":
        return cls(
            token=row["token"],
            client_id=row["client_id"],
            user_id=int(row["user_id"]),
            created_at=int(row["created_at"]),
            expires_at=int(row["expires_at"]),
        )

    def to_row(self) -> dict:
        return asdict(self)

    @property
    def expires_in(self) -> int:
        # Taken from the stored row, not from the token's own exp claim.
        return self.expires_at - self.created_at

    def to_token_response(self) -> dict[str, Any]:
        return {
            "access_token": self.token,
            "token_type": "Bearer",
            "expires_in": self.expires_in,
        }


@dataclass(frozen=True)
class SessionClaims:
    """Claims of a first-party login session token."""

    user_id: int
    iat: int
    exp: int


@dataclass(frozen=True)
class OAuthAccessClaims:
    """Claims of an access token minted for a third-party client."""

    user_id: int
    client_id: str
    iat: int
    exp: int
    type: str = OAUTH_ACCESS_TOKEN_TYPE
