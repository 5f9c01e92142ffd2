"""Tests for oauth/service.py (authorize, token exchange, userinfo)."""
import re
import time
from urllib.parse import parse_qs, urlsplit

import pytest

from oauth.errors import ErrorKind, OAuthError, StoreError
from oauth.identity import IdentityProvider, SessionIdentityProvider
from oauth.jwt_utils import TokenCodec
from oauth.models import ACCESS_TOKENS_TABLE, AUTH_CODE_TTL_SECONDS, AUTH_CODES_TABLE, CLIENTS_TABLE
from oauth.service import OAuthService, build_redirect_url
from oauth.stores import MemoryStore

from conftest import CLIENT_ID, CLIENT_SECRET, REDIRECT_URI, SECRET, USER_ID, FakeClock, seed


def _code_from(location):
    return parse_qs(urlsplit(location).query)["code"][0]


def _authorize(service, state=None):
    return service.authorize(CLIENT_ID, REDIRECT_URI, "code", USER_ID, state=state)


def _exchange(service, code, **overrides):
    params = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": REDIRECT_URI,
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
    }
    params.update(overrides)
    return service.exchange_code(**params)


def _expect(kind, fn, *args, **kwargs):
    with pytest.raises(OAuthError) as exc_info:
        fn(*args, **kwargs)
    assert exc_info.value.kind is kind


# ---------------------------------------------------------------------------
# Redirect building
# ---------------------------------------------------------------------------

class TestBuildRedirectUrl:
    def test_code_only(self):
        assert build_redirect_url("https://app.example/cb", "abc123") == "https://app.example/cb?code=abc123"

    def test_state_round_trips(self):
        state = "x y&z=1/é"
        url = build_redirect_url("https://app.example/cb", "abc123", state)
        assert parse_qs(urlsplit(url).query)["state"] == [state]

    def test_existing_query_kept(self):
        url = build_redirect_url("https://app.example/cb?tenant=9", "abc123")
        query = parse_qs(urlsplit(url).query)
        assert query == {"tenant": ["9"], "code": ["abc123"]}


# ---------------------------------------------------------------------------
# Authorize
# ---------------------------------------------------------------------------

class TestAuthorize:
    def test_success_redirects_with_code_and_state(self, service, store):
        location = _authorize(service, state="xyz")

        assert location.startswith(REDIRECT_URI + "?code=")
        query = parse_qs(urlsplit(location).query)
        assert re.fullmatch(r"[0-9a-f]{64}", query["code"][0])
        assert query["state"] == ["xyz"]
        assert store.find_one(AUTH_CODES_TABLE, code=query["code"][0])["user_id"] == USER_ID

    def test_no_state_param_when_absent(self, service):
        assert "state" not in parse_qs(urlsplit(_authorize(service)).query)

    def test_response_type_checked_first(self, service):
        _expect(ErrorKind.UNSUPPORTED_RESPONSE_TYPE, service.authorize,
                "nope", "https://evil.example/cb", "token", None)

    def test_client_checked_before_redirect(self, service):
        _expect(ErrorKind.INVALID_CLIENT, service.authorize,
                "nope", "https://evil.example/cb", "code", None)

    def test_redirect_checked_before_user(self, service):
        _expect(ErrorKind.REDIRECT_MISMATCH, service.authorize,
                CLIENT_ID, "https://evil.example/cb", "code", None)

    def test_authentication_required_issues_no_code(self, service, store):
        _expect(ErrorKind.AUTHENTICATION_REQUIRED, service.authorize,
                CLIENT_ID, REDIRECT_URI, "code", None)
        assert store.count(AUTH_CODES_TABLE) == 0

    def test_unknown_client_issues_no_code(self, service, store):
        _expect(ErrorKind.INVALID_CLIENT, service.authorize, "nope", REDIRECT_URI, "code", USER_ID)
        assert store.count(AUTH_CODES_TABLE) == 0


# ---------------------------------------------------------------------------
# Token exchange
# ---------------------------------------------------------------------------

class TestExchangeCode:
    def test_full_flow(self, service, store, codec):
        code = _code_from(_authorize(service))
        access_token = _exchange(service, code)

        claims = codec.verify_access_token(access_token.token)
        assert (claims.user_id, claims.client_id) == (USER_ID, CLIENT_ID)
        assert access_token.to_token_response() == {
            "access_token": access_token.token,
            "token_type": "Bearer",
            "expires_in": 24 * 3600,
        }
        assert store.find_one(ACCESS_TOKENS_TABLE, token=access_token.token)["user_id"] == USER_ID
        assert store.find_one(AUTH_CODES_TABLE, code=code)["used"] is True

    def test_second_redemption_is_replay(self, service, store):
        code = _code_from(_authorize(service))
        _exchange(service, code)
        _expect(ErrorKind.AUTHORIZATION_CODE_USED, _exchange, service, code)
        assert store.count(ACCESS_TOKENS_TABLE) == 1

    def test_grant_type_checked_first(self, service):
        _expect(ErrorKind.UNSUPPORTED_GRANT_TYPE, _exchange, service, "bogus",
                grant_type="password", client_secret="wrong")

    def test_wrong_secret_with_valid_code(self, service):
        code = _code_from(_authorize(service))
        _expect(ErrorKind.INVALID_CLIENT, _exchange, service, code, client_secret="wrong")
        # The code was not consumed
        assert _exchange(service, code).user_id == USER_ID

    def test_redirect_mismatch_with_valid_code(self, service):
        code = _code_from(_authorize(service))
        _expect(ErrorKind.REDIRECT_MISMATCH, _exchange, service, code,
                redirect_uri="https://evil.example/cb")

    def test_redirect_mismatch_with_bogus_code(self, service):
        _expect(ErrorKind.REDIRECT_MISMATCH, _exchange, service, "0" * 64,
                redirect_uri="https://evil.example/cb")

    def test_code_issued_to_other_client(self, service, store):
        store.insert(CLIENTS_TABLE, {
            "client_id": "other",
            "client_secret": "other-secret",
            "name": "Other",
            "redirect_uri": REDIRECT_URI,
        })
        code = _code_from(_authorize(service))
        _expect(ErrorKind.INVALID_AUTHORIZATION_CODE, _exchange, service, code,
                client_id="other", client_secret="other-secret")

    def test_expired_code(self, service, clock):
        code = _code_from(_authorize(service))
        clock.advance(AUTH_CODE_TTL_SECONDS)
        _expect(ErrorKind.INVALID_AUTHORIZATION_CODE, _exchange, service, code)

    def test_code_redeemable_half_a_second_before_ttl(self, store, codec):
        clock = FakeClock(1_700_000_000.9)
        service = OAuthService(store, codec, SessionIdentityProvider(codec, store), clock=clock)
        code = _code_from(_authorize(service))

        clock.advance(AUTH_CODE_TTL_SECONDS - 0.5)
        assert _exchange(service, code).user_id == USER_ID

    def test_token_row_failure_consumes_code(self, codec, clock):
        # The code is spent before the token row is written; a failed write
        # means the client starts the flow again.
        class FlakyStore(MemoryStore):
            fail_token_insert = True

            def insert(self, table, row):
                if table == ACCESS_TOKENS_TABLE and self.fail_token_insert:
                    self.fail_token_insert = False
                    raise StoreError("write failed")
                return super().insert(table, row)

        store = seed(FlakyStore())
        service = OAuthService(store, codec, SessionIdentityProvider(codec, store), clock=clock)
        code = _code_from(_authorize(service))

        with pytest.raises(StoreError):
            _exchange(service, code)
        _expect(ErrorKind.AUTHORIZATION_CODE_USED, _exchange, service, code)
        assert store.count(ACCESS_TOKENS_TABLE) == 0

    def test_expires_in_follows_configured_lifetime(self, store, clock):
        codec = TokenCodec(SECRET, access_token_ttl=900)
        service = OAuthService(store, codec, SessionIdentityProvider(codec, store), clock=clock)
        access_token = _exchange(service, _code_from(_authorize(service)))
        assert access_token.expires_in == 900

    def test_token_stops_verifying_after_expiry(self, store, codec):
        # Issue everything a day and a bit in the past.
        clock = FakeClock(time.time() - 24 * 3600 - 60)
        service = OAuthService(store, codec, SessionIdentityProvider(codec, store), clock=clock)
        access_token = _exchange(service, _code_from(_authorize(service)))

        _expect(ErrorKind.INVALID_TOKEN, codec.verify_access_token, access_token.token)


# ---------------------------------------------------------------------------
# UserInfo
# ---------------------------------------------------------------------------

class TestGetUserInfo:
    def test_profile_without_credentials(self, service):
        access_token = _exchange(service, _code_from(_authorize(service)))
        profile = service.get_user_info(access_token.token)

        assert profile["id"] == USER_ID
        assert profile["email"] == "user7@example.com"
        assert "password_hash" not in profile
        assert "password" not in profile

    def test_session_token_rejected(self, service, codec):
        _expect(ErrorKind.INVALID_TOKEN, service.get_user_info, codec.create_session_token(USER_ID))

    def test_unknown_user(self, service, codec):
        _expect(ErrorKind.INVALID_TOKEN, service.get_user_info, codec.create_access_token(999, CLIENT_ID))


# ---------------------------------------------------------------------------
# Identity provider
# ---------------------------------------------------------------------------

class TestIdentityProvider:
    def test_contract_is_abstract(self):
        class HalfProvider(IdentityProvider):
            def get_user(self, user_id):
                return None

        with pytest.raises(TypeError):
            HalfProvider()
