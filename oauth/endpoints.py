"""OAuth 2.0 endpoints.

This module contains the HTTP surface of the authorization server:
- Discovery metadata (/.well-known/oauth-authorization-server)
- Authorization endpoint (/oauth/authorize)
- Token endpoint (/oauth/token)
- UserInfo endpoint (/oauth/userinfo)

Handlers are plain functions so FastAPI runs each request on its worker
thread pool; the store is the only state they share.
"""

import logging

from fastapi import APIRouter, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse

from oauth.errors import ErrorKind, OAuthError, StoreError, error_response
from oauth.identity import bearer_token
from oauth.service import GRANT_TYPE_AUTHORIZATION_CODE, RESPONSE_TYPE_CODE, OAuthService

logger = logging.getLogger(__name__)

# An unknown client at /authorize is a bad request from the browser's
# point of view; at /token it is a failed client authentication.
AUTHORIZE_STATUS_OVERRIDES = {ErrorKind.INVALID_CLIENT: 400}


def _internal_failure(tag: str, e: Exception) -> JSONResponse:
    if isinstance(e, StoreError):
        logger.exception(f"[{tag}] Store failure: {e}")
    else:
        logger.exception(f"[{tag}] Unexpected failure")
    return error_response(OAuthError(ErrorKind.INTERNAL_FAILURE))


def create_oauth_router(service: OAuthService, server_url: str) -> APIRouter:
    """Build the OAuth router around one service instance."""
    router = APIRouter(tags=["oauth"])
    server_url = server_url.rstrip("/")

    # ============== Discovery ==============

    @router.get("/.well-known/oauth-authorization-server")
    def oauth_authorization_server():
        """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
        return {
            "issuer": server_url,
            "authorization_endpoint": f"{server_url}/oauth/authorize",
            "token_endpoint": f"{server_url}/oauth/token",
            "userinfo_endpoint": f"{server_url}/oauth/userinfo",
            "response_types_supported": [RESPONSE_TYPE_CODE],
            "response_modes_supported": ["query"],
            "grant_types_supported": [GRANT_TYPE_AUTHORIZATION_CODE],
            "token_endpoint_auth_methods_supported": ["client_secret_post"],
        }

    # ============== Authorization ==============

    @router.get("/oauth/authorize")
    def authorize(
        request: Request,
        response_type: str = "",
        client_id: str = "",
        redirect_uri: str = "",
        state: str = "",
    ):
        """Issue an authorization code to the signed-in user and redirect back."""
        try:
            if not (response_type and client_id and redirect_uri):
                raise OAuthError(ErrorKind.INVALID_REQUEST, "client_id, redirect_uri and response_type are required")

            user_id = service.identity.resolve_current_user(request)
            location = service.authorize(
                client_id=client_id,
                redirect_uri=redirect_uri,
                response_type=response_type,
                user_id=user_id,
                state=state or None,
            )
        except OAuthError as e:
            logger.info(f"[AUTHORIZE] Rejected client {client_id!r}: {e.kind.value}")
            return error_response(e, AUTHORIZE_STATUS_OVERRIDES)
        except Exception as e:
            return _internal_failure("AUTHORIZE", e)

        return RedirectResponse(url=location, status_code=302)

    # ============== Token ==============

    @router.post("/oauth/token")
    def token(
        grant_type: str = Form(None),
        code: str = Form(None),
        redirect_uri: str = Form(None),
        client_id: str = Form(None),
        client_secret: str = Form(None),
    ):
        """OAuth 2.0 Token Endpoint (authorization_code grant only)."""
        logger.debug(f"[TOKEN] grant_type: {grant_type}, client_id: {client_id}")
        try:
            if not all((grant_type, code, redirect_uri, client_id, client_secret)):
                raise OAuthError(
                    ErrorKind.INVALID_REQUEST,
                    "grant_type, code, redirect_uri, client_id and client_secret are required",
                )

            access_token = service.exchange_code(
                grant_type=grant_type,
                code=code,
                redirect_uri=redirect_uri,
                client_id=client_id,
                client_secret=client_secret,
            )
        except OAuthError as e:
            logger.info(f"[TOKEN] Rejected client {client_id!r}: {e.kind.value}")
            return error_response(e)
        except Exception as e:
            return _internal_failure("TOKEN", e)

        return JSONResponse(
            access_token.to_token_response(),
            headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
        )

    # ============== UserInfo ==============

    @router.get("/oauth/userinfo")
    def userinfo(request: Request):
        """Return the profile of the user an access token was issued for."""
        # Query parameter first, then the Authorization header.
        token_value = request.query_params.get("access_token") or bearer_token(request)

        try:
            if not token_value:
                raise OAuthError(ErrorKind.INVALID_REQUEST, "access_token is required")
            user = service.get_user_info(token_value)
        except OAuthError as e:
            logger.info(f"[USERINFO] Rejected: {e.kind.value}")
            return error_response(e)
        except Exception as e:
            return _internal_failure("USERINFO", e)

        return JSONResponse({"success": True, "message": "OK", "data": user})

    return router
