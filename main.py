"""OAuth 2.0 Authorization Server.

Serves the authorization code grant:
- /oauth/authorize issues one-time codes to a signed-in user
- /oauth/token exchanges a code for a bearer access token
- /oauth/userinfo resolves an access token to the user's profile

Run with `python cli.py serve` or `uvicorn main:build_default_app --factory`.
"""
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from supabase import create_client

from config import Config, load_config, load_env
from logging_config import setup_logging
from oauth.endpoints import create_oauth_router
from oauth.identity import IdentityProvider, SessionIdentityProvider
from oauth.jwt_utils import TokenCodec, get_or_create_secret
from oauth.service import OAuthService
from oauth.stores import Store, create_store

VERSION = "1.0.0"

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[Config] = None,
    store: Optional[Store] = None,
    identity: Optional[IdentityProvider] = None,
) -> FastAPI:
    """Build the application.

    Tests pass their own store (and optionally identity provider); a real
    deployment lets both come from config.
    """
    config = config or load_config()

    store = store or create_store(config)
    codec = TokenCodec(
        get_or_create_secret(config.jwt_secret),
        access_token_ttl=config.access_token_ttl,
    )
    identity = identity or SessionIdentityProvider(codec, store)
    service = OAuthService(store, codec, identity)

    app = FastAPI(
        title="Simple OAuth Server",
        description="OAuth 2.0 authorization code grant",
        version=VERSION,
    )
    app.state.oauth_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Origin", "Content-Type", "Authorization"],
    )

    app.include_router(create_oauth_router(service, config.server_url))

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "oauth-server", "store": config.store_backend}

    @app.get("/")
    def root():
        """Root endpoint with server info."""
        return {
            "name": "Simple OAuth Server",
            "version": VERSION,
            "endpoints": {
                "authorize": "/oauth/authorize",
                "token": "/oauth/token",
                "userinfo": "/oauth/userinfo",
            },
            "metadata": f"{config.server_url.rstrip('/')}/.well-known/oauth-authorization-server",
        }

    logger.info(f"[STARTUP] SERVER_URL: {config.server_url}")
    logger.info(f"[STARTUP] Store backend: {config.store_backend}")
    return app


def build_default_app() -> FastAPI:
    """Load env, set up logging, then build the app from config."""
    load_env()
    config = load_config()

    log_client = None
    if config.log_to_supabase and config.supabase_url and config.supabase_key:
        log_client = create_client(config.supabase_url, config.supabase_key)
    setup_logging(level=config.log_level, supabase_client=log_client)

    return create_app(config)
