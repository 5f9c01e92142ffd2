"""CLI entry point for simple-oauth-server.

Commands:
  serve            Run the authorization server
  register-client  Register an OAuth client in the configured store
  session-token    Mint a login session token for local testing
  version          Show version
"""
import argparse
import json
import logging
import secrets
import sys

import uvicorn

from config import load_config, load_env, read_config_file, save_config
from logging_config import setup_logging
from oauth.jwt_utils import TokenCodec, get_or_create_secret
from oauth.models import CLIENTS_TABLE
from oauth.registry import ClientRegistry
from oauth.stores import MemoryStore, create_store

VERSION = "1.0.0"

logger = logging.getLogger(__name__)


def cmd_serve(args) -> int:
    """Run the server with uvicorn."""
    config = load_config()
    host = args.host or config.host
    port = args.port or config.port
    print(f"Starting OAuth server on {host}:{port} (store: {config.store_backend})")
    uvicorn.run("main:build_default_app", factory=True, host=host, port=port, log_level="info")
    return 0


def cmd_register_client(args) -> int:
    """Register a client; id and secret are generated when not given.

    With the memory backend the client is written to the config file so
    the next server start seeds it.
    """
    config = load_config()
    client_id = args.client_id or secrets.token_urlsafe(16)
    client_secret = args.client_secret or secrets.token_urlsafe(32)

    if config.store_backend == "memory":
        store = MemoryStore()
        for row in config.seed_clients:
            store.insert(CLIENTS_TABLE, row)
    else:
        store = create_store(config)

    client, created = ClientRegistry(store).register(
        client_id=client_id,
        client_secret=client_secret,
        name=args.name,
        redirect_uri=args.redirect_uri,
    )

    if not created:
        print(f"Client already exists, skipping: {client.client_id}")
        print(json.dumps(client.to_response(), indent=2))
        return 0

    if config.store_backend == "memory":
        data = read_config_file()
        data.setdefault("clients", []).append(client.to_row())
        save_config(data)

    print("[OK] Client registered")
    print(f"  Client ID:     {client.client_id}")
    print(f"  Client Secret: {client.client_secret}")
    print(f"  Redirect URI:  {client.redirect_uri}")
    print("  Keep the client secret safe; it is not shown again.")
    return 0


def cmd_session_token(args) -> int:
    """Print a session token usable as 'Authorization: Bearer' at /oauth/authorize."""
    config = load_config()
    codec = TokenCodec(get_or_create_secret(config.jwt_secret))
    print(codec.create_session_token(args.user_id, expires_in=args.expires_in))
    return 0


def cmd_version(args) -> int:
    print(f"simple-oauth-server {VERSION}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="simple-oauth-server",
        description="Simple OAuth Server - OAuth 2.0 authorization code grant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  simple-oauth-server serve --port 8080
  simple-oauth-server register-client --name "Demo" --redirect-uri http://localhost:3000/cb
  simple-oauth-server session-token --user-id 7
"""
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the server")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=cmd_serve)

    register = subparsers.add_parser("register-client", help="Register an OAuth client")
    register.add_argument("--client-id", default=None)
    register.add_argument("--client-secret", default=None)
    register.add_argument("--name", required=True)
    register.add_argument("--redirect-uri", required=True)
    register.set_defaults(func=cmd_register_client)

    session = subparsers.add_parser("session-token", help="Mint a session token")
    session.add_argument("--user-id", type=int, required=True)
    session.add_argument("--expires-in", type=int, default=None, help="Lifetime in seconds")
    session.set_defaults(func=cmd_session_token)

    version = subparsers.add_parser("version", help="Show version")
    version.set_defaults(func=cmd_version)

    return parser


def main(argv=None) -> int:
    """Main entry point for CLI."""
    load_env()
    config = load_config()
    setup_logging(level=config.log_level)

    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
