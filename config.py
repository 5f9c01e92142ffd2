"""Config management for simple-oauth-server.

Values come from ~/.simple-oauth-server/config.json (optional) with
environment variables taking precedence. Call load_env() first so a local
.env file is visible to load_config().
"""
import json
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


CONFIG_DIR = Path.home() / ".simple-oauth-server"
CONFIG_FILE = CONFIG_DIR / "config.json"

# env var -> config file key
ENV_KEYS = {
    "JWT_SECRET": "jwt_secret",
    "JWT_EXPIRE_HOURS": "jwt_expire_hours",
    "STORE_BACKEND": "store_backend",
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_SERVICE_KEY": "supabase_key",
    "SERVER_URL": "server_url",
    "HOST": "host",
    "PORT": "port",
    "CORS_ORIGINS": "cors_origins",
    "LOG_LEVEL": "log_level",
    "LOG_TO_SUPABASE": "log_to_supabase",
}


def load_env(env_file: Path = Path(".env")) -> None:
    """Load a local .env file if there is one."""
    if env_file.exists():
        load_dotenv(env_file)


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = data or {}

    @property
    def jwt_secret(self) -> Optional[str]:
        return self.data.get("jwt_secret")

    @property
    def jwt_expire_hours(self) -> int:
        try:
            return int(self.data.get("jwt_expire_hours", 24))
        except (TypeError, ValueError):
            return 24

    @property
    def access_token_ttl(self) -> int:
        return self.jwt_expire_hours * 3600

    @property
    def store_backend(self) -> str:
        return str(self.data.get("store_backend", "memory")).lower()

    @property
    def supabase_url(self) -> Optional[str]:
        return self.data.get("supabase_url")

    @property
    def supabase_key(self) -> Optional[str]:
        return self.data.get("supabase_key")

    @property
    def host(self) -> str:
        return self.data.get("host", "0.0.0.0")

    @property
    def port(self) -> int:
        return int(self.data.get("port", 8080))

    @property
    def server_url(self) -> str:
        return self.data.get("server_url") or f"http://localhost:{self.port}"

    @property
    def cors_origins(self) -> list[str]:
        origins = self.data.get("cors_origins", "http://localhost:3000")
        if isinstance(origins, str):
            origins = origins.split(",")
        return [o.strip() for o in origins if o.strip()]

    @property
    def log_level(self) -> str:
        return str(self.data.get("log_level", "INFO")).upper()

    @property
    def log_to_supabase(self) -> bool:
        return _as_bool(self.data.get("log_to_supabase", False))

    @property
    def seed_clients(self) -> list[dict]:
        return list(self.data.get("clients", []))

    @property
    def seed_users(self) -> list[dict]:
        return list(self.data.get("users", []))


def _config_file() -> Path:
    override = os.getenv("OAUTH_CONFIG_FILE")
    return Path(override) if override else CONFIG_FILE


def read_config_file(config_file: Optional[Path] = None) -> dict:
    """Raw contents of the config file, without environment overrides."""
    path = config_file or _config_file()
    if not path.exists():
        return {}

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError):
        return {}
    return data if isinstance(data, dict) else {}


def load_config(config_file: Optional[Path] = None) -> Config:
    """Load config from file, then apply environment overrides."""
    data = read_config_file(config_file)

    for env_name, key in ENV_KEYS.items():
        value = os.getenv(env_name)
        if value:
            data[key] = value

    return Config(data)


def save_config(data: dict, config_file: Optional[Path] = None) -> None:
    """Save config to file."""
    path = config_file or _config_file()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        json.dump(data, f, indent=2)

    # Set restrictive permissions (owner read/write only)
    os.chmod(path, 0o600)
