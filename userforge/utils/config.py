"""
Configuration management with schema validation.
Single source of truth for UserForge configuration.

Settings are built once at process start (load_settings) and passed
explicitly into create_app, the token service and the rate limiters.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .exceptions import ConfigError

CONFIG_DIR = Path("config")
SETTINGS_FILE = CONFIG_DIR / "settings.yaml"

DEFAULT_JWT_SECRET = "change-me-in-production"


class AppSettings(BaseModel):
    name: str = "UserForge"
    version: str = "1.0.0"
    environment: str = "development"


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3000
    workers: int = 1
    # X-Forwarded-For is only honoured behind proxies we run; trusted_hops
    # counts them from the right of the header
    trust_proxy: bool = False
    trusted_hops: int = Field(default=1, ge=1)
    max_body_bytes: int = Field(default=10 * 1024, ge=1)
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://localhost:3001"])

    @property
    def proxy_hops(self) -> int:
        return self.trusted_hops if self.trust_proxy else 0


class DatabaseSettings(BaseModel):
    uri: str = "mongodb://localhost:27017"
    name: str = "userforge"


class AuthSettings(BaseModel):
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_expiry_days: int = 7
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)


class RateLimitRule(BaseModel):
    """One limiter: at most max_requests per window_seconds per client."""
    window_seconds: int = 15 * 60
    max_requests: int = 100
    skip_successful: bool = False
    message: str = "Too many requests from this IP, please try again later."


class RateLimitSettings(BaseModel):
    enabled: bool = True
    api: RateLimitRule = Field(default_factory=RateLimitRule)
    auth: RateLimitRule = Field(default_factory=lambda: RateLimitRule(
        window_seconds=15 * 60,
        max_requests=5,
        skip_successful=True,
        message="Too many authentication attempts from this IP, please try again after 15 minutes.",
    ))
    create_account: RateLimitRule = Field(default_factory=lambda: RateLimitRule(
        window_seconds=60 * 60,
        max_requests=10,
        message="Too many accounts created from this IP, please try again after 1 hour.",
    ))
    password: RateLimitRule = Field(default_factory=lambda: RateLimitRule(
        window_seconds=60 * 60,
        max_requests=3,
        message="Too many password change attempts from this IP, please try again after 1 hour.",
    ))


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file_path: Optional[str] = "logs/userforge.log"
    max_bytes: int = 10485760
    backup_count: int = 5


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    rate_limits: RateLimitSettings = Field(default_factory=RateLimitSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def is_development(self) -> bool:
        return self.app.environment.lower() == "development"

    @property
    def is_production(self) -> bool:
        return self.app.environment.lower() == "production"


def substitute_env_vars(value: Any) -> Any:
    """Recursively substitute ${VAR} and ${VAR:default} with environment values"""
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}"):
            var_expr = value[2:-1]
            if ":" in var_expr:
                var_name, default = var_expr.split(":", 1)
                return os.getenv(var_name.strip(), default.strip())
            env_value = os.getenv(var_expr.strip())
            if env_value is None:
                raise ConfigError(f"Environment variable {var_expr} not found")
            return env_value
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    return value


def load_settings(path: Optional[Union[str, Path]] = None) -> Settings:
    """Load and validate settings.yaml.

    A missing file yields the defaults. Environment variables from .env are
    loaded first so ${VAR} placeholders can see them.
    """
    load_dotenv()
    settings_path = Path(path) if path else Path(os.getenv("USERFORGE_SETTINGS", str(SETTINGS_FILE)))

    raw_data: Dict[str, Any] = {}
    if settings_path.exists():
        try:
            with open(settings_path, "r", encoding="utf-8") as f:
                raw_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read settings from {settings_path}: {e}")

    try:
        settings = Settings(**substitute_env_vars(raw_data))
    except ValueError as e:
        raise ConfigError(f"Invalid settings in {settings_path}: {e}")

    if settings.is_production and settings.auth.jwt_secret in ("", DEFAULT_JWT_SECRET):
        raise ConfigError("auth.jwt_secret must be set in production (JWT_SECRET)")
    return settings
