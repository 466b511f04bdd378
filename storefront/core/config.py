import os
import sys
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from storefront.core.errors import ConfigError


_ENV_LOADED = False


def _load_env_file(path: str, allow_override: bool = False) -> None:
    """
    Minimal .env loader: loads KEY=VALUE pairs into os.environ.
    - Ignores empty lines and lines starting with '#'
    - Supports values wrapped in single or double quotes
    - By default, does not override existing environment variables
    """
    if not path or not os.path.exists(path):
        return
    try:
        with open(path, "r", encoding="utf-8") as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.startswith("export "):
                    line = line[len("export "):].strip()
                if "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip()
                if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
                    value = value[1:-1]
                if allow_override or key not in os.environ:
                    os.environ[key] = value
    except PermissionError as e:
        print(f"FATAL: Permission denied reading environment file {path}: {e}", file=sys.stderr)
        raise


def load_env_if_present(force_reload: bool = False) -> None:
    """
    Load environment variables from .env files in order of precedence:
    1. STOREFRONT_ENV_FILE, when set (the only file read)
    2. .env.local
    3. .env.{ENVIRONMENT}
    4. .env.common
    5. .env
    Existing environment variables always win.
    """
    global _ENV_LOADED
    if _ENV_LOADED and not force_reload:
        return

    custom = os.environ.get("STOREFRONT_ENV_FILE")
    if custom:
        _load_env_file(custom)
    else:
        env_files = ['.env.local', '.env.common', '.env']
        environment = os.environ.get('ENVIRONMENT', '').strip()
        if environment:
            env_files.insert(1, f'.env.{environment}')
        for env_file in env_files:
            _load_env_file(env_file)

    _ENV_LOADED = True


class DatabaseSettings(BaseModel):
    """
    MySQL connection pool settings.

    Populated from DB_* environment variables (aliases) or by field name.
    """
    model_config = ConfigDict(validate_assignment=True, populate_by_name=True)

    host: str = Field(..., alias="DB_HOST")
    port: int = Field(3306, alias="DB_PORT")
    user: str = Field(..., alias="DB_USER")
    password: str = Field(..., alias="DB_PASSWORD")
    database: str = Field(..., alias="DB_NAME")
    charset: str = Field("utf8mb4", alias="DB_CHARSET")

    min_connections: int = Field(1, alias="DB_MIN_CONNECTIONS")
    max_connections: int = Field(10, alias="DB_CONNECTION_LIMIT")
    queue_limit: int = Field(100, alias="DB_QUEUE_LIMIT")            # 0 = unlimited
    connect_timeout_ms: int = Field(10000, alias="DB_CONNECT_TIMEOUT_MS")
    idle_timeout_ms: int = Field(30000, alias="DB_IDLE_TIMEOUT_MS")
    keep_alive: bool = Field(True, alias="DB_KEEP_ALIVE")

    acquire_timeout_ms: int = Field(5000, alias="DB_ACQUIRE_TIMEOUT_MS")
    query_timeout_ms: int = Field(10000, alias="DB_QUERY_TIMEOUT_MS")
    slow_query_ms: int = Field(1000, alias="DB_SLOW_QUERY_MS")

    @field_validator('host', 'user', 'database', 'charset', mode='before')
    def validate_not_empty_str(cls, v):
        if not isinstance(v, str) or not v.strip():
            raise ValueError("Value cannot be empty or whitespace only")
        return v.strip()

    @field_validator('keep_alive', mode='before')
    def coerce_bool(cls, v):
        if isinstance(v, bool):
            return v
        if not isinstance(v, str):
            raise ValueError("Expected string for boolean field")
        val = v.strip().lower()
        if val in ("true", "1", "yes", "y", "on"):
            return True
        if val in ("false", "0", "no", "n", "off"):
            return False
        raise ValueError(f"Invalid boolean value: {v}")

    @field_validator(
        'port',
        'min_connections',
        'max_connections',
        'queue_limit',
        'connect_timeout_ms',
        'idle_timeout_ms',
        'acquire_timeout_ms',
        'query_timeout_ms',
        'slow_query_ms',
        mode='before'
    )
    def coerce_int(cls, v):
        if isinstance(v, bool):
            raise ValueError("Expected integer-compatible value")
        if isinstance(v, int):
            return v
        if isinstance(v, str):
            return int(v.strip())
        raise ValueError("Expected integer-compatible value")

    @model_validator(mode='after')
    def validate_limits(self):
        if self.port < 1 or self.port > 65535:
            raise ValueError(f"Invalid DB_PORT number: {self.port}")
        if self.max_connections < 1:
            raise ValueError("DB_CONNECTION_LIMIT must be >= 1")
        if self.min_connections < 0 or self.min_connections > self.max_connections:
            raise ValueError("DB_MIN_CONNECTIONS must be between 0 and DB_CONNECTION_LIMIT")
        if self.queue_limit < 0:
            raise ValueError("DB_QUEUE_LIMIT must be >= 0")
        for name in ('connect_timeout_ms', 'idle_timeout_ms', 'acquire_timeout_ms', 'query_timeout_ms'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        return self

    @property
    def dsn(self) -> str:
        """Connection description safe for logs (no password)."""
        return f"mysql://{self.user}@{self.host}:{self.port}/{self.database}"

    def pool_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for aiomysql.create_pool."""
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "db": self.database,
            "charset": self.charset,
            "minsize": self.min_connections,
            "maxsize": self.max_connections,
            "connect_timeout": self.connect_timeout_ms / 1000,
            "pool_recycle": self.idle_timeout_ms / 1000,
            "autocommit": False,
        }

    def server_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for a single aiomysql.connect without a default database."""
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "charset": self.charset,
            "connect_timeout": self.connect_timeout_ms / 1000,
            "autocommit": True,
        }


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for item in e.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "settings"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


def build_database_settings(config: Union[DatabaseSettings, Mapping[str, Any]]) -> DatabaseSettings:
    """Validate a mapping (field names or DB_* aliases) into DatabaseSettings."""
    if isinstance(config, DatabaseSettings):
        return config
    if not isinstance(config, Mapping):
        raise ConfigError(f"Unsupported configuration type: {type(config).__name__}", "configure")
    try:
        return DatabaseSettings.model_validate(dict(config))
    except ValidationError as e:
        raise ConfigError(f"Invalid database configuration: {_format_validation_error(e)}", "configure") from e


_settings: Optional[DatabaseSettings] = None


def get_database_settings(reload: bool = False) -> DatabaseSettings:
    """
    Get database settings from the environment (and .env files).
    Validated on first call; set reload=True to re-read the current environment.
    """
    global _settings
    if _settings is None or reload:
        load_env_if_present(force_reload=reload)
        _settings = build_database_settings(os.environ)
    return _settings


def reset_database_settings() -> None:
    global _settings, _ENV_LOADED
    _settings = None
    _ENV_LOADED = False


__all__ = [
    "DatabaseSettings",
    "build_database_settings",
    "get_database_settings",
    "reset_database_settings",
    "load_env_if_present",
]
