"""Gateway configuration: data source, tenant settings, and security policy.

Configuration file location priority:
1. Explicit path passed to GatewayConfigLoader
2. SQLGATE_CONFIG environment variable
3. Standard location: ~/.sqlgate/sqlgate.yml
4. Built-in defaults (internal in-memory engine, default feature flags)

Example config file:
```yaml
version: "1.0"

data_source:
  source: external
  cache: true
  cache_ttl: 60
  external:
    dialect: postgres
    host: db.internal
    port: 5432
    user: gateway
    password: secret
    database: app

config:
  role: client
  subject: "user-42"
  features:
    allowlist: true
    rls: true

allowlist:
  statements:
    - "SELECT * FROM orders WHERE id = ?"
  tables:
    orders: [select, insert]

rls:
  - table: orders
    column: user_id
    value: "context.id()"
    actions: [select, update, delete]
```

Every model is frozen: a resolved configuration never changes while a
request is in flight.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.sqlgate/sqlgate.yml")
DEFAULT_HOSTED_API_URL = "https://app.outerbase.com"

# Resolution table for unset feature flags. Security features are opt-in,
# everything else is on unless the tenant turns it off.
FEATURE_DEFAULTS: dict[str, bool] = {
    "allowlist": False,
    "rls": False,
    "rest": True,
    "export": True,
    "import": True,
    "websocket": True,
}

Operation = Literal["select", "insert", "update", "delete", "create", "alter", "drop", "pragma"]


# ===========================================================================
# Configuration Models
# ===========================================================================


class FeatureFlags(BaseModel):
    """Per-tenant feature toggles. ``None`` means "use the default"."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    allowlist: bool | None = None
    rls: bool | None = None
    rest: bool | None = None
    export: bool | None = None
    import_: bool | None = Field(default=None, alias="import")
    websocket: bool | None = None

    def resolve(self, name: str) -> bool:
        """Resolve a flag through FEATURE_DEFAULTS.

        Raises:
            KeyError: If ``name`` is not a known feature
        """
        default = FEATURE_DEFAULTS[name]
        value = getattr(self, "import_" if name == "import" else name)
        return default if value is None else value

    def resolved(self) -> dict[str, bool]:
        """All flags with defaults applied."""
        return {name: self.resolve(name) for name in FEATURE_DEFAULTS}


class Configuration(BaseModel):
    """Tenant settings for one gateway."""

    model_config = ConfigDict(frozen=True)

    role: Literal["admin", "client"] = Field(
        default="client", description="Caller role; admin bypasses allowlist and RLS"
    )
    outerbase_api_key: str | None = Field(
        default=None,
        repr=False,
        description="Hosted execution credential; enables the hosted-proxy path",
    )
    subject: str | None = Field(
        default=None, description="Caller identity substituted for context.id() in RLS values"
    )
    features: FeatureFlags = Field(default_factory=FeatureFlags)

    def feature(self, name: str) -> bool:
        """Resolved value of a feature flag."""
        return self.features.resolve(name)


class ExternalSource(BaseModel):
    """Connection descriptor for an external database.

    ``dialect`` names the SQL grammar (postgres, mysql, sqlite); ``provider``
    names a hosted service (cloudflare-d1, starbase, turso) and takes
    precedence when both are set.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    dialect: str = Field(description="SQL dialect: postgres, mysql, sqlite")
    provider: str | None = Field(
        default=None, description="Hosted provider: cloudflare-d1, starbase, turso"
    )

    # Wire-protocol databases (postgres/mysql)
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = Field(default=None, repr=False)
    database: str | None = None
    default_schema: str | None = None
    ssl: bool | str = False

    # File databases (sqlite)
    path: str | None = None

    # HTTP providers
    api_key: str | None = Field(default=None, repr=False)
    account_id: str | None = None
    database_id: str | None = None
    url: str | None = None
    token: str | None = Field(default=None, repr=False)

    timeout: int = Field(default=30, ge=1, le=3600)

    @field_validator("dialect", "provider")
    @classmethod
    def _lowercase(cls, v: str | None) -> str | None:
        return v.lower() if isinstance(v, str) else v


class DataSource(BaseModel):
    """Where statements execute, plus cache settings for this source."""

    model_config = ConfigDict(frozen=True)

    source: Literal["internal", "external"] = "internal"
    path: str = Field(default=":memory:", description="Embedded engine database file")
    external: ExternalSource | None = None
    cache: bool = Field(default=True, description="Cache object-mode read results")
    cache_ttl: int = Field(default=60, ge=1, description="Cache entry time-to-live in seconds")
    cache_store: Literal["memory", "engine"] = Field(
        default="memory", description="memory: in-process dict; engine: tmp_cache table"
    )

    @property
    def dialect(self) -> str:
        """SQL dialect statements are written for."""
        if self.source == "external" and self.external is not None:
            return self.external.dialect
        return "sqlite"


class AllowlistPolicy(BaseModel):
    """Statements and table operations a client may run."""

    model_config = ConfigDict(frozen=True)

    statements: list[str] = Field(default_factory=list)
    tables: dict[str, list[Operation]] = Field(default_factory=dict)

    @field_validator("tables")
    @classmethod
    def _lowercase_tables(cls, v: dict[str, list[Operation]]) -> dict[str, list[Operation]]:
        return {table.lower(): ops for table, ops in v.items()}


class RlsPolicy(BaseModel):
    """One row-visibility predicate for a table."""

    model_config = ConfigDict(frozen=True)

    table: str
    column: str
    operator: Literal["=", "!=", "<>", "<", "<=", ">", ">=", "LIKE"] = "="
    value: str | int | float | bool | None = Field(
        description="Literal value, or 'context.id()' for the caller's subject"
    )
    actions: list[Literal["select", "update", "delete"]] = Field(
        default_factory=lambda: ["select", "update", "delete"]
    )

    @field_validator("operator", mode="before")
    @classmethod
    def _upper_operator(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class GatewaySettings(BaseModel):
    """Root configuration model for one gateway (sqlgate.yml)."""

    model_config = ConfigDict(frozen=True)

    version: str = "1.0"
    data_source: DataSource = Field(default_factory=DataSource)
    config: Configuration = Field(default_factory=Configuration)
    allowlist: AllowlistPolicy = Field(default_factory=AllowlistPolicy)
    rls: list[RlsPolicy] = Field(default_factory=list)
    hosted_api_url: str = Field(
        default_factory=lambda: os.getenv("SQLGATE_HOSTED_API_URL", DEFAULT_HOSTED_API_URL)
    )
    sweep_interval: float = Field(
        default_factory=lambda: _env_float("SQLGATE_SWEEP_INTERVAL", 60.0), gt=0
    )


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"Invalid {name} value, using {default}")
        return default


# ===========================================================================
# Loader
# ===========================================================================


class GatewayConfigLoader:
    """Load and validate sqlgate.yml.

    Usage:
        settings = GatewayConfigLoader().load()
        gateway = Gateway.from_settings(settings)
    """

    def __init__(self, config_path: str | Path | None = None):
        self._explicit_path = Path(config_path).expanduser() if config_path else None

    def resolve_path(self) -> Path | None:
        """Find the config file following the location priority."""
        if self._explicit_path is not None:
            return self._explicit_path

        env_path = os.getenv("SQLGATE_CONFIG")
        if env_path:
            return Path(env_path).expanduser()

        default = DEFAULT_CONFIG_PATH.expanduser()
        if default.exists():
            return default
        return None

    def load(self) -> GatewaySettings:
        """Load settings, falling back to built-in defaults when no file exists.

        Raises:
            ConfigurationError: If the file is missing, unreadable, or invalid
        """
        path = self.resolve_path()
        if path is None:
            logger.info("No gateway config file found, using built-in defaults")
            return GatewaySettings()

        if not path.is_file():
            raise ConfigurationError(f"Gateway config file not found: {path}")

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read gateway config {path}: {e}") from e

        settings = self.parse(data, source=str(path))
        logger.info(f"Loaded gateway config from {path} (source={settings.data_source.source})")
        return settings

    @staticmethod
    def parse(data: Any, source: str = "<dict>") -> GatewaySettings:
        """Validate an already-parsed mapping.

        Raises:
            ConfigurationError: If the mapping does not match the schema
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Gateway config {source} must be a mapping")
        try:
            return GatewaySettings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid gateway config {source}: {e}") from e
