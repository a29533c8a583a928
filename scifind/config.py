"""Application configuration: defaults, YAML file, environment overrides and validation."""

import copy
import dataclasses
import os
import re
import typing
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlsplit

import yaml

ENV_PREFIX = "SCIFIND"
DEFAULT_CONFIG_PATH = "configs/config.yaml"
_SEARCH_DIRS = ("./configs", ".")
_SEARCH_NAMES = ("config.yaml", "config.yml")


class ConfigError(ValueError):
    """Raised when configuration cannot be read, decoded or validated."""


# --------------------------------------------------------------------------
# Durations
# --------------------------------------------------------------------------

_UNIT_NS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_MAX_NS = 2**63 - 1


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "300ms", "1.5h" or "2h45m"."""
    if not isinstance(text, str):
        raise ConfigError(f"invalid duration {text!r}")
    rest = text
    negative = False
    if rest[:1] in ("+", "-"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ConfigError(f"invalid duration {text!r}")

    total = Decimal(0)
    pos = 0
    while pos < len(rest):
        match = _DURATION_PART.match(rest, pos)
        if match is None:
            if re.match(r"[\d.]+$", rest[pos:]):
                raise ConfigError(f"missing unit in duration {text!r}")
            raise ConfigError(f"invalid duration {text!r}")
        number, unit = match.groups()
        try:
            total += Decimal(number) * _UNIT_NS[unit]
        except InvalidOperation as exc:
            raise ConfigError(f"invalid duration {text!r}") from exc
        pos = match.end()

    nanoseconds = int(total)
    if nanoseconds > _MAX_NS:
        raise ConfigError(f"invalid duration {text!r}")
    microseconds = nanoseconds // 1000
    return timedelta(microseconds=-microseconds if negative else microseconds)


# --------------------------------------------------------------------------
# Configuration sections
# --------------------------------------------------------------------------


@dataclass
class ServerConfig:
    port: int = 0
    host: str = ""
    mode: str = ""
    read_timeout: str = ""
    write_timeout: str = ""
    idle_timeout: str = ""
    max_header_bytes: int = 0
    enable_gzip: bool = False
    enable_cors: bool = False
    enable_metrics: bool = False


@dataclass
class PostgreSQLConfig:
    dsn: str = ""
    max_connections: int = 0
    max_idle: int = 0
    max_lifetime: str = ""
    max_idle_time: str = ""
    auto_migrate: bool = False


@dataclass
class SQLiteConfig:
    path: str = ""
    auto_migrate: bool = False


@dataclass
class DatabaseConfig:
    type: str = ""
    postgresql: PostgreSQLConfig = field(default_factory=PostgreSQLConfig)
    sqlite: SQLiteConfig = field(default_factory=SQLiteConfig)


@dataclass
class ArxivSettings:
    enabled: bool = False
    base_url: str = ""
    rate_limit: str = ""
    timeout: str = ""


@dataclass
class ProviderSettings:
    enabled: bool = False
    api_key: str = ""
    base_url: str = ""
    timeout: str = ""


@dataclass
class ProvidersConfig:
    arxiv: ArxivSettings = field(default_factory=ArxivSettings)
    semantic_scholar: ProviderSettings = field(default_factory=ProviderSettings)
    exa: ProviderSettings = field(default_factory=ProviderSettings)
    tavily: ProviderSettings = field(default_factory=ProviderSettings)


@dataclass
class LoggingConfig:
    level: str = ""
    format: str = ""
    add_source: bool = False
    output: str = ""
    file_path: str = ""


@dataclass
class RateLimitSettings:
    enabled: bool = False
    requests: int = 0
    window: str = ""
    burst_size: int = 0


@dataclass
class CorsSettings:
    enabled: bool = False
    allowed_origins: list[str] = field(default_factory=list)
    allowed_methods: list[str] = field(default_factory=list)
    allowed_headers: list[str] = field(default_factory=list)
    max_age: str = ""


@dataclass
class SecurityConfig:
    api_keys: list[str] = field(default_factory=list)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    cors: CorsSettings = field(default_factory=CorsSettings)


@dataclass
class CircuitConfig:
    enabled: bool = False
    failure_threshold: int = 0
    success_threshold: int = 0
    timeout: str = ""
    max_requests: int = 0
    sliding_window: str = ""
    min_request_count: int = 0


@dataclass
class RetryConfig:
    enabled: bool = False
    max_attempts: int = 0
    initial_delay: str = ""
    max_delay: str = ""
    backoff_factor: float = 0.0
    jitter: bool = False


@dataclass
class MonitoringConfig:
    enabled: bool = False
    metrics_port: int = 0
    health_path: str = ""
    metrics_path: str = ""


@dataclass
class ClusterConfig:
    name: str = ""
    host: str = ""
    port: int = 0
    routes: list[str] = field(default_factory=list)


@dataclass
class GatewayConfig:
    name: str = ""
    host: str = ""
    port: int = 0


@dataclass
class MonitorConfig:
    host: str = ""
    port: int = 0


@dataclass
class AccountsConfig:
    system_account: str = ""


@dataclass
class LimitsConfig:
    max_connections: int = 0
    max_payload: str = ""
    max_pending: str = ""


@dataclass
class EmbeddedConfig:
    enabled: bool = False
    host: str = ""
    port: int = 0
    log_level: str = ""
    log_file: str = ""
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    accounts: AccountsConfig = field(default_factory=AccountsConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)


@dataclass
class ClientAuthConfig:
    enabled: bool = False
    cert_file: str = ""
    key_file: str = ""


@dataclass
class NATSTLSConfig:
    enabled: bool = False
    cert_file: str = ""
    key_file: str = ""
    ca_file: str = ""
    verify_and_map: bool = False
    insecure_skip_verify: bool = False
    cert_store: str = ""
    cert_store_type: str = ""
    client_auth: ClientAuthConfig = field(default_factory=ClientAuthConfig)


@dataclass
class JetStreamConfig:
    enabled: bool = False
    domain: str = ""
    store_dir: str = ""
    max_memory: str = ""
    max_storage: str = ""
    sync_interval: str = ""


@dataclass
class KVStoreConfig:
    enabled: bool = False
    bucket: str = ""
    ttl: str = ""


@dataclass
class ObjectStoreConfig:
    enabled: bool = False
    bucket: str = ""


@dataclass
class NATSConfig:
    url: str = ""
    cluster_id: str = ""
    client_id: str = ""
    subjects: list[str] = field(default_factory=list)
    max_reconnects: int = 0
    reconnect_wait: str = ""
    timeout: str = ""
    username: str = ""
    password: str = ""
    token: str = ""
    ping_interval: int = 0
    max_pings_out: int = 0
    embedded: EmbeddedConfig = field(default_factory=EmbeddedConfig)
    tls: NATSTLSConfig = field(default_factory=NATSTLSConfig)
    jetstream: JetStreamConfig = field(default_factory=JetStreamConfig)
    kv_store: KVStoreConfig = field(default_factory=KVStoreConfig)
    object_store: ObjectStoreConfig = field(default_factory=ObjectStoreConfig)


@dataclass
class TLSConfig:
    enabled: bool = False
    cert_file: str = ""
    key_file: str = ""
    ca_file: str = ""
    insecure_skip_verify: bool = False
    server_name: str = ""


@dataclass
class ServerTimeoutConfig:
    read: timedelta = timedelta(0)
    write: timedelta = timedelta(0)
    idle: timedelta = timedelta(0)


@dataclass
class TimeoutConfig:
    default: timedelta = timedelta(0)
    database: timedelta = timedelta(0)
    external_api: timedelta = timedelta(0)
    search: timedelta = timedelta(0)
    file_processing: timedelta = timedelta(0)
    health_check: timedelta = timedelta(0)
    server: ServerTimeoutConfig = field(default_factory=ServerTimeoutConfig)


# --------------------------------------------------------------------------
# Weakly typed decoding of nested mappings into the dataclasses
# --------------------------------------------------------------------------

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False", ""}


def _to_bool(value: Any, where: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        if value in _TRUE_WORDS:
            return True
        if value in _FALSE_WORDS:
            return False
    raise ConfigError(f"failed to unmarshal config: cannot parse '{where}' as bool: {value!r}")


def _to_int(value: Any, where: str) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value or "0", 0)
        except ValueError:
            pass
    raise ConfigError(f"failed to unmarshal config: cannot parse '{where}' as int: {value!r}")


def _to_float(value: Any, where: str) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value or "0")
        except ValueError:
            pass
    raise ConfigError(f"failed to unmarshal config: cannot parse '{where}' as float: {value!r}")


def _to_str(value: Any, where: str) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    raise ConfigError(f"failed to unmarshal config: '{where}' expected a string, got {value!r}")


def _to_str_list(value: Any, where: str) -> list[str]:
    if isinstance(value, str):
        return [] if value == "" else value.split(",")
    if isinstance(value, (list, tuple)):
        return [_to_str(item, where) for item in value]
    raise ConfigError(f"failed to unmarshal config: '{where}' expected a list, got {value!r}")


def _decode(cls: type, data: Any, where: str) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ConfigError(f"failed to unmarshal config: '{where}' expected a map, got {data!r}")
    lowered = {str(key).lower(): value for key, value in data.items()}
    values: dict[str, Any] = {}
    for spec in dataclasses.fields(cls):
        if spec.name not in lowered:
            continue
        raw = lowered[spec.name]
        path = f"{where}.{spec.name}" if where else spec.name
        kind = spec.type
        if dataclasses.is_dataclass(kind):
            values[spec.name] = _decode(kind, raw, path)
        elif raw is None:
            continue
        elif typing.get_origin(kind) is list:
            values[spec.name] = _to_str_list(raw, path)
        elif kind is bool:
            values[spec.name] = _to_bool(raw, path)
        elif kind is int:
            values[spec.name] = _to_int(raw, path)
        elif kind is float:
            values[spec.name] = _to_float(raw, path)
        else:
            values[spec.name] = _to_str(raw, path)
    return cls(**values)


def _is_url(text: str) -> bool:
    try:
        parts = urlsplit(text)
    except ValueError:
        return False
    if not parts.scheme:
        return False
    after_scheme = text[len(parts.scheme) + 1:]
    opaque = bool(after_scheme) and not after_scheme.startswith("/")
    return bool(parts.netloc or parts.fragment or opaque)


# --------------------------------------------------------------------------
# The complete configuration
# --------------------------------------------------------------------------


@dataclass
class Config:
    """The complete application configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    nats: NATSConfig = field(default_factory=NATSConfig)
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    circuit: CircuitConfig = field(default_factory=CircuitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "Config":
        """Build a configuration from nested mappings, coercing scalar types."""
        return _decode(cls, data, "")

    def validate(self) -> None:
        """Check field constraints; raise ConfigError listing every violation."""
        problems: list[str] = []

        def one_of(name: str, value: str, allowed: tuple) -> None:
            if value not in allowed:
                problems.append(f"{name} must be one of [{' '.join(allowed)}], got {value!r}")

        if not 1 <= self.server.port <= 65535:
            problems.append(f"server.port must be between 1 and 65535, got {self.server.port}")
        one_of("server.mode", self.server.mode, ("debug", "release", "test"))
        one_of("database.type", self.database.type, ("postgres", "sqlite"))
        if self.database.postgresql.max_connections < 1:
            problems.append("database.postgresql.max_connections must be at least 1")
        if self.database.postgresql.max_idle < 1:
            problems.append("database.postgresql.max_idle must be at least 1")
        if not self.nats.url:
            problems.append("nats.url is required")
        elif not _is_url(self.nats.url):
            problems.append(f"nats.url must be a valid URL, got {self.nats.url!r}")
        one_of("logging.level", self.logging.level, ("debug", "info", "warn", "error"))
        one_of("logging.format", self.logging.format, ("json", "text"))
        one_of("logging.output", self.logging.output, ("stdout", "stderr", "file"))

        if problems:
            raise ConfigError("config validation failed: " + "; ".join(problems))

    def get_timeout_config(self) -> TimeoutConfig:
        """Return the fixed timeouts together with the parsed server timeouts."""
        server = {}
        for name, text in (
            ("read", self.server.read_timeout),
            ("write", self.server.write_timeout),
            ("idle", self.server.idle_timeout),
        ):
            try:
                server[name] = parse_duration(text)
            except ConfigError as exc:
                raise ConfigError(f"invalid server {name} timeout: {exc}") from exc

        return TimeoutConfig(
            default=timedelta(seconds=30),
            database=timedelta(seconds=5),
            external_api=timedelta(seconds=15),
            search=timedelta(seconds=30),
            file_processing=timedelta(seconds=60),
            health_check=timedelta(seconds=5),
            server=ServerTimeoutConfig(**server),
        )

    def is_development(self) -> bool:
        return self.server.mode == "debug"

    def is_production(self) -> bool:
        return self.server.mode == "release"

    def is_test(self) -> bool:
        return self.server.mode == "test"

    def get_database_connection_string(self) -> str:
        """Return the DSN or file path for the configured database type."""
        if self.database.type == "postgres":
            if not self.database.postgresql.dsn:
                raise ConfigError("PostgreSQL DSN is required when type is postgres")
            return self.database.postgresql.dsn
        if self.database.type == "sqlite":
            if not self.database.sqlite.path:
                raise ConfigError("SQLite path is required when type is sqlite")
            return self.database.sqlite.path
        raise ConfigError(f"unsupported database type: {self.database.type}")


# --------------------------------------------------------------------------
# Defaults and loading
# --------------------------------------------------------------------------

_DEFAULTS: dict = {
    "server.port": 8080,
    "server.host": "0.0.0.0",
    "server.mode": "debug",
    "server.read_timeout": "30s",
    "server.write_timeout": "30s",
    "server.idle_timeout": "120s",
    "database.type": "sqlite",
    "database.postgresql.max_connections": 25,
    "database.postgresql.max_idle": 10,
    "database.postgresql.max_lifetime": "1h",
    "database.postgresql.max_idle_time": "30m",
    "database.postgresql.auto_migrate": True,
    "database.sqlite.path": "./scifind.db",
    "database.sqlite.auto_migrate": True,
    "nats.url": "nats://localhost:4222",
    "nats.cluster_id": "scifind-cluster",
    "nats.client_id": "scifind-backend",
    "nats.max_reconnects": 10,
    "nats.reconnect_wait": "2s",
    "nats.timeout": "5s",
    "nats.embedded.enabled": False,
    "nats.embedded.host": "0.0.0.0",
    "nats.embedded.port": 4222,
    "nats.embedded.log_level": "INFO",
    "nats.embedded.log_file": "",
    "nats.embedded.cluster.name": "scifind-cluster",
    "nats.embedded.cluster.host": "0.0.0.0",
    "nats.embedded.cluster.port": 6222,
    "nats.embedded.cluster.routes": [],
    "nats.embedded.gateway.name": "scifind-gateway",
    "nats.embedded.gateway.host": "0.0.0.0",
    "nats.embedded.gateway.port": 7222,
    "nats.embedded.monitor.host": "0.0.0.0",
    "nats.embedded.monitor.port": 8222,
    "nats.embedded.accounts.system_account": "$SYS",
    "nats.embedded.limits.max_connections": 10000,
    "nats.embedded.limits.max_payload": "1MB",
    "nats.embedded.limits.max_pending": "64MB",
    "nats.tls.enabled": False,
    "nats.tls.cert_file": "",
    "nats.tls.key_file": "",
    "nats.tls.ca_file": "",
    "nats.tls.verify_and_map": False,
    "nats.tls.insecure_skip_verify": False,
    "nats.tls.client_auth.enabled": False,
    "nats.tls.client_auth.cert_file": "",
    "nats.tls.client_auth.key_file": "",
    "nats.jetstream.enabled": True,
    "nats.jetstream.domain": "",
    "nats.jetstream.store_dir": "./jetstream",
    "nats.jetstream.max_memory": "1GB",
    "nats.jetstream.max_storage": "10GB",
    "nats.jetstream.sync_interval": "2m",
    "nats.kv_store.enabled": True,
    "nats.kv_store.bucket": "scifind-cache",
    "nats.kv_store.ttl": "1h",
    "nats.object_store.enabled": True,
    "nats.object_store.bucket": "scifind-objects",
    "providers.arxiv.enabled": True,
    "providers.arxiv.base_url": "https://export.arxiv.org/api/query",
    "providers.arxiv.rate_limit": "3s",
    "providers.arxiv.timeout": "30s",
    "providers.semantic_scholar.enabled": True,
    "providers.semantic_scholar.base_url": "https://api.semanticscholar.org/graph/v1",
    "providers.semantic_scholar.timeout": "15s",
    "providers.exa.enabled": False,
    "providers.exa.base_url": "https://api.exa.ai",
    "providers.exa.timeout": "15s",
    "providers.tavily.enabled": False,
    "providers.tavily.base_url": "https://api.tavily.com",
    "providers.tavily.timeout": "15s",
    "logging.level": "info",
    "logging.format": "json",
    "logging.add_source": False,
    "logging.output": "stdout",
    "security.rate_limit.enabled": True,
    "security.rate_limit.requests": 100,
    "security.rate_limit.window": "1m",
    "security.rate_limit.burst_size": 10,
    "security.cors.enabled": True,
    "security.cors.allowed_origins": ["*"],
    "security.cors.allowed_methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    "security.cors.allowed_headers": ["*"],
    "security.cors.max_age": "12h",
    "circuit.enabled": True,
    "circuit.failure_threshold": 5,
    "circuit.success_threshold": 3,
    "circuit.timeout": "60s",
    "circuit.max_requests": 10,
    "circuit.sliding_window": "60s",
    "circuit.min_request_count": 10,
    "retry.enabled": True,
    "retry.max_attempts": 3,
    "retry.initial_delay": "1s",
    "retry.max_delay": "30s",
    "retry.backoff_factor": 2.0,
    "retry.jitter": True,
    "monitoring.enabled": True,
    "monitoring.metrics_port": 9090,
    "monitoring.health_path": "/health",
    "monitoring.metrics_path": "/metrics",
}


def _set_dotted(target: dict, dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    node = target
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[leaf] = value


def default_settings() -> dict:
    """Return a fresh nested mapping of every default setting."""
    settings: dict = {}
    for dotted, value in _DEFAULTS.items():
        _set_dotted(settings, dotted, copy.deepcopy(value))
    return settings


def _lower_keys(data: Any) -> Any:
    if isinstance(data, Mapping):
        return {str(key).lower(): _lower_keys(value) for key, value in data.items()}
    return data


def _deep_merge(base: dict, override: Mapping) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _leaf_keys(data: Mapping, prefix: str = ""):
    for key, value in data.items():
        dotted = f"{prefix}.{key}" if prefix else key
        if isinstance(value, Mapping):
            yield from _leaf_keys(value, dotted)
        else:
            yield dotted


def _find_config_file(config_path: str) -> Path | None:
    if config_path:
        path = Path(config_path)
        return path if path.is_file() else None
    for directory in _SEARCH_DIRS:
        for name in _SEARCH_NAMES:
            candidate = Path(directory) / name
            if candidate.is_file():
                return candidate
    return None


def _read_config_file(path: Path) -> dict:
    try:
        with path.open("r", encoding="utf-8") as handle:
            content = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read config file: {exc}") from exc
    if content is None:
        return {}
    if not isinstance(content, Mapping):
        raise ConfigError("failed to read config file: top level must be a mapping")
    return _lower_keys(content)


def load_config_from_path(config_path: str, environ: Mapping | None = None) -> Config:
    """Load configuration from defaults, an optional YAML file and SCIFIND_* variables.

    A missing file is not an error; with an empty path, ./configs and the
    current directory are searched for config.yaml.
    """
    env = os.environ if environ is None else environ
    settings = default_settings()

    path = _find_config_file(config_path)
    if path is not None:
        settings = _deep_merge(settings, _read_config_file(path))

    for dotted in list(_leaf_keys(settings)):
        name = f"{ENV_PREFIX}_{dotted.upper().replace('.', '_')}"
        value = env.get(name)
        if value:
            _set_dotted(settings, dotted, value)

    config = Config.from_mapping(settings)
    config.validate()
    return config


def load_config() -> Config:
    """Load configuration from configs/config.yaml and the process environment."""
    return load_config_from_path(DEFAULT_CONFIG_PATH)