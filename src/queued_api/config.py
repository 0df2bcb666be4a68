"""API client configuration from YAML files and environment variables.

Loads named client definitions from a single YAML file:

    defaults:
      max_retries: 3
      headers:
        User-Agent: queued-api/1.0
    clients:
      riot:
        base_url: https://euw1.api.riotgames.com
        max_requests_per_minute: 100
        headers:
          X-Riot-Token: ${RIOT_API_KEY}
      community:
        base_url: ${COMMUNITY_API_URL:-https://api.example.org}

Each entry under `clients:` is deep-merged over `defaults:`. Environment
variables are supported using ${VAR_NAME} and ${VAR_NAME:-default} syntax.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from queued_api.resilience.circuit_breaker import CircuitBreakerConfig
from queued_api.resilience.rate_limiter import (
    DEFAULT_WINDOW_SECONDS,
    UNLIMITED,
    RateLimitWindow,
)
from queued_api.resilience.retry import DEFAULT_NON_RETRYABLE_STATUS_CODES, RetryPolicy

logger = logging.getLogger(__name__)

# Environment variable overriding the default config file location
CONFIG_PATH_ENV = "QUEUED_API_CONFIG"
DEFAULT_CONFIG_FILE = Path("config") / "clients.yaml"

ENV_PREFIX = "API_CLIENT_"

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-(([^}]*))?)?\}")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return _ENV_VAR_PATTERN.sub(replacer, data)
    else:
        return data


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _parse_status_codes(value: Any) -> frozenset[int]:
    if isinstance(value, str):
        return frozenset(int(part) for part in value.split(",") if part.strip())
    return frozenset(int(code) for code in value)


@dataclass
class ApiClientConfig:
    """Configuration for one named API client.

    Rate, retry and breaker settings default to the library defaults:
    unlimited rate, 3 retries from a 1 s base delay, breaker opening after 5
    consecutive failures with a 60 s reset timeout.
    """

    name: str = "api"
    base_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    # Rate window (-1 = unlimited)
    max_requests_per_minute: int = UNLIMITED
    window_seconds: float = DEFAULT_WINDOW_SECONDS

    # Retry
    max_retries: int = 3
    base_delay: float = 1.0
    non_retryable_status_codes: frozenset[int] = field(
        default_factory=lambda: DEFAULT_NON_RETRYABLE_STATUS_CODES
    )

    # Circuit breaker
    failure_threshold: int = 5
    reset_timeout_seconds: float = 60.0
    probe_interval_seconds: float = 1.0

    # Transport
    timeout_seconds: float = 30.0
    max_connections: int = 100
    max_connections_per_host: int = 10

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.name = str(self.name)
        self.headers = {str(k): str(v) for k, v in (self.headers or {}).items()}
        self.max_requests_per_minute = int(self.max_requests_per_minute)
        self.window_seconds = float(self.window_seconds)
        self.max_retries = int(self.max_retries)
        self.base_delay = float(self.base_delay)
        self.non_retryable_status_codes = _parse_status_codes(self.non_retryable_status_codes)
        self.failure_threshold = int(self.failure_threshold)
        self.reset_timeout_seconds = float(self.reset_timeout_seconds)
        self.probe_interval_seconds = float(self.probe_interval_seconds)
        self.timeout_seconds = float(self.timeout_seconds)
        self.max_connections = int(self.max_connections)
        self.max_connections_per_host = int(self.max_connections_per_host)

        self._validate()

    def _validate(self) -> None:
        if not self.name:
            raise ValueError("name must not be empty")
        if self.max_requests_per_minute != UNLIMITED and self.max_requests_per_minute < 1:
            raise ValueError(
                f"max_requests_per_minute must be >= 1 or {UNLIMITED} (unlimited), "
                f"got {self.max_requests_per_minute}"
            )
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0, got {self.window_seconds}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {self.failure_threshold}")
        if self.reset_timeout_seconds < 0:
            raise ValueError(
                f"reset_timeout_seconds must be >= 0, got {self.reset_timeout_seconds}"
            )
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "ApiClientConfig":
        """Build a config from a YAML mapping. Unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown settings for client '{name}': {unknown}")
        values = dict(data)
        values["name"] = name
        return cls(**values)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "ApiClientConfig":
        """Build a single client config from environment variables.

        Reads {prefix}{FIELD} for every field, e.g. API_CLIENT_BASE_URL or
        API_CLIENT_MAX_REQUESTS_PER_MINUTE. HEADERS is a JSON object and
        NON_RETRYABLE_STATUS_CODES a comma-separated list.
        """
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = os.getenv(f"{prefix}{f.name.upper()}")
            if raw is None or raw == "":
                continue
            values[f.name] = json.loads(raw) if f.name == "headers" else raw
        return cls(**values)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            non_retryable_status_codes=self.non_retryable_status_codes,
        )

    def circuit_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            reset_timeout_seconds=self.reset_timeout_seconds,
            probe_interval_seconds=self.probe_interval_seconds,
        )

    def rate_window(self) -> RateLimitWindow:
        return RateLimitWindow(
            capacity=self.max_requests_per_minute,
            window_seconds=self.window_seconds,
        )


def _resolve_config_path(config_path: Path | str | None) -> Path:
    if config_path is not None:
        return Path(config_path)
    return Path(os.getenv(CONFIG_PATH_ENV, str(DEFAULT_CONFIG_FILE)))


def load_client_configs(
    config_path: Path | str | None = None,
    dotenv_path: Path | str | None = None,
) -> dict[str, ApiClientConfig]:
    """Load every named client from the YAML config file.

    A .env file (dotenv_path, default ./.env) is loaded first so ${VAR}
    references can come from it; variables already set in the process win.

    Returns:
        Mapping of client name to config; empty when the file does not exist
    """
    load_dotenv(Path(dotenv_path) if dotenv_path else Path.cwd() / ".env")

    path = _resolve_config_path(config_path)
    if not path.exists():
        logger.debug("Client config file not found: %s", path)
        return {}

    logger.debug("Loading client configuration from file: %s", path)
    yaml_data = _expand_env_vars(load_yaml(path))

    defaults = yaml_data.get("defaults") or {}
    clients = yaml_data.get("clients") or {}
    if not isinstance(clients, dict):
        raise ValueError(f"Invalid config file {path}: 'clients:' must be a mapping")

    configs = {}
    for name, overrides in clients.items():
        merged = _deep_merge(defaults, overrides or {})
        configs[str(name)] = ApiClientConfig.from_dict(str(name), merged)

    logger.debug(
        "Loaded %d client configs: %s",
        len(configs),
        ", ".join(configs),
    )
    return configs


def create_client(name: str, config_path: Path | str | None = None, **kwargs: Any):
    """Build an ApiClient from the named entry of the config file.

    Extra kwargs (transport, logger, clock, sleep, rng) go to ApiClient.

    Raises:
        KeyError: No client with that name is configured
    """
    from queued_api.client import ApiClient

    configs = load_client_configs(config_path)
    if name not in configs:
        available = ", ".join(sorted(configs)) or "<none>"
        raise KeyError(f"No API client named '{name}' configured (available: {available})")
    return ApiClient(configs[name], **kwargs)


__all__ = [
    "ApiClientConfig",
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_FILE",
    "create_client",
    "load_client_configs",
]
