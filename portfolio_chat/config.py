"""Configuration loader for the portfolio chat relay.

Reads an optional JSON config file with provider and rate-limit parameters.
Credentials (model API key, quota store URL and token) are always resolved
from environment variables, never from the file.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

_FALLBACK_API_KEY_ENV = "GOOGLE_API_KEY"


@dataclass
class ProviderConfig:
    """Configuration for the hosted text-generation provider."""

    name: str = "google"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    api_key_env: str = "GOOGLE_GENERATIVE_AI_API_KEY"
    model: str = "gemini-2.0-flash"

    @property
    def api_key(self) -> Optional[str]:
        """Resolve the API key from the environment variable."""
        return os.getenv(self.api_key_env) or os.getenv(_FALLBACK_API_KEY_ENV)


@dataclass
class RateLimitConfig:
    """Sliding-window quota parameters (per client identifier)."""

    requests: int = 5
    window_seconds: int = 60
    backend: str = "upstash"
    url_env: str = "UPSTASH_REDIS_REST_URL"
    token_env: str = "UPSTASH_REDIS_REST_TOKEN"
    prefix: str = "ratelimit"
    timeout_seconds: float = 5.0

    @property
    def url(self) -> Optional[str]:
        return os.getenv(self.url_env)

    @property
    def token(self) -> Optional[str]:
        return os.getenv(self.token_env)


@dataclass
class AppConfig:
    """Top-level relay configuration."""

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    request_timeout_seconds: float = 30.0
    log_file: str = "logs/chat.log"
    log_level: str = "INFO"


_BACKENDS = ("upstash", "memory")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def load_config(path: Union[str, Path]) -> AppConfig:
    """Load relay configuration from a JSON file.

    Args:
        path: Path to the JSON config file.

    Returns:
        An AppConfig with unspecified keys left at their defaults.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the config file contains invalid data.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        try:
            raw: Dict[str, Any] = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in config file {path}: {exc}") from exc

    defaults = AppConfig()

    prov_raw = raw.get("provider", {})
    provider = ProviderConfig(
        name=prov_raw.get("name", defaults.provider.name),
        base_url=prov_raw.get("base_url", defaults.provider.base_url),
        api_key_env=prov_raw.get("api_key_env", defaults.provider.api_key_env),
        model=prov_raw.get("model", defaults.provider.model),
    )

    rl_raw = raw.get("rate_limit", {})
    rate_limit = RateLimitConfig(
        requests=int(rl_raw.get("requests", defaults.rate_limit.requests)),
        window_seconds=int(
            rl_raw.get("window_seconds", defaults.rate_limit.window_seconds)
        ),
        backend=rl_raw.get("backend", defaults.rate_limit.backend),
        url_env=rl_raw.get("url_env", defaults.rate_limit.url_env),
        token_env=rl_raw.get("token_env", defaults.rate_limit.token_env),
        prefix=rl_raw.get("prefix", defaults.rate_limit.prefix),
        timeout_seconds=float(
            rl_raw.get("timeout_seconds", defaults.rate_limit.timeout_seconds)
        ),
    )

    if rate_limit.requests < 1 or rate_limit.window_seconds < 1:
        raise ValueError("rate_limit.requests and rate_limit.window_seconds must be >= 1")
    if rate_limit.backend not in _BACKENDS:
        raise ValueError(
            "Unknown rate_limit.backend '{}' (expected one of: {})".format(
                rate_limit.backend, ", ".join(_BACKENDS)
            )
        )

    timeout = float(raw.get("request_timeout_seconds", defaults.request_timeout_seconds))
    if timeout <= 0:
        raise ValueError("request_timeout_seconds must be positive")

    log_level = str(raw.get("log_level", defaults.log_level)).upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(
            "Unknown log_level '{}' (expected one of: {})".format(
                log_level, ", ".join(_LOG_LEVELS)
            )
        )

    return AppConfig(
        provider=provider,
        rate_limit=rate_limit,
        request_timeout_seconds=timeout,
        log_file=raw.get("log_file", defaults.log_file),
        log_level=log_level,
    )
