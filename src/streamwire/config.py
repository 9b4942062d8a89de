"""Configuration management for streamwire.

Config discovery (first match wins):
  1. Explicit ``--config`` path
  2. ``./streamwire.yaml``
  3. ``~/.config/streamwire/config.yaml``
  4. Built-in defaults

Provider settings are resolved once, field by field:
  provider-specific override -> generic ``defaults`` override -> built-in default
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, ValidationError

from streamwire.errors import ConfigError

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

class ProviderSettings(BaseModel):
    """Fully resolved settings for one provider.

    Provider differences are data here: which message format, which
    endpoint path, whether streaming is requested.
    """

    provider: str = "custom"
    base_url: str = "http://localhost:8000/v1"
    endpoint_path: str = "/chat/completions"
    api_key: str = ""
    model_id: str = ""
    ca_bundle_path: str | None = None
    request_timeout_ms: int = 120_000
    headers: dict[str, str] = Field(default_factory=dict)
    format: Literal["plain", "r1", "simple", "developer"] | None = None  # None = by model id
    streaming: bool = True
    split_think_tags: bool = False
    temperature: float | None = None
    include_max_tokens: bool = False
    max_tokens: int | None = None
    requires_api_key: bool = False

    model_config = {"frozen": True, "protected_namespaces": ()}

    @property
    def url(self) -> str:
        """Chat completion URL: base URL joined with the endpoint path."""
        base = self.base_url.strip().rstrip("/")
        if not self.endpoint_path:
            return base
        return base + "/" + self.endpoint_path.lstrip("/")

    @property
    def models_url(self) -> str:
        return self.base_url.strip().rstrip("/") + "/models"

    @property
    def timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000

    @property
    def host(self) -> str:
        return urlparse(self.base_url.strip()).hostname or ""

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES.get(self.provider, self.provider.capitalize())


_DISPLAY_NAMES = {"deepseek": "DeepSeek", "openai": "OpenAI"}

# Built-in defaults applied under user overrides
PROVIDER_DEFAULTS: dict[str, dict[str, Any]] = {
    "deepseek": {
        "base_url": "https://api.deepseek.com",
        "endpoint_path": "/chat/completions",
        "model_id": "deepseek-reasoner",
        "streaming": False,
        "requires_api_key": True,
    },
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "endpoint_path": "/chat/completions",
        "model_id": "gpt-4o",
        "streaming": True,
        "requires_api_key": True,
    },
    "custom": {
        "base_url": "http://localhost:8000/v1",
        "endpoint_path": "/chat/completions",
        "streaming": True,
        "requires_api_key": False,
    },
}


def resolve_settings(
    provider: str,
    overrides: dict[str, Any] | None = None,
    generic: dict[str, Any] | None = None,
) -> ProviderSettings:
    """Resolve one provider's settings.

    Parameters
    ----------
    provider:
        Provider name; unknown names start from the ``custom`` defaults.
    overrides:
        Provider-specific values (highest precedence).
    generic:
        Values shared by every provider.
    """
    merged: dict[str, Any] = dict(PROVIDER_DEFAULTS.get(provider, PROVIDER_DEFAULTS["custom"]))
    for layer in (generic or {}, overrides or {}):
        for k, v in layer.items():
            if v is not None:
                merged[k] = v
    merged["provider"] = provider

    if not merged.get("api_key"):
        env_key = _api_key_from_env(provider)
        if env_key:
            merged["api_key"] = env_key

    try:
        return ProviderSettings.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings for provider '{provider}': {e}") from e


def _api_key_from_env(provider: str) -> str:
    for name in ("STREAMWIRE_API_KEY", f"{provider.upper()}_API_KEY"):
        value = os.environ.get(name, "")
        if value:
            _logger.debug("Using API key from $%s", name)
            return value
    return ""


class StreamwireConfig(BaseModel):
    """Top-level config file contents."""

    provider: str = "deepseek"
    defaults: dict[str, Any] = Field(default_factory=dict)
    providers: dict[str, dict[str, Any]] = Field(default_factory=dict)
    log_level: str = "WARNING"
    diagnostics_file: str | None = None

    def active_settings(self, provider: str | None = None) -> ProviderSettings:
        """Resolve settings for *provider* (or the active provider)."""
        name = provider or os.environ.get("STREAMWIRE_PROVIDER") or self.provider
        return resolve_settings(name, self.providers.get(name), self.defaults)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

CONFIG_FILENAME = "streamwire.yaml"

_SEARCH_PATHS = [
    Path(CONFIG_FILENAME),
    Path.home() / ".config" / "streamwire" / "config.yaml",
]


def load_config(
    config_path: str | Path | None = None,
) -> tuple[StreamwireConfig, Path | None]:
    """Load configuration from YAML.

    Returns (config, resolved_path).  *resolved_path* is ``None`` when
    no file was found and built-in defaults are used.
    """
    resolved: Path | None = None
    if config_path is not None:
        resolved = Path(config_path)
        if not resolved.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                resolved = candidate
                break

    if resolved is None:
        _logger.info("No config file found, using defaults")
        return StreamwireConfig(), None

    _logger.info("Loading config from %s", resolved)
    with open(resolved) as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return StreamwireConfig.model_validate(raw), resolved.resolve()
    except ValidationError as e:
        raise ConfigError(f"Invalid config file {resolved}: {e}") from e
