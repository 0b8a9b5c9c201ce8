"""
Configuration helpers for the gateway process and its adapters.

Gateway settings are resolved in this order (later wins):

1. Built-in defaults.
2. A TOML file: the explicit ``--config`` path, else ``POLYGLOT_DB_MCP_CONFIG``,
   else ``./polyglot-db-mcp.toml`` when present. Only the ``[gateway]`` table is read.
3. Environment variables (``MCP_HTTP_MODE``, ``HOST``, ``PORT`` and the
   ``POLYGLOT_DB_MCP_*`` family).

Adapter connection settings are not part of :class:`GatewaySettings`. Each
adapter reads its own variables at lazy-connect time through
:class:`AdapterEnv`.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .core.errors import ConfigurationError

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000
DEFAULT_HTTP_PATH = "/mcp"
DEFAULT_CALL_TIMEOUT = 60.0
DEFAULT_PROBE_TIMEOUT = 5.0
DEFAULT_FEEDBACK_URL = "https://github.com/hyperpolymath/polyglot-db-mcp/issues"
DEFAULT_CONFIG_FILENAME = "polyglot-db-mcp.toml"
TRANSPORTS = ("stdio", "http")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(raw: str, *, key: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{key} must be a boolean (true/false), got '{raw}'.")


def _parse_int(raw: str, *, key: str) -> int:
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got '{raw}'.") from exc


def _parse_float(raw: str, *, key: str) -> float:
    try:
        return float(str(raw).strip())
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got '{raw}'.") from exc


def _split_csv(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class AdapterEnv:
    """
    Typed reader over process environment used by adapters at connect time.

    Parameters
    ----------
    values:
        Mapping to read from. Defaults to :data:`os.environ`, looked up lazily so
        changes made after start-up are honoured on the next connect.
    """

    def __init__(self, values: Optional[Mapping[str, str]] = None) -> None:
        self._values = values

    @property
    def values(self) -> Mapping[str, str]:
        return os.environ if self._values is None else self._values

    def _lookup(self, keys: Sequence[str]) -> tuple[Optional[str], str]:
        for key in keys:
            value = self.values.get(key)
            if value is not None and value != "":
                return value, key
        return None, keys[0]

    def string(self, *keys: str, default: Optional[str] = None) -> Optional[str]:
        """Return the first non-empty value among ``keys``."""

        value, _ = self._lookup(keys)
        return value if value is not None else default

    def integer(self, *keys: str, default: int) -> int:
        value, key = self._lookup(keys)
        if value is None:
            return default
        return _parse_int(value, key=key)

    def boolean(self, *keys: str, default: bool = False) -> bool:
        value, key = self._lookup(keys)
        if value is None:
            return default
        return _parse_bool(value, key=key)

    def require(self, *keys: str) -> str:
        value, key = self._lookup(keys)
        if value is None:
            raise ConfigurationError(f"Missing required setting {key}.")
        return value


@dataclass(slots=True)
class GatewaySettings:
    """
    Process-level settings for the gateway.

    Attributes
    ----------
    transport:
        ``stdio`` (default) or ``http`` (streamable HTTP).
    host / port / http_path:
        Bind address and mount path for the HTTP transport.
    call_timeout:
        Deadline in seconds applied to every dispatched operation; ``None`` disables it.
    probe_timeout:
        Deadline in seconds for each connectivity probe in ``db_list``/``db_status``.
    enabled_adapters:
        Allowlist of adapter names; empty means every built-in adapter.
    feedback_url:
        Bug-report URL attached to backend-side failures; ``None`` disables it.
    """

    transport: str = "stdio"
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    http_path: str = DEFAULT_HTTP_PATH
    call_timeout: Optional[float] = DEFAULT_CALL_TIMEOUT
    probe_timeout: Optional[float] = DEFAULT_PROBE_TIMEOUT
    enabled_adapters: List[str] = field(default_factory=list)
    feedback_url: Optional[str] = DEFAULT_FEEDBACK_URL
    log_level: Optional[str] = None
    source_path: Optional[Path] = None

    def validate(self) -> None:
        if self.transport not in TRANSPORTS:
            raise ConfigurationError(f"Unknown transport '{self.transport}'. Expected one of: {', '.join(TRANSPORTS)}.")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Port {self.port} is out of range.")
        if not self.http_path.startswith("/"):
            raise ConfigurationError(f"HTTP path '{self.http_path}' must start with '/'.")


def _candidate_paths(explicit: Optional[Path], env: Mapping[str, str]) -> Iterable[Path]:
    if explicit is not None:
        yield explicit
        return
    env_override = env.get("POLYGLOT_DB_MCP_CONFIG")
    if env_override:
        yield Path(env_override).expanduser()
        return
    yield Path.cwd() / DEFAULT_CONFIG_FILENAME


def _load_toml(path: Path) -> Dict[str, object]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Failed to parse '{path}': {exc}") from exc


def _timeout(value: object, *, key: str) -> Optional[float]:
    seconds = value if isinstance(value, (int, float)) and not isinstance(value, bool) else _parse_float(str(value), key=key)
    return float(seconds) if seconds > 0 else None


def _apply_section(settings: GatewaySettings, section: Mapping[str, object], *, origin: str) -> None:
    for key, value in section.items():
        if key == "transport":
            settings.transport = str(value).strip().lower()
        elif key == "host":
            settings.host = str(value)
        elif key == "port":
            settings.port = _parse_int(str(value), key=f"{origin}:port")
        elif key == "http_path":
            settings.http_path = str(value)
        elif key == "call_timeout":
            settings.call_timeout = _timeout(value, key=f"{origin}:call_timeout")
        elif key == "probe_timeout":
            settings.probe_timeout = _timeout(value, key=f"{origin}:probe_timeout")
        elif key == "adapters":
            items = value if isinstance(value, list) else _split_csv(str(value))
            settings.enabled_adapters = [str(item).strip() for item in items if str(item).strip()]
        elif key == "feedback_url":
            settings.feedback_url = str(value) or None
        elif key == "log_level":
            settings.log_level = str(value)
        else:
            raise ConfigurationError(f"Unknown gateway setting '{key}' in {origin}.")


def load_settings(env: Optional[Mapping[str, str]] = None, *, path: Optional[Path] = None) -> GatewaySettings:
    """
    Resolve :class:`GatewaySettings` from an optional TOML file and the environment.

    Parameters
    ----------
    env:
        Environment mapping; defaults to :data:`os.environ`.
    path:
        Explicit TOML file. A missing explicit file is an error, whereas the
        implicit ``./polyglot-db-mcp.toml`` is optional.
    """

    environ: Mapping[str, str] = os.environ if env is None else env
    settings = GatewaySettings()

    for candidate in _candidate_paths(path, environ):
        if not candidate.is_file():
            if path is not None or environ.get("POLYGLOT_DB_MCP_CONFIG"):
                raise ConfigurationError(f"Configuration file '{candidate}' does not exist.")
            continue
        raw = _load_toml(candidate)
        section = raw.get("gateway", {})
        if not isinstance(section, dict):
            raise ConfigurationError(f"'[gateway]' in '{candidate}' must be a table.")
        _apply_section(settings, section, origin=str(candidate))
        settings.source_path = candidate

    reader = AdapterEnv(environ)
    if reader.boolean("MCP_HTTP_MODE", default=False):
        settings.transport = "http"
    transport = reader.string("POLYGLOT_DB_MCP_TRANSPORT")
    if transport:
        settings.transport = transport.strip().lower()
    settings.host = reader.string("HOST", default=settings.host) or settings.host
    settings.port = reader.integer("PORT", default=settings.port)
    settings.http_path = reader.string("POLYGLOT_DB_MCP_HTTP_PATH", default=settings.http_path) or settings.http_path

    call_timeout = reader.string("POLYGLOT_DB_MCP_CALL_TIMEOUT")
    if call_timeout is not None:
        settings.call_timeout = _timeout(call_timeout, key="POLYGLOT_DB_MCP_CALL_TIMEOUT")
    probe_timeout = reader.string("POLYGLOT_DB_MCP_PROBE_TIMEOUT")
    if probe_timeout is not None:
        settings.probe_timeout = _timeout(probe_timeout, key="POLYGLOT_DB_MCP_PROBE_TIMEOUT")
    adapters = reader.string("POLYGLOT_DB_MCP_ADAPTERS")
    if adapters is not None:
        settings.enabled_adapters = _split_csv(adapters)
    if "POLYGLOT_DB_MCP_FEEDBACK_URL" in environ:
        settings.feedback_url = environ["POLYGLOT_DB_MCP_FEEDBACK_URL"] or None
    settings.log_level = reader.string("POLYGLOT_DB_MCP_LOG_LEVEL", default=settings.log_level)

    settings.validate()
    return settings
