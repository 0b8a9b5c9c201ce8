"""
Backend adapter contract.

An adapter bundles one backend's published operations with the lifecycle of
the single connection handle (client, driver, pool or socket) it owns. The
handle is created lazily on first use, guarded by a per-adapter lock so
concurrent first calls open exactly one connection, and released on
:meth:`BackendAdapter.disconnect`.

Subclasses implement three hooks:

``_open()``
    Build and return the connection handle. Read configuration here.
``_close(handle)``
    Release the handle.
``_ping(handle)``
    Lightweight liveness probe; raise on failure.

and publish operations with :func:`~polyglot_db_mcp.core.descriptors.operation`.
Handlers receive the raw argument mapping, validate it with the helpers below,
call :meth:`acquire` and execute exactly one unit of backend work.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from logging import LoggerAdapter
from types import MappingProxyType
from typing import Any, Dict, Generic, List, Mapping, Optional, Sequence, Tuple, TypeVar

import anyio

from ..config import AdapterEnv
from ..core.descriptors import OPERATION_SPEC_ATTR, OperationDescriptor, OperationSpec
from ..core.errors import AdapterError, ConnectivityError, ValidationError
from ..core.logging import get_logger

HandleT = TypeVar("HandleT")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


class ConnectionState(str, Enum):
    """Connection lifecycle of one adapter."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    FAILED = "failed"


class BackendAdapter(Generic[HandleT]):
    """
    Base class for every backend adapter.

    Parameters
    ----------
    env:
        Optional environment mapping for configuration lookups. Tests inject a
        plain ``dict``; production reads :data:`os.environ`.
    """

    name: str = ""
    description: str = ""
    # Accepted operation-name prefixes; defaults to the adapter name.
    prefixes: Tuple[str, ...] = ()

    def __init__(self, env: Optional[Mapping[str, str]] = None) -> None:
        self.env = AdapterEnv(env)
        self.state = ConnectionState.DISCONNECTED
        self.last_error: Optional[str] = None
        self._handle: Optional[HandleT] = None
        self._lock: Optional[anyio.Lock] = None
        self.logger: LoggerAdapter = get_logger(f"{self.__class__.__module__}.{self.__class__.__name__}", extra={"adapter": self.name})
        if not self.prefixes:
            self.prefixes = (self.name,)
        self.operations: Mapping[str, OperationDescriptor] = MappingProxyType(self._collect_operations())

    def _collect_operations(self) -> Dict[str, OperationDescriptor]:
        specs: Dict[str, OperationSpec] = {}
        for klass in reversed(type(self).__mro__):
            for attr, value in vars(klass).items():
                spec = getattr(value, OPERATION_SPEC_ATTR, None)
                if isinstance(spec, OperationSpec):
                    specs[attr] = spec
        return {
            attr: OperationDescriptor(
                name=attr,
                description=spec.description,
                handler=getattr(self, attr),
                parameters=spec.parameters,
                adapter=self.name,
            )
            for attr, spec in specs.items()
        }

    # ------------------------------------------------------------------ lifecycle

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self._handle is not None

    def _get_lock(self) -> anyio.Lock:
        # Created lazily so the lock binds to the running event loop.
        if self._lock is None:
            self._lock = anyio.Lock()
        return self._lock

    async def connect(self) -> None:
        """Open the connection unless already connected. Safe under concurrent first calls."""

        if self.connected:
            return
        async with self._get_lock():
            if self.connected:
                return
            await self._discard_stale_handle()
            try:
                handle = await self._open()
            except AdapterError as exc:
                self._mark_failed(exc)
                raise
            except Exception as exc:
                self._mark_failed(exc)
                raise ConnectivityError(f"Failed to connect to {self.name}: {exc}") from exc
            self._handle = handle
            self.state = ConnectionState.CONNECTED
            self.last_error = None
            self.logger.info("Connected", extra={"status": self.state.value})

    async def disconnect(self) -> None:
        """Release the connection. A no-op when already disconnected."""

        async with self._get_lock():
            handle, self._handle = self._handle, None
            self.state = ConnectionState.DISCONNECTED
            if handle is None:
                return
            await self._close(handle)
            self.logger.info("Disconnected", extra={"status": self.state.value})

    async def is_connected(self) -> bool:
        """
        Probe the backend by connecting if needed and pinging it.

        Never raises: every failure is recorded on :attr:`last_error` and
        reported as ``False``.
        """

        try:
            handle = await self.acquire()
            await self._ping(handle)
        except Exception as exc:
            self._mark_failed(exc)
            self.logger.debug("Connectivity probe failed", extra={"status": self.state.value, "error": str(exc)})
            return False
        return True

    async def acquire(self) -> HandleT:
        """Return the connection handle, connecting lazily."""

        await self.connect()
        handle = self._handle
        if handle is None:
            raise ConnectivityError(f"{self.name} connection was closed concurrently.")
        return handle

    async def _discard_stale_handle(self) -> None:
        # A handle that failed its probe is replaced on the next connect.
        stale, self._handle = self._handle, None
        if stale is None:
            return
        try:
            await self._close(stale)
        except Exception as exc:
            self.logger.warning("Failed to close stale connection", extra={"error": str(exc)})

    def _mark_failed(self, exc: BaseException) -> None:
        self.state = ConnectionState.FAILED
        self.last_error = str(exc) or exc.__class__.__name__

    async def _open(self) -> HandleT:
        raise NotImplementedError

    async def _close(self, handle: HandleT) -> None:
        return None

    async def _ping(self, handle: HandleT) -> None:
        return None

    # ------------------------------------------------------------------ argument helpers

    @staticmethod
    def require_str(args: Mapping[str, Any], key: str) -> str:
        value = args.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"'{key}' is required.")
        if not isinstance(value, str):
            raise ValidationError(f"'{key}' must be a string.")
        return value

    @staticmethod
    def optional_str(args: Mapping[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
        value = args.get(key)
        if value is None or value == "":
            return default
        if not isinstance(value, str):
            raise ValidationError(f"'{key}' must be a string.")
        return value

    @staticmethod
    def int_arg(args: Mapping[str, Any], key: str, default: Optional[int] = None, *, minimum: Optional[int] = None) -> Optional[int]:
        value = args.get(key)
        if value is None or value == "":
            return default
        if isinstance(value, bool):
            raise ValidationError(f"'{key}' must be an integer.")
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"'{key}' must be an integer, got {value!r}.") from exc
        if isinstance(value, float) and value != number:
            raise ValidationError(f"'{key}' must be an integer, got {value!r}.")
        if minimum is not None and number < minimum:
            raise ValidationError(f"'{key}' must be >= {minimum}.")
        return number

    @staticmethod
    def float_arg(args: Mapping[str, Any], key: str, default: Optional[float] = None) -> Optional[float]:
        value = args.get(key)
        if value is None or value == "":
            return default
        if isinstance(value, bool):
            raise ValidationError(f"'{key}' must be a number.")
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"'{key}' must be a number, got {value!r}.") from exc

    @staticmethod
    def bool_arg(args: Mapping[str, Any], key: str, default: bool = False) -> bool:
        value = args.get(key)
        if value is None or value == "":
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "1", "yes"}:
            return True
        if isinstance(value, str) and value.strip().lower() in {"false", "0", "no"}:
            return False
        raise ValidationError(f"'{key}' must be a boolean.")

    @staticmethod
    def json_arg(args: Mapping[str, Any], key: str, *, expect: type | Tuple[type, ...] = (dict, list), required: bool = False) -> Any:
        """
        Read a structured argument given either as a native value or as JSON text.

        Raises :class:`ValidationError` for malformed JSON or an unexpected type.
        """

        value = args.get(key)
        if value is None or value == "":
            if required:
                raise ValidationError(f"'{key}' is required.")
            return None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"'{key}' is not valid JSON: {exc.msg}.") from exc
        if not isinstance(value, expect):
            names = expect.__name__ if isinstance(expect, type) else "/".join(item.__name__ for item in expect)
            raise ValidationError(f"'{key}' must be a JSON {names}.")
        return value

    @staticmethod
    def list_arg(args: Mapping[str, Any], key: str, *, required: bool = False) -> List[Any]:
        """Accept a list or comma-separated text."""

        value = args.get(key)
        if value is None or value == "":
            if required:
                raise ValidationError(f"'{key}' is required.")
            return []
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    parsed = json.loads(stripped)
                except json.JSONDecodeError as exc:
                    raise ValidationError(f"'{key}' is not valid JSON: {exc.msg}.") from exc
                if isinstance(parsed, list):
                    return parsed
            items = [item.strip() for item in value.split(",") if item.strip()]
        elif isinstance(value, (list, tuple)):
            items = list(value)
        else:
            raise ValidationError(f"'{key}' must be a list or comma-separated string.")
        if required and not items:
            raise ValidationError(f"'{key}' must not be empty.")
        return items

    @staticmethod
    def identifier(value: Any, *, label: str = "identifier", dotted: bool = False) -> str:
        """Validate a name that has to be spliced into statement text."""

        if not isinstance(value, str) or not value:
            raise ValidationError(f"{label} is required.")
        parts = value.split(".") if dotted else [value]
        if not all(_IDENTIFIER.match(part) for part in parts):
            raise ValidationError(f"Invalid {label} '{value}'.")
        return value

    @staticmethod
    def require_filter(value: Any, *, operation: str) -> Any:
        """Refuse destructive operations that lack a filter condition."""

        if value is None or (isinstance(value, (str, dict, list)) and not value):
            raise ValidationError(f"{operation} requires a filter condition; refusing to modify every record.")
        return value

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, state={self.state.value!r})"


def ensure_mapping(value: Any, *, label: str) -> Dict[str, Any]:
    if not isinstance(value, Mapping) or not value:
        raise ValidationError(f"{label} must be a non-empty object.")
    return dict(value)


def ensure_sequence(value: Any, *, label: str) -> Sequence[Any]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{label} must be an array.")
    return value
