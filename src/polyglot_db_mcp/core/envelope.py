"""
Response envelope and outcome normalisation.

Every dispatch leaves the gateway as exactly one :class:`Envelope`. Success and
failure envelopes serialise to the same keys so clients can handle them
uniformly; only the populated side differs.
"""

from __future__ import annotations

import base64
import dataclasses
import json
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from pathlib import PurePath
from typing import Any, Dict, Mapping, Optional, Set
from urllib.parse import quote, urlencode
from uuid import UUID

from .errors import CALLER_ERROR_KINDS, GatewayError, ValidationError

FEEDBACK_MESSAGE = "If this looks like a gateway bug rather than a backend problem, please report it."


@dataclass(frozen=True, slots=True)
class Failure:
    """
    Normalised failure payload.

    Attributes
    ----------
    message:
        Human-readable message carrying the raw underlying cause.
    kind:
        Machine-readable reason taken from the error taxonomy.
    operation:
        Operation that was invoked, when one was resolved or requested.
    adapter:
        Owning adapter. ``None`` for meta-operations and unknown operations.
    feedback:
        Optional bug-report hint attached to backend-side failures.
    """

    message: str
    kind: str
    operation: Optional[str] = None
    adapter: Optional[str] = None
    feedback: Optional[Mapping[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "message": self.message,
            "kind": self.kind,
            "operation": self.operation,
            "adapter": self.adapter,
        }
        if self.feedback:
            payload["feedback"] = dict(self.feedback)
        return payload


@dataclass(frozen=True, slots=True)
class Envelope:
    """Exactly one of ``result`` (on success) or ``error`` (on failure) is meaningful."""

    result: Any = None
    error: Optional[Failure] = None

    def __post_init__(self) -> None:
        if self.error is not None and self.result is not None:
            raise ValueError("An envelope cannot carry both a result and an error.")

    @classmethod
    def success(cls, payload: Any) -> "Envelope":
        return cls(result=to_jsonable(payload))

    @classmethod
    def failure(cls, failure: Failure) -> "Envelope":
        return cls(error=failure)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "result": self.result,
            "error": self.error.to_dict() if self.error else None,
        }

    def to_json(self, *, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)


class CircularReferenceError(ValueError):
    """A result refers back to one of its own containers and cannot be serialized."""


def to_jsonable(value: Any) -> Any:
    """
    Convert backend-native values into JSON-compatible structures.

    Unknown objects fall back to ``str(value)`` so driver handles, cursors and
    other native types never leak out of the gateway. Containers that refer
    back to themselves raise :class:`CircularReferenceError`.
    """

    return _jsonable(value, set())


def _jsonable(value: Any, active: Set[int]) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Enum):
        return _jsonable(value.value, active)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (UUID, PurePath)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(raw).decode("ascii")
    if isinstance(value, (Mapping, list, tuple, set, frozenset)):
        marker = id(value)
        if marker in active:
            raise CircularReferenceError(f"Result contains a circular reference through a {type(value).__name__}.")
        active.add(marker)
        try:
            if isinstance(value, Mapping):
                return {str(key): _jsonable(item, active) for key, item in value.items()}
            return [_jsonable(item, active) for item in value]
        finally:
            active.discard(marker)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _jsonable(dataclasses.asdict(value), active)
    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        return _jsonable(model_dump(), active)
    items = getattr(value, "items", None)
    if callable(items):
        try:
            return {str(key): _jsonable(item, active) for key, item in items()}
        except CircularReferenceError:
            raise
        except (TypeError, ValueError):
            pass
    return str(value)


def _feedback(kind: str, feedback_url: Optional[str], *, operation: Optional[str], message: str) -> Optional[Dict[str, str]]:
    if not feedback_url or kind in CALLER_ERROR_KINDS:
        return None
    # Prefilled issue form: "<url>/new?title=[BUG] <operation>: <message>&labels=bug".
    title = f"[BUG] {operation or 'gateway'}: {message[:50]}"
    report_url = f"{feedback_url.rstrip('/')}/new?{urlencode({'title': title, 'labels': 'bug'}, quote_via=quote)}"
    return {"message": FEEDBACK_MESSAGE, "reportUrl": report_url}


def classify(exc: BaseException) -> str:
    """Return the taxonomy kind for an exception raised inside the gateway boundary."""

    if isinstance(exc, GatewayError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return "connectivity"
    return "backend_execution"


def normalize_exception(
    exc: BaseException,
    *,
    operation: Optional[str] = None,
    adapter: Optional[str] = None,
    feedback_url: Optional[str] = None,
) -> Failure:
    """
    Build a :class:`Failure` from any exception.

    Parameters
    ----------
    exc:
        The raised exception; its message is kept verbatim.
    operation:
        Operation name used for attribution.
    adapter:
        Owning adapter name used for attribution.
    feedback_url:
        When set, backend-side failures carry a bug-report link.
    """

    kind = classify(exc)
    message = str(exc).strip() or exc.__class__.__name__
    if isinstance(exc, ValidationError):
        message = f"Invalid arguments: {message}"
    return Failure(
        message=message,
        kind=kind,
        operation=operation,
        adapter=adapter,
        feedback=_feedback(kind, feedback_url, operation=operation, message=message),
    )
