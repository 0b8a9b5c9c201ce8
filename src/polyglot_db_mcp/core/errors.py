"""
Error taxonomy shared by the gateway and every backend adapter.

Each class carries a stable ``kind`` string. Adapters raise these freely; the
dispatch gateway is the only component that turns them into failure envelopes,
using ``kind`` as the machine-readable reason.
"""

from __future__ import annotations


class GatewayError(RuntimeError):
    """Base class for all errors raised by the gateway or its adapters."""

    kind = "internal"


class RegistryLoadError(GatewayError):
    """Raised when the adapter registry violates a start-up invariant."""

    kind = "registry"


class AdapterError(GatewayError):
    """Raised when an adapter encounters a non-recoverable error."""

    kind = "adapter"


class ConfigurationError(AdapterError):
    """An adapter cannot build its connection because configuration is missing or invalid."""

    kind = "configuration"


class ConnectivityError(AdapterError):
    """The backend is unreachable, refused the connection, rejected credentials or timed out."""

    kind = "connectivity"


class ValidationError(AdapterError):
    """A handler refused to execute because its arguments are missing or malformed."""

    kind = "validation"


class BackendExecutionError(AdapterError):
    """The backend accepted the call but failed while executing it."""

    kind = "backend_execution"


class OperationNotFoundError(GatewayError):
    """The requested operation is not present in the operation table."""

    kind = "operation_not_found"


class AdapterNotFoundError(GatewayError):
    """A caller referenced an adapter name that is not registered."""

    kind = "adapter_not_found"


# Caller-facing conditions; logged at INFO and never decorated with a bug-report link.
CALLER_ERROR_KINDS = frozenset(
    {
        OperationNotFoundError.kind,
        AdapterNotFoundError.kind,
        ValidationError.kind,
    }
)
