"""
Core building blocks: descriptors, registry, dispatch gateway and envelopes.
"""

from .descriptors import (
    OperationDescriptor,
    ParameterDescriptor,
    ParamKind,
    array_param,
    boolean_param,
    number_param,
    object_param,
    operation,
    string_param,
)
from .envelope import Envelope, Failure, normalize_exception, to_jsonable
from .errors import (
    AdapterError,
    AdapterNotFoundError,
    BackendExecutionError,
    ConfigurationError,
    ConnectivityError,
    GatewayError,
    OperationNotFoundError,
    RegistryLoadError,
    ValidationError,
)
from .gateway import META_OPERATIONS, DispatchGateway
from .registry import AdapterRegistry, OperationBinding

__all__ = [
    "AdapterError",
    "AdapterNotFoundError",
    "AdapterRegistry",
    "BackendExecutionError",
    "ConfigurationError",
    "ConnectivityError",
    "DispatchGateway",
    "Envelope",
    "Failure",
    "GatewayError",
    "META_OPERATIONS",
    "OperationBinding",
    "OperationDescriptor",
    "OperationNotFoundError",
    "ParamKind",
    "ParameterDescriptor",
    "RegistryLoadError",
    "ValidationError",
    "array_param",
    "boolean_param",
    "normalize_exception",
    "number_param",
    "object_param",
    "operation",
    "string_param",
    "to_jsonable",
]
