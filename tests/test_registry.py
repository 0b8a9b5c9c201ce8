from __future__ import annotations

import pytest
from conftest import AlphaAdapter, BetaAdapter

from polyglot_db_mcp.adapters.base import BackendAdapter
from polyglot_db_mcp.core import AdapterNotFoundError, AdapterRegistry, ParameterDescriptor, RegistryLoadError, operation, string_param


def test_build_preserves_registration_order():
    registry = AdapterRegistry.build([BetaAdapter(), AlphaAdapter()])

    assert registry.names() == ["beta", "alpha"]
    assert [binding.operation.name for binding in registry.operations()] == ["beta_get", "alpha_get", "alpha_put"]
    assert len(registry) == 2
    assert "alpha" in registry
    assert registry.frozen


def test_resolve_returns_owning_adapter():
    alpha = AlphaAdapter()
    registry = AdapterRegistry.build([alpha, BetaAdapter()])

    binding = registry.resolve("alpha_put")

    assert binding.adapter is alpha
    assert binding.operation.adapter == "alpha"
    assert registry.resolve("gamma_get") is None


def test_require_unknown_adapter():
    registry = AdapterRegistry.build([AlphaAdapter()])

    with pytest.raises(AdapterNotFoundError, match="Unknown database: gamma"):
        registry.require("gamma")


def test_duplicate_operation_across_adapters_is_rejected():
    class Impostor(BackendAdapter):
        name = "impostor"
        description = "Publishes an alpha operation"
        prefixes = ("alpha",)

        @operation("Conflicting read")
        async def alpha_get(self, args):
            return {}

    with pytest.raises(RegistryLoadError, match="Duplicate operation name 'alpha_get'"):
        AdapterRegistry.build([AlphaAdapter(), Impostor()])


def test_operation_prefix_is_enforced():
    class Sloppy(BackendAdapter):
        name = "sloppy"
        description = "Uses somebody else's prefix"

        @operation("Misnamed")
        async def other_get(self, args):
            return {}

    with pytest.raises(RegistryLoadError, match="must be prefixed"):
        AdapterRegistry.build([Sloppy()])


def test_adapter_without_operations_is_rejected():
    class Empty(BackendAdapter):
        name = "empty"
        description = "Nothing to see"

    with pytest.raises(RegistryLoadError, match="does not publish any operations"):
        AdapterRegistry.build([Empty()])


def test_invalid_adapter_name_is_rejected():
    class Shouty(AlphaAdapter):
        name = "Alpha"
        prefixes = ("alpha",)

    with pytest.raises(RegistryLoadError, match="must start with a lowercase letter"):
        AdapterRegistry.build([Shouty()])


def test_frozen_registry_refuses_registration():
    registry = AdapterRegistry.build([AlphaAdapter()])

    with pytest.raises(RegistryLoadError, match="frozen"):
        registry.register(BetaAdapter())


def test_failed_registration_leaves_no_partial_operations():
    class HalfClash(BackendAdapter):
        name = "half"
        description = "One fresh and one clashing operation"
        prefixes = ("half", "alpha")

        @operation("Fresh")
        async def half_get(self, args):
            return {}

        @operation("Clash")
        async def alpha_put(self, args):
            return {}

    registry = AdapterRegistry()
    registry.register(AlphaAdapter())
    with pytest.raises(RegistryLoadError):
        registry.register(HalfClash())

    assert registry.resolve("half_get") is None
    assert registry.names() == ["alpha"]


def test_parameter_descriptor_rejects_unknown_kind():
    with pytest.raises(RegistryLoadError, match="Unsupported parameter kind"):
        ParameterDescriptor("date", "When")


def test_operation_descriptors_are_bound_to_instance():
    alpha = AlphaAdapter()

    descriptor = alpha.operations["alpha_get"]

    assert descriptor.handler.__self__ is alpha
    assert descriptor.parameters["key"] == string_param("Key to read", required=True)
    with pytest.raises(TypeError):
        descriptor.parameters["extra"] = string_param("nope")
