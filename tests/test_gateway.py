from __future__ import annotations

import json

import pytest
from conftest import AlphaAdapter, BetaAdapter, SlowAlphaAdapter

from polyglot_db_mcp.adapters.base import BackendAdapter
from polyglot_db_mcp.core import DispatchGateway, RegistryLoadError, operation
from polyglot_db_mcp.core.gateway import META_OPERATIONS

pytestmark = pytest.mark.anyio

FEEDBACK_URL = "https://example.invalid/issues"


def build(*adapters, **options) -> DispatchGateway:
    return DispatchGateway.from_adapters(adapters or (AlphaAdapter(), BetaAdapter()), **options)


def test_operations_list_meta_first_then_registration_order():
    gateway = build()

    names = [descriptor.name for descriptor in gateway.operations()]

    assert names == ["db_list", "db_help", "db_status", "alpha_get", "alpha_put", "beta_get"]
    assert tuple(names[:3]) == META_OPERATIONS


def test_operation_listing_is_stable():
    gateway = build()

    first = [descriptor.catalogue_entry() for descriptor in gateway.operations()]
    second = [descriptor.catalogue_entry() for descriptor in gateway.operations()]

    assert first == second


def test_get_operation_resolves_meta_and_adapter_operations():
    gateway = build()

    assert gateway.get_operation("db_help").adapter is None
    assert gateway.get_operation("beta_get").adapter == "beta"
    assert gateway.get_operation("gamma_get") is None


async def test_invoke_routes_to_owning_adapter():
    alpha, beta = AlphaAdapter(), BetaAdapter()
    gateway = build(alpha, beta)

    stored = await gateway.invoke("alpha_put", {"key": "k", "value": "v"})
    fetched = await gateway.invoke("alpha_get", {"key": "k"})

    assert stored.ok and stored.result == {"stored": "k"}
    assert fetched.result == {"key": "k", "value": "v"}
    assert alpha.connected
    assert not beta.connected


async def test_unknown_operation_has_no_adapter_attribution():
    gateway = build()

    envelope = await gateway.invoke("gamma_get", {})

    assert not envelope.ok
    assert envelope.error.kind == "operation_not_found"
    assert envelope.error.message == "Unknown operation: gamma_get"
    assert envelope.error.operation == "gamma_get"
    assert envelope.error.adapter is None
    assert envelope.error.feedback is None


async def test_db_help_unknown_database_fails():
    gateway = build()

    envelope = await gateway.invoke("db_help", {"database": "gamma"})

    assert not envelope.ok
    assert envelope.error.kind == "adapter_not_found"
    assert "gamma" in envelope.error.message
    assert envelope.error.adapter is None


async def test_db_help_describes_one_database():
    gateway = build()

    envelope = await gateway.invoke("db_help", {"database": "alpha"})

    assert envelope.ok
    assert envelope.result["database"] == "alpha"
    assert [tool["name"] for tool in envelope.result["tools"]] == ["alpha_get", "alpha_put"]
    put = envelope.result["tools"][1]
    assert put["params"][0] == {"name": "key", "type": "string", "description": "Key to write", "required": True}


async def test_db_help_without_database_summarises_all():
    gateway = build()

    envelope = await gateway.invoke("db_help", {})

    assert envelope.result == {
        "databases": [
            {"name": "alpha", "description": "Alpha test store", "toolCount": 2},
            {"name": "beta", "description": "Beta test store", "toolCount": 1},
        ]
    }


async def test_db_status_partitions_by_reachability():
    gateway = build(AlphaAdapter(reachable=False), BetaAdapter())

    envelope = await gateway.invoke("db_status", {})

    assert envelope.result == {
        "connected": ["beta"],
        "disconnected": ["alpha"],
        "summary": "1/2 databases connected",
    }


async def test_db_list_with_connection_check():
    gateway = build(AlphaAdapter(reachable=False), BetaAdapter())

    plain = await gateway.invoke("db_list", {})
    checked = await gateway.invoke("db_list", {"checkConnections": "true"})

    assert plain.result["total"] == 2
    assert "connected" not in plain.result["databases"][0]
    assert plain.result["databases"][0]["tools"] == ["alpha_get", "alpha_put"]
    assert [entry["connected"] for entry in checked.result["databases"]] == [False, True]


async def test_slow_connectivity_check_reports_disconnected():
    gateway = build(AlphaAdapter(open_delay=5), BetaAdapter(), probe_timeout=0.05)

    report = await gateway.status()

    assert report["disconnected"] == ["alpha"]
    assert report["connected"] == ["beta"]


async def test_validation_failure_is_attributed_without_feedback():
    gateway = build(feedback_url=FEEDBACK_URL)

    envelope = await gateway.invoke("alpha_get", {})

    assert envelope.error.kind == "validation"
    assert envelope.error.message == "Invalid arguments: 'key' is required."
    assert envelope.error.operation == "alpha_get"
    assert envelope.error.adapter == "alpha"
    assert envelope.error.feedback is None


async def test_unreachable_backend_yields_connectivity_failure():
    gateway = build(AlphaAdapter(reachable=False), BetaAdapter(), feedback_url=FEEDBACK_URL)

    envelope = await gateway.invoke("alpha_get", {"key": "k"})

    assert envelope.error.kind == "connectivity"
    assert "alpha refused the connection" in envelope.error.message
    assert envelope.error.feedback["reportUrl"].startswith(FEEDBACK_URL + "/new?")


async def test_handler_exceptions_always_become_envelopes():
    gateway = build(SlowAlphaAdapter(), BetaAdapter())

    boom = await gateway.invoke("alpha_boom", {})
    offline = await gateway.invoke("alpha_offline", {})

    assert boom.error.kind == "backend_execution"
    assert boom.error.message == "disk on fire"
    assert offline.error.kind == "connectivity"
    for envelope in (boom, offline):
        payload = json.loads(envelope.to_json())
        assert payload["ok"] is False
        assert payload["result"] is None


async def test_call_timeout_becomes_connectivity_failure():
    gateway = build(SlowAlphaAdapter(), BetaAdapter(), call_timeout=0.05)

    envelope = await gateway.invoke("alpha_sleep", {"seconds": 5})

    assert envelope.error.kind == "connectivity"
    assert envelope.error.message == "Operation 'alpha_sleep' timed out after 0.05s."


async def test_driver_timeouts_keep_their_message_under_a_deadline():
    gateway = build(SlowAlphaAdapter(), BetaAdapter(), call_timeout=60)

    envelope = await gateway.invoke("alpha_statement_timeout", {})

    assert envelope.error.kind == "connectivity"
    assert envelope.error.message == "canceling statement due to statement timeout"
    assert envelope.error.adapter == "alpha"


async def test_unserializable_results_become_failure_envelopes():
    gateway = build(SlowAlphaAdapter(), BetaAdapter(), feedback_url=FEEDBACK_URL)

    envelope = await gateway.invoke("alpha_cyclic", {})

    assert envelope.ok is False
    assert envelope.error.kind == "backend_execution"
    assert "circular reference" in envelope.error.message
    assert (envelope.error.operation, envelope.error.adapter) == ("alpha_cyclic", "alpha")
    assert envelope.error.feedback is not None


async def test_shutdown_isolates_failing_disconnects():
    alpha, beta = AlphaAdapter(), BetaAdapter(fail_close=True)
    gateway = build(alpha, beta)
    await alpha.connect()
    await beta.connect()

    report = await gateway.shutdown()

    assert report["disconnected"] == ["alpha"]
    assert report["failed"] == {"beta": "beta close failed"}
    assert alpha.closes == 1
    assert not alpha.connected


def test_registry_rejects_duplicate_adapter_names():
    with pytest.raises(RegistryLoadError, match="Duplicate adapter name 'alpha'"):
        build(AlphaAdapter(), AlphaAdapter())


def test_meta_operation_names_are_reserved():
    class Shadow(BackendAdapter):
        name = "db"
        description = "Shadows a meta operation"

        @operation("Shadow db_list")
        async def db_list(self, args):
            return {}

    with pytest.raises(RegistryLoadError, match="reserved"):
        build(Shadow())
