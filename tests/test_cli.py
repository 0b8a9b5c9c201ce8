from __future__ import annotations

import json

import pytest
from conftest import AlphaAdapter, BetaAdapter
from typer.testing import CliRunner

from polyglot_db_mcp.cli.main import app, build_gateway
from polyglot_db_mcp.config import GatewaySettings
from polyglot_db_mcp.core import ConfigurationError, DispatchGateway


@pytest.fixture(autouse=True)
def _clean_environment(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in ("POLYGLOT_DB_MCP_CONFIG", "POLYGLOT_DB_MCP_ADAPTERS", "MCP_HTTP_MODE", "PORT", "SQLITE_PATH"):
        monkeypatch.delenv(key, raising=False)


def fake_factory(*, alpha_reachable: bool = True):
    def factory(settings: GatewaySettings) -> DispatchGateway:
        return DispatchGateway.from_adapters(
            [AlphaAdapter(reachable=alpha_reachable), BetaAdapter()],
            call_timeout=settings.call_timeout,
            probe_timeout=settings.probe_timeout,
            feedback_url=None,
        )

    return factory


def invoke(cli_runner: CliRunner, args: list[str], **factory_options):
    return cli_runner.invoke(app, args, obj={"gateway_factory": fake_factory(**factory_options)})


def test_adapters_list(cli_runner):
    result = invoke(cli_runner, ["adapters", "list"])

    assert result.exit_code == 0
    assert "alpha" in result.stdout
    assert "Beta test store" in result.stdout
    assert "2 adapter(s) registered." in result.stdout


def test_adapters_list_with_check_json(cli_runner):
    result = invoke(cli_runner, ["adapters", "list", "--check", "--json"], alpha_reachable=False)

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert [(entry["name"], entry["connected"]) for entry in payload["databases"]] == [("alpha", False), ("beta", True)]


def test_adapters_describe_prints_arguments(cli_runner):
    result = invoke(cli_runner, ["adapters", "describe", "alpha"])

    assert result.exit_code == 0
    assert "alpha_put: Write a value" in result.stdout
    assert "--arg key=<string> (required)" in result.stdout


def test_adapters_describe_unknown(cli_runner):
    result = invoke(cli_runner, ["adapters", "describe", "gamma"])

    assert result.exit_code == 1


def test_status_exits_non_zero_when_disconnected(cli_runner):
    result = invoke(cli_runner, ["status", "--json"], alpha_reachable=False)

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["connected"] == ["beta"]
    assert payload["disconnected"] == ["alpha"]


def test_status_all_connected(cli_runner):
    result = invoke(cli_runner, ["status"])

    assert result.exit_code == 0
    assert "2/2 databases connected" in result.stdout


def test_call_prints_envelope(cli_runner):
    result = invoke(cli_runner, ["call", "alpha_put", "--arg", "key=k", "-A", "value=a=b"])

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"ok": True, "result": {"stored": "k"}, "error": None}


def test_call_unknown_operation_fails(cli_runner):
    result = invoke(cli_runner, ["call", "gamma_get"])

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["error"]["kind"] == "operation_not_found"
    assert payload["error"]["adapter"] is None


def test_call_rejects_non_object_json_args(cli_runner):
    result = invoke(cli_runner, ["call", "alpha_get", "--json-args", "[1, 2]"])

    assert result.exit_code == 2


def test_call_sqlite_end_to_end(cli_runner):
    result = cli_runner.invoke(app, ["--adapters", "sqlite", "call", "sqlite_query", "--json-args", '{"sql": "SELECT 1 AS one"}'])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["result"] == {"count": 1, "rows": [{"one": 1}]}


def test_unknown_adapter_in_allowlist_exits_with_configuration_error(cli_runner):
    result = cli_runner.invoke(app, ["--adapters", "sqlite,oracle", "adapters", "list"])

    assert result.exit_code == 2


def test_build_gateway_filters_builtin_adapters():
    gateway = build_gateway(GatewaySettings(enabled_adapters=["duckdb", "sqlite"]), env={})

    # Registration order wins over allowlist order.
    assert gateway.registry.names() == ["sqlite", "duckdb"]
    with pytest.raises(ConfigurationError, match="oracle"):
        build_gateway(GatewaySettings(enabled_adapters=["oracle"]), env={})
