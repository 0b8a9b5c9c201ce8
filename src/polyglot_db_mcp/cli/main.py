"""
Typer application for the polyglot database gateway.

``serve`` runs the MCP server; the remaining commands expose the same
meta-operations and dispatch path to operators on the command line, which is
handy for checking credentials and connectivity before wiring up a client.
"""

from __future__ import annotations

import json
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar

import anyio
import typer

from .. import __version__
from ..adapters import builtin_adapters
from ..config import GatewaySettings, load_settings
from ..core import AdapterNotFoundError, ConfigurationError, DispatchGateway, RegistryLoadError
from ..core.logging import configure_logging, get_logger, log_progress
from ..server import serve_http, serve_stdio

T = TypeVar("T")

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Model Context Protocol gateway for many databases behind one tool namespace.\n\n"
        "Command groups:\n"
        "- serve: run the MCP server over stdio or Streamable HTTP.\n"
        "- adapters: list and describe the registered database adapters.\n"
        "- status / call: probe connectivity and invoke single operations."
    ),
)
adapters_app = typer.Typer(help="Inspect the registered database adapters and their operations.")
app.add_typer(adapters_app, name="adapters")

LOGGER = get_logger(__name__)


def build_gateway(settings: GatewaySettings, *, env: Optional[Mapping[str, str]] = None) -> DispatchGateway:
    """
    Build the registry and dispatch gateway described by ``settings``.

    The built-in adapters are filtered by ``settings.enabled_adapters`` (an
    empty allowlist keeps all of them) without changing registration order.
    """

    adapters = builtin_adapters(env)
    if settings.enabled_adapters:
        known = {adapter.name for adapter in adapters}
        unknown = [name for name in settings.enabled_adapters if name not in known]
        if unknown:
            raise ConfigurationError(f"Unknown adapter(s) in allowlist: {', '.join(unknown)}. Known adapters: {', '.join(sorted(known))}.")
        enabled = set(settings.enabled_adapters)
        adapters = [adapter for adapter in adapters if adapter.name in enabled]
    return DispatchGateway.from_adapters(
        adapters,
        call_timeout=settings.call_timeout,
        probe_timeout=settings.probe_timeout,
        feedback_url=settings.feedback_url,
    )


def _parse_arguments(pairs: Optional[List[str]], json_args: Optional[str]) -> Dict[str, Any]:
    arguments: Dict[str, Any] = {}
    if json_args:
        try:
            parsed = json.loads(json_args)
        except json.JSONDecodeError as exc:
            raise typer.BadParameter(f"--json-args is not valid JSON: {exc.msg}") from exc
        if not isinstance(parsed, dict):
            raise typer.BadParameter("--json-args must be a JSON object.")
        arguments.update(parsed)
    for item in pairs or []:
        if "=" not in item:
            raise typer.BadParameter(f"Argument '{item}' must use the key=value format.")
        key, value = item.split("=", 1)
        key = key.strip()
        if not key:
            raise typer.BadParameter(f"Argument '{item}' is missing a key.")
        arguments[key] = value
    return arguments


def _require_settings(ctx: typer.Context) -> GatewaySettings:
    state = ctx.ensure_object(dict)
    settings = state.get("settings")
    if not isinstance(settings, GatewaySettings):
        raise typer.Exit(code=2)
    return settings


def _require_gateway(ctx: typer.Context) -> DispatchGateway:
    state = ctx.ensure_object(dict)
    gateway = state.get("gateway")
    if isinstance(gateway, DispatchGateway):
        return gateway
    try:
        gateway = state["gateway_factory"](_require_settings(ctx))
    except (ConfigurationError, RegistryLoadError) as exc:
        LOGGER.error("Gateway construction failed", extra={"kind": exc.kind, "error": str(exc)})
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2) from exc
    state["gateway"] = gateway
    return gateway


def _run_then_shutdown(gateway: DispatchGateway, func: Callable[[], Awaitable[T]]) -> T:
    async def runner() -> T:
        try:
            return await func()
        finally:
            await gateway.shutdown()

    return anyio.run(runner)


def _emit_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(None, "--log-level", "-l", help="Logging level (DEBUG, INFO, WARNING, ...)."),
    adapters: Optional[str] = typer.Option(None, "--adapters", "-a", help="Comma-separated allowlist of adapters to register."),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Gateway TOML configuration file.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
) -> None:
    """
    Resolve settings and configure logging.

    The settings are stored in Typer's state; the gateway itself is built lazily
    by the first command that needs it.
    """

    try:
        settings = load_settings(path=config)
    except ConfigurationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2) from exc
    if log_level:
        settings.log_level = log_level
    if adapters is not None:
        settings.enabled_adapters = [item.strip() for item in adapters.split(",") if item.strip()]
    configure_logging(settings.log_level, force=True)
    state = ctx.ensure_object(dict)
    state["settings"] = settings
    state.setdefault("gateway_factory", build_gateway)


@app.command("serve")
def serve(
    ctx: typer.Context,
    http: Optional[bool] = typer.Option(None, "--http/--stdio", help="Transport to serve; defaults to the configured one."),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address for the HTTP transport."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port for the HTTP transport."),
    path: Optional[str] = typer.Option(None, "--path", help="Mount path of the MCP endpoint."),
) -> None:
    """Run the MCP server."""

    settings = _require_settings(ctx)
    if http is not None:
        settings.transport = "http" if http else "stdio"
    settings.host = host or settings.host
    settings.port = port or settings.port
    settings.http_path = path or settings.http_path
    try:
        settings.validate()
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    gateway = _require_gateway(ctx)
    log_progress(
        LOGGER,
        f"polyglot-db-mcp {__version__}",
        phase="startup",
        status="ready",
        extra={
            "transport": settings.transport,
            "adapters": len(gateway.registry),
            "operations": len(gateway.operations()),
        },
    )
    if settings.transport == "http":
        serve_http(gateway, host=settings.host, port=settings.port, path=settings.http_path, log_level=settings.log_level or "info")
    else:
        anyio.run(serve_stdio, gateway)


@adapters_app.command("list")
def adapters_list(
    ctx: typer.Context,
    check: bool = typer.Option(False, "--check", help="Probe each adapter's connectivity (slower)."),
    output_json: bool = typer.Option(False, "--json", help="Emit the listing in JSON format."),
) -> None:
    """List registered adapters and their operation counts."""

    gateway = _require_gateway(ctx)
    listing = _run_then_shutdown(gateway, partial(gateway.list_adapters, check_connections=check))
    if output_json:
        _emit_json(listing)
        return

    header = f"{'Adapter':<15} {'Tools':>5}  {'Connected':<9} Description" if check else f"{'Adapter':<15} {'Tools':>5}  Description"
    typer.echo(header)
    typer.echo("-" * len(header))
    for entry in listing["databases"]:
        if check:
            connected = "yes" if entry.get("connected") else "no"
            typer.echo(f"{entry['name']:<15} {len(entry['tools']):>5}  {connected:<9} {entry['description']}")
        else:
            typer.echo(f"{entry['name']:<15} {len(entry['tools']):>5}  {entry['description']}")
    typer.echo(f"{listing['total']} adapter(s) registered.")


@adapters_app.command("describe")
def adapters_describe(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Adapter name; omit to summarise every adapter."),
    output_json: bool = typer.Option(False, "--json", help="Emit the description in JSON format."),
) -> None:
    """Show an adapter's operations and their parameters."""

    gateway = _require_gateway(ctx)
    try:
        description = gateway.describe(name)
    except AdapterNotFoundError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    if output_json:
        _emit_json(description)
        return
    if not name:
        for entry in description["databases"]:
            typer.echo(f"{entry['name']:<15} {entry['toolCount']:>3} tool(s)  {entry['description']}")
        return

    typer.echo(f"Adapter: {description['database']}")
    typer.echo(f"Description: {description['description']}")
    for tool in description["tools"]:
        typer.echo("")
        typer.echo(f"{tool['name']}: {tool['description']}")
        for param in tool["params"]:
            marker = " (required)" if param["required"] else ""
            typer.echo(f"  --arg {param['name']}=<{param['type']}>{marker}  {param['description']}")


@app.command("status")
def status(
    ctx: typer.Context,
    output_json: bool = typer.Option(False, "--json", help="Emit the status report in JSON format."),
) -> None:
    """Probe every adapter; exits with code 1 when any is disconnected."""

    gateway = _require_gateway(ctx)
    report = _run_then_shutdown(gateway, gateway.status)
    if output_json:
        _emit_json(report)
    else:
        for name in report["connected"]:
            typer.echo(f"{name:<15} connected")
        for name in report["disconnected"]:
            typer.echo(f"{name:<15} disconnected")
        typer.echo(report["summary"])
    if report["disconnected"]:
        raise typer.Exit(code=1)


@app.command("call")
def call(
    ctx: typer.Context,
    operation: str = typer.Argument(..., help="Operation name, e.g. sqlite_query or db_list."),
    arg: Optional[List[str]] = typer.Option(None, "--arg", "-A", help="Argument in the form key=value. Can be repeated."),
    json_args: Optional[str] = typer.Option(None, "--json-args", help="Arguments as a JSON object; --arg values override keys."),
) -> None:
    """Invoke one operation through the gateway and print its envelope."""

    arguments = _parse_arguments(arg, json_args)
    gateway = _require_gateway(ctx)
    envelope = _run_then_shutdown(gateway, partial(gateway.invoke, operation, arguments))
    typer.echo(envelope.to_json())
    if not envelope.ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
