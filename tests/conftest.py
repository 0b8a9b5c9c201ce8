from __future__ import annotations

from typing import Any, Dict, Mapping

import anyio
import pytest
from typer.testing import CliRunner

from polyglot_db_mcp.adapters.base import BackendAdapter
from polyglot_db_mcp.cli.main import app
from polyglot_db_mcp.core.descriptors import number_param, operation, string_param
from polyglot_db_mcp.core.errors import ConnectivityError


class FakeHandle:
    def __init__(self) -> None:
        self.store: Dict[str, Any] = {}
        self.closed = False


class AlphaAdapter(BackendAdapter[FakeHandle]):
    """In-memory adapter that counts lifecycle calls and can be made unreachable."""

    name = "alpha"
    description = "Alpha test store"

    def __init__(self, env: Mapping[str, str] | None = None, *, reachable: bool = True, open_delay: float = 0.0) -> None:
        super().__init__(env)
        self.reachable = reachable
        self.open_delay = open_delay
        self.opens = 0
        self.closes = 0

    async def _open(self) -> FakeHandle:
        self.opens += 1
        if self.open_delay:
            await anyio.sleep(self.open_delay)
        if not self.reachable:
            raise ConnectionRefusedError("alpha refused the connection")
        return FakeHandle()

    async def _close(self, handle: FakeHandle) -> None:
        self.closes += 1
        handle.closed = True

    async def _ping(self, handle: FakeHandle) -> None:
        if not self.reachable:
            raise ConnectionResetError("alpha went away")

    @operation("Read a value", key=string_param("Key to read", required=True))
    async def alpha_get(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        handle = await self.acquire()
        return {"key": key, "value": handle.store.get(key)}

    @operation(
        "Write a value",
        key=string_param("Key to write", required=True),
        value=string_param("Value to store", required=True),
    )
    async def alpha_put(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        key = self.require_str(args, "key")
        handle = await self.acquire()
        handle.store[key] = args.get("value")
        return {"stored": key}


class SlowAlphaAdapter(AlphaAdapter):
    """Alpha plus operations that misbehave on purpose."""

    @operation("Sleep before answering", seconds=number_param("Seconds to sleep"))
    async def alpha_sleep(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        await anyio.sleep(self.float_arg(args, "seconds", 1.0))
        return {"slept": True}

    @operation("Always fails inside the backend")
    async def alpha_boom(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        raise RuntimeError("disk on fire")

    @operation("Fails with a connectivity error")
    async def alpha_offline(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        raise ConnectivityError("alpha is offline")

    @operation("Fails with the driver's own timeout")
    async def alpha_statement_timeout(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        raise TimeoutError("canceling statement due to statement timeout")

    @operation("Returns a row that contains itself")
    async def alpha_cyclic(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        rows: list = []
        rows.append(rows)
        return {"rows": rows}


class BetaAdapter(BackendAdapter[FakeHandle]):
    name = "beta"
    description = "Beta test store"

    def __init__(self, env: Mapping[str, str] | None = None, *, fail_close: bool = False) -> None:
        super().__init__(env)
        self.fail_close = fail_close

    async def _open(self) -> FakeHandle:
        return FakeHandle()

    async def _close(self, handle: FakeHandle) -> None:
        if self.fail_close:
            raise RuntimeError("beta close failed")

    @operation("Read a beta value", key=string_param("Key to read"))
    async def beta_get(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        await self.acquire()
        return {"key": self.optional_str(args, "key"), "value": None}


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def cli_app():
    return app
