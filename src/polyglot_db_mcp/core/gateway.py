"""
Dispatch gateway.

The gateway presents one flat operation namespace: three meta-operations
(``db_list``, ``db_help``, ``db_status``) followed by every operation published
by the registered adapters. :meth:`DispatchGateway.invoke` resolves a name in
constant time, runs the handler under an optional deadline and normalises the
outcome into an :class:`~polyglot_db_mcp.core.envelope.Envelope`. It never raises
for handler failures; errors are converted here and nowhere else.

The gateway itself holds no per-call state and takes no lock around dispatch.
Connection state lives inside each adapter.
"""

from __future__ import annotations

import logging
import time
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

import anyio

from .descriptors import OperationDescriptor, boolean_param, string_param
from .envelope import Envelope, normalize_exception
from .errors import CALLER_ERROR_KINDS, ConnectivityError, OperationNotFoundError, RegistryLoadError
from .logging import get_logger, log_progress
from .registry import AdapterRegistry

if TYPE_CHECKING:
    from ..adapters.base import BackendAdapter

META_OPERATIONS = ("db_list", "db_help", "db_status")


class DispatchGateway:
    """
    Route invocations by operation name to the owning adapter.

    Parameters
    ----------
    registry:
        Frozen adapter registry.
    call_timeout:
        Deadline in seconds for each invocation; ``None`` disables it.
    probe_timeout:
        Deadline in seconds for each connectivity probe issued by ``db_list``
        and ``db_status``.
    feedback_url:
        Optional bug-report URL attached to backend-side failures.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        *,
        call_timeout: Optional[float] = None,
        probe_timeout: Optional[float] = 5.0,
        feedback_url: Optional[str] = None,
    ) -> None:
        for name in META_OPERATIONS:
            if registry.resolve(name) is not None:
                raise RegistryLoadError(f"Operation name '{name}' is reserved by the gateway.")
        self.registry = registry
        self.call_timeout = call_timeout
        self.probe_timeout = probe_timeout
        self.feedback_url = feedback_url
        self.logger = get_logger(__name__)
        self._meta: Mapping[str, OperationDescriptor] = MappingProxyType(self._build_meta_operations())

    @classmethod
    def from_adapters(cls, adapters: Iterable["BackendAdapter"], **options: Any) -> "DispatchGateway":
        """Build the registry (reserving meta-operation names) and wrap it."""

        registry = AdapterRegistry.build(adapters, reserved=META_OPERATIONS)
        return cls(registry, **options)

    def _build_meta_operations(self) -> Dict[str, OperationDescriptor]:
        return {
            "db_list": OperationDescriptor(
                name="db_list",
                description="List all available databases and their tools",
                handler=self._db_list,
                parameters={"checkConnections": boolean_param("Check which databases are actually connected (slower)")},
            ),
            "db_help": OperationDescriptor(
                name="db_help",
                description="Get help for a database: its tools and their parameters",
                handler=self._db_help,
                parameters={"database": string_param("Database name to get help for (optional, shows all if omitted)")},
            ),
            "db_status": OperationDescriptor(
                name="db_status",
                description="Check database connection status",
                handler=self._db_status,
            ),
        }

    # ------------------------------------------------------------------ catalogue

    def operations(self) -> List[OperationDescriptor]:
        """Every callable operation: meta-operations first, then adapters in registration order."""

        return list(self._meta.values()) + [binding.operation for binding in self.registry.operations()]

    def get_operation(self, name: str) -> Optional[OperationDescriptor]:
        meta = self._meta.get(name)
        if meta is not None:
            return meta
        binding = self.registry.resolve(name)
        return binding.operation if binding else None

    # ------------------------------------------------------------------ dispatch

    async def invoke(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> Envelope:
        """
        Invoke one operation and return its envelope.

        Unknown names yield an ``operation_not_found`` failure without adapter
        attribution. Handler exceptions of any type become failures attributed
        to the operation and its adapter.
        """

        args = dict(arguments or {})
        descriptor = self._meta.get(name)
        adapter_name: Optional[str] = None
        if descriptor is None:
            binding = self.registry.resolve(name)
            if binding is None:
                failure = normalize_exception(OperationNotFoundError(f"Unknown operation: {name}"), operation=name)
                self.logger.info("Operation not found", extra={"operation": name, "outcome": "failure", "kind": failure.kind})
                return Envelope.failure(failure)
            descriptor = binding.operation
            adapter_name = binding.adapter.name

        started = time.perf_counter()
        try:
            envelope = Envelope.success(await self._run(descriptor, args))
        except Exception as exc:
            failure = normalize_exception(exc, operation=name, adapter=adapter_name, feedback_url=self.feedback_url)
            level = logging.INFO if failure.kind in CALLER_ERROR_KINDS else logging.WARNING
            self.logger.log(
                level,
                "Operation failed",
                extra={
                    "adapter": adapter_name,
                    "operation": name,
                    "outcome": "failure",
                    "kind": failure.kind,
                    "duration": time.perf_counter() - started,
                    "error": failure.message,
                },
            )
            return Envelope.failure(failure)

        self.logger.debug(
            "Operation completed",
            extra={"adapter": adapter_name, "operation": name, "outcome": "success", "duration": time.perf_counter() - started},
        )
        return envelope

    async def _run(self, descriptor: OperationDescriptor, args: Mapping[str, Any]) -> Any:
        if self.call_timeout is None:
            return await descriptor.handler(args)
        scope: Optional[anyio.CancelScope] = None
        try:
            with anyio.fail_after(self.call_timeout) as scope:
                return await descriptor.handler(args)
        except TimeoutError as exc:
            # Timeouts raised by the driver itself keep their own message.
            if scope is None or not scope.cancelled_caught:
                raise
            raise ConnectivityError(f"Operation '{descriptor.name}' timed out after {self.call_timeout:g}s.") from exc

    # ------------------------------------------------------------------ meta-operations

    async def list_adapters(self, *, check_connections: bool = False) -> Dict[str, Any]:
        """Adapters in registration order, optionally with a connectivity flag each."""

        adapters = self.registry.adapters()
        probes = await self._probe_all(adapters) if check_connections else {}
        databases: List[Dict[str, Any]] = []
        for adapter in adapters:
            entry: Dict[str, Any] = {
                "name": adapter.name,
                "description": adapter.description,
                "tools": list(adapter.operations),
            }
            if check_connections:
                entry["connected"] = probes.get(adapter.name, False)
            databases.append(entry)
        return {"databases": databases, "total": len(databases)}

    def describe(self, database: Optional[str] = None) -> Dict[str, Any]:
        """One adapter's full catalogue, or a summary of all adapters when ``database`` is empty."""

        if database:
            adapter = self.registry.require(database)
            return {
                "database": adapter.name,
                "description": adapter.description,
                "tools": [descriptor.catalogue_entry() for descriptor in adapter.operations.values()],
            }
        return {
            "databases": [
                {"name": adapter.name, "description": adapter.description, "toolCount": len(adapter.operations)} for adapter in self.registry.adapters()
            ]
        }

    async def status(self) -> Dict[str, Any]:
        """Partition adapters into connected and disconnected, preserving registration order."""

        adapters = self.registry.adapters()
        probes = await self._probe_all(adapters)
        connected = [adapter.name for adapter in adapters if probes.get(adapter.name)]
        disconnected = [adapter.name for adapter in adapters if not probes.get(adapter.name)]
        return {
            "connected": connected,
            "disconnected": disconnected,
            "summary": f"{len(connected)}/{len(adapters)} databases connected",
        }

    async def _db_list(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        flag = args.get("checkConnections", False)
        if isinstance(flag, str):
            flag = flag.strip().lower() in {"1", "true", "yes"}
        return await self.list_adapters(check_connections=bool(flag))

    async def _db_help(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        database = args.get("database")
        return self.describe(str(database) if database else None)

    async def _db_status(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.status()

    async def _probe(self, adapter: "BackendAdapter") -> bool:
        connected = False
        try:
            with anyio.move_on_after(self.probe_timeout) as scope:
                connected = bool(await adapter.is_connected())
        except Exception as exc:
            # is_connected() must not raise; a misbehaving adapter still reports as disconnected.
            self.logger.warning("Connectivity probe raised", extra={"adapter": adapter.name, "error": str(exc)})
            return False
        if scope.cancelled_caught:
            self.logger.info("Connectivity probe timed out", extra={"adapter": adapter.name, "duration": self.probe_timeout})
            return False
        return connected

    async def _probe_all(self, adapters: List["BackendAdapter"]) -> Dict[str, bool]:
        results: Dict[str, bool] = {}

        async def _record(adapter: "BackendAdapter") -> None:
            results[adapter.name] = await self._probe(adapter)

        async with anyio.create_task_group() as group:
            for adapter in adapters:
                group.start_soon(_record, adapter)
        return results

    # ------------------------------------------------------------------ teardown

    async def shutdown(self) -> Dict[str, Any]:
        """
        Disconnect every adapter concurrently.

        Each disconnect is independently fallible: a failure is logged and
        reported but does not prevent the remaining adapters from closing.
        """

        disconnected: List[str] = []
        failed: Dict[str, str] = {}

        async def _disconnect(adapter: "BackendAdapter") -> None:
            try:
                await adapter.disconnect()
            except Exception as exc:
                failed[adapter.name] = str(exc) or exc.__class__.__name__
                self.logger.warning("Disconnect failed", extra={"adapter": adapter.name, "error": failed[adapter.name]})
            else:
                disconnected.append(adapter.name)

        adapters = self.registry.adapters()
        log_progress(self.logger, "Shutting down adapters", phase="shutdown", status="start", extra={"adapters": len(adapters)})
        async with anyio.create_task_group() as group:
            for adapter in adapters:
                group.start_soon(_disconnect, adapter)
        order = {name: index for index, name in enumerate(self.registry.names())}
        disconnected.sort(key=order.__getitem__)
        log_progress(
            self.logger,
            "Adapters shut down",
            phase="shutdown",
            status="done",
            result="partial" if failed else "ok",
            extra={"failed": sorted(failed) or None},
        )
        return {"disconnected": disconnected, "failed": failed}
