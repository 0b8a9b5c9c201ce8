"""
InfluxDB 2.x adapter: Flux queries, line-protocol writes and bucket metadata.

Helper operations that assemble Flux from arguments never splice raw caller
text into string positions. Bucket, measurement and field names are emitted as
escaped Flux string literals; durations, timestamps and aggregate functions are
checked against strict patterns. ``influx_query`` and the optional ``filter``
expression accept Flux source by design.
"""

from __future__ import annotations

import csv
import io
import re
from typing import Any, Dict, List, Mapping, Optional

from ...core.descriptors import number_param, operation, string_param
from ...core.errors import ValidationError
from .base import HTTPBackendAdapter

DURATION = re.compile(r"^-?\d+(ns|us|µs|ms|s|m|h|d|w|mo|y)$")
RFC3339 = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$")
AGGREGATES = ("mean", "sum", "count", "min", "max", "last", "first", "median", "stddev", "spread")
PRECISIONS = ("ns", "us", "ms", "s")


def flux_string(value: str) -> str:
    """Render ``value`` as a Flux string literal."""

    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("${", "\\${").replace("\n", "\\n")
    return f'"{escaped}"'


def parse_annotated_csv(text: str) -> List[Dict[str, Any]]:
    """Flatten Flux CSV output (one or more tables separated by blank lines) into records."""

    records: List[Dict[str, Any]] = []
    for block in re.split(r"\r?\n\s*\r?\n", text.strip()):
        lines = [line for line in block.splitlines() if line.strip() and not line.startswith("#")]
        if len(lines) < 2:
            continue
        reader = csv.DictReader(io.StringIO("\n".join(lines)))
        for row in reader:
            records.append({key: value for key, value in row.items() if key})
    return records


def _escape_key(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,").replace("=", "\\=").replace(" ", "\\ ")


def _field_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"{value}i"
    if isinstance(value, float):
        return repr(value)
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def line_protocol(measurement: str, tags: Mapping[str, Any], fields: Mapping[str, Any], timestamp: Optional[str]) -> str:
    measurement_part = measurement.replace("\\", "\\\\").replace(",", "\\,").replace(" ", "\\ ")
    tag_part = ",".join(f"{_escape_key(str(key))}={_escape_key(str(value))}" for key, value in sorted(tags.items()))
    field_part = ",".join(f"{_escape_key(str(key))}={_field_value(value)}" for key, value in fields.items())
    line = f"{measurement_part},{tag_part}" if tag_part else measurement_part
    line = f"{line} {field_part}"
    if timestamp:
        line = f"{line} {timestamp}"
    return line


class InfluxDBAdapter(HTTPBackendAdapter):
    name = "influxdb"
    description = "InfluxDB - Time series database for metrics and events"
    prefixes = ("influx",)
    health_path = "/ping"

    def base_url(self) -> str:
        return self.env.string("INFLUXDB_URL", default="http://localhost:8086") or "http://localhost:8086"

    def default_headers(self) -> Dict[str, str]:
        token = self.env.string("INFLUXDB_TOKEN")
        return {"Authorization": f"Token {token}"} if token else {}

    @property
    def org(self) -> str:
        return self.env.string("INFLUXDB_ORG", default="default") or "default"

    def _bucket(self, args: Mapping[str, Any]) -> str:
        return self.optional_str(args, "bucket") or self.env.string("INFLUXDB_BUCKET", default="default") or "default"

    @staticmethod
    def _range(args: Mapping[str, Any], default: str) -> str:
        value = args.get("range") or default
        if not isinstance(value, str) or not (DURATION.match(value) or RFC3339.match(value)):
            raise ValidationError(f"'range' must be a Flux duration such as -1h or an RFC3339 time, got {value!r}.")
        return value

    async def _flux(self, query: str, *, org: Optional[str] = None) -> Any:
        result = await self.request(
            "POST",
            "/api/v2/query",
            params={"org": org or self.org},
            json_body={"query": query, "type": "flux"},
            headers={"Accept": "application/csv"},
        )
        if isinstance(result, str):
            return parse_annotated_csv(result)
        return result

    def _records(self, result: Any) -> Dict[str, Any]:
        if isinstance(result, list):
            return {"records": result, "count": len(result)}
        return {"result": result}

    @operation(
        "Execute a Flux query",
        query=string_param("Flux query to execute", required=True),
        org=string_param("Organization (optional, uses default)"),
    )
    async def influx_query(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return self._records(await self._flux(self.require_str(args, "query"), org=self.optional_str(args, "org")))

    @operation(
        "Write data points in line protocol format",
        data=string_param("Line protocol data (measurement,tags fields timestamp)", required=True),
        bucket=string_param("Bucket name (optional, uses default)"),
        precision=string_param("Timestamp precision: ns, us, ms, s (default: ns)"),
    )
    async def influx_write(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        data = self.require_str(args, "data")
        precision = self.optional_str(args, "precision", "ns")
        if precision not in PRECISIONS:
            raise ValidationError(f"'precision' must be one of: {', '.join(PRECISIONS)}.")
        await self.request(
            "POST",
            "/api/v2/write",
            params={"org": self.org, "bucket": self._bucket(args), "precision": precision},
            content=data,
            headers={"Content-Type": "text/plain; charset=utf-8"},
        )
        return {"success": True, "linesWritten": len([line for line in data.splitlines() if line.strip()])}

    @operation(
        "Write a single data point with structured input",
        measurement=string_param("Measurement name", required=True),
        tags=string_param("Tags as JSON object (optional)"),
        fields=string_param("Fields as JSON object", required=True),
        timestamp=string_param("Unix timestamp in nanoseconds (optional)"),
        bucket=string_param("Bucket name (optional)"),
    )
    async def influx_write_point(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        measurement = self.require_str(args, "measurement")
        tags = self.json_arg(args, "tags", expect=dict) or {}
        fields = self.json_arg(args, "fields", expect=dict, required=True)
        if not fields:
            raise ValidationError("'fields' must contain at least one field.")
        timestamp = args.get("timestamp")
        if timestamp not in (None, ""):
            timestamp = str(timestamp)
            if not timestamp.isdigit():
                raise ValidationError("'timestamp' must be a Unix timestamp in nanoseconds.")
        line = line_protocol(measurement, tags, fields, timestamp or None)
        await self.request(
            "POST",
            "/api/v2/write",
            params={"org": self.org, "bucket": self._bucket(args), "precision": "ns"},
            content=line,
            headers={"Content-Type": "text/plain; charset=utf-8"},
        )
        return {"success": True, "measurement": measurement, "line": line}

    @operation(
        "Simple query for a measurement over a time range",
        measurement=string_param("Measurement name", required=True),
        range=string_param("Time range (e.g., -1h, -7d, -30d)"),
        bucket=string_param("Bucket name (optional)"),
        filter=string_param("Additional Flux filter (optional)"),
        limit=number_param("Max records (default 100)"),
    )
    async def influx_query_simple(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        lines = [
            f"from(bucket: {flux_string(self._bucket(args))})",
            f"  |> range(start: {self._range(args, '-1h')})",
            f"  |> filter(fn: (r) => r._measurement == {flux_string(self.require_str(args, 'measurement'))})",
        ]
        extra_filter = self.optional_str(args, "filter")
        if extra_filter:
            lines.append(f"  |> filter(fn: (r) => {extra_filter})")
        lines.append(f"  |> limit(n: {self.int_arg(args, 'limit', 100, minimum=1)})")
        return self._records(await self._flux("\n".join(lines)))

    @operation(
        "Aggregate data over time windows",
        measurement=string_param("Measurement name", required=True),
        range=string_param("Time range (e.g., -1h, -7d)"),
        window=string_param("Aggregation window (e.g., 1m, 5m, 1h)"),
        fn=string_param("Aggregation function: mean, sum, count, min, max, last"),
        bucket=string_param("Bucket name (optional)"),
        field=string_param("Field to aggregate (default: _value)"),
    )
    async def influx_aggregate(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        window = self.optional_str(args, "window", "5m")
        if not DURATION.match(window) or window.startswith("-"):
            raise ValidationError(f"'window' must be a positive Flux duration such as 5m, got {window!r}.")
        function = self.optional_str(args, "fn", "mean")
        if function not in AGGREGATES:
            raise ValidationError(f"'fn' must be one of: {', '.join(AGGREGATES)}.")
        query = "\n".join(
            [
                f"from(bucket: {flux_string(self._bucket(args))})",
                f"  |> range(start: {self._range(args, '-1h')})",
                f"  |> filter(fn: (r) => r._measurement == {flux_string(self.require_str(args, 'measurement'))})",
                f"  |> filter(fn: (r) => r._field == {flux_string(self.optional_str(args, 'field', '_value'))})",
                f"  |> aggregateWindow(every: {window}, fn: {function}, createEmpty: false)",
                f"  |> yield(name: {flux_string(function)})",
            ]
        )
        return self._records(await self._flux(query))

    @operation("List all buckets", org=string_param("Organization (optional)"))
    async def influx_buckets(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self.request("GET", "/api/v2/buckets", params={"org": self.optional_str(args, "org") or self.org}) or {}
        buckets = [{"name": item.get("name"), "id": item.get("id"), "retentionRules": item.get("retentionRules")} for item in result.get("buckets") or []]
        return {"buckets": buckets, "count": len(buckets)}

    @operation(
        "List measurements in a bucket",
        bucket=string_param("Bucket name (optional)"),
        range=string_param("Time range to search (default: -30d)"),
    )
    async def influx_measurements(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        query = "\n".join(
            [
                'import "influxdata/influxdb/schema"',
                f"schema.measurements(bucket: {flux_string(self._bucket(args))}, start: {self._range(args, '-30d')})",
            ]
        )
        result = await self._flux(query)
        if isinstance(result, list):
            measurements = [row["_value"] for row in result if row.get("_value")]
            return {"measurements": measurements, "count": len(measurements)}
        return {"result": result}

    @operation(
        "List tag keys for a measurement",
        measurement=string_param("Measurement name", required=True),
        bucket=string_param("Bucket name (optional)"),
        range=string_param("Time range (default: -30d)"),
    )
    async def influx_tags(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        query = "\n".join(
            [
                'import "influxdata/influxdb/schema"',
                "schema.tagKeys(",
                f"  bucket: {flux_string(self._bucket(args))},",
                f"  predicate: (r) => r._measurement == {flux_string(self.require_str(args, 'measurement'))},",
                f"  start: {self._range(args, '-30d')},",
                ")",
            ]
        )
        result = await self._flux(query)
        if isinstance(result, list):
            tags = [row["_value"] for row in result if row.get("_value")]
            return {"tags": tags, "count": len(tags)}
        return {"result": result}

    @operation(
        "Delete data by time range and optional predicate",
        start=string_param("Start time (RFC3339 format)", required=True),
        stop=string_param("Stop time (RFC3339 format)", required=True),
        predicate=string_param('Delete predicate (e.g., _measurement="cpu")'),
        bucket=string_param("Bucket name (optional)"),
    )
    async def influx_delete(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        start = self.require_str(args, "start")
        stop = self.require_str(args, "stop")
        for key, value in (("start", start), ("stop", stop)):
            if not RFC3339.match(value):
                raise ValidationError(f"'{key}' must be an RFC3339 timestamp.")
        body: Dict[str, Any] = {"start": start, "stop": stop}
        predicate = self.optional_str(args, "predicate")
        if predicate:
            body["predicate"] = predicate
        await self.request("POST", "/api/v2/delete", params={"org": self.org, "bucket": self._bucket(args)}, json_body=body)
        return {"deleted": True, "start": start, "stop": stop, "predicate": predicate}

    @operation("Get InfluxDB health status")
    async def influx_health(self, args: Mapping[str, Any]) -> Any:
        return await self.request("GET", "/health")
