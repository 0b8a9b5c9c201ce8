from __future__ import annotations

from pathlib import Path

import pytest

from polyglot_db_mcp.adapters.drivers import DuckDBAdapter
from polyglot_db_mcp.adapters.drivers.duckdb import file_literal
from polyglot_db_mcp.core import ValidationError

pytestmark = pytest.mark.anyio


@pytest.fixture()
async def adapter(anyio_backend):
    duck = DuckDBAdapter({"DUCKDB_PATH": ":memory:"})
    yield duck
    await duck.disconnect()


@pytest.fixture()
def sales_csv(tmp_path: Path) -> Path:
    path = tmp_path / "sales.csv"
    path.write_text("region,amount\nnorth,10\nsouth,25\nnorth,5\n", encoding="utf-8")
    return path


def test_file_literal_escapes_quotes():
    assert file_literal("/data/o'brien.csv") == "'/data/o''brien.csv'"
    with pytest.raises(ValidationError):
        file_literal("bad\x00path")


async def test_exec_and_parameterised_query(adapter):
    await adapter.duck_exec({"sql": "CREATE TABLE t (id INTEGER, label VARCHAR)"})
    await adapter.duck_exec({"sql": "INSERT INTO t VALUES (?, ?), (?, ?)", "params": [1, "a", 2, "b"]})

    result = await adapter.duck_query({"sql": "SELECT label FROM t WHERE id > ?", "params": "[1]"})

    assert result == {"count": 1, "rows": [{"label": "b"}], "truncated": False}


async def test_query_truncates_large_results(adapter):
    result = await adapter.duck_query({"sql": "SELECT * FROM range(1500)"})

    assert result["count"] == 1500
    assert len(result["rows"]) == 1000
    assert result["truncated"] is True


async def test_read_csv_with_and_without_query(adapter, sales_csv):
    preview = await adapter.duck_read_csv({"path": str(sales_csv), "limit": 2})
    grouped = await adapter.duck_read_csv(
        {"path": str(sales_csv), "query": "SELECT region, SUM(amount) AS total FROM csv GROUP BY region ORDER BY region"}
    )

    assert preview["count"] == 2
    assert [row["region"] for row in grouped["rows"]] == ["north", "south"]
    assert [int(row["total"]) for row in grouped["rows"]] == [15, 25]


async def test_import_and_export_roundtrip(adapter, sales_csv, tmp_path):
    imported = await adapter.duck_import_csv({"path": str(sales_csv), "table": "sales"})
    exported = await adapter.duck_export_parquet({"sql": "SELECT * FROM sales", "path": str(tmp_path / "sales.parquet")})
    reread = await adapter.duck_read_parquet({"path": exported["exported_to"]})
    tables = await adapter.duck_tables({})

    assert imported == {"table": "sales", "rows_imported": 3}
    assert reread["count"] == 3
    assert {"name": "sales"} in tables["tables"]


async def test_describe_table_and_query(adapter):
    await adapter.duck_exec({"sql": "CREATE TABLE t (id INTEGER, label VARCHAR)"})

    table = await adapter.duck_describe({"target": "t"})
    query = await adapter.duck_describe({"target": "SELECT id FROM t"})

    assert [column["column_name"] for column in table["columns"]] == ["id", "label"]
    assert [column["column_name"] for column in query["columns"]] == ["id"]


async def test_describe_rejects_unquotable_names(adapter):
    with pytest.raises(ValidationError, match="Invalid identifier"):
        await adapter.duck_describe({"target": "t; DROP TABLE t"})
