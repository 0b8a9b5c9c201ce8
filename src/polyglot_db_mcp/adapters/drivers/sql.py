"""
Statement builders shared by the relational adapters.

Callers always write ``?`` placeholders; :class:`Dialect` rewrites them to the
driver's native style (``?`` for sqlite/duckdb, ``$n`` for asyncpg, ``%s`` for
aiomysql). Identifiers are validated and quoted, and every value travels as a
bound parameter. ``where`` accepts either an object (``{"id": 3}`` becomes
``"id" = ?``) or a clause string with ``?`` placeholders plus ``whereParams``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ...core.errors import ValidationError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")
_ORDER_TERM = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_$.]*)\s*(ASC|DESC)?\s*(NULLS\s+(FIRST|LAST))?\s*$", re.IGNORECASE)
_READ_PREFIXES = ("select", "with", "pragma", "show", "explain", "describe", "desc", "values", "summarize", "from")


@dataclass(frozen=True, slots=True)
class Dialect:
    """
    Placeholder and quoting rules for one driver.

    Attributes
    ----------
    name:
        Dialect label used in error messages.
    quote_char:
        Identifier quote character.
    placeholder:
        ``qmark`` (``?``), ``numeric`` (``$1``) or ``format`` (``%s``).
    """

    name: str
    quote_char: str = '"'
    placeholder: str = "qmark"

    def quote(self, name: str, *, dotted: bool = True) -> str:
        parts = name.split(".") if dotted else [name]
        if not name or not all(_IDENTIFIER.match(part) for part in parts):
            raise ValidationError(f"Invalid identifier '{name}'.")
        return ".".join(f"{self.quote_char}{part}{self.quote_char}" for part in parts)

    def convert(self, text: str, *, start: int = 1) -> str:
        """
        Rewrite ``?`` placeholders outside quoted sections into the native style.

        ``??`` stands for a literal ``?``. With ``$n`` placeholders the jsonb
        operators ``?|`` and ``?&`` are left alone; a bare jsonb ``?`` has to
        be written ``??``.
        """

        if self.placeholder == "qmark":
            return text
        return self._rewrite(text, start)[0]

    def count(self, text: str) -> int:
        """Number of placeholders :meth:`convert` would bind in ``text``."""

        if self.placeholder == "qmark":
            return count_placeholders(text)
        return self._rewrite(text, 1)[1] - 1

    def _rewrite(self, text: str, start: int) -> Tuple[str, int]:
        output: List[str] = []
        index = start
        quote: Optional[str] = None
        position = 0
        while position < len(text):
            char = text[position]
            following = text[position + 1 : position + 3]
            position += 1
            if quote:
                if char == quote:
                    quote = None
            elif char in ("'", '"', "`"):
                quote = char
            elif char == "?":
                if following[:1] == "?":
                    output.append("?")
                    position += 1
                    continue
                if self.placeholder == "numeric" and following[:1] in ("|", "&") and following != "||":
                    output.append(char)
                    continue
                output.append(self.marker(index))
                index += 1
                continue
            if self.placeholder == "format" and char == "%":
                output.append("%%")
                continue
            output.append(char)
        return "".join(output), index

    def marker(self, position: int) -> str:
        if self.placeholder == "numeric":
            return f"${position}"
        if self.placeholder == "format":
            return "%s"
        return "?"


SQLITE = Dialect("sqlite")
DUCKDB = Dialect("duckdb")
POSTGRES = Dialect("postgresql", placeholder="numeric")
MYSQL = Dialect("mariadb", quote_char="`", placeholder="format")


def count_placeholders(text: str) -> int:
    count = 0
    quote: Optional[str] = None
    for char in text:
        if quote:
            if char == quote:
                quote = None
        elif char in ("'", '"', "`"):
            quote = char
        elif char == "?":
            count += 1
    return count


def is_read_statement(sql: str) -> bool:
    stripped = sql.lstrip().lstrip("(").lower()
    return stripped.startswith(_READ_PREFIXES)


def where_arg(args: Mapping[str, Any]) -> Any:
    """Read ``where`` as an object of equalities (native or JSON text) or a clause string."""

    value = args.get("where")
    if isinstance(value, str) and value.strip().startswith("{"):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"'where' is not valid JSON: {exc.msg}.") from exc
    return value


def row_data(value: Any, *, label: str = "data") -> Dict[str, Any]:
    if not isinstance(value, Mapping) or not value:
        raise ValidationError(f"'{label}' must be a non-empty JSON object of column: value pairs.")
    return dict(value)


def build_where(
    dialect: Dialect,
    where: Any,
    where_params: Optional[Sequence[Any]] = None,
    *,
    start: int = 1,
) -> Tuple[str, List[Any]]:
    """
    Return ``(clause, params)`` for a WHERE condition, or ``("", [])`` when empty.

    Parameters
    ----------
    where:
        ``None``, an object of column equalities, or a clause string using ``?``.
    where_params:
        Values for the ``?`` placeholders of a clause string.
    start:
        Position of the first placeholder, for numeric dialects.
    """

    if where is None or where == "" or where == {}:
        if where_params:
            raise ValidationError("'whereParams' given without a 'where' clause.")
        return "", []
    if isinstance(where, Mapping):
        terms: List[str] = []
        params: List[Any] = []
        position = start
        for column, value in where.items():
            if value is None:
                terms.append(f"{dialect.quote(str(column))} IS NULL")
                continue
            terms.append(f"{dialect.quote(str(column))} = {dialect.marker(position)}")
            params.append(value)
            position += 1
        return " AND ".join(terms), params
    if isinstance(where, str):
        if ";" in where:
            raise ValidationError("'where' must be a single condition without ';'.")
        params = list(where_params or [])
        expected = dialect.count(where)
        if expected != len(params):
            raise ValidationError(f"'where' has {expected} placeholder(s) but {len(params)} parameter(s) were given.")
        return dialect.convert(where, start=start), params
    raise ValidationError("'where' must be an object of column equalities or a clause string.")


def build_insert(dialect: Dialect, table: str, data: Mapping[str, Any], *, returning: Optional[Sequence[str]] = None) -> Tuple[str, List[Any]]:
    columns = list(data)
    markers = ", ".join(dialect.marker(position) for position in range(1, len(columns) + 1))
    sql = f"INSERT INTO {dialect.quote(table)} ({', '.join(dialect.quote(column, dotted=False) for column in columns)}) VALUES ({markers})"
    if returning:
        sql += f" RETURNING {select_list(dialect, returning)}"
    return sql, [data[column] for column in columns]


def build_update(
    dialect: Dialect,
    table: str,
    data: Mapping[str, Any],
    where: Any,
    where_params: Optional[Sequence[Any]] = None,
) -> Tuple[str, List[Any]]:
    columns = list(data)
    assignments = ", ".join(f"{dialect.quote(column, dotted=False)} = {dialect.marker(position)}" for position, column in enumerate(columns, start=1))
    clause, clause_params = build_where(dialect, where, where_params, start=len(columns) + 1)
    if not clause:
        raise ValidationError("UPDATE requires a 'where' condition; refusing to modify every row.")
    return f"UPDATE {dialect.quote(table)} SET {assignments} WHERE {clause}", [data[column] for column in columns] + clause_params


def build_delete(dialect: Dialect, table: str, where: Any, where_params: Optional[Sequence[Any]] = None) -> Tuple[str, List[Any]]:
    clause, params = build_where(dialect, where, where_params)
    if not clause:
        raise ValidationError("DELETE requires a 'where' condition; refusing to remove every row.")
    return f"DELETE FROM {dialect.quote(table)} WHERE {clause}", params


def select_list(dialect: Dialect, columns: Sequence[str] | str | None) -> str:
    if columns is None or columns == "*" or columns == ["*"]:
        return "*"
    if isinstance(columns, str):
        columns = [item.strip() for item in columns.split(",") if item.strip()]
    if not columns:
        return "*"
    return ", ".join(dialect.quote(str(column)) for column in columns)


def order_by(dialect: Dialect, value: Optional[str]) -> str:
    if not value:
        return ""
    terms: List[str] = []
    for term in value.split(","):
        match = _ORDER_TERM.match(term)
        if not match:
            raise ValidationError(f"Invalid ORDER BY term '{term.strip()}'.")
        column, direction, nulls = match.group(1), match.group(2), match.group(3)
        rendered = dialect.quote(column)
        if direction:
            rendered += f" {direction.upper()}"
        if nulls:
            rendered += f" {' '.join(nulls.upper().split())}"
        terms.append(rendered)
    return " ORDER BY " + ", ".join(terms)


def parse_statements(value: Any) -> List[Tuple[str, List[Any]]]:
    """Validate a transaction payload: a list of ``{sql, params}`` objects."""

    if not isinstance(value, list) or not value:
        raise ValidationError("'statements' must be a non-empty JSON array of {sql, params} objects.")
    statements: List[Tuple[str, List[Any]]] = []
    for position, item in enumerate(value):
        if not isinstance(item, Mapping) or not isinstance(item.get("sql"), str) or not item["sql"].strip():
            raise ValidationError(f"statements[{position}] must be an object with a non-empty 'sql' string.")
        params = item.get("params") or []
        if not isinstance(params, list):
            raise ValidationError(f"statements[{position}].params must be an array.")
        statements.append((item["sql"], params))
    return statements


def affected_rows(status: str) -> int:
    """Parse the row count out of a PostgreSQL command tag such as ``UPDATE 3``."""

    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0
