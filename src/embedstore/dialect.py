"""Dialect-aware SQL helpers — JSON metadata predicates and lexical text match."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from sqlalchemy import String, and_, case, cast, func, literal, true

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, Engine
    from sqlalchemy.ext.asyncio import AsyncEngine


def get_dialect(engine: Engine | AsyncEngine) -> str:
    """Return 'sqlite', 'postgresql', or 'mssql'."""
    # AsyncEngine wraps a sync engine
    sync_engine = getattr(engine, "sync_engine", engine)
    name = sync_engine.dialect.name
    if name == "sqlite":
        return "sqlite"
    if name in ("postgresql", "postgres"):
        return "postgresql"
    if name in ("mssql", "pyodbc"):
        return "mssql"
    return name


def _json_path(key: str) -> str:
    # Quoted member so keys containing dots or spaces address one member.
    return "$." + json.dumps(key)


def json_has_key(column: Any, key: str, dialect: str) -> ColumnElement[bool]:
    """Predicate: the JSON document in *column* has a top-level *key*.

    A key mapped to JSON ``null`` still counts as present.

    - SQLite: ``json_type(col, '$."key"') IS NOT NULL``
    - PostgreSQL: ``(col -> 'key') IS NOT NULL``
    - MSSQL: ``JSON_PATH_EXISTS(col, '$."key"') = 1``
    """
    if dialect == "postgresql":
        return column.op("->")(literal(key, type_=String)).is_not(None)
    if dialect == "mssql":
        return func.JSON_PATH_EXISTS(column, _json_path(key)) == 1
    return func.json_type(column, _json_path(key)).is_not(None)


def json_text(column: Any, key: str, dialect: str) -> ColumnElement[str]:
    """Expression: the value at top-level *key* rendered as text.

    - SQLite: ``json_extract`` cast to text, with JSON booleans as ``true``/``false``
    - PostgreSQL: ``col ->> 'key'``
    - MSSQL: ``JSON_VALUE(col, '$."key"')``
    """
    if dialect == "postgresql":
        return column.op("->>", return_type=String)(literal(key, type_=String))
    if dialect == "mssql":
        return func.JSON_VALUE(column, _json_path(key), type_=String)
    path = _json_path(key)
    return case(
        (func.json_type(column, path) == "true", literal("true", type_=String)),
        (func.json_type(column, path) == "false", literal("false", type_=String)),
        else_=cast(func.json_extract(column, path), String),
    )


def json_is_null(column: Any, key: str, dialect: str) -> ColumnElement[bool]:
    """Predicate: top-level *key* is present and holds JSON ``null``.

    - SQLite: ``json_type(col, '$."key"') = 'null'``
    - PostgreSQL: ``CAST(col -> 'key' AS TEXT) = 'null'``
    - MSSQL: path exists and neither ``JSON_VALUE`` nor ``JSON_QUERY`` yields a value
    """
    if dialect == "postgresql":
        return cast(column.op("->")(literal(key, type_=String)), String) == "null"
    if dialect == "mssql":
        path = _json_path(key)
        return and_(
            func.JSON_PATH_EXISTS(column, path) == 1,
            func.JSON_VALUE(column, path).is_(None),
            func.JSON_QUERY(column, path).is_(None),
        )
    return func.json_type(column, _json_path(key)) == "null"


def metadata_equals(column: Any, key: str, value: Any, dialect: str) -> ColumnElement[bool]:
    """Predicate: metadata *key* equals the Python *value*.

    ``None`` matches a key holding JSON ``null``; other values compare as text.
    """
    if value is None:
        return json_is_null(column, key, dialect)
    return json_text(column, key, dialect) == metadata_value_text(value)


def metadata_value_text(value: Any) -> str:
    """Render a Python metadata value the way :func:`json_text` renders it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def text_match(column: Any, term: str, dialect: str) -> ColumnElement[bool]:
    """Lexical match of *term* against a text column.

    - PostgreSQL: ``to_tsvector('english', col) @@ plainto_tsquery('english', term)``
    - Others: every whitespace-separated word must appear (case-insensitive ``LIKE``)

    An empty term matches everything.
    """
    words = term.split()
    if not words:
        return true()
    if dialect == "postgresql":
        return func.to_tsvector("english", column).bool_op("@@")(
            func.plainto_tsquery("english", term)
        )
    return and_(*(column.ilike(f"%{_escape_like(w)}%", escape="\\") for w in words))
