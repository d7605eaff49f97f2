"""SQLite database client wrapper with CRUD and conditional-write operations.

Conditional writes are the coordination primitive for the whole service:
``create_record_if_absent`` relies on unique indexes, ``update_record_if`` and
``update_records`` carry their guard in the WHERE clause, and ``adjust_field``
applies relative changes in a single statement. Writes on a shared connection
are serialized by a per-connection lock so that explicit transactions never
interleave with other coroutines' statements.
"""

import asyncio
import json
import logging
import re
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from src.core.config import constants, settings


logger = logging.getLogger(__name__)


class DatabaseError(RuntimeError):
    """Store or connectivity failure; callers may retry the whole operation."""


class RecordNotFoundError(KeyError):
    """Requested record does not exist."""


class DuplicateRecordError(DatabaseError):
    """A write collided with a unique index; retrying the same write will not help."""


# Foreign key columns that don't follow the *_id naming convention
_FK_FIELDS = {"id", "assigned_to", "created_by", "original_assignee"}

# Columns holding JSON-encoded values
_JSON_FIELDS = {"recurring_days", "point_split"}


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def _validate_field_name(field: str) -> None:
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", field):
        msg = f"Invalid field name: {field}"
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in filter strings via json.dumps."""
    return json.dumps(str(value))[1:-1]


def _to_record(columns: list[str], row: tuple[Any, ...]) -> dict[str, Any]:
    """Build a record dict, stringifying ids and decoding JSON columns."""
    record = dict(zip(columns, row, strict=True))
    for key, value in record.items():
        if isinstance(value, int) and (key in _FK_FIELDS or key.endswith("_id")):
            record[key] = str(value)
        elif key in _JSON_FIELDS and isinstance(value, str):
            record[key] = json.loads(value)
    return record


def _to_db_value(value: Any) -> Any:  # noqa: ANN401
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict | list):
        return json.dumps(value)
    return value


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(value: str, *, is_like: bool = False) -> str | int | float | bool | None:
    """Parse a string value to the appropriate Python type for SQLite."""
    if is_like:
        return value.replace("%", "\\%").replace("_", "\\_")

    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)

    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    return value


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "LIKE",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


def _parse_single_comparison(comparison: str) -> tuple[str, list[str | int | float | None]]:
    """Parse one comparison into a SQL condition and its parameters.

    ``field = null`` and ``field != null`` become IS NULL / IS NOT NULL.
    """
    null_match = re.match(r"^(\w+)\s*(=|!=)\s*null$", comparison)
    if null_match:
        field = null_match.group(1)
        keyword = "IS NULL" if null_match.group(2) == "=" else "IS NOT NULL"
        return f"{field} {keyword}", []

    match = re.match(
        r"""^(\w+)\s*(=|!=|>=|<=|>|<|~)\s*(['"])([^'"]*)\3$""",
        comparison,
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    sql_op = _get_sql_operator(match.group(2))
    value = _parse_value(match.group(4), is_like=sql_op == "LIKE")
    if sql_op == "LIKE":
        return f"{field} LIKE ? ESCAPE '\\'", [f"%{value}%"]
    return f"{field} {sql_op} ?", [value]


def _parse_or_group(or_group: str) -> tuple[str, list[str | int | float | None]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]
    or_conditions = []
    or_params: list[str | int | float | None] = []

    for part in (p.strip() for p in inner.split("||")):
        cond, values = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.extend(values)

    return f"({' OR '.join(or_conditions)})", or_params


def _split_and_conditions(filter_query: str) -> list[str]:
    """Split filter query by && while preserving parenthesized groups."""
    parts = []
    current = ""
    paren_depth = 0

    for char in filter_query:
        if char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1

        current += char

        if paren_depth == 0 and current.endswith("&&"):
            parts.append(current[:-2].strip())
            current = ""

    if current.strip():
        parts.append(current.strip())

    return parts


def parse_filter(filter_query: str) -> tuple[str, list[str | int | float | None]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list.

    Syntax: ``field = "value" && (a = "x" || a = "y") && other = null``.
    """
    if not filter_query:
        return "", []

    conditions = []
    params: list[str | int | float | None] = []

    for raw_part in _split_and_conditions(filter_query):
        part = raw_part.strip()
        if part.startswith("(") and part.endswith(")"):
            cond, cond_params = _parse_or_group(part)
        else:
            cond, cond_params = _parse_single_comparison(part)
        conditions.append(cond)
        params.extend(cond_params)

    return " AND ".join(conditions), params


def _parse_sort(sort: str) -> str:
    """Translate ``field``, ``+field``, ``-field`` or ``field ASC|DESC`` into an ORDER BY clause."""
    if not sort:
        return "id ASC"
    parts = []
    for raw in sort.split(","):
        item = raw.strip()
        match = re.match(r"^([+-])?([A-Za-z_][A-Za-z0-9_]*)(?:\s+(ASC|DESC))?$", item, re.IGNORECASE)
        if not match:
            logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
            return "id ASC"
        direction = "DESC" if match.group(1) == "-" else (match.group(3) or "ASC").upper()
        parts.append(f"{match.group(2)} {direction}")
    return ", ".join(parts)


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_write_locks: dict[tuple[int, int, str], asyncio.Lock] = {}
_connect_locks: dict[int, asyncio.Lock] = {}


def _cache_key(db_path: str | None) -> tuple[int, int, str]:
    loop = asyncio.get_running_loop()
    return threading.get_ident(), id(loop), str(get_db_path(db_path))


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)
    cached = _db_connections.get(cache_key)
    if cached is not None:
        return cached

    loop_id = cache_key[1]
    connect_lock = _connect_locks.setdefault(loop_id, asyncio.Lock())
    async with connect_lock:
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path = Path(cache_key[2])
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(path))
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.execute("PRAGMA busy_timeout = 5000")

        _db_connections[cache_key] = conn
        _write_locks[cache_key] = asyncio.Lock()

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": cache_key[0], "loop_id": loop_id},
        )
        return conn


async def _writer(db_path: str | None = None) -> tuple[aiosqlite.Connection, asyncio.Lock]:
    conn = await get_connection(db_path=db_path)
    return conn, _write_locks[_cache_key(db_path)]


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)
    conn = _db_connections.pop(cache_key, None)
    _write_locks.pop(cache_key, None)
    _connect_locks.pop(cache_key[1], None)
    if conn is None:
        return

    try:
        await conn.close()
        logger.info("Closed SQLite connection", extra={"db_path": cache_key[2]})
    except Exception as e:
        logger.warning("Error closing SQLite connection", extra={"error": str(e), "db_path": cache_key[2]})


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from src.core import schema

    await schema.init_db(db_path=db_path)


def _raise_wrapped(action: str, collection: str, error: Exception) -> None:
    if isinstance(error, aiosqlite.IntegrityError) and "UNIQUE" in str(error):
        logger.info(f"{action}_conflict", extra={"collection": collection, "error": str(error)})
        msg = f"Failed to {action.replace('_', ' ')} in {collection}: {error}"
        raise DuplicateRecordError(msg) from error
    if isinstance(error, aiosqlite.OperationalError) and "no such table" in str(error):
        msg = f"Table '{collection}' does not exist. Call init_db() first."
        logger.error("Table not found", extra={"collection": collection})
        raise DatabaseError(msg) from error
    logger.error(f"{action}_failed", extra={"collection": collection, "error": str(error)})
    msg = f"Failed to {action.replace('_', ' ')} in {collection}: {error}"
    raise DatabaseError(msg) from error


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    try:
        _validate_collection_name(collection)
        conn, lock = await _writer()

        columns = list(data.keys())
        columns_str = ", ".join(columns)
        placeholders_str = ", ".join("?" for _ in columns)
        values = [_to_db_value(data[key]) for key in columns]

        query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - collection is validated
        async with lock:
            cursor = await conn.execute(query, values)
            await conn.commit()

        record_id = cursor.lastrowid
        result = await get_record(collection=collection, record_id=str(record_id))

        logger.info("Created record", extra={"collection": collection, "record_id": record_id})
        return result
    except Exception as e:
        _raise_wrapped("create_record", collection, e)
        raise


async def create_record_if_absent(
    *,
    collection: str,
    data: dict[str, Any],
    sequence_field: str | None = None,
    sequence_scope: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Insert a record unless it collides with a unique index.

    When ``sequence_field`` is given its value is computed inside the same
    statement as one more than the current maximum among rows matching
    ``sequence_scope``, so concurrent inserts can't reuse a sequence number.

    Returns:
        The created record, or None if a conflicting row already exists
    """
    try:
        _validate_collection_name(collection)
        conn, lock = await _writer()

        columns = list(data.keys())
        values = [_to_db_value(data[key]) for key in columns]

        if sequence_field:
            _validate_field_name(sequence_field)
            scope = sequence_scope or {}
            for field in scope:
                _validate_field_name(field)
            where = " AND ".join(f"{field} = ?" for field in scope) or "1"
            columns_str = ", ".join([*columns, sequence_field])
            select_values = ", ".join("?" for _ in columns)
            query = (
                f"INSERT INTO {collection} ({columns_str}) "  # noqa: S608 - names are validated
                f"SELECT {select_values}, COALESCE(MAX({sequence_field}), 0) + 1 FROM {collection} WHERE {where} "
                "ON CONFLICT DO NOTHING"
            )
            params = [*values, *(_to_db_value(v) for v in scope.values())]
        else:
            columns_str = ", ".join(columns)
            placeholders_str = ", ".join("?" for _ in columns)
            query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str}) ON CONFLICT DO NOTHING"  # noqa: S608 - collection is validated
            params = values

        async with lock:
            cursor = await conn.execute(query, params)
            await conn.commit()

        if cursor.rowcount == 0:
            logger.debug("Insert skipped by unique constraint", extra={"collection": collection})
            return None

        record_id = cursor.lastrowid
        logger.info("Created record", extra={"collection": collection, "record_id": record_id})
        return await get_record(collection=collection, record_id=str(record_id))
    except Exception as e:
        _raise_wrapped("create_record", collection, e)
        raise


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising RecordNotFoundError (a KeyError) if not found."""
    if not str(record_id).isdigit():
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, (int(record_id),))
        row = await cursor.fetchone()

        if row is None:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        columns = [description[0] for description in cursor.description]
        return _to_record(columns, row)
    except KeyError:
        raise
    except Exception as e:
        logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to get record from {collection}: {e}"
        raise DatabaseError(msg) from e


def _set_clause(data: dict[str, Any]) -> tuple[str, list[Any]]:
    for key in data:
        _validate_field_name(key)
    return ", ".join(f"{key} = ?" for key in data), [_to_db_value(v) for v in data.values()]


async def update_record(*, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Update a record by ID and return the updated record."""
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    try:
        _validate_collection_name(collection)
        conn, lock = await _writer()

        set_clause, values = _set_clause(data)
        values.append(int(record_id))

        query = f"UPDATE {collection} SET {set_clause}, updated = datetime('now') WHERE id = ?"  # noqa: S608 - collection is validated
        async with lock:
            cursor = await conn.execute(query, values)
            await conn.commit()

        if cursor.rowcount == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
        return await get_record(collection=collection, record_id=record_id)
    except KeyError:
        raise
    except Exception as e:
        _raise_wrapped("update_record", collection, e)
        raise


async def update_record_if(
    *, collection: str, record_id: str, data: dict[str, Any], condition: str
) -> dict[str, Any] | None:
    """Update a record only while ``condition`` (filter syntax) still holds.

    Returns:
        The updated record, or None if the record is missing or the condition no longer holds
    """
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    try:
        _validate_collection_name(collection)
        conn, lock = await _writer()

        set_clause, values = _set_clause(data)
        where_clause, params = parse_filter(condition)
        where_sql = f"id = ? AND {where_clause}" if where_clause else "id = ?"

        query = f"UPDATE {collection} SET {set_clause}, updated = datetime('now') WHERE {where_sql}"  # noqa: S608 - collection is validated
        async with lock:
            cursor = await conn.execute(query, [*values, int(record_id), *params])
            await conn.commit()

        if cursor.rowcount == 0:
            logger.info(
                "Conditional update not applied",
                extra={"collection": collection, "record_id": record_id, "condition": condition},
            )
            return None

        logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
        return await get_record(collection=collection, record_id=record_id)
    except Exception as e:
        _raise_wrapped("update_record", collection, e)
        raise


async def update_records(*, collection: str, data: dict[str, Any], filter_query: str) -> int:
    """Update every record matching ``filter_query`` in one statement and return the count."""
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)
    if not filter_query:
        msg = "Bulk update requires a filter"
        raise ValueError(msg)

    try:
        _validate_collection_name(collection)
        conn, lock = await _writer()

        set_clause, values = _set_clause(data)
        where_clause, params = parse_filter(filter_query)

        query = f"UPDATE {collection} SET {set_clause}, updated = datetime('now') WHERE {where_clause}"  # noqa: S608 - collection is validated
        async with lock:
            cursor = await conn.execute(query, [*values, *params])
            await conn.commit()

        logger.info("Updated records", extra={"collection": collection, "count": cursor.rowcount})
        return cursor.rowcount
    except Exception as e:
        _raise_wrapped("update_records", collection, e)
        raise


async def adjust_field(
    *, collection: str, record_id: str, field: str, delta: int, floor: int | None = 0
) -> dict[str, Any]:
    """Apply a relative change to a numeric field atomically, clamped at ``floor``."""
    try:
        _validate_collection_name(collection)
        _validate_field_name(field)
        conn, lock = await _writer()

        async with lock:
            cursor = await conn.execute(*_adjust_statement(collection, record_id, field, delta, floor))
            await conn.commit()

        if cursor.rowcount == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info(
            "Adjusted field", extra={"collection": collection, "record_id": record_id, "field": field, "delta": delta}
        )
        return await get_record(collection=collection, record_id=record_id)
    except KeyError:
        raise
    except Exception as e:
        _raise_wrapped("adjust_field", collection, e)
        raise


def _adjust_statement(
    collection: str, record_id: str, field: str, delta: int, floor: int | None, condition: str = ""
) -> tuple[str, list[Any]]:
    if floor is None:
        expr, params = f"{field} + ?", [delta]
    else:
        expr, params = f"MAX(?, {field} + ?)", [floor, delta]
    where_clause, where_params = parse_filter(condition)
    where_sql = f"id = ? AND {where_clause}" if where_clause else "id = ?"
    query = f"UPDATE {collection} SET {field} = {expr}, updated = datetime('now') WHERE {where_sql}"  # noqa: S608 - names are validated
    return query, [*params, int(record_id), *where_params]


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a record by ID, raising RecordNotFoundError if not found."""
    try:
        _validate_collection_name(collection)
        conn, lock = await _writer()

        query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        async with lock:
            cursor = await conn.execute(query, (int(record_id),))
            await conn.commit()

        if cursor.rowcount == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})
    except KeyError:
        raise
    except Exception as e:
        _raise_wrapped("delete_record", collection, e)
        raise


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
) -> list[dict[str, Any]]:
    """List records with optional filtering, sorting, and pagination."""
    try:
        _validate_collection_name(collection)
        conn = await get_connection()

        where_clause = ""
        params: list[Any] = []
        if filter_query:
            where_clause, params = parse_filter(filter_query)
            where_clause = f"WHERE {where_clause}"

        offset = (page - 1) * per_page

        query = f"SELECT * FROM {collection} {where_clause} ORDER BY {_parse_sort(sort)} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
        params.extend([per_page, offset])

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        columns = [description[0] for description in cursor.description]
        records = [_to_record(columns, row) for row in rows]

        logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
        return records
    except Exception as e:
        logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to list records from {collection}: {e}"
        raise DatabaseError(msg) from e


async def list_all_records(*, collection: str, filter_query: str = "", sort: str = "") -> list[dict[str, Any]]:
    """List every matching record, paging through the result set."""
    per_page = constants.DEFAULT_PER_PAGE_LIMIT
    records: list[dict[str, Any]] = []
    page = 1
    while True:
        batch = await list_records(
            collection=collection, page=page, per_page=per_page, filter_query=filter_query, sort=sort
        )
        records.extend(batch)
        if len(batch) < per_page:
            return records
        page += 1


async def get_first_record(*, collection: str, filter_query: str, sort: str = "") -> dict[str, Any] | None:
    """Return the first record matching the filter, or None."""
    records = await list_records(collection=collection, filter_query=filter_query, sort=sort, per_page=1)
    return records[0] if records else None


class Transaction:
    """Statements executed inside one ``BEGIN IMMEDIATE`` transaction.

    Methods return affected row counts; callers decide whether a zero count
    should abort the unit of work (raise) or be treated as a no-op.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def update_if(self, *, collection: str, record_id: str, data: dict[str, Any], condition: str = "") -> int:
        _validate_collection_name(collection)
        set_clause, values = _set_clause(data)
        where_clause, params = parse_filter(condition)
        where_sql = f"id = ? AND {where_clause}" if where_clause else "id = ?"
        query = f"UPDATE {collection} SET {set_clause}, updated = datetime('now') WHERE {where_sql}"  # noqa: S608 - collection is validated
        try:
            cursor = await self._conn.execute(query, [*values, int(record_id), *params])
        except aiosqlite.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise
            msg = f"Failed to update record in {collection}: {e}"
            raise DuplicateRecordError(msg) from e
        return cursor.rowcount

    async def adjust(
        self,
        *,
        collection: str,
        record_id: str,
        field: str,
        delta: int,
        floor: int | None = 0,
        condition: str = "",
    ) -> int:
        _validate_collection_name(collection)
        _validate_field_name(field)
        cursor = await self._conn.execute(*_adjust_statement(collection, record_id, field, delta, floor, condition))
        return cursor.rowcount

    async def create(self, *, collection: str, data: dict[str, Any]) -> str:
        _validate_collection_name(collection)
        columns = list(data.keys())
        query = f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})"  # noqa: S608 - collection is validated
        cursor = await self._conn.execute(query, [_to_db_value(data[key]) for key in columns])
        return str(cursor.lastrowid)


@asynccontextmanager
async def transaction() -> AsyncIterator[Transaction]:
    """Run several writes atomically; any exception rolls all of them back.

    The connection's write lock is held for the whole block, so the block must
    not call the module-level write functions (reads are fine).
    """
    conn, lock = await _writer()
    async with lock:
        await conn.execute("BEGIN IMMEDIATE")
        try:
            yield Transaction(conn)
        except BaseException:
            await conn.rollback()
            raise
        await conn.commit()
