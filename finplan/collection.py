"""
Document-style access to the ``transactions`` table.

The recurrence engine talks to storage through a small document API
(find / insert / update-one / delete) with Mongo-like filters:

    {"date": {"$gte": start, "$lt": end}, "replicated_from_id": {"$exists": True}}

Supported operators are ``$lt``, ``$lte``, ``$gt``, ``$gte``, ``$ne``,
``$in``, ``$exists`` and a top-level ``$or``. A plain value means equality and
``None`` means "field missing". ``$ne`` also matches missing fields.

Every call opens its own SQLite connection and runs in a worker thread,
so awaiting a store call is the only point where a request task yields.
"""
from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from . import db
from .core import config
from .errors import StoreError
from .models import new_id


FIELDS = (
    "id",
    "description",
    "value",
    "type",
    "category",
    "date",
    "is_recurrent",
    "replicated_from_id",
    "is_superseded",
)
_OPTIONAL_FIELDS = {"replicated_from_id", "is_superseded"}
_BOOL_FIELDS = {"is_recurrent", "is_superseded"}
_COMPARISONS = {"$lt": "<", "$lte": "<=", "$gt": ">", "$gte": ">="}

DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

Document = Dict[str, Any]
Filter = Dict[str, Any]


class UpdateResult(NamedTuple):
    matched_count: int
    modified_count: int


# --------- Helpers: encoding ---------

def format_date(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(DATE_FORMAT)


def parse_date(text: str) -> datetime:
    return datetime.strptime(text, DATE_FORMAT).replace(tzinfo=timezone.utc)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_date(value)
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, Enum):
        return value.value
    return value


def _decode(row: sqlite3.Row) -> Document:
    doc: Document = {}
    for field in FIELDS:
        value = row[field]
        if value is None and field in _OPTIONAL_FIELDS:
            continue
        if field in _BOOL_FIELDS:
            value = bool(value)
        elif field == "date":
            value = parse_date(value)
        doc[field] = value
    return doc


def _check_field(field: str) -> None:
    if field not in FIELDS:
        raise ValueError(f"Unknown transaction field: {field!r}")


# --------- Helpers: filters ---------

def compile_filter(query: Filter) -> Tuple[str, List[Any]]:
    """Translate a document filter into a SQL WHERE clause and its parameters."""
    clauses: List[str] = []
    params: List[Any] = []

    for key, condition in query.items():
        if key == "$or":
            parts = []
            for branch in condition:
                sql, branch_params = compile_filter(branch)
                parts.append(f"({sql})")
                params.extend(branch_params)
            if not parts:
                raise ValueError("$or requires at least one branch")
            clauses.append("(" + " OR ".join(parts) + ")")
            continue

        _check_field(key)
        if isinstance(condition, dict):
            for op, operand in condition.items():
                if op in _COMPARISONS:
                    clauses.append(f"{key} {_COMPARISONS[op]} ?")
                    params.append(_encode(operand))
                elif op == "$in":
                    values = list(operand)
                    if values:
                        clauses.append(f"{key} IN ({', '.join('?' for _ in values)})")
                        params.extend(_encode(value) for value in values)
                    else:
                        clauses.append("0=1")
                elif op == "$exists":
                    clauses.append(f"{key} IS NOT NULL" if operand else f"{key} IS NULL")
                elif op == "$ne":
                    if operand is None:
                        clauses.append(f"{key} IS NOT NULL")
                    else:
                        clauses.append(f"({key} IS NULL OR {key} != ?)")
                        params.append(_encode(operand))
                else:
                    raise ValueError(f"Unsupported filter operator: {op!r}")
        elif condition is None:
            clauses.append(f"{key} IS NULL")
        else:
            clauses.append(f"{key} = ?")
            params.append(_encode(condition))

    return (" AND ".join(clauses) or "1=1"), params


def _order_clause(sort: Optional[Sequence[Tuple[str, int]]]) -> str:
    if not sort:
        return ""
    parts = []
    for field, direction in sort:
        _check_field(field)
        parts.append(f"{field} {'DESC' if direction < 0 else 'ASC'}")
    return " ORDER BY " + ", ".join(parts)


def _unset_fields(unset: Any) -> Iterable[str]:
    # Accept both ["field", ...] and Mongo's {"field": ""}
    if isinstance(unset, dict):
        return unset.keys()
    return unset or ()


# --------- Collection ---------

class TransactionCollection:
    """Async document API over the SQLite ``transactions`` table."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = Path(db_path or config.DB_PATH)

    async def _run(self, operation: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(self._execute, operation, *args)

    def _execute(self, operation: Callable[..., Any], *args: Any) -> Any:
        conn = db.get_connection(self.db_path)
        try:
            result = operation(conn, *args)
            conn.commit()
            return result
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(f"{operation.__name__.lstrip('_')} failed: {exc}") from exc
        finally:
            conn.close()

    # --- reads ---

    async def find(self, query: Filter, sort: Optional[Sequence[Tuple[str, int]]] = None) -> List[Document]:
        return await self._run(self._find, query, sort)

    async def find_one(self, query: Filter) -> Optional[Document]:
        return await self._run(self._find_one, query)

    async def count_documents(self, query: Filter) -> int:
        return await self._run(self._count, query)

    @staticmethod
    def _find(conn: sqlite3.Connection, query: Filter, sort) -> List[Document]:
        where, params = compile_filter(query)
        rows = conn.execute(
            f"SELECT * FROM transactions WHERE {where}{_order_clause(sort)}", params
        ).fetchall()
        return [_decode(row) for row in rows]

    @staticmethod
    def _find_one(conn: sqlite3.Connection, query: Filter) -> Optional[Document]:
        where, params = compile_filter(query)
        row = conn.execute(f"SELECT * FROM transactions WHERE {where} LIMIT 1", params).fetchone()
        return _decode(row) if row else None

    @staticmethod
    def _count(conn: sqlite3.Connection, query: Filter) -> int:
        where, params = compile_filter(query)
        return conn.execute(f"SELECT COUNT(*) FROM transactions WHERE {where}", params).fetchone()[0]

    # --- writes ---

    async def insert_one(self, doc: Document) -> str:
        ids = await self._run(self._insert, [doc])
        return ids[0]

    async def insert_many(self, docs: Sequence[Document]) -> List[str]:
        if not docs:
            return []
        return await self._run(self._insert, list(docs))

    async def update_one(self, query: Filter, update: Dict[str, Any]) -> UpdateResult:
        return await self._run(self._update_one, query, update)

    async def delete_one(self, query: Filter) -> int:
        return await self._run(self._delete_one, query)

    async def delete_many(self, query: Filter) -> int:
        return await self._run(self._delete_many, query)

    @staticmethod
    def _insert(conn: sqlite3.Connection, docs: List[Document]) -> List[str]:
        ids: List[str] = []
        rows = []
        for doc in docs:
            for field in doc:
                _check_field(field)
            doc_id = doc.get("id") or new_id()
            ids.append(doc_id)
            rows.append(tuple(
                doc_id if field == "id" else _encode(doc.get(field)) for field in FIELDS
            ))
        placeholders = ", ".join("?" for _ in FIELDS)
        conn.executemany(
            f"INSERT INTO transactions ({', '.join(FIELDS)}) VALUES ({placeholders})",
            rows,
        )
        return ids

    @staticmethod
    def _update_one(conn: sqlite3.Connection, query: Filter, update: Dict[str, Any]) -> UpdateResult:
        where, params = compile_filter(query)
        row = conn.execute(f"SELECT * FROM transactions WHERE {where} LIMIT 1", params).fetchone()
        if row is None:
            return UpdateResult(0, 0)

        changes: Dict[str, Any] = {}
        for field, value in (update.get("$set") or {}).items():
            _check_field(field)
            changes[field] = _encode(value)
        for field in _unset_fields(update.get("$unset")):
            _check_field(field)
            changes[field] = None
        if "id" in changes:
            raise ValueError("The id of a transaction cannot be updated")

        changed = {field: value for field, value in changes.items() if row[field] != value}
        if not changed:
            return UpdateResult(1, 0)

        set_clause = ", ".join(f"{field} = ?" for field in changed)
        conn.execute(
            f"UPDATE transactions SET {set_clause} WHERE id = ?",
            list(changed.values()) + [row["id"]],
        )
        return UpdateResult(1, 1)

    @staticmethod
    def _delete_one(conn: sqlite3.Connection, query: Filter) -> int:
        where, params = compile_filter(query)
        cur = conn.execute(
            f"DELETE FROM transactions WHERE id IN (SELECT id FROM transactions WHERE {where} LIMIT 1)",
            params,
        )
        return cur.rowcount

    @staticmethod
    def _delete_many(conn: sqlite3.Connection, query: Filter) -> int:
        where, params = compile_filter(query)
        cur = conn.execute(f"DELETE FROM transactions WHERE {where}", params)
        return cur.rowcount
