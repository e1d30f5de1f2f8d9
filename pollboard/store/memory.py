from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import asyncio
import copy
import logging
import uuid

from pollboard.core.db import utcnow
from pollboard.store.base import (
    POLL_ANALYTICS, POLL_OPTIONS, POLLS, TABLES, VOTES, Filters, Row, is_multi_value
)
from pollboard.utils.exceptions import ConflictError, ValidationError

logger = logging.getLogger(__name__)


def _poll_defaults() -> Row:
    now = utcnow()
    return {
        "description": None,
        "is_public": True,
        "allow_multiple_votes": False,
        "end_date": None,
        "version": 1,
        "created_at": now,
        "updated_at": now,
    }


def _option_defaults() -> Row:
    now = utcnow()
    return {"created_at": now, "updated_at": now}


def _vote_defaults() -> Row:
    return {"created_at": utcnow()}


def _analytics_defaults() -> Row:
    return {"views": 0, "shares": 0, "unique_voters": 0, "last_updated": utcnow()}


DEFAULTS: Dict[str, Callable[[], Row]] = {
    POLLS: _poll_defaults,
    POLL_OPTIONS: _option_defaults,
    VOTES: _vote_defaults,
    POLL_ANALYTICS: _analytics_defaults,
}

# (column, referenced table) pairs checked on insert
FOREIGN_KEYS: Dict[str, List[tuple]] = {
    POLLS: [],
    POLL_OPTIONS: [("poll_id", POLLS)],
    VOTES: [("poll_id", POLLS), ("option_id", POLL_OPTIONS)],
    POLL_ANALYTICS: [("poll_id", POLLS)],
}

UNIQUE_KEYS: Dict[str, List[tuple]] = {
    POLLS: [],
    POLL_OPTIONS: [],
    VOTES: [("user_id", "option_id"), ("poll_id", "user_id", "choice_slot")],
    POLL_ANALYTICS: [("poll_id",)],
}

# table -> [(child table, child column)] removed along with the parent row
CASCADES: Dict[str, List[tuple]] = {
    POLLS: [(POLL_OPTIONS, "poll_id"), (VOTES, "poll_id"), (POLL_ANALYTICS, "poll_id")],
    POLL_OPTIONS: [(VOTES, "option_id")],
    VOTES: [],
    POLL_ANALYTICS: [],
}

TOUCH_COLUMNS = {
    POLLS: "updated_at",
    POLL_OPTIONS: "updated_at",
    POLL_ANALYTICS: "last_updated",
}


def _matches(row: Row, filters: Optional[Filters]) -> bool:
    for column, value in (filters or {}).items():
        if is_multi_value(value):
            if row.get(column) not in value:
                return False
        elif row.get(column) != value:
            return False
    return True


class InMemoryPollStore:
    """
    PollStore kept in process memory.

    Mirrors the relational schema closely enough for the repository:
    foreign keys, the vote and analytics uniqueness rules and cascading
    deletes are all enforced. transaction() snapshots the tables and
    restores them if the block raises.
    """

    def __init__(self):
        self.tables: Dict[str, Dict[str, Row]] = {table: {} for table in TABLES}
        self._lock = asyncio.Lock()
        self._in_transaction = False

    def _table(self, table: str) -> Dict[str, Row]:
        try:
            return self.tables[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}")

    def _check_foreign_keys(self, table: str, row: Row) -> None:
        for column, parent in FOREIGN_KEYS[table]:
            if row.get(column) not in self.tables[parent]:
                raise ValidationError(
                    "Invalid reference to related resource",
                    field=column,
                    details={"table": table}
                )

    def _check_unique(self, table: str, row: Row, pending: List[Row]) -> None:
        for columns in UNIQUE_KEYS[table]:
            key = tuple(row.get(column) for column in columns)
            for existing in list(self.tables[table].values()) + pending:
                if tuple(existing.get(column) for column in columns) == key:
                    raise ConflictError("Resource already exists", resource=table)

    def _cascade(self, table: str, removed_ids: List[str]) -> None:
        for child, column in CASCADES[table]:
            child_rows = self.tables[child]
            doomed = [row_id for row_id, row in child_rows.items() if row.get(column) in removed_ids]
            for row_id in doomed:
                del child_rows[row_id]
            if doomed:
                self._cascade(child, doomed)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["InMemoryPollStore"]:
        if self._in_transaction:
            yield self
            return

        async with self._lock:
            snapshot = copy.deepcopy(self.tables)
            self._in_transaction = True
            try:
                yield self
            except Exception:
                self.tables = snapshot
                logger.debug("In-memory transaction rolled back")
                raise
            finally:
                self._in_transaction = False

    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        target = self._table(table)
        prepared: List[Row] = []
        for row in rows:
            record = DEFAULTS[table]()
            record.update({k: v for k, v in row.items() if v is not None or k not in record})
            record.setdefault("id", str(uuid.uuid4()))
            self._check_foreign_keys(table, record)
            self._check_unique(table, record, prepared)
            prepared.append(record)

        for record in prepared:
            target[record["id"]] = record
        return [dict(record) for record in prepared]

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        for_update: bool = False
    ) -> List[Row]:
        # for_update needs no lock here; transaction() already holds the store lock
        rows = [dict(row) for row in self._table(table).values() if _matches(row, filters)]
        if order_by:
            # insertion order breaks ties between equal timestamps
            ranked = sorted(enumerate(rows), key=lambda pair: (pair[1].get(order_by), pair[0]), reverse=descending)
            rows = [row for _, row in ranked]
        return rows

    async def update(self, table: str, filters: Filters, values: Row) -> List[Row]:
        target = self._table(table)
        touched = TOUCH_COLUMNS.get(table)
        updated: List[Row] = []
        for row in target.values():
            if not _matches(row, filters):
                continue
            row.update(values)
            if touched and touched not in values:
                row[touched] = utcnow()
            updated.append(dict(row))
        return updated

    async def increment(self, table: str, filters: Filters, column: str, amount: int = 1) -> List[Row]:
        target = self._table(table)
        touched = TOUCH_COLUMNS.get(table)
        updated: List[Row] = []
        for row in target.values():
            if not _matches(row, filters):
                continue
            row[column] = (row.get(column) or 0) + amount
            if touched:
                row[touched] = utcnow()
            updated.append(dict(row))
        return updated

    async def delete(self, table: str, filters: Filters) -> int:
        target = self._table(table)
        removed_ids = [row_id for row_id, row in target.items() if _matches(row, filters)]
        for row_id in removed_ids:
            del target[row_id]
        if removed_ids:
            self._cascade(table, removed_ids)
        return len(removed_ids)

    async def count(
        self,
        table: str,
        filters: Optional[Filters] = None,
        distinct: Optional[str] = None
    ) -> int:
        rows = [row for row in self._table(table).values() if _matches(row, filters)]
        if distinct:
            return len({row.get(distinct) for row in rows})
        return len(rows)
