from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import threading
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence
import uuid

import pandas as pd

from site_coverage_app.config import AppConfig
from site_coverage_app.constants import (
    STATUS_FLAG_FIELDS,
    TABLE_CRA_MEMBER,
    TABLE_IMPORT_RUN,
    TABLE_SITE_PERSONNEL,
    TABLE_SITE_STATUS_HISTORY,
)
from site_coverage_app.db import (
    DatabricksSQLClient,
    DataConnectionError,
    DataExecutionError,
    DataQueryError,
    Statement,
)
from site_coverage_app.errors import PersistenceError, SchemaBootstrapRequiredError

LOGGER = logging.getLogger(__name__)

Record = dict[str, Any]

TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    TABLE_SITE_PERSONNEL: (
        "id",
        "project_id",
        "reference_number",
        "role",
        "personnel_name",
        "pi_name",
        "institution",
        "address",
        "city",
        "province",
        "postal_code",
        "country",
        "email",
        "phone",
        "fax",
        "starter_pack",
        "registered_in_srp",
        "supplies_applied",
        "created_by",
        "updated_by",
        "created_at",
        "updated_at",
    ),
    TABLE_SITE_STATUS_HISTORY: (
        "id",
        "project_id",
        "site_id",
        "reference_number",
        "field_changed",
        "old_value",
        "new_value",
        "actor_id",
        "created_at",
    ),
    TABLE_CRA_MEMBER: (
        "id",
        "project_id",
        "natural_key",
        "full_name",
        "first_name",
        "last_name",
        "study_site",
        "status",
        "email",
        "study_country",
        "study_team_role",
        "user_type",
        "user_reference",
        "created_by",
        "updated_by",
        "created_at",
        "updated_at",
    ),
    TABLE_IMPORT_RUN: (
        "id",
        "project_id",
        "import_kind",
        "actor_id",
        "row_count",
        "success_count",
        "error_count",
        "coerced_count",
        "batch_count",
        "status",
        "created_at",
        "updated_at",
    ),
}

BOOL_COLUMNS: dict[str, frozenset[str]] = {
    TABLE_SITE_PERSONNEL: frozenset(STATUS_FLAG_FIELDS),
    TABLE_SITE_STATUS_HISTORY: frozenset({"old_value", "new_value"}),
}
TIMESTAMP_COLUMNS = frozenset({"created_at", "updated_at"})


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    action: str
    record_ids: tuple[str, ...] = ()
    keys: Mapping[str, Any] = field(default_factory=dict)

    @property
    def project_id(self) -> str | None:
        value = self.keys.get("project_id")
        return None if value is None else str(value)


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(self, feed: "ChangeFeed", token: int) -> None:
        self._feed = feed
        self._token = token
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self._feed.unsubscribe(self._token)
        self.closed = True


class ChangeFeed:
    """In-process change notifications. Callbacks run on the writer's thread after the write commits."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next_token = 0
        self._subscribers: dict[int, tuple[str, dict[str, Any], ChangeCallback]] = {}

    def subscribe(self, table: str, filters: Mapping[str, Any] | None, on_change: ChangeCallback) -> Subscription:
        with self._lock:
            self._next_token += 1
            token = self._next_token
            self._subscribers[token] = (table, dict(filters or {}), on_change)
        return Subscription(self, token)

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @staticmethod
    def _matches(event: ChangeEvent, table: str, filters: Mapping[str, Any]) -> bool:
        if table != event.table:
            return False
        for key, expected in filters.items():
            if key in event.keys and str(event.keys[key]) != str(expected):
                return False
        return True

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
        for table, filters, callback in subscribers:
            if not self._matches(event, table, filters):
                continue
            try:
                callback(event)
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception(
                    "Change subscriber failed. table=%s action=%s project_id=%s",
                    event.table,
                    event.action,
                    event.project_id,
                )


class RecordStore(Protocol):
    def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        order_by: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[Record]: ...

    def get(self, table: str, record_id: str) -> Record | None: ...

    def insert(self, table: str, records: Record | Sequence[Record]) -> list[Record]: ...

    def update(self, table: str, record_id: str, fields: Mapping[str, Any]) -> None: ...

    def delete(self, table: str, record_id: str) -> None: ...

    def upsert(
        self,
        table: str,
        records: Sequence[Record],
        key_fields: Sequence[str],
        preserve_defaults: Mapping[str, Any] | None = None,
    ) -> int: ...

    def subscribe(self, table: str, filters: Mapping[str, Any] | None, on_change: ChangeCallback) -> Subscription: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _coerce_timestamp(value: Any) -> Any:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    try:
        parsed = datetime.fromisoformat(str(value).strip())
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _frame_records(table: str, frame: pd.DataFrame) -> list[Record]:
    if frame.empty:
        return []
    cleaned = frame.astype(object).where(pd.notna(frame), None)
    bool_columns = BOOL_COLUMNS.get(table, frozenset())
    out: list[Record] = []
    for row in cleaned.to_dict("records"):
        for column in bool_columns:
            if column in row and row[column] is not None:
                row[column] = bool(row[column])
        for column in TIMESTAMP_COLUMNS:
            if column in row:
                row[column] = _coerce_timestamp(row[column])
        out.append(row)
    return out


class SqlRecordStore:
    """Record store over ``DatabricksSQLClient`` with an attached change feed.

    Every write publishes a ``ChangeEvent`` after it succeeds. Client errors surface as
    ``PersistenceError`` so callers never see driver-specific exceptions.
    """

    def __init__(
        self,
        client: DatabricksSQLClient,
        config: AppConfig,
        *,
        change_feed: ChangeFeed | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.change_feed = change_feed or ChangeFeed()
        self._clock = clock or _utc_now
        self._id_factory = id_factory or _new_id

    @staticmethod
    def _columns(table: str) -> tuple[str, ...]:
        try:
            return TABLE_COLUMNS[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}") from None

    def _table(self, name: str) -> str:
        self._columns(name)
        if self.config.use_local_db:
            return name
        return f"{self.config.fq_schema}.{name}"

    @staticmethod
    def _check_columns(table: str, columns: Iterable[str]) -> list[str]:
        allowed = SqlRecordStore._columns(table)
        checked = []
        for column in columns:
            if column not in allowed:
                raise ValueError(f"Unknown column '{column}' for table {table}.")
            checked.append(column)
        return checked

    @staticmethod
    def _where(table: str, filters: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
        if not filters:
            return "", []
        clauses: list[str] = []
        params: list[Any] = []
        for column in SqlRecordStore._check_columns(table, filters.keys()):
            value = filters[column]
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = %s")
                params.append(value)
        return " WHERE " + " AND ".join(clauses), params

    @staticmethod
    def _order(table: str, order_by: Sequence[str] | None) -> str:
        if not order_by:
            return ""
        parts: list[str] = []
        for item in order_by:
            tokens = str(item or "").split()
            if not tokens or len(tokens) > 2:
                raise ValueError(f"Invalid order_by item: {item!r}")
            column = SqlRecordStore._check_columns(table, [tokens[0]])[0]
            direction = tokens[1].upper() if len(tokens) == 2 else "ASC"
            if direction not in {"ASC", "DESC"}:
                raise ValueError(f"Invalid order direction: {tokens[1]}")
            parts.append(f"{column} {direction}")
        return " ORDER BY " + ", ".join(parts)

    def _query(self, table: str, statement: str, params: Sequence[Any]) -> list[Record]:
        try:
            frame = self.client.query(statement, params)
        except (DataConnectionError, DataQueryError) as exc:
            raise PersistenceError(f"Failed to read {table}.") from exc
        return _frame_records(table, frame)

    def _execute(self, table: str, statements: Sequence[Statement]) -> None:
        try:
            self.client.execute_batch(statements)
        except (DataConnectionError, DataExecutionError) as exc:
            raise PersistenceError(f"Failed to write {table}.") from exc

    def _publish(self, table: str, action: str, records: Sequence[Mapping[str, Any]]) -> None:
        if not records:
            return
        by_project: dict[Any, list[str]] = {}
        for record in records:
            by_project.setdefault(record.get("project_id"), []).append(str(record.get("id") or ""))
        for project_id, record_ids in by_project.items():
            keys = {} if project_id is None else {"project_id": project_id}
            self.change_feed.publish(ChangeEvent(table=table, action=action, record_ids=tuple(record_ids), keys=keys))

    def _insert_statement(self, table: str, record: Mapping[str, Any]) -> Statement:
        columns = self._check_columns(table, record.keys())
        placeholders = ", ".join(["%s"] * len(columns))
        statement = f"INSERT INTO {self._table(table)} ({', '.join(columns)}) VALUES ({placeholders})"
        return statement, tuple(record[column] for column in columns)

    def _update_statement(self, table: str, record_id: str, fields: Mapping[str, Any]) -> Statement:
        columns = self._check_columns(table, fields.keys())
        assignments = ", ".join(f"{column} = %s" for column in columns)
        statement = f"UPDATE {self._table(table)} SET {assignments} WHERE id = %s"
        return statement, (*[fields[column] for column in columns], record_id)

    def _stamp_new(self, table: str, record: Mapping[str, Any]) -> Record:
        row = dict(record)
        if not row.get("id"):
            row["id"] = self._id_factory()
        now = self._clock()
        columns = self._columns(table)
        if "created_at" in columns and row.get("created_at") is None:
            row["created_at"] = now
        if "updated_at" in columns and row.get("updated_at") is None:
            row["updated_at"] = now
        return row

    def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        order_by: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        where_sql, params = self._where(table, filters)
        statement = f"SELECT {', '.join(self._columns(table))} FROM {self._table(table)}{where_sql}"
        statement += self._order(table, order_by)
        if limit is not None:
            statement += f" LIMIT {max(0, int(limit))}"
        return self._query(table, statement, params)

    def get(self, table: str, record_id: str) -> Record | None:
        rows = self.select(table, {"id": record_id}, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, records: Record | Sequence[Record]) -> list[Record]:
        batch = [records] if isinstance(records, Mapping) else list(records)
        rows = [self._stamp_new(table, record) for record in batch]
        self._execute(table, [self._insert_statement(table, row) for row in rows])
        self._publish(table, "insert", rows)
        return rows

    def update(self, table: str, record_id: str, fields: Mapping[str, Any]) -> None:
        if not fields:
            return
        changes = dict(fields)
        if "updated_at" in self._columns(table) and "updated_at" not in changes:
            changes["updated_at"] = self._clock()
        statement = self._update_statement(table, record_id, changes)
        # Resolved before the write so nothing can fail between the commit and the event.
        project_id = changes.get("project_id")
        if project_id is None:
            current = self.get(table, record_id)
            project_id = current.get("project_id") if current else None
        self._execute(table, [statement])
        self._publish(table, "update", [{"id": record_id, "project_id": project_id}])

    def delete(self, table: str, record_id: str) -> None:
        current = self.get(table, record_id)
        self._execute(table, [(f"DELETE FROM {self._table(table)} WHERE id = %s", (record_id,))])
        if current is not None:
            self._publish(table, "delete", [current])

    def _existing_ids(self, table: str, records: Sequence[Mapping[str, Any]], key_fields: Sequence[str]) -> dict:
        keys = list(dict.fromkeys(tuple(record.get(name) for name in key_fields) for record in records))
        if not keys:
            return {}
        key_columns = self._check_columns(table, key_fields)
        clause = "(" + " AND ".join(f"{column} = %s" for column in key_columns) + ")"
        where_sql = " OR ".join([clause] * len(keys))
        params = [value for key in keys for value in key]
        statement = f"SELECT id, {', '.join(key_columns)} FROM {self._table(table)} WHERE {where_sql}"
        rows = self._query(table, statement, params)
        return {tuple(row.get(column) for column in key_columns): row["id"] for row in rows}

    def upsert(
        self,
        table: str,
        records: Sequence[Record],
        key_fields: Sequence[str],
        preserve_defaults: Mapping[str, Any] | None = None,
    ) -> int:
        """Insert or update ``records`` matched on ``key_fields``, applied in order on one connection.

        Columns named in ``preserve_defaults`` keep their stored value on update when the incoming
        value is missing or None; on insert they take the given default.
        """
        if not records:
            return 0
        preserve = dict(preserve_defaults or {})
        existing = self._existing_ids(table, records, key_fields)
        now = self._clock()
        statements: list[Statement] = []
        written: list[Record] = []
        for record in records:
            key = tuple(record.get(name) for name in key_fields)
            row = {column: value for column, value in record.items() if column != "id"}
            record_id = existing.get(key)
            if record_id is None:
                for column, default in preserve.items():
                    if row.get(column) is None:
                        row[column] = default
                row = self._stamp_new(table, row)
                existing[key] = row["id"]
                statements.append(self._insert_statement(table, row))
            else:
                for column in preserve:
                    if row.get(column) is None:
                        row.pop(column, None)
                row.pop("created_at", None)
                row.pop("created_by", None)
                if "updated_at" in self._columns(table):
                    row["updated_at"] = now
                row["id"] = record_id
                statements.append(self._update_statement(table, record_id, {k: v for k, v in row.items() if k != "id"}))
            written.append(row)
        self._execute(table, statements)
        self._publish(table, "upsert", written)
        return len(written)

    def subscribe(self, table: str, filters: Mapping[str, Any] | None, on_change: ChangeCallback) -> Subscription:
        self._check_columns(table, (filters or {}).keys())
        return self.change_feed.subscribe(table, filters, on_change)

    def ensure_runtime_tables(self) -> None:
        missing: list[str] = []
        for table in TABLE_COLUMNS:
            try:
                self.client.query(f"SELECT {', '.join(self._columns(table))} FROM {self._table(table)} LIMIT 1")
            except DataQueryError:
                missing.append(self._table(table))
        if missing:
            raise SchemaBootstrapRequiredError(
                "Site tracking tables are missing or inaccessible: "
                f"{', '.join(missing)}. Run the schema bootstrap for this environment."
            )
