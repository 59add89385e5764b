"""
Transaction storage.

Both transaction kinds live in one table, scoped by owner: every read and
write is predicated on ``user_id``. Two backends share the same interface:

- ``SQLiteTransactionStore``: a local SQLite file;
- ``RestTransactionStore``: the REST (PostgREST) endpoint of the hosted
  Postgres backend.

A missing table or column on the remote side is reported as
``SchemaMissingError`` carrying the SQL that fixes it, separately from
generic failures which are retried.
"""

import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .config import AppConfig
from .mapping import ROW_COLUMNS, from_row, to_row, to_update
from .models import Transaction
from .retry import RetryPolicy
from .validators import ensure_valid

SETUP_SQL = """-- 1. Create the table if it does not exist
create table if not exists public.transactions (
  id text not null primary key default gen_random_uuid()::text,
  created_at timestamptz default now(),
  user_id uuid not null default auth.uid(),
  date date,
  city text,
  amount numeric,
  category text,
  operation text,
  notes text,
  type text
);

-- 2. Make sure row level security is on
alter table public.transactions enable row level security;

-- 3. Add columns that may be missing (safe migration)
alter table public.transactions add column if not exists receipt_image text;
alter table public.transactions add column if not exists receipt_amount numeric;
alter table public.transactions add column if not exists origin text;
alter table public.transactions add column if not exists destination text;
alter table public.transactions add column if not exists car_type text;
alter table public.transactions add column if not exists road_type text;
alter table public.transactions add column if not exists distance_km numeric;
alter table public.transactions add column if not exists fuel_type text;
alter table public.transactions add column if not exists price_per_liter numeric;
alter table public.transactions add column if not exists consumption numeric;
alter table public.transactions add column if not exists total_value numeric;

-- 4. Owner-only access policies
drop policy if exists "Users own select" on public.transactions;
drop policy if exists "Users own insert" on public.transactions;
drop policy if exists "Users own update" on public.transactions;
drop policy if exists "Users own delete" on public.transactions;

create policy "Users own select" on public.transactions for select using (auth.uid() = user_id);
create policy "Users own insert" on public.transactions for insert with check (auth.uid() = user_id);
create policy "Users own update" on public.transactions for update using (auth.uid() = user_id);
create policy "Users own delete" on public.transactions for delete using (auth.uid() = user_id);
"""

SQLITE_COLUMN_TYPES = {
    "id": "TEXT PRIMARY KEY",
    "created_at": "TIMESTAMP DEFAULT CURRENT_TIMESTAMP",
    "user_id": "TEXT NOT NULL",
    "date": "TEXT",
    "city": "TEXT",
    "amount": "REAL",
    "category": "TEXT",
    "operation": "TEXT",
    "notes": "TEXT",
    "type": "TEXT",
    "receipt_image": "TEXT",
    "receipt_amount": "REAL",
    "origin": "TEXT",
    "destination": "TEXT",
    "car_type": "TEXT",
    "road_type": "TEXT",
    "distance_km": "REAL",
    "fuel_type": "TEXT",
    "price_per_liter": "REAL",
    "consumption": "REAL",
    "total_value": "REAL",
}

# PostgREST / Postgres codes for a missing relation or column
SCHEMA_ERROR_CODES = {"42P01", "42703", "PGRST204", "PGRST205"}


class StoreError(Exception):
    """Generic storage failure."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class StoreAuthError(StoreError):
    """The backend rejected our credentials."""


class SchemaMissingError(StoreError):
    """The table or one of its columns does not exist; run ``setup_sql``."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message, status)
        self.setup_sql = SETUP_SQL


def _is_fatal(exc: BaseException) -> bool:
    if isinstance(exc, (SchemaMissingError, StoreAuthError)):
        return True
    status = getattr(exc, "status", None)
    return status is not None and 400 <= status < 500


class TransactionStore:
    """
    Owner-scoped CRUD for transactions.

    Subclasses implement the ``_select``/``_insert``/``_update``/``_delete``
    primitives on plain rows; this class handles mapping, validation and
    retries.
    """

    def __init__(self, retry: Optional[RetryPolicy] = None):
        self.retry = retry or RetryPolicy(max_attempts=3, delay=1.0, backoff="linear",
                                          retry_on=(StoreError,), give_up=_is_fatal)

    def list(self, user_id: str) -> List[Transaction]:
        """All transactions of ``user_id``, newest first."""
        rows = self.retry.call(lambda: self._select(user_id), label="Loading transactions")
        return [from_row(r) for r in rows]

    def add(self, tx: Transaction, user_id: str) -> Transaction:
        """Validate and insert one transaction, returning the stored version."""
        return self.add_many([tx], user_id)[0]

    def add_many(self, txs: Iterable[Transaction], user_id: str) -> List[Transaction]:
        """Insert several transactions in one batched call."""
        txs = list(txs)
        for tx in txs:
            ensure_valid(tx, user_id)
        rows = [to_row(tx, user_id) for tx in txs]
        if not rows:
            return []
        saved = self.retry.call(lambda: self._insert(rows), label="Saving transactions")
        return [from_row(r) for r in saved]

    def update(self, tx_id: str, changes: Dict[str, Any], user_id: str) -> Optional[Transaction]:
        """
        Apply a partial update. Only the supplied, non-None fields are written.

        Returns the updated transaction, or None if ``tx_id`` does not belong
        to ``user_id``.
        """
        columns = to_update(changes)
        rows = self.retry.call(lambda: self._update(tx_id, columns, user_id),
                               label="Updating transaction")
        return from_row(rows[0]) if rows else None

    def delete(self, tx_id: str, user_id: str) -> bool:
        """Permanently delete a transaction owned by ``user_id``."""
        return self.retry.call(lambda: self._delete(tx_id, user_id), label="Deleting transaction")

    # primitives

    def _select(self, user_id: str) -> List[Dict]:
        raise NotImplementedError

    def _insert(self, rows: List[Dict]) -> List[Dict]:
        raise NotImplementedError

    def _update(self, tx_id: str, columns: Dict[str, Any], user_id: str) -> List[Dict]:
        raise NotImplementedError

    def _delete(self, tx_id: str, user_id: str) -> bool:
        raise NotImplementedError


class SQLiteTransactionStore(TransactionStore):
    """Transactions in a local SQLite database."""

    def __init__(self, db_path: Path, table: str = "transactions", create: bool = True,
                 retry: Optional[RetryPolicy] = None):
        super().__init__(retry)
        self.db_path = Path(db_path)
        self.table = table
        if create:
            self.init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path.as_posix())
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self):
        """Create the table and add any column an older database lacks."""
        with closing(self._connect()) as conn, conn:
            cols = ",\n".join(f"{name} {kind}" for name, kind in SQLITE_COLUMN_TYPES.items())
            conn.execute(f"CREATE TABLE IF NOT EXISTS {self.table} (\n{cols}\n)")
            existing = {r[1] for r in conn.execute(f"PRAGMA table_info({self.table})")}
            for name, kind in SQLITE_COLUMN_TYPES.items():
                if name not in existing:
                    # sqlite cannot add a column with a non-constant default
                    kind = kind.replace(" DEFAULT CURRENT_TIMESTAMP", "")
                    conn.execute(f"ALTER TABLE {self.table} ADD COLUMN {name} {kind}")
            conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{self.table}_user "
                         f"ON {self.table}(user_id, date)")

    def _run(self, fn):
        try:
            with closing(self._connect()) as conn, conn:
                return fn(conn)
        except sqlite3.OperationalError as e:
            msg = str(e)
            if "no such table" in msg or "no such column" in msg or "has no column named" in msg:
                raise SchemaMissingError(f"Database schema is out of date: {msg}") from e
            raise StoreError(msg) from e
        except sqlite3.IntegrityError as e:
            raise StoreError(str(e), status=409) from e
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    def _fetch(self, conn, tx_id: str, user_id: str) -> List[Dict]:
        cur = conn.execute(f"SELECT * FROM {self.table} WHERE id = ? AND user_id = ?",
                           (tx_id, user_id))
        return [dict(r) for r in cur.fetchall()]

    def _select(self, user_id: str) -> List[Dict]:
        def q(conn):
            cur = conn.execute(
                f"SELECT * FROM {self.table} WHERE user_id = ? "
                f"ORDER BY date DESC, created_at DESC", (user_id,))
            return [dict(r) for r in cur.fetchall()]
        return self._run(q)

    def _insert(self, rows: List[Dict]) -> List[Dict]:
        def q(conn):
            saved = []
            for row in rows:
                names = [c for c in ROW_COLUMNS if c in row]
                placeholders = ",".join("?" * len(names))
                conn.execute(f"INSERT INTO {self.table} ({','.join(names)}) VALUES ({placeholders})",
                             [row[c] for c in names])
                saved.extend(self._fetch(conn, row["id"], row["user_id"]))
            return saved
        return self._run(q)

    def _update(self, tx_id: str, columns: Dict[str, Any], user_id: str) -> List[Dict]:
        def q(conn):
            if columns:
                assignments = ", ".join(f"{c} = ?" for c in columns)
                conn.execute(f"UPDATE {self.table} SET {assignments} WHERE id = ? AND user_id = ?",
                             [*columns.values(), tx_id, user_id])
            return self._fetch(conn, tx_id, user_id)
        return self._run(q)

    def _delete(self, tx_id: str, user_id: str) -> bool:
        def q(conn):
            cur = conn.execute(f"DELETE FROM {self.table} WHERE id = ? AND user_id = ?",
                               (tx_id, user_id))
            return cur.rowcount > 0
        return self._run(q)


class RestTransactionStore(TransactionStore):
    """Transactions in the hosted Postgres backend, through its REST endpoint."""

    def __init__(self, base_url: str, api_key: str, table: str = "transactions",
                 access_token: Optional[str] = None, client: Optional[httpx.Client] = None,
                 retry: Optional[RetryPolicy] = None):
        super().__init__(retry)
        self.endpoint = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self.client = client or httpx.Client(timeout=30.0)
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    def _request(self, method: str, params: Dict[str, str], json: Any = None) -> List[Dict]:
        try:
            response = self.client.request(method, self.endpoint, params=params,
                                           json=json, headers=self.headers)
        except httpx.HTTPError as e:
            raise StoreError(f"Could not reach the database: {e}") from e

        if response.status_code >= 400:
            raise self._error_for(response)
        if not response.content:
            return []
        return response.json()

    @staticmethod
    def _error_for(response: httpx.Response) -> StoreError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        code = str(body.get("code") or "")
        message = body.get("message") or response.text or f"HTTP {response.status_code}"
        status = response.status_code

        if (code in SCHEMA_ERROR_CODES or "Could not find the" in message
                or ("relation" in message and "does not exist" in message)):
            return SchemaMissingError(f"Database schema is out of date: {message}", status)
        if status in (401, 403):
            return StoreAuthError(f"Authentication error: {message}", status)
        return StoreError(message, status)

    def _select(self, user_id: str) -> List[Dict]:
        return self._request("GET", {"select": "*", "user_id": f"eq.{user_id}",
                                     "order": "date.desc"})

    def _insert(self, rows: List[Dict]) -> List[Dict]:
        return self._request("POST", {"select": "*"}, json=rows)

    def _update(self, tx_id: str, columns: Dict[str, Any], user_id: str) -> List[Dict]:
        params = {"id": f"eq.{tx_id}", "user_id": f"eq.{user_id}", "select": "*"}
        if not columns:
            return self._request("GET", params)
        return self._request("PATCH", params, json=columns)

    def _delete(self, tx_id: str, user_id: str) -> bool:
        rows = self._request("DELETE", {"id": f"eq.{tx_id}", "user_id": f"eq.{user_id}",
                                        "select": "id"})
        return len(rows) > 0


def build_store(config: AppConfig, access_token: Optional[str] = None) -> TransactionStore:
    """Remote store when a backend URL and key are configured, local SQLite otherwise."""
    if config.uses_remote_store:
        return RestTransactionStore(config.db_url, config.db_key, table=config.db_table,
                                    access_token=access_token)
    return SQLiteTransactionStore(Path(config.db_path), table=config.db_table)
