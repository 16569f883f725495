"""Transactions, filter options and the SQLite-backed transaction store."""

from __future__ import annotations

import math
import sqlite3
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable

from .siphash import hash_str

OFFSET_UTC_PLUS8 = timezone(timedelta(hours=8))
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_FAR_FUTURE = datetime(9999, 1, 1, tzinfo=OFFSET_UTC_PLUS8)
_FAR_PAST = datetime(1970, 1, 1, tzinfo=OFFSET_UTC_PLUS8)


class TransactionError(Exception):
    """Raised when parsing, storing or loading transactions fails."""


def format_rust_float(value: float) -> str:
    """Format a float as its shortest exact decimal without exponent, e.g. -100.0 -> "-100"."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    text = format(Decimal(repr(float(value))), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _timestamp(dt: datetime) -> int:
    return (dt - _EPOCH) // timedelta(seconds=1)


def _require_aware(dt: datetime) -> None:
    if dt.tzinfo is None or dt.utcoffset() is None:
        raise TransactionError(f"Datetime {dt!r} has no time zone")


def _fraction(dt: datetime) -> str:
    micro = dt.microsecond
    if micro == 0:
        return ""
    if micro % 1000 == 0:
        return f".{micro // 1000:03d}"
    return f".{micro:06d}"


def _offset(dt: datetime) -> str:
    seconds = int(dt.utcoffset().total_seconds())
    sign = "-" if seconds < 0 else "+"
    seconds = abs(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    text = f"{sign}{hours:02d}:{minutes:02d}"
    if secs:
        text += f":{secs:02d}"
    return text


def _sql_time(dt: datetime) -> str:
    _require_aware(dt)
    return dt.strftime("%Y-%m-%d %H:%M:%S") + _fraction(dt) + _offset(dt)


def _display_time(dt: datetime) -> str:
    _require_aware(dt)
    return dt.strftime("%Y-%m-%d %H:%M:%S") + _fraction(dt) + " " + _offset(dt)


def parse_to_fixed_utc_plus8(s: str, fmt: str) -> datetime:
    """Parse a naive date string and attach the UTC+8 offset."""
    try:
        naive = datetime.strptime(s, fmt)
    except ValueError as exc:
        raise TransactionError(
            f"Failed to parse date string: {s} with format: {fmt}"
        ) from exc
    return naive.replace(tzinfo=OFFSET_UTC_PLUS8)


@dataclass
class Transaction:
    """A single card transaction; ``time`` is in UTC+8."""

    id: int
    time: datetime
    amount: float
    merchant: str

    @classmethod
    def create(cls, amount: float, merchant: str, time: datetime) -> "Transaction":
        """Build a transaction whose id is derived from its time, amount and merchant."""
        _require_aware(time)
        key = f"{_timestamp(time)}&{format_rust_float(amount)}&{merchant}"
        return cls(id=hash_str(key), time=time, amount=amount, merchant=merchant)


@dataclass(frozen=True)
class FilterOptions:
    """Filters for querying transactions; ranges are closed on the left, open on the right."""

    time_range: tuple[datetime, datetime] | None = None
    merchant_name: str | None = None
    amount_range: tuple[float, float] | None = None

    def start(self, start: datetime) -> "FilterOptions":
        end = self.time_range[1] if self.time_range else _FAR_FUTURE
        return replace(self, time_range=(start, end))

    def end(self, end: datetime) -> "FilterOptions":
        start = self.time_range[0] if self.time_range else _FAR_PAST
        return replace(self, time_range=(start, end))

    def merchant(self, merchant: str) -> "FilterOptions":
        return replace(self, merchant_name=str(merchant))

    def min(self, amount: float) -> "FilterOptions":
        upper = self.amount_range[1] if self.amount_range else math.inf
        return replace(self, amount_range=(amount, upper))

    def max(self, amount: float) -> "FilterOptions":
        lower = self.amount_range[0] if self.amount_range else -math.inf
        return replace(self, amount_range=(lower, amount))

    def __str__(self) -> str:
        lines = []
        if self.time_range is not None:
            start, end = self.time_range
            lines.append(f"Time: {_display_time(start)} - {_display_time(end)}\n")
        if self.merchant_name is not None:
            lines.append(f"Merchant: {self.merchant_name}\n")
        if self.amount_range is not None:
            low, high = self.amount_range
            lines.append(
                f"Amount: {format_rust_float(low)} - {format_rust_float(high)}\n"
            )
        return "".join(lines) or "No filters applied\n"


_SCHEMA = (
    """CREATE TABLE IF NOT EXISTS transactions (
        id INTEGER PRIMARY KEY,
        time TEXT NOT NULL,
        amount REAL NOT NULL,
        merchant TEXT NOT NULL
    )""",
    """CREATE TRIGGER IF NOT EXISTS prevent_transaction_conflict
        BEFORE INSERT ON transactions
        FOR EACH ROW
        BEGIN
            SELECT CASE
            WHEN EXISTS (
                SELECT 1 FROM transactions
                WHERE id = NEW.id
                AND time = NEW.time
                AND amount = NEW.amount
                AND merchant = NEW.merchant
            ) THEN
                RAISE(IGNORE)
            WHEN EXISTS (
                SELECT 1 FROM transactions
                WHERE id = NEW.id
            ) THEN
                RAISE(ABORT, 'Conflict: Existing transaction with different data')
            END;
        END;""",
    """CREATE TABLE IF NOT EXISTS cookies (
        account TEXT PRIMARY KEY,
        cookie TEXT NOT NULL
    )""",
)


def _row_to_transaction(row: tuple) -> Transaction | None:
    tid, time_text, amount, merchant = row
    try:
        time = datetime.fromisoformat(time_text)
    except (TypeError, ValueError):
        return None
    if time.tzinfo is None:
        return None
    return Transaction(id=tid, time=time, amount=amount, merchant=merchant)


class TransactionManager:
    """Thread-safe store of transactions and account credentials in SQLite."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        if db_path is None:
            target = ":memory:"
        else:
            path = Path(db_path)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise TransactionError(
                    "Failed to create dir for local cache DB"
                ) from exc
            target = str(path)
        try:
            self._conn = sqlite3.connect(
                target, check_same_thread=False, isolation_level=None
            )
        except sqlite3.Error as exc:
            raise TransactionError(f"Failed to open local cache DB at {target}") from exc
        self._lock = threading.Lock()
        try:
            for statement in _SCHEMA:
                self._conn.execute(statement)
        except sqlite3.Error as exc:
            raise TransactionError("Failed to initialize local cache DB") from exc

    def __enter__(self) -> "TransactionManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying database connection."""
        with self._lock:
            self._conn.close()

    def insert(self, transactions: Iterable[Transaction]) -> None:
        """Insert transactions; identical duplicates are skipped, conflicting ones raise."""
        with self._lock:
            for transaction in transactions:
                try:
                    self._conn.execute(
                        "INSERT INTO transactions (id, time, amount, merchant) "
                        "VALUES (?, ?, ?, ?)",
                        (
                            transaction.id,
                            _sql_time(transaction.time),
                            float(transaction.amount),
                            transaction.merchant,
                        ),
                    )
                except sqlite3.Error as exc:
                    raise TransactionError(
                        "Error when inserting transactions into Database, "
                        f"transaction: {transaction!r}"
                    ) from exc

    def _query(self, sql: str, params: Iterable = ()) -> list[Transaction]:
        with self._lock:
            try:
                rows = self._conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as exc:
                raise TransactionError(str(exc)) from exc
        return [t for t in map(_row_to_transaction, rows) if t is not None]

    def fetch_all(self) -> list[Transaction]:
        """Return all stored transactions in no guaranteed order."""
        return self._query("SELECT id, time, amount, merchant FROM transactions")

    def fetch_filtered(self, filter_opt: FilterOptions) -> list[Transaction]:
        """Return the transactions that match ``filter_opt``."""
        conditions: list[str] = []
        params: list[str] = []
        if filter_opt.time_range is not None:
            start, end = filter_opt.time_range
            conditions.append("time >= ? AND time < ?")
            params += [_display_time(start), _display_time(end)]
        if filter_opt.merchant_name is not None:
            conditions.append("merchant = ?")
            params.append(filter_opt.merchant_name)
        if filter_opt.amount_range is not None:
            low, high = filter_opt.amount_range
            conditions.append("amount >= ? AND amount < ?")
            params += [format_rust_float(low), format_rust_float(high)]
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return self._query(
            f"SELECT id, time, amount, merchant FROM transactions {where}", params
        )

    def fetch_count(self) -> int:
        """Return the number of stored transactions."""
        with self._lock:
            try:
                (count,) = self._conn.execute(
                    "SELECT COUNT(*) FROM transactions"
                ).fetchone()
            except sqlite3.Error as exc:
                raise TransactionError(str(exc)) from exc
        return int(count)

    def clear_db(self) -> None:
        """Delete every stored transaction."""
        with self._lock:
            try:
                self._conn.execute("DELETE FROM transactions")
            except sqlite3.Error as exc:
                raise TransactionError(str(exc)) from exc

    def _replace_credentials(self, account: str | None, cookie: str | None) -> None:
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT account, cookie FROM cookies LIMIT 1"
                ).fetchone()
                old_account, old_cookie = row if row else ("", "")
                self._conn.execute("DELETE FROM cookies")
                self._conn.execute(
                    "INSERT INTO cookies (account, cookie) VALUES (?, ?)",
                    (
                        old_account if account is None else account,
                        old_cookie if cookie is None else cookie,
                    ),
                )
            except sqlite3.Error as exc:
                raise TransactionError(str(exc)) from exc

    def update_account(self, account: str) -> None:
        """Set the account, keeping any stored cookie."""
        self._replace_credentials(account, None)

    def update_cookie(self, cookie: str) -> None:
        """Set the cookie, keeping any stored account."""
        self._replace_credentials(None, cookie)

    def update_hallticket(self, hallticket: str) -> None:
        """Store ``hallticket=<value>`` as the cookie."""
        self.update_cookie(f"hallticket={hallticket}")

    def get_account_cookie(self) -> tuple[str, str]:
        """Return (account, cookie); raise if either is empty."""
        account, cookie = self.get_account_cookie_may_empty()
        if not account or not cookie:
            raise TransactionError("Account or cookie is empty")
        return account, cookie

    def get_account_cookie_may_empty(self) -> tuple[str, str]:
        """Return (account, cookie), which may be empty; raise if nothing is stored."""
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT account, cookie FROM cookies"
                ).fetchone()
            except sqlite3.Error as exc:
                raise TransactionError(str(exc)) from exc
        if row is None:
            raise TransactionError("No account and cookie found")
        return row[0], row[1]