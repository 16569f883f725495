"""Fetching card transactions from the campus card server, or from mock data."""

from __future__ import annotations

import json
import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Union

import requests

from .transactions import Transaction, TransactionError, parse_to_fixed_utc_plus8

API_ORIGIN = "http://card.xjtu.edu.cn"
API_PATH = "/Report/GetPersonTrjn"
MAX_PAGES = 200
MAX_ATTEMPTS = 3
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_COOKIE_NOTE = "Consider re-logging in to card.xjtu.edu.cn and updating your cookie."


class FetchError(Exception):
    """Raised when transactions cannot be fetched or the server response is unusable."""

    def __init__(self, message: str, response: str | None = None) -> None:
        super().__init__(message)
        self.response = response

    def __str__(self) -> str:
        text = super().__str__()
        if self.response is not None:
            text += f"\nIncorrect API response:\n{self.response}"
        return text


@dataclass(frozen=True)
class FetchProgress:
    """Progress report emitted while pages are fetched."""

    current_page: int
    total_entries_fetched: int
    oldest_date: datetime | None


@dataclass(frozen=True)
class TransactionRow:
    """One raw row as returned by the card server API."""

    time: str
    amount: float
    merchant: str


def _row_from_api(raw: Any) -> TransactionRow:
    if not isinstance(raw, dict):
        raise ValueError("row is not an object")
    for key in ("OCCTIME", "TRANAMT", "MERCNAME"):
        if key not in raw:
            raise ValueError(f"missing field `{key}`")
    occ_time, amount, merchant = raw["OCCTIME"], raw["TRANAMT"], raw["MERCNAME"]
    if not isinstance(occ_time, str):
        raise ValueError("invalid type for `OCCTIME`, expected a string")
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise ValueError("invalid type for `TRANAMT`, expected f64")
    if not isinstance(merchant, str):
        raise ValueError("invalid type for `MERCNAME`, expected a string")
    return TransactionRow(time=occ_time, amount=float(amount), merchant=merchant)


def _row_to_api(row: TransactionRow) -> dict[str, Any]:
    return {"OCCTIME": row.time, "TRANAMT": row.amount, "MERCNAME": row.merchant}


def _timestamp(dt: datetime) -> int:
    if dt.tzinfo is None or dt.utcoffset() is None:
        raise FetchError(f"Datetime {dt!r} has no time zone")
    return math.floor(dt.timestamp())


@dataclass
class RealMealFetcher:
    """Fetches transaction pages from the card server over HTTP."""

    cookie: str | None = None
    account: str | None = None
    origin: str = API_ORIGIN
    per_page: int = 50
    retry_delay: float = 1.0

    def _headers(self, cookie: str) -> dict[str, str]:
        if any(ch in cookie for ch in "\r\n\0"):
            raise FetchError("Invalid cookie")
        return {
            "Host": "card.xjtu.edu.cn",
            "Accept": "application/json, text/javascript, */*; q=0.01",
            "X-Requested-With": "XMLHttpRequest",
            "Accept-Language": "zh-CN,zh-Hans;q=0.9",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
            "Origin": self.origin,
            "Connection": "keep-alive",
            "Referer": "http://card.xjtu.edu.cn/PPage/ComePage?flowID=15",
            "User-Agent": "",
            "Cookie": cookie,
        }

    def fetch_page(self, page: int) -> str:
        """Return the raw JSON text of one page, retrying failed requests."""
        if self.cookie is None:
            raise FetchError("Cookie not set")
        if self.account is None:
            raise FetchError("Account not set")
        headers = self._headers(self.cookie)
        body = f"account={self.account}&page={page}&json=true&rows={self.per_page}"
        url = f"{self.origin}{API_PATH}"

        last_error = "Failed to fetch transactions"
        for _ in range(MAX_ATTEMPTS):
            try:
                response = requests.post(url, headers=headers, data=body.encode("utf-8"))
            except requests.RequestException as exc:
                last_error = f"Request error: {exc}"
            else:
                if response.ok:
                    return response.text
                last_error = (
                    f"Request failed with status: {response.status_code} {response.reason}"
                )
            time.sleep(self.retry_delay)
        raise FetchError(last_error)


@dataclass
class MockMealFetcher:
    """Serves pages of pre-loaded rows, newest first, optionally with a simulated delay."""

    rows: list[TransactionRow] = field(default_factory=list)
    per_page: int = 20
    sim_delay: float | None = None

    def __post_init__(self) -> None:
        def parse(row: TransactionRow) -> datetime:
            try:
                return parse_to_fixed_utc_plus8(row.time, TIME_FORMAT)
            except TransactionError as exc:
                raise FetchError(f"Invalid time in mock data: {row.time!r}") from exc

        self.rows = sorted(self.rows, key=parse, reverse=True)

    def fetch_page(self, page: int) -> str:
        """Return one page of rows serialised as an API response."""
        if page < 1:
            raise ValueError("pages are numbered from 1")
        if self.sim_delay:
            time.sleep(self.sim_delay)
        start = min((page - 1) * self.per_page, len(self.rows))
        end = min(start + self.per_page, len(self.rows))
        return json.dumps({"rows": [_row_to_api(r) for r in self.rows[start:end]]})


MealFetcher = Union[RealMealFetcher, MockMealFetcher]


def api_response_to_transactions(s: str) -> list[Transaction]:
    """Parse an API response into spending transactions (negative amounts only)."""
    try:
        data = json.loads(s)
    except json.JSONDecodeError as exc:
        raise FetchError(f"Failed to parse API response: {exc}", response=s) from exc
    if not isinstance(data, dict):
        raise FetchError(
            "Failed to parse API response: expected an object", response=s
        )
    if "rows" not in data:
        raise FetchError(
            "missing field `rows`. This may indicate that your cookie has expired. "
            + _COOKIE_NOTE,
            response=s,
        )
    raw_rows = data["rows"]
    if not isinstance(raw_rows, list):
        raise FetchError(
            "Failed to parse API response: `rows` is not a sequence", response=s
        )
    try:
        rows = [_row_from_api(raw) for raw in raw_rows]
    except ValueError as exc:
        raise FetchError(f"Failed to parse API response: {exc}", response=s) from exc

    transactions = []
    for row in rows:
        try:
            when = parse_to_fixed_utc_plus8(row.time.strip(), TIME_FORMAT)
        except TransactionError:
            continue
        transaction = Transaction.create(row.amount, row.merchant.strip(), when)
        if transaction.amount < 0.0:
            transactions.append(transaction)
    return transactions


def fetch(
    end_time: datetime,
    client: MealFetcher,
    progress_cb: Callable[[FetchProgress], Any] | None = None,
) -> list[Transaction]:
    """Fetch all transactions newer than ``end_time``, reporting progress per page."""
    report = progress_cb or (lambda _progress: None)
    end_ts = _timestamp(end_time)
    collected: list[Transaction] = []

    report(FetchProgress(current_page=0, total_entries_fetched=0, oldest_date=None))

    for page in range(1, MAX_PAGES + 1):
        try:
            text = client.fetch_page(page)
        except (FetchError, ValueError) as exc:
            raise FetchError(f"Error when fetching on page {page}: {exc}") from exc
        try:
            page_transactions = api_response_to_transactions(text)
        except FetchError as exc:
            raise FetchError(
                "Error when parsing data returned from XJTU server on page "
                f"{page}: {exc}"
            ) from exc
        if not page_transactions:
            break

        collected.extend(page_transactions)
        last = collected[-1]
        report(
            FetchProgress(
                current_page=page,
                total_entries_fetched=len(collected),
                oldest_date=last.time,
            )
        )
        if _timestamp(last.time) <= end_ts:
            collected = [t for t in collected if _timestamp(t.time) > end_ts]
            break

    return collected