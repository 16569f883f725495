# mealflow

How much did you eat? `mealflow` pulls your meal transactions from the campus
card service, caches them in a local SQLite database, and lets you query them
from Python.

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## Command line

```
mealflow --help
mealflow --version
mealflow --account 123 --hallticket placeholder
mealflow clear-db
```

Run without a command, `mealflow` synchronises the local database:

1. `--account` and `--hallticket` (if given) are stored in the database; the
   hallticket is stored as the cookie `hallticket=<value>`. Stored values are
   reused on later runs.
2. Transactions newer than the newest one already stored (or all of them, if
   the database is empty) are fetched page by page. Progress is printed to
   standard error.
3. The fetched transactions are inserted, and a line such as
   `Fetched 12 transactions, 340 stored` is printed.

`clear-db` deletes every cached transaction and prints `Database cleared`.
If you use a custom data directory, pass the same `--data-dir` to `clear-db`
so it clears the right database.

On failure an `Error: ...` line is printed to standard error and the exit
status is 1.

Options:

| Option | Meaning |
| --- | --- |
| `-V`, `--version` | print the version and the data directory in use |
| `-t`, `--tick-rate FLOAT` | accepted for compatibility (default 2.0); not used |
| `-f`, `--frame-rate FLOAT` | accepted for compatibility (default 30.0); not used |
| `-d`, `--data-dir PATH` | directory holding the local database |
| `--db-in-mem` | keep the database in memory only; nothing is saved |
| `--account STRING` | account used when fetching transactions |
| `--hallticket STRING` | `hallticket` cookie value used when fetching |
| `--use-mock-data` | fetch from an empty mock fetcher instead of the server |

The database file is `transactions.db` inside the data directory. The data
directory defaults to the platform's user data directory for
`xjtu_mealflow`. It can be overridden with the `XJTU_MEALFLOW_DATA`
environment variable, and `--data-dir` takes precedence over both.

## Library use

```python
from mealflow.fetcher import MockMealFetcher, TransactionRow, fetch
from mealflow.transactions import (
    FilterOptions,
    TransactionManager,
    parse_to_fixed_utc_plus8,
)

rows = [
    TransactionRow(time="2025-03-02 12:00:00", amount=-12.5, merchant="Canteen"),
    TransactionRow(time="2025-03-03 18:30:00", amount=-8.0, merchant="Canteen"),
    TransactionRow(time="2025-03-03 19:00:00", amount=50.0, merchant="Top-up"),
]

with TransactionManager(None) as manager:  # None: in-memory database
    manager.update_account("123")
    manager.update_hallticket("placeholder")

    end_time = parse_to_fixed_utc_plus8("2025-03-01 00:00:00", "%Y-%m-%d %H:%M:%S")
    transactions = fetch(end_time, MockMealFetcher(rows=rows), print)
    manager.insert(transactions)

    print(manager.fetch_count())  # 2: only spending is kept
    for t in manager.fetch_filtered(FilterOptions().merchant("Canteen").min(-10.0).max(0.0)):
        print(t.time, t.amount, t.merchant)
```

Modules:

- `mealflow.transactions`: `Transaction` (with `Transaction.create`),
  `FilterOptions` (`start`, `end`, `merchant`, `min`, `max`),
  `TransactionManager` (`insert`, `fetch_all`, `fetch_filtered`,
  `fetch_count`, `clear_db`, `update_account`, `update_cookie`,
  `update_hallticket`, `get_account_cookie`, `get_account_cookie_may_empty`,
  `close`), `parse_to_fixed_utc_plus8` and `TransactionError`.
- `mealflow.fetcher`: `RealMealFetcher` (HTTP, three attempts per page),
  `MockMealFetcher` (serves given rows newest first, optional `sim_delay`),
  `fetch`, `api_response_to_transactions`, `FetchProgress`, `TransactionRow`
  and `FetchError`.
- `mealflow.config`: `Config.load`, `AppConfig`, `FetchConfig`, `get_data_dir`.
- `mealflow.cli`: `main`, `parse_args`, `build_parser`, `CliSource`, `version`.
- `mealflow.siphash`: `siphash13` and `hash_str`, used for transaction ids.

Only spending (negative amounts) is kept when fetching, and at most 200 pages
are requested. Times are stored in UTC+8. Filter ranges are closed on the left
and open on the right.

Transaction ids are derived from the time, amount and merchant, so inserting
the same transaction twice is silently ignored, while inserting a different
transaction under an existing id raises `TransactionError`.

## What it does not do

There is no interactive terminal interface: no pages for browsing, filtering
or analysing transactions, no help screen and no cookie-entry screen. The
command line only synchronises and clears the database; querying is done from
Python. No mock transaction data is bundled, so `--use-mock-data` fetches
nothing unless `MockMealFetcher` is given rows from Python.