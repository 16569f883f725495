"""Command-line entry point: argument parsing, configuration overrides and commands."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from .config import Config, get_data_dir
from .fetcher import FetchError, FetchProgress, MockMealFetcher, RealMealFetcher, fetch
from .transactions import OFFSET_UTC_PLUS8, TransactionError, TransactionManager

_VERSION = "0.1.0"
_PROG = "xjtu_mealflow"
_EARLIEST = datetime(1970, 1, 1, tzinfo=OFFSET_UTC_PLUS8)


def version() -> str:
    """Return the version text, including the data directory in use."""
    return f"{_VERSION}\n\nData directory: {get_data_dir()}"


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog=_PROG, description="How much did you eat at XJTU?"
    )
    parser.add_argument(
        "-V", "--version", action="version", version=version()
    )
    parser.add_argument(
        "-t", "--tick-rate", type=float, default=2.0, metavar="FLOAT",
        help="Tick rate, i.e. number of ticks per second",
    )
    parser.add_argument(
        "-f", "--frame-rate", type=float, default=30.0, metavar="FLOAT",
        help="Frame rate, i.e. number of frames per second",
    )
    parser.add_argument(
        "-d", "--data-dir", default=None, metavar="PATH",
        help="Path to the data directory",
    )
    parser.add_argument(
        "--db-in-mem", action="store_true",
        help="Use an in-memory database; all data is lost when the program exits",
    )
    parser.add_argument(
        "--account", default=None, metavar="STRING",
        help="Account for fetching transactions",
    )
    parser.add_argument(
        "--hallticket", default=None, metavar="STRING",
        help="hallticket for fetching transactions",
    )
    parser.add_argument(
        "--use-mock-data", action="store_true",
        help="Use mock data when fetching transactions",
    )
    commands = parser.add_subparsers(dest="command")
    commands.add_parser(
        "clear-db",
        help="Clean the local database",
        description=(
            "Clean up the database used for caching transactions and other data. "
            "If you have set a custom data path, set the same path here."
        ),
    )
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)


@dataclass(frozen=True)
class CliSource:
    """The configuration values given on the command line."""

    data_dir: str | None = None
    db_in_mem: bool = False
    account: str | None = None
    hallticket: str | None = None
    use_mock_data: bool = False

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "CliSource":
        return cls(
            data_dir=args.data_dir,
            db_in_mem=args.db_in_mem,
            account=args.account,
            hallticket=args.hallticket,
            use_mock_data=args.use_mock_data,
        )

    def collect(self) -> dict[str, Any]:
        """Return the overrides as dotted configuration keys."""
        values: dict[str, Any] = {}
        if self.data_dir is not None:
            values["data_dir"] = self.data_dir
        values["db_in_mem"] = self.db_in_mem
        if self.account is not None:
            values["fetch.account"] = self.account
        if self.hallticket is not None:
            values["fetch.hallticket"] = self.hallticket
        values["fetch.use_mock_data"] = self.use_mock_data
        return values


def _report(progress: FetchProgress) -> None:
    if progress.current_page:
        print(
            f"page {progress.current_page}: {progress.total_entries_fetched} entries, "
            f"oldest {progress.oldest_date}",
            file=sys.stderr,
        )


def _sync(config: Config) -> None:
    with TransactionManager(config.config.db_path()) as manager:
        if config.fetch.account is not None:
            manager.update_account(config.fetch.account)
        if config.fetch.hallticket is not None:
            manager.update_hallticket(config.fetch.hallticket)

        if config.fetch.use_mock_data:
            client = MockMealFetcher(per_page=50)
        else:
            account, cookie = manager.get_account_cookie()
            client = RealMealFetcher(cookie=cookie, account=account)

        end_time = max((t.time for t in manager.fetch_all()), default=_EARLIEST)
        fetched = fetch(end_time, client, _report)
        manager.insert(fetched)
        print(f"Fetched {len(fetched)} transactions, {manager.fetch_count()} stored")


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; return the process exit status."""
    args = parse_args(argv)
    try:
        config = Config.load(CliSource.from_args(args).collect())
        if args.command == "clear-db":
            with TransactionManager(config.config.db_path()) as manager:
                manager.clear_db()
            print("Database cleared")
            return 0
        _sync(config)
        return 0
    except (TransactionError, FetchError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())