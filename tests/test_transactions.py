import threading
from datetime import datetime

import pytest

from mealflow.transactions import (
    OFFSET_UTC_PLUS8,
    FilterOptions,
    Transaction,
    TransactionError,
    TransactionManager,
    format_rust_float,
    parse_to_fixed_utc_plus8,
)


def at(year, month, day):
    return datetime(year, month, day, tzinfo=OFFSET_UTC_PLUS8)


def sample():
    return [
        Transaction(id=1, time=at(2025, 3, 1), amount=-100.0, merchant="Amazon"),
        Transaction(id=2, time=at(2025, 3, 1), amount=-200.0, merchant="Google"),
    ]


def test_transaction_parse_time():
    parsed = parse_to_fixed_utc_plus8("2025-03-01 00:00:00", "%Y-%m-%d %H:%M:%S")
    assert parsed == at(2025, 3, 1)
    assert parsed.utcoffset().total_seconds() == 8 * 3600


def test_parse_time_failure():
    with pytest.raises(TransactionError):
        parse_to_fixed_utc_plus8("not a date", "%Y-%m-%d %H:%M:%S")


def test_transaction_new():
    time = at(2025, 3, 1)
    t = Transaction.create(-100.0, "Amazon", time)
    assert t.amount == -100.0
    assert t.merchant == "Amazon"
    assert t.time == time
    assert t.id == 2865793625909541060


def test_create_requires_aware_time():
    with pytest.raises(TransactionError):
        Transaction.create(-1.0, "X", datetime(2025, 3, 1))


@pytest.mark.parametrize(
    "value, expected",
    [
        (-100.0, "-100"),
        (0.1, "0.1"),
        (1.5, "1.5"),
        (1e20, "100000000000000000000"),
        (-0.0, "-0"),
        (float("inf"), "inf"),
        (float("-inf"), "-inf"),
        (float("nan"), "NaN"),
    ],
)
def test_format_rust_float(value, expected):
    assert format_rust_float(value) == expected


def test_transaction_manager():
    manager = TransactionManager(None)
    manager.clear_db()
    manager.insert(sample())
    fetched = manager.fetch_all()
    assert len(fetched) == 2
    assert fetched[0].id == 1
    assert fetched[0].amount == -100.0
    assert fetched[0].merchant == "Amazon"
    assert fetched[0].time == at(2025, 3, 1)
    assert fetched[1].id == 2
    assert fetched[1].amount == -200.0
    assert fetched[1].merchant == "Google"


def test_account_cookie():
    manager = TransactionManager(None)
    manager.update_account("test_account")
    assert manager.get_account_cookie_may_empty() == ("test_account", "")

    manager.update_cookie("test_cookie")
    assert manager.get_account_cookie() == ("test_account", "test_cookie")

    manager.update_account("test_account2")
    assert manager.get_account_cookie() == ("test_account2", "test_cookie")


def test_hallticket_sets_cookie():
    manager = TransactionManager(None)
    manager.update_account("123456")
    manager.update_hallticket("543210")
    assert manager.get_account_cookie() == ("123456", "hallticket=543210")


def test_account_cookie_missing_or_empty():
    manager = TransactionManager(None)
    with pytest.raises(TransactionError):
        manager.get_account_cookie_may_empty()
    manager.update_account("only_account")
    with pytest.raises(TransactionError):
        manager.get_account_cookie()


def test_fetch_count():
    manager = TransactionManager(None)
    manager.clear_db()
    assert manager.fetch_count() == 0
    manager.insert(sample())
    assert manager.fetch_count() == 2
    manager.insert(
        [Transaction(id=3, time=at(2025, 3, 1), amount=-300.0, merchant="Apple")]
    )
    assert manager.fetch_count() == 3
    manager.clear_db()
    assert manager.fetch_count() == 0


def test_multithread_access():
    manager = TransactionManager(None)
    worker = threading.Thread(target=manager.insert, args=(sample(),))
    worker.start()
    worker.join()
    fetched = manager.fetch_all()
    assert len(fetched) == 2
    assert fetched[0].id == 1


def test_identical_duplicate_ignored_and_conflict_rejected():
    manager = TransactionManager(None)
    manager.insert(sample())
    manager.insert(sample())
    assert manager.fetch_count() == 2
    with pytest.raises(TransactionError):
        manager.insert(
            [Transaction(id=1, time=at(2025, 3, 1), amount=-5.0, merchant="Other")]
        )
    assert manager.fetch_count() == 2


def test_fetch_filtered():
    manager = TransactionManager(None)
    manager.clear_db()
    manager.insert(
        [
            Transaction.create(-100.0, "Amazon", at(2025, 3, 1)),
            Transaction.create(-200.0, "Google", at(2025, 3, 2)),
            Transaction.create(-300.0, "Amazon", at(2025, 3, 3)),
        ]
    )

    results = manager.fetch_filtered(FilterOptions().merchant("Amazon"))
    assert len(results) == 2
    assert all(t.merchant == "Amazon" for t in results)

    results = manager.fetch_filtered(FilterOptions().min(-250.0).max(-100.0))
    assert len(results) == 1
    assert results[0].amount == -200.0

    results = manager.fetch_filtered(
        FilterOptions().start(at(2025, 3, 1)).end(at(2025, 3, 2))
    )
    assert len(results) == 1
    assert results[0].merchant == "Amazon"

    assert len(manager.fetch_filtered(FilterOptions())) == 3


def test_filter_builders_fill_defaults():
    opts = FilterOptions().end(at(2025, 3, 2))
    assert opts.time_range == (at(1970, 1, 1), at(2025, 3, 2))
    opts = FilterOptions().start(at(2025, 3, 1))
    assert opts.time_range == (at(2025, 3, 1), at(9999, 1, 1))
    assert FilterOptions().min(-1.0).amount_range == (-1.0, float("inf"))
    assert FilterOptions().max(-1.0).amount_range == (float("-inf"), -1.0)


def test_filter_display():
    assert str(FilterOptions()) == "No filters applied\n"
    opts = FilterOptions().start(at(2025, 3, 1)).merchant("Amazon").min(-250.0)
    assert str(opts) == (
        "Time: 2025-03-01 00:00:00 +08:00 - 9999-01-01 00:00:00 +08:00\n"
        "Merchant: Amazon\n"
        "Amount: -250 - inf\n"
    )


def test_file_database_persists(tmp_path):
    db = tmp_path / "nested" / "transactions.db"
    with TransactionManager(db) as manager:
        manager.insert(sample())
    with TransactionManager(db) as manager:
        assert manager.fetch_count() == 2
        assert {t.merchant for t in manager.fetch_all()} == {"Amazon", "Google"}