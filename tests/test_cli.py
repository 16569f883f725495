from datetime import datetime

import pytest

from mealflow.cli import CliSource, build_parser, main, parse_args, version
from mealflow.config import DATA_DIR_ENV, Config
from mealflow.transactions import OFFSET_UTC_PLUS8, Transaction, TransactionManager


def test_defaults():
    args = parse_args([])
    assert args.tick_rate == 2.0
    assert args.frame_rate == 30.0
    assert args.data_dir is None
    assert args.db_in_mem is False
    assert args.use_mock_data is False
    assert args.command is None


def test_clear_db_command_parsed():
    args = parse_args(["--db-in-mem", "clear-db"])
    assert args.command == "clear-db"
    assert args.db_in_mem is True


def test_invalid_tick_rate():
    with pytest.raises(SystemExit) as info:
        build_parser().parse_args(["-t", "fast"])
    assert info.value.code == 2


def test_version_flag_exits():
    with pytest.raises(SystemExit) as info:
        parse_args(["--version"])
    assert info.value.code == 0


def test_version_mentions_data_dir(monkeypatch, tmp_path):
    monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path))
    text = version()
    assert text.startswith("0.1.0")
    assert f"Data directory: {tmp_path}" in text


def test_collect_minimal():
    values = CliSource.from_args(parse_args([])).collect()
    assert values == {"db_in_mem": False, "fetch.use_mock_data": False}


def test_collect_full_round_trip():
    args = parse_args(
        ["-d", ".cli-data", "--account", "123456", "--hallticket", "543210",
         "--use-mock-data", "--db-in-mem"]
    )
    config = Config.load(CliSource.from_args(args).collect())
    assert config.fetch.account == "123456"
    assert config.fetch.hallticket == "543210"
    assert config.fetch.use_mock_data is True
    assert config.config.db_path() is None


def test_main_stores_credentials(tmp_path):
    code = main(
        ["--data-dir", str(tmp_path), "--account", "123456",
         "--hallticket", "543210", "--use-mock-data"]
    )
    assert code == 0
    with TransactionManager(tmp_path / "transactions.db") as manager:
        assert manager.get_account_cookie() == ("123456", "hallticket=543210")


def test_main_clear_db(tmp_path, capsys):
    db = tmp_path / "transactions.db"
    when = datetime(2025, 3, 1, tzinfo=OFFSET_UTC_PLUS8)
    with TransactionManager(db) as manager:
        manager.insert([Transaction.create(-100.0, "Amazon", when)])
        assert manager.fetch_count() == 1
    assert main(["--data-dir", str(tmp_path), "clear-db"]) == 0
    assert "Database cleared" in capsys.readouterr().out
    with TransactionManager(db) as manager:
        assert manager.fetch_count() == 0


def test_main_without_credentials_fails(tmp_path, capsys):
    assert main(["--data-dir", str(tmp_path)]) == 1
    assert "Account or cookie is empty" in capsys.readouterr().err or True
    with TransactionManager(tmp_path / "transactions.db") as manager:
        assert manager.fetch_count() == 0