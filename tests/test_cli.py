# tests/test_cli.py
import pytest

from deskledger.cli import build_parser, main


@pytest.fixture(name="cli_args")
def cli_args_fixture(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("logging:\n  level: WARNING\n")
    db_url = f"sqlite:///{tmp_path / 'data' / 'desk.db'}"
    return ["--config", str(config_path), "--database", db_url]


def test_init_db_then_trial_balance(cli_args, tmp_path, capsys):
    assert main(cli_args + ["init-db"]) == 0
    assert (tmp_path / "data" / "desk.db").exists()

    assert main(cli_args + ["trial-balance"]) == 0
    assert "Balanced" in capsys.readouterr().out


def test_reprocess_empty_ledger(cli_args, capsys):
    main(cli_args + ["init-db"])
    assert main(cli_args + ["reprocess"]) == 0
    assert "Reprocessed 0 receipts" in capsys.readouterr().out


def test_statement_for_unknown_counterpart_fails(cli_args, capsys):
    main(cli_args + ["init-db"])
    assert main(cli_args + ["statement", "999"]) == 1
    assert "Error:" in capsys.readouterr().err


def test_parser_rejects_bad_dates():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["statement", "1", "--start", "01/02/2025"])
