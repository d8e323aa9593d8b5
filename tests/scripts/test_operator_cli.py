"""
scripts/operator_cli.py end to end against a file-backed SQLite database.

The ``engine`` fixture is overridden so the catalog and order factories
write to the same database the CLI opens through DATABASE_URL.
"""

import importlib.util
from pathlib import Path

import pytest

from order_kernel.db.engine import create_engine_from_url, create_tables

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "operator_cli.py"


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("operator_cli", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def engine(tmp_path, monkeypatch):
    url = f"sqlite+pysqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    engine = create_engine_from_url(url)
    create_tables(engine)
    yield engine
    engine.dispose()


def test_no_stuck_tasks(cli, engine, capsys):
    assert cli.main(["--actor", "anna", "stuck"]) == 0
    assert "No stuck tasks." in capsys.readouterr().out


def test_refund(cli, create_order, capsys):
    created = create_order()

    code = cli.main([
        "--actor", "anna", "refund", created.order_number, "2000",
        "--reason", "Damaged in transit", "--refund-id", "re_cli_1",
    ])

    assert code == 0
    assert "partial_refund: 2000c" in capsys.readouterr().out


def test_kernel_error_reported(cli, engine, capsys):
    code = cli.main(["--actor", "anna", "refund", "AIGG-20260115-NONE", "100"])

    assert code == 1
    assert "ERROR [ORDER_NOT_FOUND]" in capsys.readouterr().err


def test_unknown_override_status_rejected(cli):
    with pytest.raises(SystemExit):
        cli.main(["--actor", "anna", "override-status", "6f1c0000-0000-0000-0000-000000000000", "lost"])
