"""
Module: order_kernel.db.triggers
Responsibility: Loading and installing the PostgreSQL immutability
    triggers (Layer 2 of 2).  This is the database-level complement to the
    ORM-level listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.  MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - ledger_entries, audit_log, processed_external_events,
      fulfillment_events, order_items: no UPDATE, no DELETE.
    - orders: only status may change; no DELETE.
    - period_reports: only generated -> archived; no DELETE.
    - partner_commissions: only payout fields, only from pending; no DELETE.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on any violation (surfaces as
      sqlalchemy InternalError / DBAPIError).
    - FileNotFoundError if SQL files are missing from the sql/ directory.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

from order_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

SQL_DIR = Path(__file__).parent / "sql"

TRIGGER_FILES = [
    "01_append_only.sql",
    "02_orders.sql",
    "03_period_reports.sql",
    "04_partner_commissions.sql",
    "05_fulfillment_tasks.sql",
]

DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = [
    "trg_ledger_entries_immutable",
    "trg_audit_log_immutable",
    "trg_processed_events_immutable",
    "trg_fulfillment_events_immutable",
    "trg_order_items_immutable",
    "trg_orders_restricted_update",
    "trg_orders_no_delete",
    "trg_period_reports_archive_only",
    "trg_period_reports_no_delete",
    "trg_partner_commissions_payout_only",
    "trg_partner_commissions_no_delete",
]


def _load_sql_file(filename: str) -> str:
    return (SQL_DIR / filename).read_text(encoding="utf-8")


def _load_all_trigger_sql() -> str:
    parts = []
    for filename in TRIGGER_FILES:
        parts.append(f"-- Loading: {filename}")
        parts.append(_load_sql_file(filename))
        parts.append("")
    return "\n".join(parts)


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level immutability triggers.

    Preconditions: tables exist; engine is connected to PostgreSQL.
    Postconditions: every trigger in ALL_TRIGGER_NAMES is installed.
        Functions use CREATE OR REPLACE and triggers are dropped first,
        so installation is idempotent.
    """
    with engine.connect() as conn:
        conn.execute(text(_load_all_trigger_sql()))
        conn.commit()
    logger.info("immutability_triggers_installed", extra={"count": len(ALL_TRIGGER_NAMES)})


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level immutability triggers.

    Only for test teardown and migrations that must rewrite history;
    re-install immediately afterwards.
    """
    with engine.connect() as conn:
        conn.execute(text(_load_sql_file(DROP_FILE)))
        conn.commit()
    logger.warning("immutability_triggers_uninstalled")

