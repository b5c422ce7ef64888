# Overview: One-time schema bootstrap and ledger consistency checks; run from the CLI, never per request.

from __future__ import annotations

from sqlalchemy import inspect

from ..extensions import db
from ..logging_config import get_logger
from ..models import Variant
from . import stock_ledger_service

logger = get_logger("maintenance")


def ensure_schema() -> list[str]:
    """
    Create any missing tables. Idempotent: existing tables are left untouched.

    Returns the names of tables that were created.
    """
    existing = set(inspect(db.engine).get_table_names())
    db.create_all()
    created = sorted(set(inspect(db.engine).get_table_names()) - existing)
    if created:
        logger.info("Schema bootstrap created tables: %s", ", ".join(created))
    return created


def reset_schema() -> None:
    """DEV/TEST only: drop and recreate every table."""
    db.drop_all()
    db.create_all()
    logger.warning("Schema reset: all tables dropped and recreated")


def verify_ledger() -> dict:
    """
    Recompute every variant's counters from its movements.

    Returns {"checked": n, "problems": [...]} where problems holds only the
    variants that drift from their movement history or break reserved <= sellable.
    """
    checked = db.session.query(Variant).count()
    problems = stock_ledger_service.verify_all()
    logger.info("Ledger verification: %d variants checked, %d problems", checked, len(problems))
    return {"checked": checked, "problems": problems}
