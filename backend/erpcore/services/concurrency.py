# Overview: Row locking and retry wrapper shared by every state-changing service.

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentModificationError
from ..extensions import db
from ..logging_config import get_logger

logger = get_logger("concurrency")

# Fragments of driver messages that indicate lock contention rather than a schema/connection fault
_CONTENTION_MARKERS = (
    "locked",
    "deadlock",
    "could not serialize",
    "lock wait timeout",
    "busy",
)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id_col on
    Variant/Order/InventoryTransaction turns a lost update into StaleDataError,
    which run_with_retry handles.
    """
    return query.with_for_update()


def _is_contention(exc: Exception) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _CONTENTION_MARKERS)


def _retry_settings(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    if has_app_context():
        attempts = attempts or current_app.config.get("LOCK_RETRY_ATTEMPTS", 3)
        if backoff_base is None:
            backoff_base = current_app.config.get("LOCK_RETRY_BACKOFF", 0.1)
    return attempts or 3, 0.1 if backoff_base is None else backoff_base


def run_with_retry(
    func,
    *,
    entity: str = "record",
    entity_id=None,
    attempts: int | None = None,
    backoff_base: float | None = None,
):
    """
    Execute one atomic unit of DB work, retrying it whole on lock contention.

    - Contention (OperationalError lock/deadlock, StaleDataError version conflict):
      roll back, back off exponentially, re-run func from the start.
    - Contention on the final attempt: ConcurrentModificationError.
    - Any other exception: roll back so no flushed-but-uncommitted write survives,
      then re-raise unchanged.

    func is responsible for its own commit; it must be safe to re-run after a rollback.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if not _is_contention(exc):
                raise
            if attempt >= attempts - 1:
                logger.warning(
                    "Giving up on %s %s after %d attempts: %s", entity, entity_id, attempts, exc
                )
                raise ConcurrentModificationError(entity, entity_id) from exc
            logger.warning(
                "Contention on %s %s (attempt %d/%d), retrying", entity, entity_id, attempt + 1, attempts
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
