# Overview: Fire-and-forget order events for the external SMS/notification system.

"""
Notification hook.

The core only EMITS events; delivery is someone else's job. Handlers are
registered at startup (e.g. an SMS gateway adapter) and invoked after the
originating transaction has committed. A failing handler is logged and
skipped: notification is a side channel and must never undo or block a
committed status change.
"""

from __future__ import annotations

from typing import Callable

from flask import current_app, has_app_context

from ..constants import STATUS_CANCELLED, STATUS_DELIVERED
from ..logging_config import get_logger

logger = get_logger("notifications")

NOTIFY_STATUSES = frozenset({STATUS_DELIVERED, STATUS_CANCELLED})

EventHandler = Callable[[str, dict], None]

_handlers: list[EventHandler] = []


def register_handler(handler: EventHandler) -> None:
    if handler not in _handlers:
        _handlers.append(handler)


def unregister_handler(handler: EventHandler) -> None:
    if handler in _handlers:
        _handlers.remove(handler)


def _enabled() -> bool:
    if has_app_context():
        return bool(current_app.config.get("NOTIFICATIONS_ENABLED", True))
    return True


def emit(event: str, payload: dict) -> int:
    """
    Deliver `event` to every handler. Returns how many handlers succeeded.
    """
    if not _enabled():
        return 0
    delivered = 0
    for handler in list(_handlers):
        try:
            handler(event, payload)
            delivered += 1
        except Exception:
            logger.exception("Notification handler %r failed for %s", handler, event)
    logger.info("Emitted %s to %d/%d handlers", event, delivered, len(_handlers))
    return delivered


def notify_status_change(order_snapshot: dict) -> int:
    """Emit order.<status> for terminal customer-facing statuses; no-op otherwise."""
    status = order_snapshot.get("status")
    if status not in NOTIFY_STATUSES:
        return 0
    return emit(f"order.{status}", order_snapshot)
