# Overview: Fire-and-forget dispatcher for transactional email with observable failures.

"""
Notification Dispatcher

WHY: Email must never block or fail the request that triggered it. A slow
or failing mail provider is a notification problem, not an order problem.

DESIGN:
- dispatch() returns immediately; the send runs on a small thread pool
  inside a fresh application context
- Outcomes are counted in storefront_notifications_total{event,outcome}
  (exposed on /api/system/metrics) and logged with event + recipient
- NOTIFICATIONS_ASYNC=False runs the send inline (tests, CLI batch jobs);
  failures are still swallowed and counted the same way
- Nothing raised by a sender escapes dispatch()
"""

from __future__ import annotations

import atexit
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from flask import current_app
from prometheus_client import Counter

logger = logging.getLogger(__name__)

NOTIFICATIONS_TOTAL = Counter(
    "storefront_notifications_total",
    "Transactional email attempts by event and outcome",
    ["event", "outcome"],
)

OUTCOME_SENT = "sent"
OUTCOME_FAILED = "failed"
OUTCOME_ERROR = "error"


def _recipient(payload: Any) -> str | None:
    for attr in ("customer_email", "admin_email", "email"):
        value = getattr(payload, attr, None)
        if value:
            return value
    return None


class NotificationDispatcher:
    """Flask extension owning the notification thread pool."""

    def __init__(self, app=None):
        self.run_async = True
        self.max_workers = 4
        self._executor: ThreadPoolExecutor | None = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.run_async = bool(app.config.get("NOTIFICATIONS_ASYNC", True))
        self.max_workers = int(app.config.get("NOTIFICATION_WORKERS", 4))
        app.extensions["notifier"] = self
        atexit.register(self.shutdown)

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="notify",
            )
        return self._executor

    def shutdown(self, wait: bool = False) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def dispatch(self, event: str, sender: Callable[[Any], Any], payload: Any) -> Future | None:
        """
        Send `payload` through `sender` without blocking the caller.

        Returns the Future when running asynchronously (useful for draining in
        CLI commands), None when run inline.
        """
        app = current_app._get_current_object()
        if not self.run_async:
            self._run(app, event, sender, payload)
            return None
        try:
            return self._pool().submit(self._run, app, event, sender, payload)
        except RuntimeError:
            # Pool shut down during interpreter exit
            logger.warning("Notification pool unavailable, sending inline", extra={"event": event})
            self._run(app, event, sender, payload)
            return None

    def _run(self, app, event: str, sender: Callable[[Any], Any], payload: Any) -> None:
        recipient = _recipient(payload)
        with app.app_context():
            try:
                result = sender(payload)
            except Exception:
                NOTIFICATIONS_TOTAL.labels(event=event, outcome=OUTCOME_ERROR).inc()
                logger.exception(
                    "Notification sender raised",
                    extra={"event": event, "recipient": recipient},
                )
                return

            if getattr(result, "success", False):
                NOTIFICATIONS_TOTAL.labels(event=event, outcome=OUTCOME_SENT).inc()
                logger.info("Notification sent", extra={"event": event, "recipient": recipient})
            else:
                NOTIFICATIONS_TOTAL.labels(event=event, outcome=OUTCOME_FAILED).inc()
                logger.warning(
                    "Notification failed",
                    extra={
                        "event": event,
                        "recipient": recipient,
                        "error": getattr(result, "error", None),
                    },
                )


def notify(event: str, sender: Callable[[Any], Any], payload: Any) -> None:
    """Module-level shortcut used by the workflow services."""
    current_app.extensions["notifier"].dispatch(event, sender, payload)
