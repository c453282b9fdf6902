"""
Notification sinks for permit lifecycle events.

The engine hands a sink a plain-dict snapshot of the permit and an event tag
after the change is committed. Sinks never raise back into the engine:
delivery happens off the calling thread and failures are only logged.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from mallpermit.models.enums import NotificationEvent

logger = logging.getLogger(__name__)

Deliver = Callable[[dict, NotificationEvent], None]


def log_delivery(snapshot: dict, event: NotificationEvent) -> None:
    """Default delivery: record the notification in the application log."""
    logger.info(
        "Work permit notification: %s %s (status=%s)",
        event.value,
        snapshot.get("permit_number"),
        snapshot.get("status"),
    )


class BackgroundNotificationSink:
    """Runs delivery on a small thread pool; dispatch returns immediately."""

    def __init__(self, deliver: Optional[Deliver] = None, max_workers: int = 2):
        self.deliver = deliver or log_delivery
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="permit-notify"
        )

    def dispatch(self, snapshot: dict, event: NotificationEvent) -> None:
        self.executor.submit(self._deliver_safely, snapshot, event)

    def _deliver_safely(self, snapshot: dict, event: NotificationEvent) -> None:
        try:
            self.deliver(snapshot, event)
        except Exception:
            logger.exception(
                "Notification delivery failed for permit %s (%s)",
                snapshot.get("id"),
                event.value,
            )

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
