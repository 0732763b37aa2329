import logging
from typing import Any, Protocol

from cleanbook.infra.metrics import metrics

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking_created"
BOOKING_CANCELLED = "booking_cancelled"
PAYOUT_PROCESSED = "payout_processed"


class NotificationAdapter(Protocol):
    async def notify(self, event: str, payload: dict[str, Any]) -> bool: ...


class NoopNotificationAdapter:
    async def notify(self, event: str, payload: dict[str, Any]) -> bool:  # noqa: D401
        metrics.record_notification(event, "skipped")
        return False


class LoggingNotificationAdapter:
    """Writes notification events to the log stream for a downstream shipper to pick up."""

    def __init__(self, logger_name: str = "cleanbook.notifications") -> None:
        self._logger = logging.getLogger(logger_name)

    async def notify(self, event: str, payload: dict[str, Any]) -> bool:
        self._logger.info("notification_event", extra={"extra": {"event": event, **payload}})
        metrics.record_notification(event, "sent")
        return True


def resolve_notification_adapter(app_settings) -> NotificationAdapter:  # noqa: ANN001
    if getattr(app_settings, "notifications_mode", "off") == "log":
        return LoggingNotificationAdapter()
    return NoopNotificationAdapter()


async def emit_event(adapter: NotificationAdapter | None, event: str, payload: dict[str, Any]) -> None:
    if adapter is None:
        return
    try:
        await adapter.notify(event, payload)
    except Exception as exc:  # noqa: BLE001
        metrics.record_notification(event, "error")
        logger.warning(
            "notification_failed",
            extra={"extra": {"event": event, "error": type(exc).__name__}},
        )
