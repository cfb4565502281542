"""Collaborators the engine consumes but does not own.

Rate tables and notification delivery live outside this package. The
engine only depends on these small protocols, injected at construction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class RateLookup(Protocol):
    """Resolves the per-piece rate for an operation."""

    async def get_rate(self, operation: str, machine_type: str | None = None) -> Decimal | None:
        """Return the rate, or None when the operation has no rate."""
        ...


@dataclass(frozen=True)
class Notification:
    """Message for supervisors or operators about a hold."""

    event: str
    recipient_role: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class NotificationSink(Protocol):
    """Fire-and-forget delivery of notifications."""

    async def notify(self, notification: Notification) -> None:
        ...


class StaticRateTable:
    """RateLookup backed by an in-memory mapping.

    Keys are either "operation" or "operation:machine_type"; the
    machine-specific key wins.
    """

    def __init__(self, rates: Mapping[str, Decimal | str | int]):
        self._rates = {key: Decimal(str(value)) for key, value in rates.items()}

    async def get_rate(self, operation: str, machine_type: str | None = None) -> Decimal | None:
        if machine_type:
            specific = self._rates.get(f"{operation}:{machine_type}")
            if specific is not None:
                return specific
        return self._rates.get(operation)


class LoggingNotificationSink:
    """NotificationSink that writes notifications to the log."""

    async def notify(self, notification: Notification) -> None:
        logger.info(
            "Notify %s: %s (%s)",
            notification.recipient_role,
            notification.title,
            notification.event,
        )
