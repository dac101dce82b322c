"""
collaborators.py - In-memory authorisation and observability collaborators

SingleAdministrator implements the Authorizer protocol for the common case of
one fixed administrator. EventLog implements EventSink as an append-only list,
which doubles as the audit trail of committed vesting operations.
"""

from __future__ import annotations
import logging
from typing import List, Optional

from .core import InvalidInput, VestingEvent, VestingEventType

logger = logging.getLogger(__name__)


class SingleAdministrator:
    """Exactly one identity may vest and revoke."""

    def __init__(self, administrator: str):
        if not administrator or not administrator.strip():
            raise InvalidInput("administrator cannot be empty")
        self.administrator = administrator

    def is_administrator(self, caller: str) -> bool:
        return caller == self.administrator


class EventLog:
    """
    Append-only event sink.

    Example:
        events = EventLog()
        service = VestingService(token, SingleAdministrator("admin"), events=events)
        ...
        events.events(VestingEventType.WITHDRAWN)
    """

    def __init__(self):
        self._events: List[VestingEvent] = []

    def emit(self, event: VestingEvent) -> None:
        self._events.append(event)
        logger.debug("Event %r", event)

    def events(self, event_type: Optional[VestingEventType] = None) -> List[VestingEvent]:
        """All events in emission order, optionally filtered by type."""
        if event_type is None:
            return list(self._events)
        return [e for e in self._events if e.event_type == event_type]

    def for_beneficiary(self, beneficiary: str) -> List[VestingEvent]:
        return [e for e in self._events if e.beneficiary == beneficiary]

    def __len__(self) -> int:
        return len(self._events)
