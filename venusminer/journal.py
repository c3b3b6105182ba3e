"""Journal of system events: event types, the type registry and the no-op journal."""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Iterable

log = logging.getLogger("journal")

ENV_DISABLED_EVENTS = "VENUS_MINER_JOURNAL_DISABLED_EVENTS"


@dataclass(frozen=True)
class EventType:
    """The signature of a journal event.

    Only event types handed out by a registry are ``safe``; an event type
    built by hand is never enabled.
    """

    system: str
    event: str
    enabled: bool = False
    safe: bool = False

    def is_enabled(self) -> bool:
        """Whether events of this type are recorded."""
        return self.safe and self.enabled

    def __str__(self) -> str:
        return f"{self.system}:{self.event}"


@dataclass
class Event:
    """A journal entry."""

    event_type: EventType
    timestamp: datetime
    data: Any

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "System": self.event_type.system,
            "Event": self.event_type.event,
            "Timestamp": self.timestamp.isoformat(),
            "Data": self.data,
        }


DEFAULT_DISABLED_EVENTS: tuple[EventType, ...] = (
    EventType(system="mpool", event="add"),
    EventType(system="mpool", event="remove"),
)


def parse_disabled_events(s: str) -> list[EventType]:
    """Parse ``"system1:event1,system1:event2"`` into a list of event types.

    Surrounding whitespace is ignored; a malformed entry raises ValueError.
    """
    result = []
    for entry in s.strip().split(","):
        parts = entry.strip().split(":")
        if len(parts) != 2:
            raise ValueError(f"invalid event type: {entry.strip()}")
        result.append(EventType(system=parts[0], event=parts[1]))
    return result


def env_disabled_events() -> list[EventType]:
    """Disabled events from the environment, or the defaults if unset or invalid."""
    value = os.environ.get(ENV_DISABLED_EVENTS)
    if value is not None:
        try:
            return parse_disabled_events(value)
        except ValueError:
            pass
    return list(DEFAULT_DISABLED_EVENTS)


class EventTypeRegistry:
    """Hands out event types, tracking which of them are disabled."""

    def __init__(self, disabled: Iterable[EventType] = ()) -> None:
        self._lock = threading.Lock()
        self._types: dict[str, EventType] = {}
        for et in disabled:
            self._types[f"{et.system}:{et.event}"] = replace(et, enabled=False, safe=True)

    def register_event_type(self, system: str, event: str) -> EventType:
        key = f"{system}:{event}"
        with self._lock:
            existing = self._types.get(key)
            if existing is not None:
                return existing
            et = EventType(system=system, event=event, enabled=True, safe=True)
            self._types[key] = et
            return et


class Journal(ABC):
    """An audit trail of system actions."""

    @abstractmethod
    def register_event_type(self, system: str, event: str) -> EventType:
        """Introduce an event type to the journal."""

    @abstractmethod
    def record_event(self, evt_type: EventType, supplier: Callable[[], Any]) -> None:
        """Record an event if its type is enabled; ``supplier`` builds the payload."""

    @abstractmethod
    def close(self) -> None:
        """Close the journal for further writing."""

    def __enter__(self) -> "Journal":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class NilJournal(Journal):
    """A journal that records nothing."""

    def register_event_type(self, system: str, event: str) -> EventType:
        return EventType(system="", event="")

    def record_event(self, evt_type: EventType, supplier: Callable[[], Any]) -> None:
        return None

    def close(self) -> None:
        return None


_NIL_JOURNAL = NilJournal()


def nil_journal() -> NilJournal:
    """The shared no-op journal."""
    return _NIL_JOURNAL