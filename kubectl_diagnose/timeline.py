import re
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from kubectl_diagnose.model import EventRecord, sort_events


class Timeline:
    """
    Ordered, read-only view over the events of one subject.

    Window queries are relative to `reference_time`; when it is None the
    current UTC time is used, otherwise the pinned instant (deterministic
    mode).
    """

    def __init__(
        self,
        events: Iterable[EventRecord],
        *,
        reference_time: datetime | None = None,
    ):
        self.events: tuple[EventRecord, ...] = sort_events(events)
        self.reference_time = reference_time

    def __len__(self) -> int:
        return len(self.events)

    def __bool__(self) -> bool:
        return bool(self.events)

    def count(self, *, reason: str | None = None) -> int:
        if not reason:
            return sum(e.count for e in self.events)
        return sum(e.count for e in self.events if e.reason == reason)

    def with_reason(self, reason: str) -> list[EventRecord]:
        return [e for e in self.events if e.reason == reason]

    def mentioning(self, *needles: str, case_sensitive: bool = True) -> list[EventRecord]:
        """
        Events whose reason or message contains any of the substrings.
        """
        return [
            e
            for e in self.events
            if any(e.mentions(n, case_sensitive=case_sensitive) for n in needles)
        ]

    def matching(self, pattern: str) -> list[EventRecord]:
        regex = re.compile(pattern, re.IGNORECASE)
        return [e for e in self.events if regex.search(f"{e.reason} {e.message}")]

    def _reference_time(self) -> datetime:
        if self.reference_time is not None:
            return self.reference_time
        return datetime.now(timezone.utc)

    def events_within_window(
        self,
        minutes: float,
        *,
        reason: str | None = None,
    ) -> list[EventRecord]:
        """
        Returns events within the last `minutes` before the reference time.
        Events without a timestamp cannot be proven stale and are kept.
        """
        cutoff = self._reference_time() - timedelta(minutes=minutes)
        return [
            e
            for e in self.events
            if (e.timestamp is None or e.timestamp >= cutoff)
            and (reason is None or e.reason == reason)
        ]


def build_timeline(
    events: Iterable[EventRecord],
    *,
    reference_time: datetime | None = None,
) -> Timeline:
    return Timeline(events, reference_time=reference_time)
