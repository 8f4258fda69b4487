from datetime import datetime, timezone

from kubectl_diagnose.model import parse_events
from kubectl_diagnose.tests.fakes import make_event
from kubectl_diagnose.timeline import build_timeline

REF = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def timeline(*events):
    return build_timeline(parse_events(list(events)), reference_time=REF)


def test_window_excludes_stale_events():
    t = timeline(
        make_event("p", "FailedScheduling", ts="2024-05-01T11:00:00Z"),
        make_event("p", "FailedScheduling", ts="2024-05-01T11:55:00Z"),
    )
    recent = t.events_within_window(10, reason="FailedScheduling")
    assert [e.timestamp.minute for e in recent] == [55]
    assert len(t.events_within_window(120)) == 2


def test_window_keeps_events_without_timestamp():
    t = timeline(make_event("p", "FailedScheduling"))
    assert len(t.events_within_window(1, reason="FailedScheduling")) == 1


def test_window_filters_on_reason():
    t = timeline(make_event("p", "Scheduled", ts="2024-05-01T11:59:00Z"))
    assert t.events_within_window(10, reason="FailedScheduling") == []


def test_mentioning_and_matching():
    t = timeline(
        make_event("p", "FailedScheduling", "0/2 nodes: Insufficient cpu"),
        make_event("p", "Unhealthy", "Readiness probe failed: HTTP 503"),
        make_event("p", "Pulled", "Successfully pulled image"),
    )
    assert [e.reason for e in t.mentioning("Insufficient", "Unhealthy")] == [
        "FailedScheduling",
        "Unhealthy",
    ]
    assert [e.reason for e in t.matching(r"readiness probe")] == ["Unhealthy"]


def test_counts_use_event_count_field():
    t = timeline(make_event("p", "BackOff", count=12), make_event("p", "Pulled"))
    assert t.count(reason="BackOff") == 12
    assert t.count() == 13
    assert len(t) == 2
    assert bool(t)
    assert not timeline()
