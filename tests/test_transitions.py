"""
Unit tests for the stream status transition rules.
"""

from datetime import datetime, timedelta, timezone

import pytest

from portal.modules.streams import transitions
from portal.modules.streams.schemas import LiveStreamResponse

NOW = datetime(2024, 6, 1, 20, 0, 0, tzinfo=timezone.utc)


def stream(**fields) -> LiveStreamResponse:
    base = {
        "id": "s1",
        "artist_id": "a1",
        "user_id": "u1",
        "title": "Set",
        "provider": "mux",
        "status": "waiting",
    }
    base.update(fields)
    return LiveStreamResponse(**base)


class TestDuration:
    def test_rounds_up_partial_minutes(self):
        assert transitions.compute_duration_minutes(NOW, NOW + timedelta(minutes=61, seconds=1)) == 62

    def test_exact_minutes(self):
        assert transitions.compute_duration_minutes(NOW, NOW + timedelta(minutes=45)) == 45

    def test_unknown_start(self):
        assert transitions.compute_duration_minutes(None, NOW) is None

    def test_end_before_start_is_zero(self):
        assert transitions.compute_duration_minutes(NOW, NOW - timedelta(minutes=5)) == 0

    def test_naive_start_treated_as_utc(self):
        naive = datetime(2024, 6, 1, 19, 30, 0)
        assert transitions.compute_duration_minutes(naive, NOW) == 30


class TestReconcile:
    @pytest.mark.parametrize("status", ["scheduled", "waiting", "ready"])
    def test_active_moves_pending_stream_live(self, status):
        update = transitions.reconcile(stream(status=status), "active", NOW)
        assert update == {"status": "live", "started_at": NOW.isoformat()}

    def test_active_on_live_stream_is_noop(self):
        assert transitions.reconcile(stream(status="live", started_at=NOW), "active", NOW) == {}

    @pytest.mark.parametrize("status", ["ended", "cancelled"])
    def test_terminal_streams_never_change(self, status):
        assert transitions.reconcile(stream(status=status), "active", NOW) == {}
        assert transitions.reconcile(stream(status=status), "idle", NOW) == {}

    def test_idle_ends_live_stream_with_duration(self):
        started = NOW - timedelta(minutes=30, seconds=10)
        update = transitions.reconcile(stream(status="live", started_at=started), "idle", NOW)
        assert update["status"] == "ended"
        assert update["ended_at"] == NOW.isoformat()
        assert update["duration_minutes"] == 31

    def test_idle_on_pending_stream_is_noop(self):
        assert transitions.reconcile(stream(status="waiting"), "idle", NOW) == {}

    def test_unknown_provider_status_is_noop(self):
        assert transitions.reconcile(stream(status="waiting"), "disabled", NOW) == {}
        assert transitions.reconcile(stream(status="waiting"), None, NOW) == {}

    def test_keep_started_at_preserves_existing_start(self):
        earlier = NOW - timedelta(minutes=3)
        update = transitions.reconcile(stream(status="ready", started_at=earlier), "active", NOW, keep_started_at=True)
        assert update["started_at"] == earlier.isoformat()


class TestManualEnd:
    def test_live_stream_gets_duration(self):
        update = transitions.manual_end_update(stream(status="live", started_at=NOW - timedelta(minutes=2)), NOW)
        assert update["duration_minutes"] == 2

    def test_pending_stream_ends_without_duration(self):
        update = transitions.manual_end_update(stream(status="waiting"), NOW)
        assert update == {"status": "ended", "ended_at": NOW.isoformat()}

    def test_terminal_stream_is_noop(self):
        assert transitions.manual_end_update(stream(status="cancelled"), NOW) == {}


def test_is_live_to_ended():
    assert transitions.is_live_to_ended("live", {"status": "ended"})
    assert not transitions.is_live_to_ended("waiting", {"status": "ended"})
    assert not transitions.is_live_to_ended("live", {"viewer_count": 3})
