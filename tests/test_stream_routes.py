"""
API tests for /api/v1/streams and /api/v1/webhooks.
"""

import asyncio
import hashlib
import hmac
import inspect
import json
import time
from unittest.mock import MagicMock

import pytest

from portal.config.settings import settings
from portal.modules.streams import routes as streams_routes
from portal.modules.streams.providers import ProviderError
from portal.modules.streams.schemas import StreamPollResult, WebhookAck
from portal.modules.streams.webhooks import StreamWebhookHandler

PROVISIONED = {
    "provider_stream_id": "mux-new",
    "stream_key": "sk-1",
    "rtmp_url": "rtmps://global-live.mux.com:443/app",
    "hls_playback_url": "https://stream.mux.com/pb.m3u8",
}


@pytest.fixture
def provisioned(monkeypatch):
    provision = MagicMock(return_value=PROVISIONED)
    monkeypatch.setattr(streams_routes, "provision_stream", provision)
    return provision


class TestCreateStream:
    def test_create_waiting_stream(self, client, artist_row, provisioned):
        response = client.post("/api/v1/streams", json={"artist_id": "artist-1", "title": "Friday set"})

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "waiting"
        assert data["provider_stream_id"] == "mux-new"
        assert data["user_id"] == "user-1"
        provisioned.assert_called_once()

    def test_scheduled_start_makes_stream_scheduled(self, client, artist_row, provisioned):
        response = client.post("/api/v1/streams", json={
            "artist_id": "artist-1", "title": "Later", "scheduled_start": "2030-01-01T20:00:00+00:00",
        })

        assert response.json()["status"] == "scheduled"

    def test_managed_stream_needs_trident(self, client, artist_row, provisioned):
        artist_row["subscription_tier"] = "free"

        response = client.post("/api/v1/streams", json={"artist_id": "artist-1", "title": "Set"})

        assert response.status_code == 403
        provisioned.assert_not_called()

    def test_managed_stream_needs_minutes(self, client, artist_row, provisioned):
        artist_row["streaming_minutes_used"] = 600

        response = client.post("/api/v1/streams", json={"artist_id": "artist-1", "title": "Set"})

        assert response.status_code == 403

    def test_own_account_skips_eligibility(self, client, artist_row, provisioned):
        artist_row["subscription_tier"] = "free"

        response = client.post("/api/v1/streams", json={
            "artist_id": "artist-1", "title": "Set", "streaming_mode": "own_account",
        })

        assert response.status_code == 201

    def test_other_users_artist(self, client, artist_row, provisioned):
        artist_row["user_id"] = "someone-else"

        response = client.post("/api/v1/streams", json={"artist_id": "artist-1", "title": "Set"})

        assert response.status_code == 403

    def test_provider_not_configured(self, client, artist_row, monkeypatch):
        monkeypatch.setattr(streams_routes, "provision_stream", MagicMock(side_effect=ValueError("Mux token id and secret must be configured")))

        response = client.post("/api/v1/streams", json={"artist_id": "artist-1", "title": "Set"})

        assert response.status_code == 503

    def test_provider_failure(self, client, artist_row, monkeypatch):
        monkeypatch.setattr(streams_routes, "provision_stream", MagicMock(side_effect=ProviderError("mux", "down", 500)))

        response = client.post("/api/v1/streams", json={"artist_id": "artist-1", "title": "Set"})

        assert response.status_code == 502


class TestStreamActions:
    def test_get_own_stream(self, client, make_stream):
        row = make_stream()

        response = client.get(f"/api/v1/streams/{row['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == row["id"]

    def test_get_other_users_stream(self, client, make_stream):
        row = make_stream(user_id="someone-else")

        assert client.get(f"/api/v1/streams/{row['id']}").status_code == 403

    def test_get_missing_stream(self, client):
        assert client.get("/api/v1/streams/missing").status_code == 404

    def test_list_streams(self, client, artist_row, make_stream):
        make_stream(status="live")
        make_stream(status="ended")

        response = client.get("/api/v1/streams", params={"artist_id": "artist-1", "status": "live"})

        assert response.status_code == 200
        assert [s["status"] for s in response.json()] == ["live"]

    def test_sync_without_mux_credentials(self, client, make_stream):
        row = make_stream()

        assert client.post(f"/api/v1/streams/{row['id']}/sync").status_code == 503

    def test_end_pending_stream(self, client, make_stream):
        row = make_stream(status="waiting")

        response = client.post(f"/api/v1/streams/{row['id']}/end")

        assert response.status_code == 200
        assert response.json()["status"] == "ended"
        assert row["ended_at"]

    def test_cancel(self, client, make_stream):
        row = make_stream(status="scheduled")

        response = client.post(f"/api/v1/streams/{row['id']}/cancel")

        assert response.status_code == 200
        assert row["status"] == "cancelled"

    def test_cancel_live_stream_rejected(self, client, make_stream):
        row = make_stream(status="live")

        assert client.post(f"/api/v1/streams/{row['id']}/cancel").status_code == 400


class TestPollEndpoint:
    def test_requires_cron_token(self, client):
        assert client.post("/api/v1/streams/poll").status_code == 401
        assert client.post("/api/v1/streams/poll", headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_runs_poll(self, client, cron_headers, monkeypatch):
        monkeypatch.setattr(streams_routes, "poll_stream_statuses", lambda: StreamPollResult(checked=3, updated=1))

        response = client.post("/api/v1/streams/poll", headers=cron_headers)

        assert response.status_code == 200
        assert response.json()["checked"] == 3

    def test_service_role_key_accepted(self, client, monkeypatch):
        monkeypatch.setattr(streams_routes, "poll_stream_statuses", lambda: StreamPollResult())

        response = client.post("/api/v1/streams/poll", headers={"Authorization": f"Bearer {settings.supabase_service_role_key}"})

        assert response.status_code == 200

    def test_unconfigured_cron_auth(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", None)
        monkeypatch.setattr(settings, "supabase_service_role_key", None)

        assert client.post("/api/v1/streams/poll", headers={"Authorization": "Bearer x"}).status_code == 503


class TestWebhookEndpoints:
    def test_livepush_started(self, client, make_stream):
        row = make_stream(provider="livepush", provider_stream_id="lp-1", status="ready")

        response = client.post("/api/v1/webhooks/livepush", json={"type": "stream.started", "stream_id": "lp-1"})

        assert response.status_code == 200
        assert response.json() == {"received": True, "handled": True, "stream_id": row["id"]}
        assert row["status"] == "live"

    def test_livepush_recording_runs_in_background(self, client, fake_supabase, monkeypatch):
        transfer = MagicMock()
        monkeypatch.setattr(streams_routes, "transfer_recording", transfer)

        response = client.post("/api/v1/webhooks/livepush", json={
            "type": "stream.recording_ready", "stream_id": "lp-1", "recording_url": "https://rec/1.mp4",
        })

        assert response.status_code == 200
        transfer.assert_called_once_with(
            provider_stream_id="lp-1", recording_url="https://rec/1.mp4", supabase=fake_supabase
        )

    def test_livepush_missing_stream_id(self, client):
        assert client.post("/api/v1/webhooks/livepush", json={"type": "stream.started"}).status_code == 400

    def test_mux_unsigned_when_no_secret(self, client, make_stream):
        row = make_stream(provider_stream_id="mux-1", status="waiting")

        response = client.post("/api/v1/webhooks/mux", json={"type": "video.live_stream.active", "data": {"id": "mux-1"}})

        assert response.status_code == 200
        assert row["status"] == "live"

    def test_mux_signature_enforced(self, client, make_stream, monkeypatch):
        monkeypatch.setattr(settings, "mux_webhook_secret", "whsec")
        row = make_stream(provider_stream_id="mux-1", status="waiting")
        body = json.dumps({"type": "video.live_stream.active", "data": {"id": "mux-1"}}).encode()

        unsigned = client.post("/api/v1/webhooks/mux", content=body, headers={"Content-Type": "application/json"})
        assert unsigned.status_code == 401
        assert row["status"] == "waiting"

        ts = int(time.time())
        digest = hmac.new(b"whsec", f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
        signed = client.post("/api/v1/webhooks/mux", content=body, headers={
            "Content-Type": "application/json", "Mux-Signature": f"t={ts},v1={digest}",
        })
        assert signed.status_code == 200
        assert row["status"] == "live"

    def test_mux_invalid_payload(self, client):
        response = client.post("/api/v1/webhooks/mux", content=b"not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400

    def test_mux_event_handled_off_the_event_loop(self, client, monkeypatch):
        seen = {}

        def handle_mux_event(self, event):
            try:
                asyncio.get_running_loop()
                seen["on_loop"] = True
            except RuntimeError:
                seen["on_loop"] = False
            return WebhookAck(handled=False)

        monkeypatch.setattr(StreamWebhookHandler, "handle_mux_event", handle_mux_event)

        response = client.post("/api/v1/webhooks/mux", json={"type": "video.live_stream.idle", "data": {"id": "mux-1"}})

        assert response.status_code == 200
        assert seen == {"on_loop": False}


def test_health_has_security_headers(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["x-frame-options"] == "DENY"


@pytest.mark.parametrize("handler", [
    streams_routes.create_stream,
    streams_routes.list_streams,
    streams_routes.poll_streams,
    streams_routes.get_stream,
    streams_routes.sync_stream,
    streams_routes.end_stream,
    streams_routes.cancel_stream,
    streams_routes.livepush_webhook,
])
def test_blocking_handlers_run_in_threadpool(handler):
    assert not inspect.iscoroutinefunction(handler)
