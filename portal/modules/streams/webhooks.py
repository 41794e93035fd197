"""Provider push events (Livepush, Mux) applied to stored streams."""
import hashlib
import hmac
import logging
import time
from typing import Callable, Optional

from fastapi import HTTPException

from portal.modules.streams.providers import mux_hls_url
from portal.modules.streams.reconciler import StreamReconciler
from portal.modules.streams.schemas import LivepushWebhookEvent, MuxWebhookEvent, WebhookAck

logger = logging.getLogger(__name__)

MUX_SIGNATURE_TOLERANCE_SEC = 300


def verify_mux_signature(header: Optional[str], body: bytes, secret: str,
                         tolerance: int = MUX_SIGNATURE_TOLERANCE_SEC, now: Optional[float] = None) -> bool:
    """Check a 'Mux-Signature: t=<ts>,v1=<hex>' header against HMAC-SHA256 of '<ts>.<body>'."""
    if not header:
        return False
    parts = {}
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        parts.setdefault(key, value)
    timestamp = parts.get("t")
    signature = parts.get("v1")
    if not timestamp or not signature:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    current = now if now is not None else time.time()
    if abs(current - ts) > tolerance:
        return False
    payload = f"{timestamp}.".encode() + body
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


class StreamWebhookHandler:
    def __init__(self, reconciler: StreamReconciler,
                 schedule_recording: Optional[Callable[[str, str], None]] = None):
        self.reconciler = reconciler
        self.service = reconciler.service
        # Recording transfers are slow; routes hand in a callback that queues a background task
        self.schedule_recording = schedule_recording

    def handle_livepush_event(self, event: LivepushWebhookEvent) -> WebhookAck:
        logger.info(f"[Livepush Webhook] Event type: {event.type}")
        if not event.stream_id:
            raise HTTPException(status_code=400, detail="No stream ID in webhook")

        if event.type == "stream.recording_ready":
            if not event.recording_url:
                raise HTTPException(status_code=400, detail="No recording URL in webhook")
            if self.schedule_recording is None:
                raise HTTPException(status_code=503, detail="Recording transfer not available")
            self.schedule_recording(event.stream_id, event.recording_url)
            return WebhookAck(stream_id=event.stream_id)

        stream = self.service.get_stream_by_provider_id(event.stream_id)
        if stream is None:
            logger.warning(f"[Livepush Webhook] Stream not found for ID: {event.stream_id}")
            raise HTTPException(status_code=404, detail="Stream not found")

        if event.type == "stream.started":
            self.reconciler.mark_live(stream)
        elif event.type == "stream.ended":
            self.reconciler.mark_ended(stream)
        elif event.type == "stream.viewer_update":
            self.reconciler.update_viewers(stream, event.current_viewers, event.peak_viewers)
        else:
            logger.info(f"[Livepush Webhook] Unhandled event type: {event.type}")
            return WebhookAck(handled=False, stream_id=stream.id)
        return WebhookAck(stream_id=stream.id)

    def handle_mux_event(self, event: MuxWebhookEvent) -> WebhookAck:
        logger.info(f"Mux webhook received: {event.type}")
        data = event.data or {}
        object_id = data.get("id")
        if not object_id:
            raise HTTPException(status_code=400, detail="No stream ID in webhook")

        # Asset events carry the asset id; the live stream id rides along in live_stream_id
        provider_stream_id = data.get("live_stream_id") or object_id
        stream = self.service.get_stream_by_provider_id(provider_stream_id)
        if stream is None:
            logger.warning(f"Stream not found for ID: {provider_stream_id}")
            raise HTTPException(status_code=404, detail="Stream not found")

        if event.type == "video.live_stream.active":
            self.reconciler.mark_live(stream)
        elif event.type == "video.live_stream.idle":
            self.reconciler.mark_ended(stream)
        elif event.type == "video.asset.ready":
            playback_ids = data.get("playback_ids") or []
            if playback_ids:
                playback_id = playback_ids[0].get("id")
                vod_url = mux_hls_url(playback_id)
                self.service.update_stream(stream.id, {"vod_url": vod_url, "vod_public_id": playback_id})
                logger.info(f"Recording ready: {vod_url}")
        else:
            logger.info(f"Unhandled Mux event type: {event.type}")
            return WebhookAck(handled=False, stream_id=stream.id)
        return WebhookAck(stream_id=stream.id)
