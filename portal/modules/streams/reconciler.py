"""Keeps stored stream status in line with the live-video provider.

All writers (poller, webhooks, sync, end) go through StreamReconciler so a
stream moves live -> ended exactly once and managed minutes are deducted
exactly once, on that move.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException

from portal.config.settings import settings
from portal.modules.streams import transitions
from portal.modules.streams.providers import MuxClient, ProviderError, mux_hls_url, pick_playback_id
from portal.modules.streams.schemas import (
    CANCELLABLE_STATUSES,
    LiveStreamResponse,
    StreamEndResponse,
    StreamPollResult,
    StreamProvider,
    StreamStatus,
    StreamStatusChange,
    StreamSyncResponse,
)
from portal.modules.streams.service import LiveStreamService

logger = logging.getLogger(__name__)


class StreamReconciler:
    def __init__(self, service: LiveStreamService, mux_client: Optional[MuxClient] = None):
        self.service = service
        self._mux_client = mux_client
        self._owns_mux = False

    @property
    def mux(self) -> Optional[MuxClient]:
        """Lazily built so Livepush-only deployments never need Mux credentials."""
        if self._mux_client is None and settings.mux_configured:
            self._mux_client = MuxClient()
            self._owns_mux = True
        return self._mux_client

    def close(self):
        if self._owns_mux and self._mux_client is not None:
            self._mux_client.close()
            self._mux_client = None
            self._owns_mux = False

    # ------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------

    def apply_update(self, stream: LiveStreamResponse, update_data: Dict[str, Any]) -> Optional[LiveStreamResponse]:
        """Write a transition payload. Returns the updated row, or None when nothing was written."""
        if not update_data:
            return None
        updated = self.service.update_stream(stream.id, update_data, expected_status=stream.status)
        if updated is None:
            logger.info(f"Stream {stream.id} changed status concurrently; skipped {stream.status} -> {update_data.get('status')}")
            return None
        if transitions.is_live_to_ended(stream.status, update_data):
            self._on_ended(updated)
        return updated

    def mark_live(self, stream: LiveStreamResponse, now: Optional[datetime] = None) -> Optional[LiveStreamResponse]:
        return self.apply_update(stream, transitions.live_update(stream, now or transitions.utcnow()))

    def mark_ended(self, stream: LiveStreamResponse, now: Optional[datetime] = None) -> Optional[LiveStreamResponse]:
        return self.apply_update(stream, transitions.ended_update(stream, now or transitions.utcnow()))

    def _on_ended(self, stream: LiveStreamResponse) -> None:
        """Managed streams pay for their airtime once, when they leave live."""
        logger.info(f"Stream {stream.id} has ended ({stream.duration_minutes} min)")
        if not stream.is_managed:
            logger.info(f"Skipping minute deduction for own_account stream {stream.id}")
            return
        if not stream.duration_minutes:
            return
        self.service.deduct_streaming_minutes(stream.artist_id, stream.duration_minutes)

    def update_viewers(self, stream: LiveStreamResponse, current_viewers: Optional[int], peak_viewers: Optional[int]) -> Optional[LiveStreamResponse]:
        update_data: Dict[str, Any] = {}
        if current_viewers is not None:
            update_data["viewer_count"] = current_viewers
        peak = max(stream.peak_viewers or 0, peak_viewers or 0, current_viewers or 0)
        if peak != (stream.peak_viewers or 0):
            update_data["peak_viewers"] = peak
        if not update_data:
            return None
        return self.service.update_stream(stream.id, update_data)

    # ------------------------------------------------------------
    # Poll path
    # ------------------------------------------------------------

    def poll_active_streams(self) -> StreamPollResult:
        """Compare every pending stream with Mux and write back state changes."""
        streams = self.service.list_streams_by_status(settings.get_stream_poll_statuses())
        result = StreamPollResult(checked=len(streams))
        if not streams:
            logger.debug("No active streams to poll")
            return result

        logger.info(f"Polling {len(streams)} streams for status updates")
        for stream in streams:
            try:
                change = self._poll_one(stream)
                if change:
                    result.updates.append(change)
            except Exception as e:
                logger.error(f"Error checking stream {stream.id}: {str(e)}")
        result.updated = len(result.updates)
        return result

    def _poll_one(self, stream: LiveStreamResponse) -> Optional[StreamStatusChange]:
        if not stream.provider_stream_id:
            return None
        if stream.provider == StreamProvider.LIVEPUSH.value:
            # Livepush exposes no status endpoint; its webhooks drive these rows
            logger.debug(f"Livepush stream {stream.id}: relying on webhooks")
            return None
        if stream.provider != StreamProvider.MUX.value:
            return None
        if self.mux is None:
            logger.info("Mux credentials not configured, skipping Mux stream")
            return None

        data = self.mux.get_live_stream(stream.provider_stream_id)
        provider_status = data.get("status")
        logger.debug(f"Mux stream {stream.id}: Mux status = {provider_status}, DB status = {stream.status}")

        updated = self.apply_update(stream, transitions.reconcile(stream, provider_status))
        if updated is None:
            return None
        return StreamStatusChange(
            stream_id=stream.id,
            old_status=stream.status,
            new_status=updated.status,
            provider=stream.provider,
        )

    # ------------------------------------------------------------
    # Per-stream actions
    # ------------------------------------------------------------

    def sync_stream(self, stream: LiveStreamResponse) -> StreamSyncResponse:
        """One-shot reconcile of a single Mux stream, also refreshing its HLS URL."""
        response = StreamSyncResponse(
            stream_id=stream.id,
            synced=False,
            old_status=stream.status,
            new_status=stream.status,
        )
        if stream.provider != StreamProvider.MUX.value or not stream.provider_stream_id:
            return response
        if self.mux is None:
            raise HTTPException(status_code=503, detail="Mux credentials not configured")

        try:
            data = self.mux.get_live_stream(stream.provider_stream_id)
        except ProviderError as e:
            logger.error(f"Mux API error while syncing stream {stream.id}: {e}")
            raise HTTPException(status_code=502, detail="Failed to fetch stream from Mux")

        provider_status = data.get("status")
        hls_url = mux_hls_url(pick_playback_id(data.get("playback_ids", [])))
        response.provider_status = provider_status
        response.hls_playback_url = hls_url or stream.hls_playback_url

        update_data = transitions.reconcile(stream, provider_status, keep_started_at=True)
        if provider_status == transitions.PROVIDER_ACTIVE and hls_url and stream.hls_playback_url != hls_url:
            update_data["hls_playback_url"] = hls_url

        if not update_data:
            return response
        if "status" in update_data:
            updated = self.apply_update(stream, update_data)
        else:
            updated = self.service.update_stream(stream.id, update_data)
        if updated is not None:
            response.synced = True
            response.new_status = updated.status
            logger.info(f"Stream status synced: {stream.status} -> {updated.status}")
        return response

    def end_stream(self, stream: LiveStreamResponse) -> StreamEndResponse:
        """Artist-initiated end. Provider errors are logged and the row is closed anyway."""
        if stream.status == StreamStatus.ENDED.value:
            return StreamEndResponse(stream_id=stream.id, status=stream.status,
                                     duration_minutes=stream.duration_minutes,
                                     message="Stream already ended")
        if stream.status == StreamStatus.CANCELLED.value:
            raise HTTPException(status_code=400, detail="Cannot end a cancelled stream")

        if stream.provider == StreamProvider.MUX.value and stream.provider_stream_id and self.mux is not None:
            try:
                self.mux.disable_live_stream(stream.provider_stream_id)
                logger.info(f"Mux stream {stream.provider_stream_id} disabled")
            except ProviderError as e:
                logger.error(f"Mux API error disabling stream {stream.id}: {e}")

        updated = self.apply_update(stream, transitions.manual_end_update(stream))
        if updated is None:
            # Lost a race with the poller or a webhook; report what is stored now
            updated = self.service.get_stream_by_id(stream.id)
        return StreamEndResponse(
            stream_id=updated.id,
            status=updated.status,
            duration_minutes=updated.duration_minutes,
        )

    def cancel_stream(self, stream: LiveStreamResponse) -> LiveStreamResponse:
        if stream.status not in CANCELLABLE_STATUSES:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot cancel a stream with status: {stream.status}. Only scheduled or waiting streams can be cancelled."
            )
        updated = self.service.update_stream(stream.id, {"status": StreamStatus.CANCELLED.value}, expected_status=stream.status)
        if updated is None:
            raise HTTPException(status_code=409, detail="Stream status changed, please retry")
        logger.info(f"Stream cancelled: {stream.id}")
        return updated
