from supabase import Client
from portal.modules.streams.schemas import LiveStreamCreate, LiveStreamResponse, StreamStatus, StreamingMode
from typing import Any, Dict, List, Optional
from fastapi import HTTPException
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

STREAMS_TABLE = "artist_live_streams"
REQUIRED_TIER = "trident"


class LiveStreamService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def check_eligibility(self, artist: Dict[str, Any], streaming_mode: str) -> None:
        """Managed streams need the Trident tier and remaining streaming minutes."""
        if streaming_mode != StreamingMode.SUBAMERICA_MANAGED.value:
            return
        if artist.get("subscription_tier") != REQUIRED_TIER:
            raise HTTPException(status_code=403, detail="Upgrade to Trident to go live")
        remaining = (artist.get("streaming_minutes_included") or 0) - (artist.get("streaming_minutes_used") or 0)
        if remaining <= 0:
            raise HTTPException(status_code=403, detail="Purchase more streaming time to continue")

    def create_stream(self, stream_data: LiveStreamCreate, user_id: str, provisioned: Dict[str, Any]) -> LiveStreamResponse:
        """Insert a stream row for a stream already provisioned on the provider."""
        try:
            status = StreamStatus.SCHEDULED.value if stream_data.scheduled_start else StreamStatus.WAITING.value
            insert_data = {
                "artist_id": stream_data.artist_id,
                "user_id": user_id,
                "title": stream_data.title,
                "description": stream_data.description,
                "provider": stream_data.provider.value,
                "streaming_mode": stream_data.streaming_mode.value,
                "status": status,
                "scheduled_start": stream_data.scheduled_start.isoformat() if stream_data.scheduled_start else None,
                "viewer_count": 0,
                "peak_viewers": 0,
                **provisioned,
            }
            result = self.supabase.table(STREAMS_TABLE).insert(insert_data).execute()

            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to create stream")

            return LiveStreamResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating stream: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def get_stream_by_id(self, stream_id: str) -> LiveStreamResponse:
        """Get stream by ID"""
        try:
            result = self.supabase.table(STREAMS_TABLE)\
                .select("*")\
                .eq("id", stream_id)\
                .maybe_single()\
                .execute()

            if not result or not result.data:
                raise HTTPException(status_code=404, detail="Stream not found")

            return LiveStreamResponse(**result.data)
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def get_stream_by_provider_id(self, provider_stream_id: str) -> Optional[LiveStreamResponse]:
        """Webhooks identify streams by the provider's id. Returns None when no row matches."""
        result = self.supabase.table(STREAMS_TABLE)\
            .select("*")\
            .eq("provider_stream_id", provider_stream_id)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return LiveStreamResponse(**result.data[0])

    def list_streams(self, artist_id: str, status: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[LiveStreamResponse]:
        """List an artist's streams, newest first"""
        try:
            query = self.supabase.table(STREAMS_TABLE).select("*").eq("artist_id", artist_id)
            if status:
                query = query.eq("status", status)
            result = query.order("created_at", desc=True)\
                .limit(limit)\
                .offset(offset)\
                .execute()
            return [LiveStreamResponse(**stream) for stream in result.data]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def list_streams_by_status(self, statuses: List[str]) -> List[LiveStreamResponse]:
        """Streams the poller should reconcile, newest first"""
        result = self.supabase.table(STREAMS_TABLE)\
            .select("*")\
            .in_("status", statuses)\
            .order("created_at", desc=True)\
            .execute()
        return [LiveStreamResponse(**stream) for stream in (result.data or [])]

    def update_stream(self, stream_id: str, update_data: Dict[str, Any], expected_status: Optional[str] = None) -> Optional[LiveStreamResponse]:
        """Update a stream. With expected_status the write only applies if the row still has that status;
        returns None when it no longer does (another writer got there first)."""
        update_data = {**update_data, "updated_at": datetime.now(timezone.utc).isoformat()}
        query = self.supabase.table(STREAMS_TABLE)\
            .update(update_data)\
            .eq("id", stream_id)
        if expected_status is not None:
            query = query.eq("status", expected_status)
        result = query.execute()
        if result.data:
            return LiveStreamResponse(**result.data[0])
        return None

    def deduct_streaming_minutes(self, artist_id: str, minutes: int) -> None:
        self.supabase.rpc("deduct_streaming_minutes", {
            "p_artist_id": artist_id,
            "p_minutes_used": minutes,
        }).execute()
        logger.info(f"Deducted {minutes} streaming minutes from artist {artist_id}")
