import logging
import tempfile
from typing import Optional

import httpx

from portal.config.settings import settings
from portal.modules.streams.s3_storage import RecordingStorage
from portal.modules.streams.service import LiveStreamService
from supabase import Client

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


def recording_key(artist_id: str, stream_id: str) -> str:
    return f"live-recordings/{artist_id}/{stream_id}.mp4"


def transfer_recording(
    provider_stream_id: str,
    recording_url: str,
    supabase: Optional[Client] = None,
    storage: Optional[RecordingStorage] = None,
    http_client: Optional[httpx.Client] = None,
):
    """
    Download a finished recording from the provider and re-upload it to the recordings CDN.
    Runs as a background task after the webhook has been acknowledged.
    Uses service-role Supabase client when none is given so the update succeeds (RLS bypass).
    """
    if supabase is None:
        from portal.database.supabase_client import SupabaseClient
        supabase = SupabaseClient.get_service_client()
    service = LiveStreamService(supabase)

    try:
        stream = service.get_stream_by_provider_id(provider_stream_id)
        if stream is None:
            logger.warning(f"Recording ready for unknown stream {provider_stream_id}")
            return

        storage = storage or RecordingStorage()
        key = recording_key(stream.artist_id, stream.id)
        client = http_client or httpx.Client(timeout=settings.http_timeout_seconds, follow_redirects=True)
        # Spooled to disk: recordings can run to gigabytes
        with tempfile.TemporaryFile() as spool:
            try:
                with client.stream("GET", recording_url) as response:
                    if response.status_code >= 400:
                        raise Exception(f"Failed to download recording: HTTP {response.status_code}")
                    content_type = response.headers.get("content-type", "video/mp4")
                    for chunk in response.iter_bytes(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        spool.write(chunk)
            finally:
                if http_client is None:
                    client.close()
            spool.seek(0)
            vod_url = storage.upload_fileobj(spool, key, content_type=content_type)

        service.update_stream(stream.id, {"vod_url": vod_url, "vod_public_id": key})
        logger.info(f"Uploaded recording for stream {stream.id} to {vod_url}")
    except Exception as e:
        logger.error(f"Recording transfer failed for {provider_stream_id}: {str(e)}")
