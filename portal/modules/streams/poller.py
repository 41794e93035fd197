import asyncio
import logging
from portal.config.settings import settings
from portal.database.supabase_client import SupabaseClient
from portal.modules.streams.reconciler import StreamReconciler
from portal.modules.streams.schemas import StreamPollResult
from portal.modules.streams.service import LiveStreamService

logger = logging.getLogger(__name__)


def poll_stream_statuses() -> StreamPollResult:
    """Reconcile every pending stream against its provider once."""
    supabase = SupabaseClient.get_service_client()
    reconciler = StreamReconciler(LiveStreamService(supabase))
    try:
        result = reconciler.poll_active_streams()
    finally:
        reconciler.close()
    if result.updated:
        logger.info(f"Stream poll: checked {result.checked}, updated {result.updated}")
    return result


async def stream_poll_loop():
    """Background task that periodically polls provider stream status"""
    while True:
        try:
            await asyncio.to_thread(poll_stream_statuses)
        except Exception as e:
            logger.error(f"Error in stream poll loop: {str(e)}")

        await asyncio.sleep(settings.stream_poll_interval_seconds)
