from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from portal.config.settings import settings
from portal.database.supabase_client import get_supabase, get_service_supabase
from portal.modules.streams.schemas import (
    LiveStreamCreate, LiveStreamResponse, StreamSyncResponse, StreamEndResponse,
    StreamPollResult, LivepushWebhookEvent, MuxWebhookEvent, WebhookAck
)
from portal.modules.streams.service import LiveStreamService
from portal.modules.streams.reconciler import StreamReconciler
from portal.modules.streams.webhooks import StreamWebhookHandler, verify_mux_signature
from portal.modules.streams.recordings import transfer_recording
from portal.modules.streams.providers import ProviderError, provision_stream
from portal.modules.streams.poller import poll_stream_statuses
from portal.core.dependencies import get_current_user_id, check_artist_owner, check_stream_access, require_cron_auth
from pydantic import ValidationError
from supabase import Client
from typing import Iterator, List, Dict, Optional
import asyncio
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/streams", tags=["streams"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_stream_service(supabase: Client = Depends(get_supabase)) -> LiveStreamService:
    return LiveStreamService(supabase)


def get_reconciler(supabase: Client = Depends(get_service_supabase)) -> Iterator[StreamReconciler]:
    """Status writes use the service-role client so RLS never blocks a transition."""
    reconciler = StreamReconciler(LiveStreamService(supabase))
    try:
        yield reconciler
    finally:
        reconciler.close()


@router.post("", response_model=LiveStreamResponse, status_code=201)
def create_stream(
    stream_data: LiveStreamCreate,
    user_data: Dict = Depends(get_current_user_id),
    service: LiveStreamService = Depends(get_stream_service),
    supabase: Client = Depends(get_supabase)
):
    """Provision a live stream on the provider and store its ingest credentials"""
    artist = check_artist_owner(stream_data.artist_id, user_data, supabase)
    service.check_eligibility(artist, stream_data.streaming_mode.value)
    try:
        provisioned = provision_stream(
            stream_data.provider.value,
            stream_data.title,
            stream_data.description,
            passthrough=stream_data.artist_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ProviderError as e:
        logger.error(f"Stream provisioning failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return service.create_stream(stream_data, user_data["id"], provisioned)


@router.get("", response_model=List[LiveStreamResponse])
def list_streams(
    artist_id: str,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    user_data: Dict = Depends(get_current_user_id),
    service: LiveStreamService = Depends(get_stream_service),
    supabase: Client = Depends(get_supabase)
):
    """List an artist's streams"""
    check_artist_owner(artist_id, user_data, supabase)
    return service.list_streams(artist_id, status=status, limit=limit, offset=offset)


@router.post("/poll", response_model=StreamPollResult)
def poll_streams(_: None = Depends(require_cron_auth)):
    """Cron entry point: reconcile all pending streams with their provider"""
    return poll_stream_statuses()


@router.get("/{stream_id}", response_model=LiveStreamResponse)
def get_stream(
    stream_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: LiveStreamService = Depends(get_stream_service)
):
    """Get stream by ID (owner only)"""
    stream = service.get_stream_by_id(stream_id)
    check_stream_access(stream, user_data)
    return stream


@router.post("/{stream_id}/sync", response_model=StreamSyncResponse)
def sync_stream(
    stream_id: str,
    user_data: Dict = Depends(get_current_user_id),
    reconciler: StreamReconciler = Depends(get_reconciler)
):
    """Reconcile one stream with Mux right now"""
    stream = reconciler.service.get_stream_by_id(stream_id)
    check_stream_access(stream, user_data)
    return reconciler.sync_stream(stream)


@router.post("/{stream_id}/end", response_model=StreamEndResponse)
def end_stream(
    stream_id: str,
    user_data: Dict = Depends(get_current_user_id),
    reconciler: StreamReconciler = Depends(get_reconciler)
):
    """End a stream (disables the Mux ingest when applicable)"""
    stream = reconciler.service.get_stream_by_id(stream_id)
    check_stream_access(stream, user_data)
    logger.info(f"Ending stream {stream_id} for user {user_data['id']}")
    return reconciler.end_stream(stream)


@router.post("/{stream_id}/cancel", response_model=LiveStreamResponse)
def cancel_stream(
    stream_id: str,
    user_data: Dict = Depends(get_current_user_id),
    reconciler: StreamReconciler = Depends(get_reconciler)
):
    """Cancel a scheduled or waiting stream"""
    stream = reconciler.service.get_stream_by_id(stream_id)
    check_stream_access(stream, user_data)
    return reconciler.cancel_stream(stream)


@webhook_router.post("/livepush", response_model=WebhookAck)
def livepush_webhook(
    event: LivepushWebhookEvent,
    background_tasks: BackgroundTasks,
    reconciler: StreamReconciler = Depends(get_reconciler)
):
    """Livepush push events: started, ended, recording_ready, viewer_update"""
    supabase = reconciler.service.supabase

    def schedule_recording(provider_stream_id: str, recording_url: str):
        background_tasks.add_task(
            transfer_recording,
            provider_stream_id=provider_stream_id,
            recording_url=recording_url,
            supabase=supabase,
        )

    handler = StreamWebhookHandler(reconciler, schedule_recording=schedule_recording)
    return handler.handle_livepush_event(event)


@webhook_router.post("/mux", response_model=WebhookAck)
async def mux_webhook(
    request: Request,
    reconciler: StreamReconciler = Depends(get_reconciler)
):
    """Mux push events: live_stream.active, live_stream.idle, asset.ready"""
    body = await request.body()
    if settings.mux_webhook_secret:
        if not verify_mux_signature(request.headers.get("mux-signature"), body, settings.mux_webhook_secret):
            raise HTTPException(status_code=401, detail="Invalid Mux signature")
    try:
        event = MuxWebhookEvent.model_validate_json(body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid webhook payload")
    # The body has to be read on the loop; the Supabase and Mux calls run in a worker thread
    return await asyncio.to_thread(StreamWebhookHandler(reconciler).handle_mux_event, event)
