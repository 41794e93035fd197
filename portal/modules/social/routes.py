from fastapi import APIRouter, Depends, HTTPException
from portal.config.settings import settings
from portal.database.supabase_client import get_supabase, get_service_supabase
from portal.modules.social.schemas import (
    Platform, ScheduledPostCreate, ScheduledPostResponse, PublishRequest, PublishResult,
    ProcessResult, TokenRefreshResult
)
from portal.modules.social.service import ScheduledPostService, SocialAccountService
from portal.modules.social.publishers import PublishError, get_publisher
from portal.modules.social.processor import process_scheduled_posts
from portal.modules.social.tokens import refresh_expiring_tokens
from portal.core.dependencies import get_current_user_id, check_artist_owner, require_cron_auth
from supabase import Client
import httpx
from typing import List, Dict, Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/social", tags=["social"])


def get_post_service(supabase: Client = Depends(get_supabase)) -> ScheduledPostService:
    return ScheduledPostService(supabase)


def get_account_service(supabase: Client = Depends(get_service_supabase)) -> SocialAccountService:
    return SocialAccountService(supabase)


@router.post("/scheduled-posts", response_model=ScheduledPostResponse, status_code=201)
def create_scheduled_post(
    post_data: ScheduledPostCreate,
    user_data: Dict = Depends(get_current_user_id),
    service: ScheduledPostService = Depends(get_post_service),
    accounts: SocialAccountService = Depends(get_account_service),
    supabase: Client = Depends(get_supabase)
):
    """Schedule a SubClip for publishing to one or more platforms"""
    check_artist_owner(post_data.artist_id, user_data, supabase)
    subclip = accounts.get_subclip(post_data.subclip_id)
    if subclip is None or subclip.artist_id != post_data.artist_id:
        raise HTTPException(status_code=404, detail="SubClip not found")
    return service.create_post(post_data)


@router.get("/scheduled-posts", response_model=List[ScheduledPostResponse])
def list_scheduled_posts(
    artist_id: str,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    user_data: Dict = Depends(get_current_user_id),
    service: ScheduledPostService = Depends(get_post_service),
    supabase: Client = Depends(get_supabase)
):
    check_artist_owner(artist_id, user_data, supabase)
    return service.list_posts(artist_id, status=status, limit=limit, offset=offset)


@router.post("/scheduled-posts/process", response_model=ProcessResult)
def process_posts(_: None = Depends(require_cron_auth)):
    """Cron entry point: publish every post whose time has come"""
    return process_scheduled_posts()


@router.get("/scheduled-posts/{post_id}", response_model=ScheduledPostResponse)
def get_scheduled_post(
    post_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: ScheduledPostService = Depends(get_post_service),
    supabase: Client = Depends(get_supabase)
):
    post = service.get_post_by_id(post_id)
    check_artist_owner(post.artist_id, user_data, supabase)
    return post


@router.post("/scheduled-posts/{post_id}/cancel", response_model=ScheduledPostResponse)
def cancel_scheduled_post(
    post_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: ScheduledPostService = Depends(get_post_service),
    supabase: Client = Depends(get_supabase)
):
    """Cancel a post that has not started publishing"""
    post = service.get_post_by_id(post_id)
    check_artist_owner(post.artist_id, user_data, supabase)
    return service.cancel_post(post)


@router.post("/publish/{platform}", response_model=PublishResult)
def publish_now(
    platform: Platform,
    request: PublishRequest,
    user_data: Dict = Depends(get_current_user_id),
    accounts: SocialAccountService = Depends(get_account_service),
    supabase: Client = Depends(get_supabase)
):
    """Publish a SubClip to a platform immediately"""
    subclip = accounts.get_subclip(request.subclip_id)
    if subclip is None:
        raise HTTPException(status_code=404, detail="SubClip not found")
    check_artist_owner(subclip.artist_id, user_data, supabase)

    try:
        with httpx.Client(timeout=settings.http_timeout_seconds) as http:
            return get_publisher(platform.value, accounts, http_client=http).publish(request)
    except PublishError as e:
        logger.error(f"Publishing SubClip {request.subclip_id} to {platform.value} failed: {str(e)}")
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/tokens/refresh", response_model=TokenRefreshResult)
def refresh_tokens(_: None = Depends(require_cron_auth)):
    """Cron entry point: refresh tokens that expire within a day"""
    return refresh_expiring_tokens()
