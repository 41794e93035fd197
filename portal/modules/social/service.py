from supabase import Client
from portal.config.settings import settings
from portal.modules.social.schemas import (
    ScheduledPostCreate, ScheduledPostResponse, ScheduledPostStatus,
    SocialAuth, SubClip, TERMINAL_POST_STATUSES
)
from typing import Any, Dict, List, Optional
from fastapi import HTTPException
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

POSTS_TABLE = "social_scheduled_posts"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ScheduledPostService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def create_post(self, post_data: ScheduledPostCreate) -> ScheduledPostResponse:
        """Schedule a SubClip for publishing"""
        try:
            result = self.supabase.table(POSTS_TABLE).insert({
                "artist_id": post_data.artist_id,
                "subclip_id": post_data.subclip_id,
                "caption": post_data.caption,
                "hashtags": post_data.hashtags,
                "platforms": [p.value for p in post_data.platforms],
                "scheduled_at": post_data.scheduled_at.isoformat(),
                "status": ScheduledPostStatus.SCHEDULED.value,
                "external_ids": {},
                "publish_results": {},
                "error_messages": {},
            }).execute()

            if not result.data:
                raise HTTPException(status_code=500, detail="Failed to schedule post")

            return ScheduledPostResponse(**result.data[0])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating scheduled post: {str(e)}")
            raise HTTPException(status_code=500, detail=str(e))

    def get_post_by_id(self, post_id: str) -> ScheduledPostResponse:
        """Get scheduled post by ID"""
        try:
            result = self.supabase.table(POSTS_TABLE)\
                .select("*")\
                .eq("id", post_id)\
                .maybe_single()\
                .execute()

            if not result or not result.data:
                raise HTTPException(status_code=404, detail="Scheduled post not found")

            return ScheduledPostResponse(**result.data)
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def list_posts(self, artist_id: str, status: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[ScheduledPostResponse]:
        try:
            query = self.supabase.table(POSTS_TABLE).select("*").eq("artist_id", artist_id)
            if status:
                query = query.eq("status", status)
            result = query.order("scheduled_at", desc=True)\
                .limit(limit)\
                .offset(offset)\
                .execute()
            return [ScheduledPostResponse(**post) for post in result.data]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def list_due_posts(self, now: datetime, limit: int) -> List[ScheduledPostResponse]:
        """Posts still 'scheduled' whose time has come"""
        result = self.supabase.table(POSTS_TABLE)\
            .select("*")\
            .eq("status", ScheduledPostStatus.SCHEDULED.value)\
            .lte("scheduled_at", now.isoformat())\
            .order("scheduled_at")\
            .limit(limit)\
            .execute()
        return [ScheduledPostResponse(**post) for post in (result.data or [])]

    def update_post(self, post_id: str, update_data: Dict[str, Any], expected_status: Optional[str] = None) -> Optional[ScheduledPostResponse]:
        update_data = {**update_data, "updated_at": _now_iso()}
        query = self.supabase.table(POSTS_TABLE)\
            .update(update_data)\
            .eq("id", post_id)
        if expected_status is not None:
            query = query.eq("status", expected_status)
        result = query.execute()
        if result.data:
            return ScheduledPostResponse(**result.data[0])
        return None

    def cancel_post(self, post: ScheduledPostResponse) -> ScheduledPostResponse:
        if post.status in TERMINAL_POST_STATUSES:
            raise HTTPException(status_code=400, detail=f"Cannot cancel a post with status: {post.status}")
        if post.status != ScheduledPostStatus.SCHEDULED.value:
            raise HTTPException(status_code=409, detail="Post is already being published")
        updated = self.update_post(post.id, {"status": ScheduledPostStatus.CANCELLED.value},
                                   expected_status=ScheduledPostStatus.SCHEDULED.value)
        if updated is None:
            raise HTTPException(status_code=409, detail="Post is already being published")
        return updated


class SocialAccountService:
    """SubClips, connected platform accounts and the published-post log."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_subclip(self, subclip_id: str) -> Optional[SubClip]:
        result = self.supabase.table("subclip_library")\
            .select("*")\
            .eq("id", subclip_id)\
            .maybe_single()\
            .execute()
        if not result or not result.data:
            return None
        return SubClip(**result.data)

    def get_active_auth(self, artist_id: str, platform: str) -> Optional[SocialAuth]:
        result = self.supabase.table("social_auth")\
            .select("*")\
            .eq("artist_id", artist_id)\
            .eq("platform", platform)\
            .eq("is_active", True)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return SocialAuth(**result.data[0])

    def list_expiring_auth(self, threshold: datetime) -> List[SocialAuth]:
        result = self.supabase.table("social_auth")\
            .select("*")\
            .eq("is_active", True)\
            .lt("expires_at", threshold.isoformat())\
            .execute()
        return [SocialAuth(**row) for row in (result.data or [])]

    def update_auth(self, auth_id: str, update_data: Dict[str, Any]) -> None:
        self.supabase.table("social_auth")\
            .update(update_data)\
            .eq("id", auth_id)\
            .execute()

    def deactivate_auth(self, auth_id: str) -> None:
        self.update_auth(auth_id, {"is_active": False})

    def record_post(self, subclip: SubClip, platform: str, external_id: str, caption: str,
                    hashtags: List[str], scheduled_post_id: Optional[str] = None) -> None:
        self.supabase.table("social_posts").insert({
            "artist_id": subclip.artist_id,
            "subclip_id": subclip.id,
            "scheduled_post_id": scheduled_post_id,
            "platform": platform,
            "external_id": external_id,
            "caption": caption,
            "hashtags": hashtags,
            "status": "published",
            "published_at": _now_iso(),
        }).execute()

    @staticmethod
    def clip_storage_path(clip_url: str) -> str:
        """Object path of a clip inside the social clips bucket, taken from its public URL."""
        marker = f"/{settings.social_clips_bucket}/"
        if marker not in clip_url:
            raise ValueError(f"Clip URL is not in the {settings.social_clips_bucket} bucket")
        return clip_url.split(marker, 1)[1]

    def download_clip(self, subclip: SubClip) -> bytes:
        path = self.clip_storage_path(subclip.clip_url)
        data = self.supabase.storage.from_(settings.social_clips_bucket).download(path)
        if not data:
            raise ValueError("Failed to download video")
        return data

    def clip_public_url(self, subclip: SubClip) -> str:
        path = self.clip_storage_path(subclip.clip_url)
        return self.supabase.storage.from_(settings.social_clips_bucket).get_public_url(path)
