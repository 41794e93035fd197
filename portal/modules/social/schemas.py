from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any, List
from datetime import datetime


class Platform(str, Enum):
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"


class ScheduledPostStatus(str, Enum):
    SCHEDULED = "scheduled"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_POST_STATUSES = {
    ScheduledPostStatus.PUBLISHED.value,
    ScheduledPostStatus.PARTIAL.value,
    ScheduledPostStatus.FAILED.value,
    ScheduledPostStatus.CANCELLED.value,
}


class ScheduledPostCreate(BaseModel):
    artist_id: str
    subclip_id: str
    caption: str = Field(min_length=1, max_length=2200)
    hashtags: List[str] = []
    platforms: List[Platform] = Field(min_length=1)
    scheduled_at: datetime

    @field_validator("platforms")
    @classmethod
    def dedupe_platforms(cls, value: List[Platform]) -> List[Platform]:
        seen = []
        for platform in value:
            if platform not in seen:
                seen.append(platform)
        return seen


class ScheduledPostResponse(BaseModel):
    id: str
    artist_id: str
    subclip_id: str
    caption: str
    hashtags: List[str] = []
    platforms: List[str] = []
    scheduled_at: datetime
    status: str
    external_ids: Dict[str, Any] = {}
    publish_results: Dict[str, bool] = {}
    error_messages: Dict[str, Any] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("hashtags", "platforms", mode="before")
    @classmethod
    def none_to_list(cls, value):
        return value or []

    @field_validator("external_ids", "publish_results", "error_messages", mode="before")
    @classmethod
    def none_to_dict(cls, value):
        return value or {}


class PublishRequest(BaseModel):
    subclip_id: str
    caption: str = Field(min_length=1, max_length=2200)
    hashtags: List[str] = []
    privacy_level: str = "public"
    scheduled_post_id: Optional[str] = None


class PublishResult(BaseModel):
    success: bool
    platform: str
    external_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


class ProcessedPost(BaseModel):
    post_id: str
    status: str
    publish_results: Dict[str, bool] = {}


class ProcessResult(BaseModel):
    processed: int = 0
    results: List[ProcessedPost] = []


class TokenRefreshResult(BaseModel):
    refreshed: int = 0
    failed: int = 0


class SubClip(BaseModel):
    id: str
    artist_id: str
    clip_url: str

    model_config = ConfigDict(extra="ignore")


class SocialAuth(BaseModel):
    id: str
    artist_id: str
    platform: str
    platform_user_id: Optional[str] = None
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True

    model_config = ConfigDict(extra="ignore")
