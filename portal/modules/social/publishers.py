"""Publishing a SubClip to TikTok, YouTube and Instagram.

Each publisher loads the clip and the artist's connected account, refreshes
the token when needed, runs the platform's upload flow and logs the result
in social_posts. Failures raise PublishError.
"""
import json
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple, Type

import httpx

from portal.config.settings import settings
from portal.modules.social.schemas import Platform, PublishRequest, PublishResult, SocialAuth, SubClip
from portal.modules.social.service import SocialAccountService
from portal.modules.social.tokens import TokenRefresher

logger = logging.getLogger(__name__)

TIKTOK_API = "https://open.tiktokapis.com/v2"
YOUTUBE_UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
GRAPH_API = "https://graph.facebook.com/v18.0"
YOUTUBE_MUSIC_CATEGORY = "10"


class PublishError(Exception):
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


def format_hashtags(hashtags: List[str]) -> str:
    return " ".join(tag if tag.startswith("#") else f"#{tag}" for tag in hashtags if tag)


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        payload = response.json()
    except (ValueError, json.JSONDecodeError):
        return default
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return error.get("message") or default
    return default


class BasePublisher:
    platform: Platform
    display_name: str

    def __init__(self, accounts: SocialAccountService, http_client: Optional[httpx.Client] = None,
                 tokens: Optional[TokenRefresher] = None):
        self.accounts = accounts
        self._owns_http = http_client is None
        self.http = http_client or httpx.Client(timeout=settings.http_timeout_seconds)
        self.tokens = tokens or TokenRefresher(accounts, http_client=self.http)

    def close(self):
        """Closes the HTTP client when this publisher created it."""
        if self._owns_http:
            self.http.close()

    def publish(self, request: PublishRequest) -> PublishResult:
        subclip = self.accounts.get_subclip(request.subclip_id)
        if subclip is None:
            raise PublishError("SubClip not found", status_code=404)

        auth = self.accounts.get_active_auth(subclip.artist_id, self.platform.value)
        if auth is None:
            raise PublishError(f"{self.display_name} account not connected", status_code=400)
        try:
            auth = self.tokens.ensure_fresh(auth)
        except Exception as e:
            raise PublishError(f"Failed to refresh {self.display_name} token: {e}")

        external_id, url = self._publish(subclip, auth, request)

        self.accounts.record_post(
            subclip,
            self.platform.value,
            external_id,
            request.caption,
            request.hashtags,
            scheduled_post_id=request.scheduled_post_id,
        )
        logger.info(f"Published SubClip {subclip.id} to {self.platform.value}: {external_id}")
        return PublishResult(success=True, platform=self.platform.value, external_id=external_id, url=url)

    def _publish(self, subclip: SubClip, auth: SocialAuth, request: PublishRequest) -> Tuple[str, Optional[str]]:
        raise NotImplementedError


class TikTokPublisher(BasePublisher):
    platform = Platform.TIKTOK
    display_name = "TikTok"

    def _publish(self, subclip, auth, request):
        try:
            video = self.accounts.download_clip(subclip)
        except ValueError as e:
            raise PublishError(str(e))
        size = len(video)
        headers = {"Authorization": f"Bearer {auth.access_token}"}

        init = self.http.post(f"{TIKTOK_API}/post/publish/video/init/", headers=headers, json={
            "post_info": {
                "title": request.caption,
                "privacy_level": request.privacy_level.upper(),
                "disable_duet": False,
                "disable_comment": False,
                "disable_stitch": False,
                "video_cover_timestamp_ms": 1000,
            },
            "source_info": {
                "source": "FILE_UPLOAD",
                "video_size": size,
                "chunk_size": size,
                "total_chunk_count": 1,
            },
        })
        init_data = init.json() if init.content else {}
        error = init_data.get("error") or {}
        # TikTok always returns an error object; code "ok" means success
        if init.status_code >= 400 or (error and error.get("code") not in (None, "ok")):
            raise PublishError(error.get("message") or "Failed to initialize upload")
        publish_id = init_data["data"]["publish_id"]
        upload_url = init_data["data"]["upload_url"]

        upload = self.http.put(upload_url, content=video, headers={
            "Content-Type": "video/mp4",
            "Content-Range": f"bytes 0-{size - 1}/{size}",
        })
        if upload.status_code >= 400:
            raise PublishError("Failed to upload video")

        status = self.http.post(f"{TIKTOK_API}/post/publish/status/fetch/", headers=headers,
                                json={"publish_id": publish_id})
        if status.status_code >= 400:
            logger.warning(f"TikTok publish status check failed for {publish_id}: {status.text}")
        return publish_id, None


class YouTubePublisher(BasePublisher):
    platform = Platform.YOUTUBE
    display_name = "YouTube"

    def build_metadata(self, request: PublishRequest) -> Dict:
        description = f"{request.caption}\n\n#Shorts"
        tags = format_hashtags(request.hashtags)
        if tags:
            description = f"{description}\n\n{tags}"
        return {
            "snippet": {
                "title": request.caption[:100],
                "description": description,
                "categoryId": YOUTUBE_MUSIC_CATEGORY,
                "tags": request.hashtags,
            },
            "status": {
                "privacyStatus": "public",
                "selfDeclaredMadeForKids": False,
            },
        }

    def _publish(self, subclip, auth, request):
        try:
            video = self.accounts.download_clip(subclip)
        except ValueError as e:
            raise PublishError(str(e))

        init = self.http.post(
            YOUTUBE_UPLOAD_URL,
            params={"uploadType": "resumable", "part": "snippet,status"},
            headers={
                "Authorization": f"Bearer {auth.access_token}",
                "X-Upload-Content-Length": str(len(video)),
                "X-Upload-Content-Type": "video/mp4",
            },
            json=self.build_metadata(request),
        )
        upload_url = init.headers.get("location")
        if init.status_code >= 400 or not upload_url:
            raise PublishError(_error_message(init, "Failed to get upload URL"))

        upload = self.http.put(upload_url, content=video, headers={"Content-Type": "video/mp4"})
        if upload.status_code >= 400:
            raise PublishError(_error_message(upload, "Failed to upload video"))
        video_id = upload.json()["id"]
        return video_id, f"https://youtube.com/shorts/{video_id}"


class InstagramPublisher(BasePublisher):
    platform = Platform.INSTAGRAM
    display_name = "Instagram"

    def __init__(self, accounts, http_client=None, tokens=None, sleep: Callable[[float], None] = time.sleep):
        super().__init__(accounts, http_client=http_client, tokens=tokens)
        self.sleep = sleep

    def _publish(self, subclip, auth, request):
        if not auth.platform_user_id:
            raise PublishError("Instagram account has no business user id", status_code=400)
        video_url = self.accounts.clip_public_url(subclip)
        caption = request.caption
        tags = format_hashtags(request.hashtags)
        if tags:
            caption = f"{caption}\n\n{tags}"

        container = self.http.post(f"{GRAPH_API}/{auth.platform_user_id}/media", json={
            "media_type": "REELS",
            "video_url": video_url,
            "caption": caption,
            "share_to_feed": True,
            "access_token": auth.access_token,
        })
        if container.status_code >= 400 or "error" in (container.json() or {}):
            raise PublishError(_error_message(container, "Failed to create media container"))
        creation_id = container.json()["id"]

        status = "IN_PROGRESS"
        attempts = 0
        while status == "IN_PROGRESS" and attempts < settings.instagram_poll_attempts:
            self.sleep(settings.instagram_poll_interval_seconds)
            check = self.http.get(f"{GRAPH_API}/{creation_id}", params={
                "fields": "status_code",
                "access_token": auth.access_token,
            })
            status = (check.json() or {}).get("status_code", "ERROR")
            attempts += 1

        if status != "FINISHED":
            raise PublishError(f"Video processing failed with status: {status}")

        published = self.http.post(f"{GRAPH_API}/{auth.platform_user_id}/media_publish", json={
            "creation_id": creation_id,
            "access_token": auth.access_token,
        })
        if published.status_code >= 400 or "error" in (published.json() or {}):
            raise PublishError(_error_message(published, "Failed to publish reel"))
        return published.json()["id"], None


PUBLISHERS: Dict[str, Type[BasePublisher]] = {
    Platform.TIKTOK.value: TikTokPublisher,
    Platform.YOUTUBE.value: YouTubePublisher,
    Platform.INSTAGRAM.value: InstagramPublisher,
}


def get_publisher(platform: str, accounts: SocialAccountService,
                  http_client: Optional[httpx.Client] = None) -> BasePublisher:
    publisher_cls = PUBLISHERS.get(platform)
    if publisher_cls is None:
        raise PublishError(f"Unknown platform: {platform}", status_code=400)
    return publisher_cls(accounts, http_client=http_client)
