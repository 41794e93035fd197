import asyncio
import logging
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Dict, List, Optional

import httpx

from portal.config.settings import settings
from portal.modules.social.publishers import PUBLISHERS, get_publisher
from portal.modules.social.schemas import (
    ProcessedPost, ProcessResult, PublishRequest, ScheduledPostResponse, ScheduledPostStatus
)
from portal.modules.social.service import ScheduledPostService, SocialAccountService

logger = logging.getLogger(__name__)


def aggregate_status(publish_results: Dict[str, bool], platforms: List[str]) -> str:
    succeeded = sum(1 for platform in platforms if publish_results.get(platform))
    if succeeded == 0:
        return ScheduledPostStatus.FAILED.value
    if succeeded == len(platforms):
        return ScheduledPostStatus.PUBLISHED.value
    return ScheduledPostStatus.PARTIAL.value


class ScheduledPostProcessor:
    """Publishes due scheduled posts, one platform at a time."""

    def __init__(self, posts: ScheduledPostService, accounts: SocialAccountService,
                 http_client: Optional[httpx.Client] = None):
        self.posts = posts
        self.accounts = accounts
        self.http = http_client

    def _http_client(self):
        """The injected client, or one client shared by every post of this run."""
        if self.http is not None:
            return nullcontext(self.http)
        return httpx.Client(timeout=settings.http_timeout_seconds)

    def publish_to_platform(self, post: ScheduledPostResponse, platform: str,
                            http: Optional[httpx.Client] = None) -> Dict:
        if platform not in PUBLISHERS:
            return {"success": False, "error": f"Unknown platform: {platform}"}
        publisher = get_publisher(platform, self.accounts, http_client=http or self.http)
        result = publisher.publish(PublishRequest(
            subclip_id=post.subclip_id,
            caption=post.caption,
            hashtags=post.hashtags,
            scheduled_post_id=post.id,
        ))
        return {"success": result.success, "external_id": result.external_id, "error": result.error}

    def process_post(self, post: ScheduledPostResponse, http: Optional[httpx.Client] = None) -> ProcessedPost:
        claimed = self.posts.update_post(
            post.id,
            {"status": ScheduledPostStatus.PUBLISHING.value},
            expected_status=ScheduledPostStatus.SCHEDULED.value,
        )
        if claimed is None:
            logger.info(f"Scheduled post {post.id} was picked up elsewhere, skipping")
            return ProcessedPost(post_id=post.id, status=ScheduledPostStatus.PUBLISHING.value)

        try:
            publish_results: Dict[str, bool] = {}
            external_ids: Dict[str, str] = {}
            error_messages: Dict[str, str] = {}

            for platform in post.platforms:
                try:
                    outcome = self.publish_to_platform(post, platform, http)
                except Exception as e:
                    logger.error(f"Publishing post {post.id} to {platform} failed: {str(e)}")
                    outcome = {"success": False, "error": str(e)}

                publish_results[platform] = bool(outcome.get("success"))
                if outcome.get("external_id"):
                    external_ids[platform] = outcome["external_id"]
                if outcome.get("error"):
                    error_messages[platform] = outcome["error"]

            final_status = aggregate_status(publish_results, post.platforms)
            self.posts.update_post(post.id, {
                "status": final_status,
                "external_ids": external_ids,
                "publish_results": publish_results,
                "error_messages": error_messages,
            })
            logger.info(f"Scheduled post {post.id} finished with status {final_status}")
            return ProcessedPost(post_id=post.id, status=final_status, publish_results=publish_results)
        except Exception as e:
            logger.error(f"Error processing scheduled post {post.id}: {str(e)}")
            self.posts.update_post(post.id, {
                "status": ScheduledPostStatus.FAILED.value,
                "error_messages": {"error": str(e)},
            })
            return ProcessedPost(post_id=post.id, status=ScheduledPostStatus.FAILED.value)

    def process_due(self, now: Optional[datetime] = None) -> ProcessResult:
        now = now or datetime.now(timezone.utc)
        due = self.posts.list_due_posts(now, settings.scheduled_posts_batch_size)
        if not due:
            return ProcessResult()

        logger.info(f"Processing {len(due)} scheduled posts")
        with self._http_client() as http:
            results = [self.process_post(post, http) for post in due]
        return ProcessResult(processed=len(due), results=results)


def process_scheduled_posts() -> ProcessResult:
    from portal.database.supabase_client import SupabaseClient
    supabase = SupabaseClient.get_service_client()
    processor = ScheduledPostProcessor(ScheduledPostService(supabase), SocialAccountService(supabase))
    return processor.process_due()


async def scheduled_posts_loop():
    """Background task that publishes scheduled posts when they come due"""
    while True:
        try:
            await asyncio.to_thread(process_scheduled_posts)
        except Exception as e:
            logger.error(f"Error in scheduled posts loop: {str(e)}")

        await asyncio.sleep(settings.scheduled_posts_interval_seconds)
