"""OAuth access-token refresh for connected social accounts."""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx

from portal.config.settings import settings
from portal.modules.social.schemas import Platform, SocialAuth, TokenRefreshResult
from portal.modules.social.service import SocialAccountService

logger = logging.getLogger(__name__)

TIKTOK_TOKEN_URL = "https://open.tiktokapis.com/v2/oauth/token/"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
META_TOKEN_URL = "https://graph.facebook.com/v18.0/oauth/access_token"

REFRESH_BEFORE_PUBLISH = timedelta(hours=1)
REFRESH_HORIZON = timedelta(hours=24)
INSTAGRAM_DEFAULT_LIFETIME_SEC = 5184000  # 60 days


class TokenRefreshError(Exception):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def expires_within(auth: SocialAuth, window: timedelta, now: Optional[datetime] = None) -> bool:
    """True when the token expires inside the window. Unknown expiry counts as expiring."""
    if auth.expires_at is None:
        return True
    expires_at = auth.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at - (now or _utcnow()) < window


class TokenRefresher:
    def __init__(self, accounts: SocialAccountService, http_client: Optional[httpx.Client] = None):
        self.accounts = accounts
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(timeout=settings.http_timeout_seconds)

    def close(self):
        if self._owns_http:
            self._http.close()

    def _post_form(self, url: str, data: Dict[str, Any]) -> Dict[str, Any]:
        response = self._http.post(url, data=data)
        payload = response.json() if response.content else {}
        if response.status_code >= 400:
            message = payload.get("error_description") or payload.get("error") or "Failed to refresh token"
            raise TokenRefreshError(str(message))
        return payload

    def request_new_token(self, auth: SocialAuth) -> Dict[str, Any]:
        """Call the platform's token endpoint and return the social_auth columns to update."""
        now = _utcnow()
        if auth.platform == Platform.TIKTOK.value:
            data = self._post_form(TIKTOK_TOKEN_URL, {
                "client_key": settings.tiktok_client_id,
                "client_secret": settings.tiktok_client_secret,
                "grant_type": "refresh_token",
                "refresh_token": auth.refresh_token,
            })
            return {
                "access_token": data["access_token"],
                "refresh_token": data.get("refresh_token") or auth.refresh_token,
                "expires_at": (now + timedelta(seconds=int(data["expires_in"]))).isoformat(),
            }
        if auth.platform == Platform.YOUTUBE.value:
            data = self._post_form(GOOGLE_TOKEN_URL, {
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "refresh_token": auth.refresh_token,
                "grant_type": "refresh_token",
            })
            return {
                "access_token": data["access_token"],
                "expires_at": (now + timedelta(seconds=int(data["expires_in"]))).isoformat(),
            }
        if auth.platform == Platform.INSTAGRAM.value:
            # Long-lived tokens are exchanged rather than refreshed
            response = self._http.get(META_TOKEN_URL, params={
                "grant_type": "fb_exchange_token",
                "client_id": settings.meta_app_id,
                "client_secret": settings.meta_app_secret,
                "fb_exchange_token": auth.access_token,
            })
            data = response.json() if response.content else {}
            if response.status_code >= 400:
                raise TokenRefreshError((data.get("error") or {}).get("message") or "Failed to exchange token")
            lifetime = int(data.get("expires_in") or INSTAGRAM_DEFAULT_LIFETIME_SEC)
            return {
                "access_token": data["access_token"],
                "expires_at": (now + timedelta(seconds=lifetime)).isoformat(),
            }
        raise TokenRefreshError(f"Unsupported platform: {auth.platform}")

    def refresh(self, auth: SocialAuth) -> SocialAuth:
        update_data = self.request_new_token(auth)
        self.accounts.update_auth(auth.id, update_data)
        return auth.model_copy(update={
            "access_token": update_data["access_token"],
            "refresh_token": update_data.get("refresh_token", auth.refresh_token),
            "expires_at": datetime.fromisoformat(update_data["expires_at"]),
        })

    def ensure_fresh(self, auth: SocialAuth) -> SocialAuth:
        """Refresh before publishing when the token expires within the hour."""
        if expires_within(auth, REFRESH_BEFORE_PUBLISH):
            logger.info(f"Refreshing {auth.platform} token for artist {auth.artist_id} before publish")
            return self.refresh(auth)
        return auth

    def refresh_expiring(self) -> TokenRefreshResult:
        """Refresh every active token that expires within 24 hours; deactivate the ones that fail."""
        expiring = self.accounts.list_expiring_auth(_utcnow() + REFRESH_HORIZON)
        result = TokenRefreshResult()
        if not expiring:
            logger.debug("No tokens to refresh")
            return result

        logger.info(f"Refreshing {len(expiring)} tokens")
        for auth in expiring:
            try:
                self.refresh(auth)
                result.refreshed += 1
                logger.info(f"Refreshed {auth.platform} token for artist {auth.artist_id}")
            except Exception as e:
                result.failed += 1
                logger.error(f"Failed to refresh {auth.platform} token for artist {auth.artist_id}: {str(e)}")
                try:
                    self.accounts.deactivate_auth(auth.id)
                except Exception as deactivate_err:
                    logger.error(f"Failed to deactivate token {auth.id}: {str(deactivate_err)}")
        return result


def refresh_expiring_tokens() -> TokenRefreshResult:
    from portal.database.supabase_client import SupabaseClient
    accounts = SocialAccountService(SupabaseClient.get_service_client())
    with httpx.Client(timeout=settings.http_timeout_seconds) as http:
        return TokenRefresher(accounts, http_client=http).refresh_expiring()


async def token_refresh_loop():
    """Background task that periodically refreshes expiring social tokens"""
    while True:
        try:
            await asyncio.to_thread(refresh_expiring_tokens)
        except Exception as e:
            logger.error(f"Error in token refresh loop: {str(e)}")

        await asyncio.sleep(settings.token_refresh_interval_seconds)
