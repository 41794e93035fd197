"""
Core dependencies for route protection and ownership checks
"""

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from portal.config.settings import settings
from portal.database.supabase_client import get_supabase
from portal.modules.auth.service import AuthService
from supabase import Client
from typing import Dict, Any, Optional
import hmac
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()
cron_security = HTTPBearer(auto_error=False)


def get_auth_service(supabase: Client = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(security),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Extract current user info from JWT token"""
    token = credentials.credentials
    user_data = auth_service.get_current_user(token)
    return user_data


def get_artist(artist_id: str, supabase: Client) -> Dict[str, Any]:
    """Fetch an artist row or raise 404."""
    result = supabase.table("artists")\
        .select("id, user_id, subscription_tier, streaming_minutes_used, streaming_minutes_included")\
        .eq("id", artist_id)\
        .maybe_single()\
        .execute()
    if not result or not result.data:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Artist not found"
        )
    return result.data


def check_artist_owner(artist_id: str, user_data: dict, supabase: Client, artist: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Allow only the auth user that owns the artist. Returns the artist row. Optional artist dict avoids duplicate fetch."""
    if artist is None:
        artist = get_artist(artist_id, supabase)
    if artist.get("user_id") != user_data["id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to manage this artist"
        )
    return artist


def check_stream_access(stream: Any, user_data: dict) -> None:
    """Streams carry the creating user's id; only that user may act on them."""
    if getattr(stream, "user_id", None) != user_data["id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to manage this stream"
        )


def require_cron_auth(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(cron_security),
) -> None:
    """Cron and scheduler endpoints accept the cron secret or the service role key as bearer token."""
    accepted = [s for s in (settings.cron_secret, settings.supabase_service_role_key) if s]
    if not accepted:
        logger.warning("Cron endpoint %s called but no cron secret is configured", request.url.path)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron authentication not configured"
        )
    token = credentials.credentials if credentials else ""
    if not any(hmac.compare_digest(token, secret) for secret in accepted):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron credentials"
        )
