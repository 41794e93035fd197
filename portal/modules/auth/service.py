import hashlib
import logging
import time
from supabase import Client
from fastapi import HTTPException
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Artist dashboards poll stream status every few seconds with the same JWT
_SESSION_CACHE: Dict[str, Tuple[Dict[str, Any], float]] = {}
SESSION_CACHE_TTL_SEC = 60
SESSION_CACHE_MAX_SIZE = 500


def _token_key(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _cached_session(key: str, now: float) -> Optional[Dict[str, Any]]:
    entry = _SESSION_CACHE.get(key)
    if entry is None:
        return None
    user, expires = entry
    if now >= expires:
        _SESSION_CACHE.pop(key, None)
        return None
    return user


def _remember_session(key: str, user: Dict[str, Any], now: float) -> None:
    if len(_SESSION_CACHE) >= SESSION_CACHE_MAX_SIZE:
        for stale in [k for k, (_, expires) in _SESSION_CACHE.items() if expires <= now]:
            del _SESSION_CACHE[stale]
    if len(_SESSION_CACHE) < SESSION_CACHE_MAX_SIZE:
        _SESSION_CACHE[key] = (user, now + SESSION_CACHE_TTL_SEC)


class AuthService:
    """Resolves portal JWTs issued by Supabase Auth. Sign-in itself happens in the browser."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_current_user(self, token: str) -> Dict[str, Any]:
        key = _token_key(token)
        now = time.monotonic()
        user = _cached_session(key, now)
        if user is not None:
            return user

        try:
            response = self.supabase.auth.get_user(jwt=token)
        except Exception as e:
            logger.info(f"Rejected portal token: {str(e)}")
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        if not response or not response.user:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        user = {
            "id": response.user.id,
            "email": response.user.email,
            "user_metadata": response.user.user_metadata or {},
            "app_metadata": response.user.app_metadata or {},
        }
        _remember_session(key, user, now)
        return user


def clear_auth_cache() -> None:
    _SESSION_CACHE.clear()
