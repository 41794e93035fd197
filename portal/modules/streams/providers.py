"""HTTP clients for the live-video providers (Mux, Livepush)."""
import logging
from typing import Any, Dict, List, Optional

import httpx

from portal.config.settings import settings

logger = logging.getLogger(__name__)

MUX_RTMP_URL = "rtmps://global-live.mux.com:443/app"


class ProviderError(RuntimeError):
    """A provider API call failed."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
        self.body = body


def mux_hls_url(playback_id: Optional[str]) -> Optional[str]:
    return f"https://stream.mux.com/{playback_id}.m3u8" if playback_id else None


def pick_playback_id(playback_ids: List[Dict[str, Any]]) -> Optional[str]:
    """Prefer the public playback id, else the first one."""
    for playback in playback_ids or []:
        if playback.get("policy") == "public" and playback.get("id"):
            return playback["id"]
    if playback_ids:
        return playback_ids[0].get("id")
    return None


class MuxClient:
    """Mux Video live-stream API (basic auth with an access token pair)."""

    def __init__(
        self,
        token_id: Optional[str] = None,
        token_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        token_id = token_id or settings.mux_token_id
        token_secret = token_secret or settings.mux_token_secret
        if not token_id or not token_secret:
            raise ValueError("Mux token id and secret must be configured")
        self._client = http_client or httpx.Client(
            base_url=base_url or settings.mux_api_base,
            auth=(token_id, token_secret),
            timeout=settings.http_timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError("mux", f"{method} {path} failed: {e}") from e
        if response.status_code >= 400:
            logger.error("Mux API error %s on %s %s: %s", response.status_code, method, path, response.text)
            raise ProviderError("mux", f"{method} {path} returned {response.status_code}",
                                status_code=response.status_code, body=response.text)
        if not response.content:
            return {}
        return response.json().get("data") or {}

    def get_live_stream(self, live_stream_id: str) -> Dict[str, Any]:
        """Return the live stream object; its 'status' is idle, active or disabled."""
        return self._request("GET", f"/video/v1/live-streams/{live_stream_id}")

    def create_live_stream(self, passthrough: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "playback_policy": ["public"],
            "new_asset_settings": {"playback_policy": ["public"]},
        }
        if passthrough:
            payload["passthrough"] = passthrough
        return self._request("POST", "/video/v1/live-streams", json=payload)

    def disable_live_stream(self, live_stream_id: str) -> Dict[str, Any]:
        return self._request("PUT", f"/video/v1/live-streams/{live_stream_id}/disable")

    def close(self) -> None:
        self._client.close()


class LivepushClient:
    """Livepush API (OAuth client-credentials)."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.client_id = client_id or settings.livepush_client_id
        self.client_secret = client_secret or settings.livepush_client_secret
        if not self.client_id or not self.client_secret:
            raise ValueError("Livepush credentials not configured")
        self._client = http_client or httpx.Client(
            base_url=base_url or settings.livepush_api_base,
            timeout=settings.http_timeout_seconds,
        )

    def get_access_token(self) -> str:
        response = self._client.post("/v1/oauth/token", json={
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        })
        if response.status_code >= 400:
            logger.error("Livepush token error: %s", response.text)
            raise ProviderError("livepush", "Failed to get Livepush access token",
                                status_code=response.status_code, body=response.text)
        return response.json()["access_token"]

    def create_stream(self, title: str, description: Optional[str] = None) -> Dict[str, Any]:
        token = self.get_access_token()
        response = self._client.post(
            "/v1/streams",
            headers={"Authorization": f"Bearer {token}"},
            json={"title": title, "description": description or title},
        )
        if response.status_code >= 400:
            logger.error("Livepush stream creation error: %s", response.text)
            raise ProviderError("livepush", "Failed to create stream",
                                status_code=response.status_code, body=response.text)
        return response.json()

    def close(self) -> None:
        self._client.close()


def provision_stream(provider: str, title: str, description: Optional[str] = None,
                     passthrough: Optional[str] = None,
                     mux_client: Optional[MuxClient] = None,
                     livepush_client: Optional[LivepushClient] = None) -> Dict[str, Any]:
    """Create the stream on the provider and return the columns to store for it."""
    if provider == "mux":
        client = mux_client or MuxClient()
        try:
            data = client.create_live_stream(passthrough=passthrough)
        finally:
            if mux_client is None:
                client.close()
        return {
            "provider_stream_id": data.get("id"),
            "stream_key": data.get("stream_key"),
            "rtmp_url": MUX_RTMP_URL,
            "hls_playback_url": mux_hls_url(pick_playback_id(data.get("playback_ids", []))),
        }
    if provider == "livepush":
        client = livepush_client or LivepushClient()
        try:
            data = client.create_stream(title, description)
        finally:
            if livepush_client is None:
                client.close()
        return {
            "provider_stream_id": data.get("id"),
            "stream_key": data.get("stream_key"),
            "rtmp_url": data.get("rtmp_url"),
            "hls_playback_url": data.get("hls_url") or data.get("playback_url"),
        }
    raise ValueError(f"Unknown stream provider: {provider}")
