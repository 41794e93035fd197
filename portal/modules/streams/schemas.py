from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


class StreamStatus(str, Enum):
    SCHEDULED = "scheduled"
    WAITING = "waiting"
    READY = "ready"
    LIVE = "live"
    ENDED = "ended"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {StreamStatus.ENDED.value, StreamStatus.CANCELLED.value}
CANCELLABLE_STATUSES = {StreamStatus.SCHEDULED.value, StreamStatus.WAITING.value}


class StreamProvider(str, Enum):
    MUX = "mux"
    LIVEPUSH = "livepush"


class StreamingMode(str, Enum):
    SUBAMERICA_MANAGED = "subamerica_managed"
    OWN_ACCOUNT = "own_account"


class LiveStreamCreate(BaseModel):
    artist_id: str
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    provider: StreamProvider = StreamProvider.MUX
    streaming_mode: StreamingMode = StreamingMode.SUBAMERICA_MANAGED
    scheduled_start: Optional[datetime] = None


class LiveStreamResponse(BaseModel):
    id: str
    artist_id: str
    user_id: str
    title: str
    description: Optional[str] = None
    provider: str
    provider_stream_id: Optional[str] = None
    streaming_mode: str = StreamingMode.SUBAMERICA_MANAGED.value
    status: str
    scheduled_start: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    viewer_count: int = 0
    peak_viewers: int = 0
    rtmp_url: Optional[str] = None
    stream_key: Optional[str] = None
    hls_playback_url: Optional[str] = None
    vod_url: Optional[str] = None
    vod_public_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_managed(self) -> bool:
        return self.streaming_mode == StreamingMode.SUBAMERICA_MANAGED.value


class StreamStatusChange(BaseModel):
    stream_id: str
    old_status: str
    new_status: str
    provider: str


class StreamPollResult(BaseModel):
    checked: int = 0
    updated: int = 0
    updates: List[StreamStatusChange] = []


class StreamSyncResponse(BaseModel):
    stream_id: str
    synced: bool
    old_status: str
    new_status: str
    provider_status: Optional[str] = None
    hls_playback_url: Optional[str] = None


class StreamEndResponse(BaseModel):
    stream_id: str
    status: str
    duration_minutes: Optional[int] = None
    message: str = "Stream ended successfully"


class LivepushWebhookEvent(BaseModel):
    type: str
    stream_id: Optional[str] = None
    recording_url: Optional[str] = None
    current_viewers: Optional[int] = None
    peak_viewers: Optional[int] = None

    model_config = ConfigDict(extra="allow")


class MuxWebhookEvent(BaseModel):
    type: str
    data: Dict[str, Any] = {}

    model_config = ConfigDict(extra="allow")


class WebhookAck(BaseModel):
    received: bool = True
    handled: bool = True
    stream_id: Optional[str] = None
