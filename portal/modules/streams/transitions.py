"""Pure status-transition rules for live streams.

Every path that changes a stream's status (poller, webhooks, sync, end)
builds its update payload here so the invariants hold everywhere:

- ended_at is only written together with status 'ended'
- duration_minutes is only written on the live -> ended transition
- ended and cancelled are terminal
"""
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from portal.modules.streams.schemas import LiveStreamResponse, StreamStatus, TERMINAL_STATUSES

# Provider-reported states, as Mux names them. Livepush webhook events are mapped onto these.
PROVIDER_ACTIVE = "active"
PROVIDER_IDLE = "idle"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_duration_minutes(started_at: Optional[datetime], ended_at: datetime) -> Optional[int]:
    """Whole minutes between start and end, rounded up. None when the start is unknown."""
    if started_at is None:
        return None
    seconds = (_as_aware(ended_at) - _as_aware(started_at)).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 60)


def live_update(stream: LiveStreamResponse, now: datetime, keep_started_at: bool = False) -> Dict[str, Any]:
    """Payload for moving a stream to live, or {} when the move is not allowed."""
    if stream.status == StreamStatus.LIVE.value or stream.status in TERMINAL_STATUSES:
        return {}
    started_at = stream.started_at if (keep_started_at and stream.started_at) else now
    return {
        "status": StreamStatus.LIVE.value,
        "started_at": _as_aware(started_at).isoformat(),
    }


def ended_update(stream: LiveStreamResponse, now: datetime) -> Dict[str, Any]:
    """Payload for the live -> ended transition, or {} when the stream is not live."""
    if stream.status != StreamStatus.LIVE.value:
        return {}
    update_data: Dict[str, Any] = {
        "status": StreamStatus.ENDED.value,
        "ended_at": now.isoformat(),
    }
    duration = compute_duration_minutes(stream.started_at, now)
    if duration is not None:
        update_data["duration_minutes"] = duration
    return update_data


def reconcile(stream: LiveStreamResponse, provider_status: Optional[str], now: Optional[datetime] = None,
              keep_started_at: bool = False) -> Dict[str, Any]:
    """Map a provider-reported state onto the stored status.

    active -> live (sets started_at), idle while live -> ended (sets ended_at
    and duration). Any other combination yields no change.
    """
    now = now or utcnow()
    if provider_status == PROVIDER_ACTIVE:
        return live_update(stream, now, keep_started_at=keep_started_at)
    if provider_status == PROVIDER_IDLE:
        return ended_update(stream, now)
    return {}


def manual_end_update(stream: LiveStreamResponse, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Payload for an artist ending the stream themselves.

    Live streams take the regular live -> ended transition. Streams that never
    went live are closed as ended without a duration.
    """
    now = now or utcnow()
    if stream.status in TERMINAL_STATUSES:
        return {}
    if stream.status == StreamStatus.LIVE.value:
        return ended_update(stream, now)
    return {"status": StreamStatus.ENDED.value, "ended_at": now.isoformat()}


def is_live_to_ended(old_status: str, update_data: Dict[str, Any]) -> bool:
    return old_status == StreamStatus.LIVE.value and update_data.get("status") == StreamStatus.ENDED.value
