# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# Sets environment variables before portal.config.settings is imported and
# provides an in-memory stand-in for the Supabase client so services run
# their real query chains without a database.
# =============================================================================

import os

os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ["ENABLE_BACKGROUND_WORKERS"] = "false"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["MUX_TOKEN_ID"] = ""
os.environ["MUX_TOKEN_SECRET"] = ""
os.environ["MUX_WEBHOOK_SECRET"] = ""

import copy
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest


# =============================================================================
# Fake Supabase
# =============================================================================

def _comparable(value):
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return value
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.action = "select"
        self.payload = None
        self.filters = []
        self.order_by = None
        self.order_desc = False
        self.limit_n = None
        self.offset_n = 0
        self.single = False

    def select(self, *_columns):
        self.action = "select"
        return self

    def insert(self, payload):
        self.action = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.action = "update"
        self.payload = payload
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and _comparable(row[column]) < _comparable(value))
        return self

    def lte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and _comparable(row[column]) <= _comparable(value))
        return self

    def order(self, column, desc=False):
        self.order_by = column
        self.order_desc = desc
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def offset(self, n):
        self.offset_n = n
        return self

    def maybe_single(self):
        self.single = True
        return self

    def _matching(self):
        return [row for row in self.db.tables.setdefault(self.table_name, [])
                if all(f(row) for f in self.filters)]

    def execute(self):
        self.db.calls.append((self.table_name, self.action, copy.deepcopy(self.payload)))
        rows = self.db.tables.setdefault(self.table_name, [])

        if self.action == "insert":
            row = {"id": str(uuid.uuid4()), "created_at": datetime.now(timezone.utc).isoformat(), **self.payload}
            rows.append(row)
            return SimpleNamespace(data=[copy.deepcopy(row)])

        if self.action == "update":
            matched = self._matching()
            for row in matched:
                row.update(self.payload)
            return SimpleNamespace(data=[copy.deepcopy(row) for row in matched])

        matched = self._matching()
        if self.order_by:
            matched.sort(key=lambda row: _comparable(row.get(self.order_by)) or "", reverse=self.order_desc)
        matched = matched[self.offset_n:]
        if self.limit_n is not None:
            matched = matched[:self.limit_n]
        if self.single:
            if not matched:
                return None
            return SimpleNamespace(data=copy.deepcopy(matched[0]))
        return SimpleNamespace(data=[copy.deepcopy(row) for row in matched])


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.calls = []
        self.rpc_calls = []
        self.storage = MagicMock()
        self.auth = MagicMock()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name, params):
        self.rpc_calls.append((name, params))
        return SimpleNamespace(execute=lambda: SimpleNamespace(data=None))

    def rows(self, table: str):
        return self.tables.setdefault(table, [])

    def add(self, table: str, row: dict) -> dict:
        self.rows(table).append(row)
        return row


# =============================================================================
# Fixtures
# =============================================================================

USER_ID = "user-1"
ARTIST_ID = "artist-1"


def iso(dt: datetime) -> str:
    return dt.isoformat()


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def artist_row(fake_supabase):
    return fake_supabase.add("artists", {
        "id": ARTIST_ID,
        "user_id": USER_ID,
        "subscription_tier": "trident",
        "streaming_minutes_used": 10,
        "streaming_minutes_included": 600,
    })


@pytest.fixture
def make_stream(fake_supabase):
    def _make(**overrides):
        row = {
            "id": str(uuid.uuid4()),
            "artist_id": ARTIST_ID,
            "user_id": USER_ID,
            "title": "Friday set",
            "provider": "mux",
            "provider_stream_id": f"mux-{uuid.uuid4().hex[:8]}",
            "streaming_mode": "subamerica_managed",
            "status": "waiting",
            "viewer_count": 0,
            "peak_viewers": 0,
            "created_at": iso(datetime.now(timezone.utc)),
        }
        row.update(overrides)
        return fake_supabase.add("artist_live_streams", row)
    return _make


@pytest.fixture
def subclip_row(fake_supabase):
    return fake_supabase.add("subclip_library", {
        "id": "clip-1",
        "artist_id": ARTIST_ID,
        "clip_url": "https://test-project.supabase.co/storage/v1/object/public/social_clips/artist-1/clip-1.mp4",
    })


@pytest.fixture
def make_auth(fake_supabase):
    def _make(platform: str, **overrides):
        row = {
            "id": f"auth-{platform}",
            "artist_id": ARTIST_ID,
            "platform": platform,
            "platform_user_id": "ig-user-1" if platform == "instagram" else None,
            "access_token": f"{platform}-token",
            "refresh_token": f"{platform}-refresh",
            "expires_at": iso(datetime.now(timezone.utc) + timedelta(days=10)),
            "is_active": True,
        }
        row.update(overrides)
        return fake_supabase.add("social_auth", row)
    return _make


@pytest.fixture
def make_post(fake_supabase):
    def _make(**overrides):
        row = {
            "id": str(uuid.uuid4()),
            "artist_id": ARTIST_ID,
            "subclip_id": "clip-1",
            "caption": "New single out now",
            "hashtags": ["newmusic"],
            "platforms": ["tiktok"],
            "scheduled_at": iso(datetime.now(timezone.utc) - timedelta(minutes=1)),
            "status": "scheduled",
            "external_ids": {},
            "publish_results": {},
            "error_messages": {},
        }
        row.update(overrides)
        return fake_supabase.add("social_scheduled_posts", row)
    return _make


@pytest.fixture
def client(fake_supabase):
    """TestClient with Supabase and auth swapped for fakes."""
    from fastapi.testclient import TestClient
    from portal.main import app
    from portal.core.dependencies import get_current_user_id
    from portal.database.supabase_client import get_supabase, get_service_supabase

    app.dependency_overrides[get_supabase] = lambda: fake_supabase
    app.dependency_overrides[get_service_supabase] = lambda: fake_supabase
    app.dependency_overrides[get_current_user_id] = lambda: {"id": USER_ID, "email": "artist@example.com"}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def cron_headers():
    return {"Authorization": "Bearer test-cron-secret"}
