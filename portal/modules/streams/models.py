# Supabase table: artist_live_streams
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- artist_id: uuid (foreign key to artists.id, not null)
- user_id: uuid (foreign key to auth.users.id, not null) - the artist's owning user
- title: text (not null)
- description: text (nullable)
- provider: text (not null) - values: mux, livepush
- provider_stream_id: text (nullable) - Mux live stream id or Livepush stream id
- streaming_mode: text (not null, default: 'subamerica_managed') - values: subamerica_managed, own_account
- status: text (not null, default: 'waiting') - values: scheduled, waiting, ready, live, ended, cancelled
- scheduled_start: timestamp (nullable)
- started_at: timestamp (nullable)
- ended_at: timestamp (nullable) - only ever set together with status 'ended'
- duration_minutes: integer (nullable) - written once, on the live -> ended transition
- viewer_count: integer (default: 0)
- peak_viewers: integer (default: 0)
- rtmp_url: text (nullable)
- stream_key: text (nullable)
- hls_playback_url: text (nullable)
- vod_url: text (nullable) - recording on the CDN (or Mux HLS for Mux assets)
- vod_public_id: text (nullable)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

Supabase table: artists (read, owned by the profile module of the front-end)
- id, user_id, subscription_tier, streaming_minutes_used, streaming_minutes_included

RPC: deduct_streaming_minutes(p_artist_id uuid, p_minutes_used integer)
- increments artists.streaming_minutes_used
"""
