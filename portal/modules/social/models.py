# Supabase tables: social_scheduled_posts, social_auth, subclip_library, social_posts
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
social_scheduled_posts:
- id: uuid (primary key)
- artist_id: uuid (foreign key to artists.id, not null)
- subclip_id: uuid (foreign key to subclip_library.id, not null)
- caption: text (not null)
- hashtags: text[] (default: [])
- platforms: text[] (not null) - values: tiktok, youtube, instagram
- scheduled_at: timestamp (not null)
- status: text (not null, default: 'scheduled') - values: scheduled, publishing, published, partial, failed, cancelled
- external_ids: jsonb (default: {}) - platform -> id on that platform
- publish_results: jsonb (default: {}) - platform -> bool
- error_messages: jsonb (default: {}) - platform -> error text, or {"error": text} when the whole post failed
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

No retry column: failed and partial posts stay as they are.

social_auth:
- id: uuid (primary key)
- artist_id: uuid (foreign key to artists.id, not null)
- platform: text (not null) - values: tiktok, youtube, instagram
- platform_user_id: text (nullable) - Instagram business account id
- access_token: text (not null)
- refresh_token: text (nullable)
- expires_at: timestamp (nullable)
- is_active: boolean (default: true) - cleared when a refresh fails

subclip_library:
- id: uuid (primary key)
- artist_id: uuid (foreign key to artists.id, not null)
- clip_url: text (not null) - public URL inside the social_clips storage bucket

social_posts:
- id: uuid (primary key)
- artist_id, subclip_id, scheduled_post_id (nullable)
- platform: text
- external_id: text
- caption: text, hashtags: text[]
- status: text ('published')
- published_at: timestamp
"""
