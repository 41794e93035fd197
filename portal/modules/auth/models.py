# Supabase Auth
# This service never registers or logs users in: the portal front-end does that
# directly against Supabase Auth. The backend only validates the bearer JWT the
# browser forwards and resolves it to an auth user.

"""
Supabase Auth provides:
- auth.get_user(jwt) - Resolve the user behind an access token

Artist ownership is not stored in auth metadata. It lives in the
public.artists table (artists.user_id -> auth.users.id) and is checked in
portal.core.dependencies.
"""
