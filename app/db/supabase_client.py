"""Service-role Supabase client shared by the per-kind job stores."""

from typing import Optional

from supabase import Client, create_client

from app.config import Settings, settings

_client: Optional[Client] = None


def get_supabase(cfg: Optional[Settings] = None) -> Client:
    """Get or create the Supabase client using the service role key."""
    global _client
    if _client is None:
        cfg = cfg or settings
        if not cfg.supabase_url or not cfg.supabase_service_role_key:
            raise RuntimeError(
                "JOB_STORE_BACKEND=supabase needs SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY"
            )
        _client = create_client(cfg.supabase_url, cfg.supabase_service_role_key)
    return _client


def reset_supabase() -> None:
    """Drop the cached client (used on shutdown)."""
    global _client
    _client = None
