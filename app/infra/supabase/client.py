"""Supabase client for the read-only campaign catalog"""
import logging
import os
from typing import Optional

from supabase import Client, create_client  # type: ignore

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None


class SupabaseNotConfigured(RuntimeError):
    pass


def get_supabase_client() -> Client:
    """Lazily built on first use, so the service boots without catalog credentials"""
    global _supabase_client

    if _supabase_client is None:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not key:
            raise SupabaseNotConfigured("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        logger.info(f"Connecting campaign catalog to {url}")
        _supabase_client = create_client(url, key)

    return _supabase_client
