"""
Supabase client initialization.

This module contains *only* the database connection setup. Nothing connects at
import time: callers build a client from explicit credentials (or from the
environment) and pass it into the repositories that need it.

Environment variables used by `create_supabase_client_from_env`:
- SUPABASE_URL: Your Supabase project URL
- SUPABASE_KEY: Your Supabase API key (use a server-side key only on the backend)
"""

from __future__ import annotations

import os
from typing import Optional

# The dependency is `supabase` (supabase-py). If your editor can't resolve it,
# install it in your environment: `pip install supabase`.
from supabase import Client, create_client  # type: ignore[import-not-found]


def create_supabase_client(url: Optional[str], key: Optional[str]) -> Client:
    if not url:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_URL. "
            "Set SUPABASE_URL to your Supabase project URL."
        )

    if not key:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_KEY. "
            "Set SUPABASE_KEY to your Supabase API key."
        )

    return create_client(url, key)


def create_supabase_client_from_env() -> Client:
    return create_supabase_client(os.getenv("SUPABASE_URL"), os.getenv("SUPABASE_KEY"))


def raise_for_error(response: object, action: str) -> None:
    """Surface a PostgREST error as RuntimeError, the way every repository does."""

    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")


def response_rows(response: object) -> list:
    return getattr(response, "data", None) or []


__all__ = [
    "create_supabase_client",
    "create_supabase_client_from_env",
    "raise_for_error",
    "response_rows",
]
