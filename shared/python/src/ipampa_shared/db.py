"""
db.py — Supabase and DuckDB client singletons.

Usage:
    from ipampa_shared.db import get_supabase_client, get_duckdb_connection

    supabase = get_supabase_client()                    # anon key (API reads)
    supabase = get_supabase_client(service_role=True)   # service key (refresh writes)
    duck = get_duckdb_connection()
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

import duckdb
import structlog
from supabase import Client, create_client

from ipampa_shared.config import settings

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Supabase — one client per role per process (thread-safe via lock)
# ---------------------------------------------------------------------------
_supabase_lock = threading.Lock()
_supabase_anon: Optional[Client] = None
_supabase_service: Optional[Client] = None


def get_supabase_client(*, service_role: bool = False) -> Client:
    """
    Return a singleton Supabase client.

    Args:
        service_role: If True, uses the service role key (needed for the
                      delete/insert cycle of a refresh).
                      If False (default), uses the anon key (RLS applies).

    Returns:
        supabase.Client instance.
    """
    global _supabase_anon, _supabase_service

    with _supabase_lock:
        if service_role:
            if _supabase_service is None:
                if not settings.supabase_service_key:
                    raise RuntimeError(
                        "SUPABASE_SERVICE_KEY is not set. "
                        "Set it in .env before refreshing against Supabase."
                    )
                _supabase_service = create_client(
                    settings.supabase_url,
                    settings.supabase_service_key,
                )
                logger.info("supabase_client_created", role="service_role")
            return _supabase_service

        if _supabase_anon is None:
            if not settings.supabase_anon_key:
                raise RuntimeError("SUPABASE_ANON_KEY is not set. Set it in .env.")
            _supabase_anon = create_client(
                settings.supabase_url,
                settings.supabase_anon_key,
            )
            logger.info("supabase_client_created", role="anon")
        return _supabase_anon


def reset_supabase_clients() -> None:
    """Reset singleton clients (useful in tests)."""
    global _supabase_anon, _supabase_service
    with _supabase_lock:
        _supabase_anon = None
        _supabase_service = None


# ---------------------------------------------------------------------------
# DuckDB — single connection per process
# ---------------------------------------------------------------------------
_duckdb_lock = threading.Lock()
_duckdb_conn: Optional[duckdb.DuckDBPyConnection] = None


def get_duckdb_connection() -> duckdb.DuckDBPyConnection:
    """
    Return a singleton DuckDB connection to the local mirror database.

    The file path is read from settings.duckdb_path (":memory:" keeps the
    mirror in-process). Parent directories are created when missing.
    """
    global _duckdb_conn

    with _duckdb_lock:
        if _duckdb_conn is None:
            db_path = settings.duckdb_path
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

            _duckdb_conn = duckdb.connect(db_path)
            logger.info("duckdb_connected", path=db_path)

        return _duckdb_conn


def reset_duckdb_connection() -> None:
    """Close and forget the DuckDB singleton (useful in tests)."""
    global _duckdb_conn
    with _duckdb_lock:
        if _duckdb_conn is not None:
            _duckdb_conn.close()
            _duckdb_conn = None
