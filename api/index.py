"""
Vercel Serverless entry point for the OMS backend.

Vercel's Python runtime serves any ASGI ``app`` exported from api/*.py.
All routes, middleware and error handling live in ``oms.api.server``.

Environment variables:
- OMS_ENV: production disables the local fallback store
- DATABASE_URL: PostgreSQL connection string (Supabase/Neon)
- UPSTASH_REDIS_URL or KV_URL: Redis cache (optional)
- BLOB_READ_WRITE_TOKEN: Vercel Blob storage (optional)
"""
import sys
from pathlib import Path

# Add repo root to Python path so the `oms` package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from oms.api.server import app  # noqa: E402

__all__ = ["app"]
