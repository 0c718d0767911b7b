"""
OMS Redis Caching Policy: defines what gets cached, TTLs, and invalidation rules.

This module documents the caching strategy. It is imported by cache.py and
service.py for TTL constants and key prefixes.

Architecture:
  SQL database   → source of truth (orders, rolls)
  orders.json    → local fallback outside production (never cached)
  Redis          → read-through cache (derived views only, TTL-based expiry)
"""

# ────────────────────────────────────────────────────────────────────────────
# Cache Policy Table
# ────────────────────────────────────────────────────────────────────────────
#
# Data Type        | Key Pattern                      | TTL     | Invalidated by writes
# -----------------+----------------------------------+---------+----------------------
# Dashboard stats  | oms:dashboard:stats              | 5 min   | yes ("dashboard")
# Order list pages | oms:orders:list:{sha256[:16]}    | 60 sec  | yes ("orders")
# Daily analytics  | oms:analytics:orders:{N}d        | 3 min   | no (TTL only)
#
# ────────────────────────────────────────────────────────────────────────────
# Consistency Expectations
# ────────────────────────────────────────────────────────────────────────────
#
# - After a successful create/update/delete the dashboard and list entries
#   are invalidated, so the next read recomputes from the database.
# - Analytics may be up to 3 min stale after a write.
# - Single-order reads (GET /api/orders/{id}) and the overdue list are not
#   cached; they always read the store.
# - When Redis is unreachable every read computes directly from the store.
#
# ────────────────────────────────────────────────────────────────────────────
# Cache Invalidation Strategy
# ────────────────────────────────────────────────────────────────────────────
#
# Prefix invalidation via SCAN + DEL, dashboard first, then orders.
# Invalidation failures are logged and never fail the write that caused them.

STATS_TTL = 300       # 5 minutes
ORDERS_TTL = 60       # 1 minute
ANALYTICS_TTL = 180   # 3 minutes

DASHBOARD_PREFIX = "dashboard"
ORDERS_PREFIX = "orders"
ANALYTICS_PREFIX = "analytics"

STATS_KEY = f"{DASHBOARD_PREFIX}:stats"

# Invalidated, in this order, after every successful write
WRITE_INVALIDATION_PREFIXES = (DASHBOARD_PREFIX, ORDERS_PREFIX)


def analytics_key(days: int) -> str:
    return f"{ANALYTICS_PREFIX}:orders:{days}d"
