"""
cinelog.constants — Shared Constants
=====================================

Single source of truth for values shared by the feed, the write paths and
the API layer.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Identity placeholder for actors that cannot be resolved
# ---------------------------------------------------------------------------
UNKNOWN_USER_HANDLE = "unknown user"

# ---------------------------------------------------------------------------
# Log validation
# ---------------------------------------------------------------------------
MIN_RATING = 0.5
MAX_RATING = 10.0

# ---------------------------------------------------------------------------
# Genre counters wired to achievement predicates (catalog genre ids)
# ---------------------------------------------------------------------------
GENRE_HORROR = 27
GENRE_DOCUMENTARY = 99
WIRED_GENRE_IDS: frozenset[int] = frozenset({GENRE_HORROR, GENRE_DOCUMENTARY})

# ---------------------------------------------------------------------------
# Read-path limits for profile / content activity endpoints
# ---------------------------------------------------------------------------
DEFAULT_ACTIVITY_PAGE = 10
MAX_ACTIVITY_PAGE = 50
