"""Map constants — key format, freshness, depth limits.

All magic numbers of the coordinate scheme and the tile cache, centralized here.
"""

# -- Coordinates ---------------------------------------------------------

DIRECTION_COUNT: int = 6
"""Number of children a tile can expand into."""

KEY_SEPARATOR: str = "-"
"""Separator between user id, group id and path digits in a coordinate key."""

TEST_ID_PREFIX: str = "tile"
"""Prefix of the stable UI-test identifier of a tile."""

# -- Cache ---------------------------------------------------------------

DEFAULT_MAX_AGE_SECONDS: float = 300.0
"""A READY entry younger than this is not refetched."""

DEFAULT_MAX_DEPTH: int = 3
"""Deepest nesting level the loader fetches below a visible root."""

CHANGE_ID_PREFIX: str = "opt"
"""Prefix of optimistic change ids."""

# -- Sync ----------------------------------------------------------------

DEFAULT_SYNC_INTERVAL_SECONDS: float = 30.0
"""Pause between two background refresh passes (0 disables them)."""
