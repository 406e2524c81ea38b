"""Role-slot matching.

Strategies are plain callables keyed by mode. Rating-based matchers are supplied by
the caller; the casual and exact-fit fills ship here.
"""

from rankcore.matching.engine import (
    DEFAULT_STRATEGIES,
    MATCH_MODE_ALIASES,
    extract_viewer_assignment,
    matcher_key,
    resolve_strategy,
    run_matching,
)
from rankcore.matching.strategies import (
    MatchingStrategy,
    build_exact_fit_assignments,
    casual_strategy,
    exact_fit_strategy,
    normalize_roles,
)

__all__ = [
    "DEFAULT_STRATEGIES",
    "MATCH_MODE_ALIASES",
    "MatchingStrategy",
    "build_exact_fit_assignments",
    "casual_strategy",
    "exact_fit_strategy",
    "extract_viewer_assignment",
    "matcher_key",
    "normalize_roles",
    "resolve_strategy",
    "run_matching",
]
