from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from rankcore.matching.strategies import (
    MatchingStrategy,
    build_exact_fit_assignments,
    casual_strategy,
    exact_fit_strategy,
)
from rankcore.models import Assignment, MatchError, MatchErrorType, MatchResult
from rankcore.status import normalize_owner_id

logger = logging.getLogger(__name__)


# Modes map onto strategy keys; several queue modes share one matcher.
# Rating keys (rank, rank_solo, rank_duo) have no default entry; callers register them.
MATCH_MODE_ALIASES: dict[str, str] = {
    "rank": "rank",
    "ranked": "rank",
    "rank_solo": "rank_solo",
    "solo": "rank_solo",
    "solo_rank": "rank_solo",
    "rank_duo": "rank_duo",
    "duo": "rank_duo",
    "casual": "casual",
    "casual_match": "casual",
    "casual_private": "casual",
    "exact_fit": "exact_fit",
}

DEFAULT_STRATEGIES: Mapping[str, MatchingStrategy] = {
    "casual": casual_strategy,
    "exact_fit": exact_fit_strategy,
}


def matcher_key(mode: str | None) -> str:
    text = (mode or "").strip().lower()
    return MATCH_MODE_ALIASES.get(text, text)


def resolve_strategy(
    mode: str | None,
    strategies: Mapping[str, MatchingStrategy] | None = None,
) -> MatchingStrategy | None:
    registry = DEFAULT_STRATEGIES if strategies is None else strategies
    return registry.get(matcher_key(mode)) or registry.get((mode or "").strip())


def run_matching(
    *,
    mode: str | None,
    roles: Iterable[Any],
    queue: Iterable[Any],
    strategies: Mapping[str, MatchingStrategy] | None = None,
    safe_fallback: bool = False,
) -> MatchResult:
    """Run the strategy registered for `mode`.

    When the strategy cannot fill every slot and `safe_fallback` is set, the exact-fit
    fill is tried as well; it only replaces the primary result when it is ready.
    """

    roles = list(roles or [])
    queue = list(queue or [])

    strategy = resolve_strategy(mode, strategies)
    if strategy is None:
        logger.debug("No matching strategy for mode=%r", mode)
        return MatchResult(ready=False, error=MatchError(type=MatchErrorType.unsupported_mode))

    result = strategy(roles=roles, queue=queue)
    if result.strategy is None:
        result = result.model_copy(update={"strategy": matcher_key(mode)})

    if not result.ready and safe_fallback:
        fallback = build_exact_fit_assignments(roles, queue)
        logger.debug(
            "Primary matcher not ready (mode=%r, error=%r); exact-fit fallback ready=%s",
            mode,
            result.error.type if result.error else None,
            fallback.ready,
        )
        if fallback.ready:
            return fallback.model_copy(update={"used_fallback": True})

    return result


def extract_viewer_assignment(
    assignments: Iterable[Assignment],
    *,
    viewer_id: str | None = None,
    hero_id: str | None = None,
) -> Assignment | None:
    """First assignment seating the viewer's owner id or hero id."""

    owner = normalize_owner_id(viewer_id)
    hero = normalize_owner_id(hero_id)
    if owner is None and hero is None:
        return None
    for assignment in assignments:
        for member in assignment.members:
            if owner is not None and member.owner_id == owner:
                return assignment
            if hero is not None and member.hero_id == hero:
                return assignment
    return None
