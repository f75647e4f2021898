"""
Token-gated access to opportunities.

The gate is evaluated against the vote total read at request time and is
never cached on its own, so a freshly reconciled vote changes the answer on
the next read.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from entities import Creator, Opportunity

FILTERS = ("all", "accessible", "locked", "matched")


def can_access(votes: int, required_tokens: int) -> bool:
    return votes >= required_tokens


def creator_can_access(creator: Optional[Creator], opportunity: Opportunity) -> bool:
    if creator is None:
        return False
    return can_access(creator.total_votes, opportunity.required_tokens)


def filter_opportunities(
    opportunities: Sequence[Opportunity],
    creator: Optional[Creator],
    mode: str = "all",
    matched: Iterable[Opportunity] = (),
) -> List[Opportunity]:
    """
    all:        everything
    accessible: what the creator has unlocked (everything while browsing
                without a profile)
    locked:     what the creator has not unlocked yet (nothing without a
                profile)
    matched:    the enrichment ranking, which has no say in access
    """
    if mode == "all":
        return list(opportunities)
    if mode == "accessible":
        return [o for o in opportunities
                if creator is None or can_access(creator.total_votes, o.required_tokens)]
    if mode == "locked":
        return [o for o in opportunities
                if creator is not None and not can_access(creator.total_votes, o.required_tokens)]
    if mode == "matched":
        return list(matched)
    raise ValueError(f"unknown filter {mode!r}")
