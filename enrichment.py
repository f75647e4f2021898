# app/enrichment.py
"""
AI tags for creator profiles and AI ranking of opportunities.

Advisory only: results never feed the access gate, and every failure
(no key, HTTP error, prose instead of JSON) degrades to an empty or
best-effort list instead of raising.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional, Sequence

from entities import Creator, Opportunity
from errors import EnrichmentError

logger = logging.getLogger(__name__)

MAX_TAGS = 5

TAGS_SYSTEM_PROMPT = (
    "You are an AI assistant that analyzes creator profiles and generates relevant tags. "
    "Based on the bio and category, generate 3-5 relevant tags that describe the person's "
    "skills, interests, or specializations. Return only a JSON array of strings, no "
    "additional text."
)

MATCH_SYSTEM_PROMPT = (
    "You are an AI that matches creators to opportunities. Analyze the creator profile "
    "and available opportunities, then return a JSON array of opportunity IDs that best "
    "match the creator's skills and interests, sorted by relevance."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")
_ARRAY_RE = re.compile(r"\[[^\[\]]*\]", re.S)


def _clean(raw: str) -> str:
    content = _FENCE_RE.sub("", (raw or "").strip()).strip()
    return re.sub(r",\s*([}\]])", r"\1", content)


def parse_json_array(raw: str) -> Optional[List[Any]]:
    """Best-effort extraction of the first JSON array in a model response."""
    content = _clean(raw)
    try:
        parsed = json.loads(content)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in ("tags", "ids", "matches", "opportunities"):
            if isinstance(parsed.get(key), list):
                return parsed[key]
        return None
    m = _ARRAY_RE.search(content)
    if m:
        try:
            parsed = json.loads(m.group(0))
        except ValueError:
            return None
        if isinstance(parsed, list):
            return parsed
    return None


def _tags_from_prose(content: str) -> List[str]:
    # "design, illustration, branding" style answers
    if "," not in content or "\n\n" in content:
        return []
    parts = [p.strip().strip("'\"").strip() for p in content.split(",")]
    if any(not p or len(p) > 40 or len(p.split()) > 4 for p in parts):
        return []
    return parts[:MAX_TAGS]


def _normalize_tags(values: Sequence[Any]) -> List[str]:
    out: List[str] = []
    for v in values:
        if not isinstance(v, (str, int, float)) or isinstance(v, bool):
            continue
        tag = str(v).strip().strip("'\"").strip()
        if tag and tag.lower() not in (t.lower() for t in out):
            out.append(tag)
    return out[:MAX_TAGS]


class MatchEnrichmentClient:
    def __init__(self, complete=None):
        self._complete = complete

    @property
    def enabled(self) -> bool:
        return self._complete is not None

    def _ask(self, prompt: str, system: str, max_tokens: int, temperature: float) -> str:
        if self._complete is None:
            raise EnrichmentError("enrichment endpoint not configured")
        try:
            return self._complete(prompt, system=system, max_tokens=max_tokens,
                                  temperature=temperature)
        except Exception as e:
            raise EnrichmentError(str(e)) from e

    def suggest_tags(self, bio: str, category: str) -> List[str]:
        try:
            content = self._ask(
                f"Category: {category}\nBio: {bio}\n\n"
                "Generate relevant tags for this creator profile.",
                TAGS_SYSTEM_PROMPT, max_tokens=100, temperature=0.7,
            )
        except EnrichmentError as e:
            logger.info("AI tagging skipped: %s", e)
            return []
        parsed = parse_json_array(content)
        if parsed is not None:
            return _normalize_tags(parsed)
        tags = _tags_from_prose(_clean(content))
        if not tags:
            logger.info("AI tagging returned unusable content: %.80s", content)
        return tags

    def rank_opportunities(self, profile: Creator,
                           opportunities: Sequence[Opportunity]) -> List[Opportunity]:
        if not opportunities:
            return []
        listing = "\n".join(
            f"ID: {o.id}, Title: {o.title}, Category: {o.category}, Tags: {', '.join(o.tags)}"
            for o in opportunities
        )
        prompt = (
            "Creator Profile:\n"
            f"Category: {profile.category}\n"
            f"Bio: {profile.bio}\n"
            f"Skills: {', '.join(profile.skills)}\n"
            f"AI Tags: {', '.join(profile.ai_tags)}\n\n"
            f"Available Opportunities:\n{listing}\n\n"
            "Return only a JSON array of opportunity IDs that match this creator, "
            "ordered by relevance."
        )
        try:
            content = self._ask(prompt, MATCH_SYSTEM_PROMPT, max_tokens=200, temperature=0.3)
        except EnrichmentError as e:
            logger.info("Opportunity matching skipped: %s", e)
            return []
        ids = parse_json_array(content)
        if ids is None:
            logger.info("Opportunity matching returned unusable content: %.80s", content)
            return []

        by_id = {str(o.id): o for o in opportunities}
        ranked: List[Opportunity] = []
        for raw_id in ids:
            opp = by_id.pop(str(raw_id).strip(), None)
            if opp is not None:
                ranked.append(opp)
        return ranked
