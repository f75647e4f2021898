# app/creator_views.py
"""
Read endpoints over the vote ledger (creators, audit trail, leaderboard,
gated opportunities) plus the minimal profile-creation path that attaches
AI tags.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from access_gate import FILTERS, creator_can_access, filter_opportunities
from errors import TalentLinkError
from vote_routes import http_error, services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["creators"])


class CreateCreatorRequest(BaseModel):
    wallet_address: str
    name: str = Field(..., min_length=1)
    bio: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    skills: List[str] = []
    portfolio_links: List[str] = []


class CreateOpportunityRequest(BaseModel):
    title: str = Field(..., min_length=1)
    required_tokens: int = Field(..., ge=0)
    description: str = ""
    company: str = ""
    category: str = ""
    tags: List[str] = []
    application_url: str = ""


@router.post("/creators")
def create_creator(body: CreateCreatorRequest, request: Request):
    svc = services(request)
    # tags are best-effort; an empty list never blocks the profile
    ai_tags = svc.enrichment.suggest_tags(body.bio, body.category)
    try:
        creator = svc.store.create_creator(
            body.wallet_address, body.name, body.bio, body.category,
            skills=body.skills, portfolio_links=body.portfolio_links, ai_tags=ai_tags,
        )
    except TalentLinkError as e:
        raise http_error(e)
    return creator.to_dict()


@router.get("/creators/{creator_id}")
def get_creator(creator_id: str, request: Request):
    svc = services(request)
    try:
        creator = svc.store.get_creator(creator_id)
    except TalentLinkError as e:
        raise http_error(e)
    if creator is None:
        raise HTTPException(404, "Creator not found")
    return creator.to_dict()


@router.post("/creators/{creator_id}/nft-minted")
def mark_nft_minted(creator_id: str, request: Request):
    svc = services(request)
    try:
        updated = svc.store.mark_nft_minted(creator_id)
    except TalentLinkError as e:
        raise http_error(e)
    if not updated:
        raise HTTPException(404, "Creator not found")
    return {"ok": True}


@router.get("/creators/{creator_id}/votes")
def creator_votes(creator_id: str, request: Request):
    svc = services(request)
    try:
        votes = svc.store.list_votes(creator_id)
    except TalentLinkError as e:
        raise http_error(e)
    return [v.to_dict() for v in votes]


@router.get("/leaderboard")
def leaderboard(request: Request, limit: int = Query(50, ge=1, le=200)):
    svc = services(request)
    try:
        creators = svc.store.leaderboard(limit)
    except TalentLinkError as e:
        raise http_error(e)
    return [
        {"rank": i + 1, **c.to_dict()}
        for i, c in enumerate(creators)
    ]


@router.post("/opportunities")
def create_opportunity(body: CreateOpportunityRequest, request: Request):
    svc = services(request)
    try:
        opp = svc.store.create_opportunity(
            body.title, body.required_tokens, description=body.description,
            company=body.company, category=body.category, tags=body.tags,
            application_url=body.application_url,
        )
    except TalentLinkError as e:
        raise http_error(e)
    return opp.to_dict()


@router.get("/opportunities")
def list_opportunities(
    request: Request,
    address: Optional[str] = None,
    filter: str = Query("all"),
):
    if filter not in FILTERS:
        raise HTTPException(400, f"filter must be one of {', '.join(FILTERS)}")
    svc = services(request)
    try:
        opportunities = svc.store.list_opportunities()
        creator = svc.store.get_creator_by_wallet(address) if address else None
    except TalentLinkError as e:
        raise http_error(e)

    matched = []
    if creator is not None and filter == "matched":
        matched = svc.enrichment.rank_opportunities(creator, opportunities)

    selected = filter_opportunities(opportunities, creator, filter, matched)
    return [
        {**o.to_dict(), "can_access": creator_can_access(creator, o)}
        for o in selected
    ]


@router.get("/opportunities/{opportunity_id}/access")
def opportunity_access(opportunity_id: str, request: Request, address: str = Query(...)):
    svc = services(request)
    try:
        opp = svc.store.get_opportunity(opportunity_id)
        creator = svc.store.get_creator_by_wallet(address)
    except TalentLinkError as e:
        raise http_error(e)
    if opp is None:
        raise HTTPException(404, "Opportunity not found")
    return {
        "opportunity_id": opp.id,
        "required_tokens": opp.required_tokens,
        "votes": creator.total_votes if creator else 0,
        "has_profile": creator is not None,
        "can_access": creator_can_access(creator, opp),
    }


@router.get("/reconciliation/audit")
def audit(request: Request):
    svc = services(request)
    try:
        drifts = svc.store.audit_totals()
    except TalentLinkError as e:
        raise http_error(e)
    return {
        "drifts": [
            {"creator_id": d.creator_id, "cached_total": d.cached_total,
             "audit_total": d.audit_total}
            for d in drifts
        ],
        "unreconciled": [
            {"creator_id": u.creator_id, "transaction_hash": u.transaction_hash,
             "amount": u.amount}
            for u in svc.engine.unreconciled
        ],
    }


@router.post("/reconciliation/repair")
async def repair(request: Request):
    svc = services(request)
    try:
        report = await svc.sweep.run_once(repair=True)
    except TalentLinkError as e:
        raise http_error(e)
    return report.to_dict()
