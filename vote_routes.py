# app/vote_routes.py
"""
Wallet, faucet and vote endpoints.
Pattern: validate -> start flow -> return the operation handle; clients poll
/api/operations/{id} (or pass wait=true) until a terminal state.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from cooldown import format_time_until_claim
from entities import normalize_address
from errors import TalentLinkError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["votes"])


def services(request: Request):
    return request.app.state.services


def http_error(e: TalentLinkError) -> HTTPException:
    detail = {"reason": e.reason.value if e.reason else None, "message": e.user_message}
    tx = getattr(e, "tx_hash", None)
    if tx:
        detail["tx_hash"] = tx
    return HTTPException(e.status_code, detail)


class WalletRequest(BaseModel):
    address: str


class ClaimRequest(BaseModel):
    address: str
    wait: bool = False


class VoteRequest(BaseModel):
    curator_address: str
    creator_id: str
    amount: int = Field(..., description="Whole tokens, 1-10")
    wait: bool = False


@router.post("/wallet/connect")
def connect_wallet(body: WalletRequest, request: Request):
    svc = services(request)
    try:
        wallet = svc.wallets.connect(body.address)
    except TalentLinkError as e:
        raise http_error(e)
    svc.reader.watch(wallet.address)
    return {"ok": True, "address": wallet.address.lower()}


@router.post("/wallet/disconnect")
def disconnect_wallet(body: WalletRequest, request: Request):
    svc = services(request)
    try:
        removed = svc.wallets.disconnect(body.address)
    except TalentLinkError as e:
        raise http_error(e)
    svc.reader.unwatch(body.address)
    return {"ok": removed}


@router.get("/accounts/{address}")
async def account_status(address: str, request: Request):
    svc = services(request)
    try:
        addr = normalize_address(address)
    except TalentLinkError as e:
        raise http_error(e)
    s = svc.settings
    balance = await svc.reader.get_balance(addr, max_age=s.balance_poll_interval)
    elig = await svc.reader.get_claim_eligibility(addr, max_age=s.countdown_poll_interval)
    remaining = elig.value.cooldown_remaining if elig.value else None
    unit = 10 ** s.token_decimals
    return {
        "address": addr,
        "connected": svc.wallets.is_connected(addr),
        "balance": balance.value,
        "balance_tokens": (balance.value / unit) if balance.value is not None else None,
        "can_claim": elig.value.can_claim if elig.value else None,
        "cooldown_remaining": remaining,
        "time_until_claim": format_time_until_claim(remaining or 0),
        "stale": balance.stale or elig.stale,
    }


async def _respond(handle, wait: bool, svc):
    if wait:
        await handle.wait(timeout=svc.settings.soft_timeout)
    return handle.to_dict(svc.settings.soft_timeout)


@router.post("/faucet/claim")
async def claim_tokens(body: ClaimRequest, request: Request):
    svc = services(request)
    try:
        handle = await svc.engine.start_claim(body.address)
    except TalentLinkError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("Claim failed")
        raise HTTPException(500, str(e))
    return await _respond(handle, body.wait, svc)


@router.post("/votes")
async def cast_vote(body: VoteRequest, request: Request):
    svc = services(request)
    try:
        handle = await svc.engine.start_vote(body.curator_address, body.creator_id, body.amount)
    except TalentLinkError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("Vote failed")
        raise HTTPException(500, str(e))
    return await _respond(handle, body.wait, svc)


@router.get("/operations/{handle_id}")
def operation_status(handle_id: str, request: Request):
    svc = services(request)
    handle = svc.engine.get_handle(handle_id)
    if handle is None:
        raise HTTPException(404, "Operation not found")
    return handle.to_dict(svc.settings.soft_timeout)


@router.post("/operations/{handle_id}/cancel")
async def cancel_operation(handle_id: str, request: Request):
    svc = services(request)
    handle = svc.engine.get_handle(handle_id)
    if handle is None:
        raise HTTPException(404, "Operation not found")
    if not handle.cancel():
        raise HTTPException(409, "Operation can no longer be cancelled")
    return {"ok": True, "id": handle.id}
