# app/chain/reader.py
"""
Read-only ledger queries with a per-account cache.

Callers never see a ledger outage as an exception: they get the last known
value with stale=True. The cache is written by the poll loop here and by
apply_claim(), which only the reconciliation engine calls.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, Set, TypeVar

from config import Settings
from cooldown import ClaimEligibility, from_remaining
from entities import AccountSnapshot
from errors import NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Reading(Generic[T]):
    value: Optional[T]
    stale: bool
    read_at: float


@dataclass
class _Entry:
    balance: Optional[int] = None
    balance_at: float = 0.0
    balance_stale: bool = False
    remaining: Optional[int] = None
    eligibility_at: float = 0.0
    eligibility_stale: bool = False


class ChainReader:
    def __init__(self, ledger, settings: Settings, clock: Callable[[], float] = time.time):
        self.ledger = ledger
        self.settings = settings
        self.clock = clock
        self._cache: Dict[str, _Entry] = {}
        self._watched: Set[str] = set()

    def _entry(self, account: str) -> _Entry:
        return self._cache.setdefault(account.lower(), _Entry())

    async def _read(self, fn, *args):
        last: Optional[BaseException] = None
        for attempt in range(self.settings.read_retries + 1):
            try:
                return await asyncio.to_thread(fn, *args)
            except Exception as e:
                last = e
                if attempt < self.settings.read_retries:
                    await asyncio.sleep(self.settings.read_retry_delay * 2 ** attempt)
        raise NetworkError(str(last)) from last

    # ------------------------------------------------------------
    # Projections over the cache
    # ------------------------------------------------------------

    def _projected_remaining(self, e: _Entry, now: float) -> Optional[int]:
        if e.remaining is None:
            return None
        return max(0, e.remaining - int(now - e.eligibility_at))

    def snapshot(self, account: str) -> AccountSnapshot:
        e = self._entry(account)
        remaining = self._projected_remaining(e, self.clock())
        elig = from_remaining(remaining) if remaining is not None else None
        return AccountSnapshot(
            address=account.lower(),
            balance=e.balance,
            can_claim=elig.can_claim if elig else None,
            cooldown_remaining=elig.cooldown_remaining if elig else None,
            balance_read_at=e.balance_at,
            eligibility_read_at=e.eligibility_at,
            stale=e.balance_stale or e.eligibility_stale,
        )

    # ------------------------------------------------------------
    # Public reads
    # ------------------------------------------------------------

    async def get_balance(self, account: str, max_age: float = 0.0) -> Reading[int]:
        e = self._entry(account)
        now = self.clock()
        if e.balance is not None and not e.balance_stale \
                and max_age > 0 and now - e.balance_at < max_age:
            return Reading(e.balance, False, e.balance_at)
        try:
            e.balance = int(await self._read(self.ledger.balance_of, account))
            e.balance_at = self.clock()
            e.balance_stale = False
        except NetworkError as err:
            logger.warning("balanceOf(%s) unavailable, serving cache: %s", account, err)
            e.balance_stale = True
        return Reading(e.balance, e.balance_stale, e.balance_at)

    async def get_claim_eligibility(self, account: str,
                                    max_age: float = 0.0) -> Reading[ClaimEligibility]:
        e = self._entry(account)
        now = self.clock()
        if e.remaining is not None and not e.eligibility_stale \
                and max_age > 0 and now - e.eligibility_at < max_age:
            return Reading(from_remaining(self._projected_remaining(e, now)), False, e.eligibility_at)
        try:
            remaining = int(await self._read(self.ledger.get_time_until_next_claim, account))
            can = bool(await self._read(self.ledger.can_claim_from_faucet, account))
            if can != (remaining == 0):
                logger.warning(
                    "Ledger eligibility disagrees for %s: canClaim=%s remaining=%d; "
                    "trusting the countdown", account, can, remaining,
                )
            self._store_remaining(e, remaining)
        except NetworkError as err:
            logger.warning("eligibility(%s) unavailable, serving cache: %s", account, err)
            e.eligibility_stale = True
        remaining = self._projected_remaining(e, self.clock())
        value = from_remaining(remaining) if remaining is not None else None
        return Reading(value, e.eligibility_stale, e.eligibility_at)

    async def refresh_countdown(self, account: str):
        e = self._entry(account)
        try:
            self._store_remaining(e, int(await self._read(
                self.ledger.get_time_until_next_claim, account
            )))
        except NetworkError as err:
            logger.warning("countdown(%s) unavailable: %s", account, err)
            e.eligibility_stale = True

    def _store_remaining(self, e: _Entry, remaining: int):
        e.remaining = max(0, remaining)
        e.eligibility_at = self.clock()
        e.eligibility_stale = False

    # ------------------------------------------------------------
    # Cache maintenance
    # ------------------------------------------------------------

    def invalidate(self, account: str):
        e = self._entry(account)
        e.balance_at = 0.0
        e.eligibility_at = 0.0

    def apply_claim(self, account: str, now: Optional[float] = None):
        """Reflect a confirmed faucet claim before the next poll sees it."""
        e = self._entry(account)
        e.remaining = self.settings.claim_interval
        e.eligibility_at = self.clock() if now is None else now
        e.eligibility_stale = False
        if e.balance is not None:
            e.balance += self.settings.faucet_amount * 10 ** self.settings.token_decimals
        # next balance read goes to the ledger
        e.balance_at = 0.0

    def watch(self, account: str):
        self._watched.add(account.lower())

    def unwatch(self, account: str):
        self._watched.discard(account.lower())

    @property
    def watched(self) -> Set[str]:
        return set(self._watched)

    # ------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------

    async def poll_once(self):
        s = self.settings
        for account in list(self._watched):
            e = self._entry(account)
            now = self.clock()
            if now - e.balance_at >= s.balance_poll_interval:
                await self.get_balance(account)
            now = self.clock()
            if now - e.eligibility_at >= s.eligibility_poll_interval:
                await self.get_claim_eligibility(account)
            elif (self._projected_remaining(e, now) or 0) > 0 and \
                    now - e.eligibility_at >= s.countdown_poll_interval:
                await self.refresh_countdown(account)

    async def run(self):
        s = self.settings
        tick = min(s.balance_poll_interval, s.eligibility_poll_interval, s.countdown_poll_interval)
        logger.info(
            "Chain reader polling (balance %.0fs, eligibility %.0fs, countdown %.0fs)",
            s.balance_poll_interval, s.eligibility_poll_interval, s.countdown_poll_interval,
        )
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Chain reader poll failed")
            await asyncio.sleep(tick)
