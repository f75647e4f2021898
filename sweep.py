# app/sweep.py
"""
Periodic consistency pass over the vote ledger.

1. Replays votes that confirmed on-chain but failed to reconcile.
2. Rebuilds creators.total_votes from the audit log where they drifted.
3. Compares the store with the DAO's on-chain tallies and reports gaps
   (reported only: the ledger total has no per-vote audit trail to replay).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from errors import TalentLinkError

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    replayed: int = 0
    repaired: List[Tuple[str, int, int]] = field(default_factory=list)
    chain_mismatches: List[Tuple[str, int, int]] = field(default_factory=list)

    def to_dict(self):
        return {
            "replayed": self.replayed,
            "repaired": [
                {"creator_id": c, "cached_total": old, "audit_total": new}
                for c, old, new in self.repaired
            ],
            "chain_mismatches": [
                {"creator_id": c, "store_total": s, "chain_total": ch}
                for c, s, ch in self.chain_mismatches
            ],
        }


class ReconciliationSweep:
    def __init__(self, store, engine, ledger, settings, check_chain: bool = True):
        self.store = store
        self.engine = engine
        self.ledger = ledger
        self.settings = settings
        self.check_chain = check_chain

    def _chain_mismatches(self) -> List[Tuple[str, int, int]]:
        unit = 10 ** self.settings.token_decimals
        out = []
        for creator in self.store.iter_creators():
            try:
                on_chain = self.ledger.get_creator_votes(creator.wallet_address) // unit
            except TalentLinkError as e:
                logger.warning("getCreatorVotes(%s) unavailable: %s", creator.wallet_address, e)
                continue
            if on_chain != creator.total_votes:
                out.append((creator.id, creator.total_votes, on_chain))
        return out

    async def run_once(self, repair: bool = True) -> SweepReport:
        report = SweepReport()
        report.replayed = await self.engine.replay_unreconciled()

        if repair:
            drifts = await asyncio.to_thread(self.store.repair_totals)
        else:
            drifts = await asyncio.to_thread(self.store.audit_totals)
        report.repaired = [(d.creator_id, d.cached_total, d.audit_total) for d in drifts]

        if self.check_chain:
            report.chain_mismatches = await asyncio.to_thread(self._chain_mismatches)
            for cid, store_total, chain_total in report.chain_mismatches:
                logger.warning(
                    "Creator %s: store has %d votes, ledger has %d",
                    cid, store_total, chain_total,
                )
        return report

    async def run(self):
        logger.info("Reconciliation sweep running every %.0fs", self.settings.sweep_interval)
        while True:
            await asyncio.sleep(self.settings.sweep_interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Reconciliation sweep failed")
