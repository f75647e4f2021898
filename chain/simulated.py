# app/chain/simulated.py
"""
In-process ledger used in demo mode and in tests.

Mirrors the token/DAO contract behaviour closely enough for the
reconciliation core: effects apply when a transaction is mined (after
`confirmation_delay` seconds), hashes are local placeholders, and failures
can be injected per operation.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from config import Settings
from cooldown import cooldown_remaining, eligibility
from errors import NetworkError, TalentLinkError, classify_chain_error

logger = logging.getLogger(__name__)


@dataclass
class _Tx:
    hash: str
    op: str
    sender: str
    args: tuple
    mine_at: float
    status: Optional[bool] = None


class SimulatedLedger:
    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time,
                 confirmation_delay: Optional[float] = None):
        self.settings = settings
        self.decimals = settings.token_decimals
        self.clock = clock
        self.confirmation_delay = (
            settings.sim_confirmation_delay if confirmation_delay is None else confirmation_delay
        )
        self.dao_address = settings.dao_address.lower()
        self._lock = threading.RLock()
        self.balances: Dict[str, int] = {}
        self.last_claim: Dict[str, int] = {}
        self.allowances: Dict[Tuple[str, str], int] = {}
        self.creator_votes: Dict[str, int] = {}
        self._txs: Dict[str, _Tx] = {}
        self._fail_submit: Dict[str, List[BaseException]] = {}
        self._revert: Dict[str, int] = {}
        self.reads_down = False
        self.submissions: List[Tuple[str, str]] = []

    # ------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------

    def fail_next(self, op: str, error: BaseException):
        """Make the next submission of `op` raise `error` at signing time."""
        with self._lock:
            self._fail_submit.setdefault(op, []).append(error)

    def revert_next(self, op: str):
        with self._lock:
            self._revert[op] = self._revert.get(op, 0) + 1

    # ------------------------------------------------------------
    # Mining
    # ------------------------------------------------------------

    def _mine(self):
        now = self.clock()
        for tx in self._txs.values():
            if tx.status is None and now >= tx.mine_at:
                tx.status = self._execute(tx, now)
                logger.debug("sim mined %s %s -> %s", tx.op, tx.hash, tx.status)

    def _execute(self, tx: _Tx, now: float) -> bool:
        if self._revert.get(tx.op):
            self._revert[tx.op] -= 1
            return False
        unit = 10 ** self.decimals
        if tx.op == "claimFromFaucet":
            if cooldown_remaining(self.last_claim.get(tx.sender, 0), now,
                                  self.settings.claim_interval) > 0:
                return False
            self.balances[tx.sender] = self.balances.get(tx.sender, 0) + self.settings.faucet_amount * unit
            self.last_claim[tx.sender] = int(now)
            return True
        if tx.op == "approve":
            spender, amount = tx.args
            self.allowances[(tx.sender, spender)] = amount
            return True
        if tx.op == "voteForCreator":
            creator, amount = tx.args
            key = (tx.sender, self.dao_address)
            if self.allowances.get(key, 0) < amount or self.balances.get(tx.sender, 0) < amount:
                return False
            self.allowances[key] -= amount
            self.balances[tx.sender] -= amount
            self.balances[creator] = self.balances.get(creator, 0) + amount
            self.creator_votes[creator] = self.creator_votes.get(creator, 0) + amount
            return True
        return False

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def _read(self):
        if self.reads_down:
            raise NetworkError("simulated ledger unreachable")
        self._mine()

    def balance_of(self, account: str) -> int:
        with self._lock:
            self._read()
            return self.balances.get(account.lower(), 0)

    def get_time_until_next_claim(self, account: str) -> int:
        with self._lock:
            self._read()
            return cooldown_remaining(self.last_claim.get(account.lower(), 0),
                                      self.clock(), self.settings.claim_interval)

    def can_claim_from_faucet(self, account: str) -> bool:
        with self._lock:
            self._read()
            return eligibility(self.last_claim.get(account.lower(), 0),
                               self.clock(), self.settings.claim_interval).can_claim

    def get_creator_votes(self, creator: str) -> int:
        with self._lock:
            self._read()
            return self.creator_votes.get(creator.lower(), 0)

    def get_receipt_status(self, tx_hash: str) -> Optional[bool]:
        with self._lock:
            self._read()
            tx = self._txs.get(tx_hash)
            return None if tx is None else tx.status

    # ------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------

    def _submit(self, wallet, op: str, *args) -> str:
        with self._lock:
            queued = self._fail_submit.get(op)
            if queued:
                err = queued.pop(0)
                if isinstance(err, TalentLinkError):
                    raise err
                raise classify_chain_error(err) from err
            tx_hash = f"demo_{int(self.clock() * 1000)}_{uuid.uuid4().hex[:12]}"
            sender = wallet.address.lower()
            self._txs[tx_hash] = _Tx(tx_hash, op, sender, args,
                                     mine_at=self.clock() + self.confirmation_delay)
            self.submissions.append((op, tx_hash))
            logger.info("Submitted %s from=%s tx=%s (simulated)", op, sender, tx_hash)
            return tx_hash

    def claim_from_faucet(self, wallet) -> str:
        return self._submit(wallet, "claimFromFaucet")

    def approve(self, wallet, spender: str, amount: int) -> str:
        return self._submit(wallet, "approve", spender.lower(), int(amount))

    def vote_for_creator(self, wallet, creator: str, amount: int) -> str:
        return self._submit(wallet, "voteForCreator", creator.lower(), int(amount))
