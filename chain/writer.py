# app/chain/writer.py
"""
Submits state-changing ledger operations and tracks their confirmation.
Pattern: validate -> sign + broadcast -> PendingOperation -> poll receipt.

Submission failures raise immediately and produce no PendingOperation.
Confirmation has no internal timeout; the watcher keeps polling until the
ledger reports a receipt.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Set

from config import Settings
from entities import same_address
from errors import (
    NetworkError,
    TalentLinkError,
    TransactionReverted,
    ValidationError,
    classify_chain_error,
)
from cooldown import wait_message
from operations import (
    Approve,
    CastVote,
    Claim,
    Operation,
    OperationStatus,
    PendingOperation,
)

logger = logging.getLogger(__name__)


def validate_vote_amount(amount, settings: Settings):
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"Vote amount must be a whole number between {settings.min_vote} and {settings.max_vote}")
    if not settings.min_vote <= amount <= settings.max_vote:
        raise ValidationError(f"Vote amount must be between {settings.min_vote} and {settings.max_vote}")


class ChainWriter:
    def __init__(self, ledger, settings: Settings, reader=None):
        self.ledger = ledger
        self.settings = settings
        self.reader = reader
        self._watchers: Set[asyncio.Task] = set()

    async def _check_preconditions(self, wallet, op: Operation):
        if wallet is None:
            raise ValidationError("Please connect your wallet")
        if isinstance(op, Claim):
            if self.reader is None:
                return
            reading = await self.reader.get_claim_eligibility(wallet.address)
            if reading.value is None:
                raise NetworkError("claim eligibility unavailable")
            if not reading.value.can_claim:
                raise ValidationError(wait_message(reading.value.cooldown_remaining))
        elif isinstance(op, CastVote):
            validate_vote_amount(op.amount, self.settings)
            if same_address(op.creator, wallet.address):
                raise ValidationError("You cannot vote for yourself")
        elif isinstance(op, Approve):
            if op.amount <= 0:
                raise ValidationError("Allowance must be positive")

    def _dispatch(self, wallet, op: Operation) -> str:
        if isinstance(op, Claim):
            return self.ledger.claim_from_faucet(wallet)
        if isinstance(op, Approve):
            return self.ledger.approve(wallet, op.spender, op.amount)
        if isinstance(op, CastVote):
            units = op.amount * 10 ** self.settings.token_decimals
            return self.ledger.vote_for_creator(wallet, op.creator, units)
        raise TypeError(f"unknown operation {op!r}")

    async def submit(self, wallet, op: Operation,
                     before_dispatch: Optional[Callable[[], None]] = None) -> PendingOperation:
        await self._check_preconditions(wallet, op)
        if before_dispatch is not None:
            # last point where the caller can still abandon the operation
            before_dispatch()
        try:
            tx_hash = await asyncio.to_thread(self._dispatch, wallet, op)
        except TalentLinkError:
            raise
        except Exception as e:
            # never resubmitted automatically; the user re-initiates
            raise classify_chain_error(e) from e

        pending = PendingOperation(op.kind, wallet.address.lower(), tx_hash)
        logger.info("%s submitted by %s: %s", op.kind.value, pending.account, tx_hash)
        task = asyncio.get_running_loop().create_task(self._watch(pending))
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        return pending

    async def _watch(self, pending: PendingOperation):
        first = True
        while True:
            try:
                status: Optional[bool] = await asyncio.to_thread(
                    self.ledger.get_receipt_status, pending.hash
                )
            except Exception as e:
                logger.warning("Receipt lookup for %s failed, retrying: %s", pending.hash, e)
                status = None
            if first:
                pending.transition(OperationStatus.PENDING)
                first = False
            if status is True:
                pending.transition(OperationStatus.CONFIRMED)
                logger.info("%s confirmed: %s", pending.kind.value, pending.hash)
                return
            if status is False:
                pending.transition(OperationStatus.FAILED, TransactionReverted(pending.hash))
                logger.warning("%s reverted: %s", pending.kind.value, pending.hash)
                return
            await asyncio.sleep(self.settings.receipt_poll_interval)
