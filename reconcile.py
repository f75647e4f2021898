# app/reconcile.py
"""
Reconciliation engine: turns a claim or vote intent into a confirmed ledger
operation and, only after confirmation, into the matching off-chain update.

Vote:  Idle -> Validating -> Submitting(Approve) -> AwaitingApproval
            -> Submitting(Vote) -> AwaitingVoteConfirmation -> Reconciling -> Done
Claim: Idle -> Validating -> Submitting -> AwaitingConfirmation -> Reconciling -> Done
Any state may end in Failed.

Both flows run through the same driver; a flow is a list of ledger steps
plus a reconcile callback. Each flow is one asyncio task; flows for different
users (or different creators) never wait on each other.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from config import Settings
from cooldown import wait_message
from entities import Creator, same_address
from errors import (
    NetworkError,
    ReconciliationError,
    TalentLinkError,
    ValidationError,
    classify_chain_error,
)
from operations import Approve, CastVote, Claim, Operation, OperationStatus
from chain.writer import validate_vote_amount

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    IDLE = "Idle"
    VALIDATING = "Validating"
    SUBMITTING = "Submitting"
    AWAITING_CONFIRMATION = "AwaitingConfirmation"
    SUBMITTING_APPROVE = "Submitting(Approve)"
    AWAITING_APPROVAL = "AwaitingApproval"
    SUBMITTING_VOTE = "Submitting(Vote)"
    AWAITING_VOTE_CONFIRMATION = "AwaitingVoteConfirmation"
    RECONCILING = "Reconciling"
    DONE = "Done"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (FlowState.DONE, FlowState.FAILED)


STILL_PENDING = "still_pending"


@dataclass(frozen=True)
class Step:
    operation: Operation
    submitting: FlowState
    awaiting: FlowState


class OperationHandle:
    """User-facing view of one claim or vote flow."""

    def __init__(self, kind: str, account: str, key: Tuple, clock: Callable[[], float]):
        self.id = uuid.uuid4().hex
        self.kind = kind
        self.account = account
        self.key = key
        self.clock = clock
        self.started_at = clock()
        self.finished_at: Optional[float] = None
        self.state = FlowState.IDLE
        self.transitions: List[Tuple[FlowState, float]] = [(FlowState.IDLE, self.started_at)]
        self.failure: Optional[TalentLinkError] = None
        self.tx_hashes: Dict[str, str] = {}
        self.result: Dict[str, Any] = {}
        self.cancelled = False
        self._signature_requested = False
        self._done = asyncio.get_running_loop().create_future()

    def enter(self, state: FlowState):
        self.state = state
        self.transitions.append((state, self.clock()))
        logger.info("%s %s [%s] -> %s", self.kind, self.id[:8], self.account, state.value)
        if state.terminal:
            self.finished_at = self.clock()
            if not self._done.done():
                self._done.set_result(state)

    def fail(self, error: TalentLinkError):
        self.failure = error
        self.enter(FlowState.FAILED)

    @property
    def terminal(self) -> bool:
        return self.state.terminal

    def mark_signing(self):
        """Called by the writer right before a transaction goes to the signer."""
        if self.cancelled:
            raise ValidationError("Operation cancelled")
        self._signature_requested = True

    def cancel(self) -> bool:
        """Abandon the flow. Only possible until the first signature is requested."""
        if self.terminal or self._signature_requested:
            return False
        self.cancelled = True
        return True

    async def wait(self, timeout: Optional[float] = None) -> str:
        """
        Wait for a terminal state. On timeout the displayed state becomes
        still_pending; the flow itself keeps running.
        """
        try:
            await asyncio.wait_for(asyncio.shield(self._done), timeout)
        except asyncio.TimeoutError:
            return STILL_PENDING
        return self.state.value

    def display_state(self, soft_timeout: float, now: Optional[float] = None) -> str:
        if self.terminal:
            return self.state.value
        now = self.clock() if now is None else now
        if now - self.started_at >= soft_timeout:
            return STILL_PENDING
        return self.state.value

    def to_dict(self, soft_timeout: float) -> Dict[str, Any]:
        out = {
            "id": self.id,
            "kind": self.kind,
            "account": self.account,
            "state": self.state.value,
            "display_state": self.display_state(soft_timeout),
            "transitions": [s.value for s, _ in self.transitions],
            "tx_hashes": dict(self.tx_hashes),
            "result": dict(self.result),
            "cancellable": not (self.terminal or self._signature_requested),
        }
        if self.failure is not None:
            out["failure"] = {
                "reason": self.failure.reason.value if self.failure.reason else None,
                "message": self.failure.user_message,
            }
            tx = getattr(self.failure, "tx_hash", None)
            if tx:
                out["failure"]["tx_hash"] = tx
        return out


@dataclass(frozen=True)
class UnreconciledVote:
    creator_id: str
    curator_address: str
    amount: int
    transaction_hash: str


class ReconciliationEngine:
    def __init__(self, settings: Settings, reader, writer, store, wallets,
                 clock: Callable[[], float] = time.time, handle_ttl: float = 600.0):
        self.settings = settings
        self.reader = reader
        self.writer = writer
        self.store = store
        self.wallets = wallets
        self.clock = clock
        self.handle_ttl = handle_ttl
        self._handles: Dict[str, OperationHandle] = {}
        self._inflight: Dict[Tuple, OperationHandle] = {}
        self._tasks = set()
        self.unreconciled: List[UnreconciledVote] = []

    # ------------------------------------------------------------
    # Handle bookkeeping
    # ------------------------------------------------------------

    def get_handle(self, handle_id: str) -> Optional[OperationHandle]:
        return self._handles.get(handle_id)

    def _prune(self):
        now = self.clock()
        for hid, h in list(self._handles.items()):
            if h.terminal and h.finished_at is not None and now - h.finished_at > self.handle_ttl:
                del self._handles[hid]

    def _existing(self, key: Tuple) -> Optional[OperationHandle]:
        h = self._inflight.get(key)
        if h is not None and not h.terminal:
            logger.info("Re-initiated %s while in flight; returning %s", key[0], h.id[:8])
            return h
        return None

    def _new_handle(self, kind: str, account: str, key: Tuple) -> OperationHandle:
        self._prune()
        h = OperationHandle(kind, account, key, self.clock)
        self._handles[h.id] = h
        # claimed before the first await so an overlapping request finds it
        self._inflight[key] = h
        return h

    def _release(self, handle: OperationHandle):
        if self._inflight.get(handle.key) is handle:
            del self._inflight[handle.key]

    def _spawn(self, handle: OperationHandle, wallet, steps: List[Step],
               reconcile: Callable[[OperationHandle], Awaitable[Dict[str, Any]]]):
        task = asyncio.get_running_loop().create_task(self._drive(handle, wallet, steps, reconcile))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------
    # Driver shared by every flow
    # ------------------------------------------------------------

    async def _drive(self, handle: OperationHandle, wallet, steps: List[Step],
                     reconcile: Callable[[OperationHandle], Awaitable[Dict[str, Any]]]):
        try:
            for step in steps:
                if handle.cancelled:
                    raise ValidationError("Operation cancelled")
                handle.enter(step.submitting)
                pending = await self.writer.submit(
                    wallet, step.operation, before_dispatch=handle.mark_signing,
                )
                handle.tx_hashes[step.operation.kind.value] = pending.hash
                handle.enter(step.awaiting)
                status = await pending.wait()
                if status is not OperationStatus.CONFIRMED:
                    raise pending.error or NetworkError(f"{pending.hash} failed")
            handle.enter(FlowState.RECONCILING)
            handle.result = await reconcile(handle)
            handle.enter(FlowState.DONE)
        except TalentLinkError as e:
            log = logger.error if isinstance(e, ReconciliationError) else logger.warning
            log("%s %s failed (%s): %s", handle.kind, handle.id[:8],
                e.reason.value if e.reason else "?", e)
            handle.fail(e)
        except Exception as e:
            logger.exception("%s %s crashed", handle.kind, handle.id[:8])
            handle.fail(classify_chain_error(e))
        finally:
            self._release(handle)

    def _reject(self, handle: OperationHandle, error: TalentLinkError):
        self._release(handle)
        handle.fail(error)
        raise error

    # ------------------------------------------------------------
    # Faucet claim
    # ------------------------------------------------------------

    async def start_claim(self, address: str) -> OperationHandle:
        account = (address or "").strip().lower()
        key = ("claim", account)
        existing = self._existing(key)
        if existing is not None:
            return existing

        handle = self._new_handle("claim", account, key)
        handle.enter(FlowState.VALIDATING)
        wallet = self.wallets.get(account)
        if wallet is None:
            self._reject(handle, ValidationError("Please connect your wallet"))
        reading = await self.reader.get_claim_eligibility(account)
        if reading.value is None:
            self._reject(handle, NetworkError("Claim eligibility is unavailable"))
        if not reading.value.can_claim:
            self._reject(handle, ValidationError(wait_message(reading.value.cooldown_remaining)))
        if reading.stale:
            logger.warning("Claim for %s validated against a stale eligibility reading", account)

        steps = [Step(Claim(), FlowState.SUBMITTING, FlowState.AWAITING_CONFIRMATION)]
        self._spawn(handle, wallet, steps, self._reconcile_claim)
        return handle

    async def _reconcile_claim(self, handle: OperationHandle) -> Dict[str, Any]:
        self.reader.apply_claim(handle.account)
        balance = await self.reader.get_balance(handle.account)
        eligibility = self.reader.snapshot(handle.account)
        return {
            "balance": balance.value,
            "balance_stale": balance.stale,
            "can_claim": eligibility.can_claim,
            "cooldown_remaining": eligibility.cooldown_remaining,
        }

    # ------------------------------------------------------------
    # Vote
    # ------------------------------------------------------------

    async def start_vote(self, curator_address: str, creator_id: str, amount) -> OperationHandle:
        curator = (curator_address or "").strip().lower()
        key = ("vote", curator, creator_id)
        existing = self._existing(key)
        if existing is not None:
            return existing

        handle = self._new_handle("vote", curator, key)
        handle.enter(FlowState.VALIDATING)
        wallet = self.wallets.get(curator)
        if wallet is None:
            self._reject(handle, ValidationError("Please connect your wallet"))
        try:
            validate_vote_amount(amount, self.settings)
        except ValidationError as e:
            self._reject(handle, e)
        try:
            creator: Optional[Creator] = await asyncio.to_thread(self.store.get_creator, creator_id)
        except TalentLinkError as e:
            self._reject(handle, e)
        except Exception as e:
            self._reject(handle, classify_chain_error(e))
        if creator is None:
            self._reject(handle, ValidationError("Creator not found"))
        if same_address(creator.wallet_address, curator):
            self._reject(handle, ValidationError("You cannot vote for yourself"))

        units = amount * 10 ** self.settings.token_decimals
        steps = [
            Step(Approve(self.settings.dao_address, units),
                 FlowState.SUBMITTING_APPROVE, FlowState.AWAITING_APPROVAL),
            Step(CastVote(creator.wallet_address, amount),
                 FlowState.SUBMITTING_VOTE, FlowState.AWAITING_VOTE_CONFIRMATION),
        ]

        async def reconcile(h: OperationHandle) -> Dict[str, Any]:
            return await self._reconcile_vote(h, creator, curator, amount)

        handle.result = {"creator_id": creator.id, "amount": amount}
        self._spawn(handle, wallet, steps, reconcile)
        return handle

    async def _reconcile_vote(self, handle: OperationHandle, creator: Creator,
                              curator: str, amount: int) -> Dict[str, Any]:
        tx_hash = handle.tx_hashes[CastVote.kind.value]
        try:
            vote, total = await self._apply_with_retry(creator.id, curator, amount, tx_hash)
        except ReconciliationError:
            self.unreconciled.append(UnreconciledVote(creator.id, curator, amount, tx_hash))
            raise
        return {
            "creator_id": creator.id,
            "vote_id": vote.id,
            "amount": amount,
            "total_votes": total,
            "transaction_hash": tx_hash,
        }

    async def _apply_with_retry(self, creator_id: str, curator: str, amount: int, tx_hash: str):
        attempts = max(1, self.settings.reconcile_max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.to_thread(
                    self.store.apply_vote, creator_id, curator, amount, tx_hash
                )
            except NetworkError as e:
                if attempt == attempts:
                    raise ReconciliationError(tx_hash, e) from e
                delay = self.settings.reconcile_base_delay * 2 ** (attempt - 1)
                logger.warning(
                    "Reconcile %s attempt %d/%d failed, retrying in %.2fs: %s",
                    tx_hash, attempt, attempts, delay, e,
                )
                await asyncio.sleep(delay)
            except TalentLinkError as e:
                raise ReconciliationError(tx_hash, e) from e

    async def replay_unreconciled(self) -> int:
        """Retry store updates for votes that confirmed on-chain but never landed."""
        replayed = 0
        for item in list(self.unreconciled):
            try:
                await asyncio.to_thread(
                    self.store.apply_vote, item.creator_id, item.curator_address,
                    item.amount, item.transaction_hash,
                )
            except TalentLinkError as e:
                logger.warning("Replay of %s still failing: %s", item.transaction_hash, e)
                continue
            self.unreconciled.remove(item)
            replayed += 1
            logger.info("Replayed unreconciled vote %s", item.transaction_hash)
        return replayed

    # ------------------------------------------------------------
    # Convenience for callers that want the outcome inline
    # ------------------------------------------------------------

    async def claim(self, address: str) -> OperationHandle:
        handle = await self.start_claim(address)
        await handle.wait()
        return handle

    async def cast_vote(self, curator_address: str, creator_id: str, amount) -> OperationHandle:
        handle = await self.start_vote(curator_address, creator_id, amount)
        await handle.wait()
        return handle
