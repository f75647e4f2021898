"""
End-to-end claim and vote flows: simulated ledger + SQLite store.
"""
import asyncio

import pytest

from errors import (
    NetworkError,
    ReconciliationError,
    SignerRejected,
    TransactionReverted,
    ValidationError,
)
from reconcile import STILL_PENDING, FlowState
from sweep import ReconciliationSweep
from tests.conftest import ALICE, BOB, CAROL

UNIT = 10 ** 18


class FlakyStore:
    """Delegates to a real store; apply_vote fails while `down` is set."""

    def __init__(self, inner):
        self.inner = inner
        self.down = True
        self.attempts = 0

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def apply_vote(self, *args):
        self.attempts += 1
        if self.down:
            raise NetworkError("database is locked")
        return self.inner.apply_vote(*args)


def _fund(ledger, address, tokens=100):
    ledger.balances[address] = tokens * UNIT


async def _until(predicate, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


# ────────────────────────────────────────────────────────────
# Claim
# ────────────────────────────────────────────────────────────

def test_claim_flow(svc, ledger, clock):
    svc.wallets.connect(BOB)

    async def main():
        before = await svc.reader.get_balance(BOB)
        assert before.value == 0

        handle = await svc.engine.claim(BOB)
        assert handle.state is FlowState.DONE, handle.failure
        assert [s for s, _ in handle.transitions] == [
            FlowState.IDLE, FlowState.VALIDATING, FlowState.SUBMITTING,
            FlowState.AWAITING_CONFIRMATION, FlowState.RECONCILING, FlowState.DONE,
        ]
        assert handle.result["balance"] == 100 * UNIT
        assert handle.result["can_claim"] is False
        assert handle.result["cooldown_remaining"] == svc.settings.claim_interval

        remaining = []
        for _ in range(3):
            clock.advance(30)
            remaining.append(svc.reader.snapshot(BOB).cooldown_remaining)
        assert remaining == [86370, 86340, 86310]

        with pytest.raises(ValidationError, match="Please wait"):
            await svc.engine.start_claim(BOB)

    asyncio.run(main())
    assert [op for op, _ in ledger.submissions] == ["claimFromFaucet"]


def test_claim_requires_connected_wallet(svc, ledger):
    async def main():
        with pytest.raises(ValidationError, match="connect"):
            await svc.engine.start_claim(BOB)

    asyncio.run(main())
    assert ledger.submissions == []


def test_claim_rejected_by_signer(svc, ledger):
    svc.wallets.connect(BOB)
    ledger.fail_next("claimFromFaucet", Exception("User rejected the request."))

    async def main():
        handle = await svc.engine.claim(BOB)
        assert handle.state is FlowState.FAILED
        assert isinstance(handle.failure, SignerRejected)
        assert handle.to_dict(180)["failure"]["message"] == "Transaction cancelled by user"
        # the user can start over right away
        again = await svc.engine.claim(BOB)
        assert again.state is FlowState.DONE

    asyncio.run(main())


# ────────────────────────────────────────────────────────────
# Vote
# ────────────────────────────────────────────────────────────

def test_vote_flow(svc, ledger, store, creator):
    store.apply_vote(creator.id, CAROL, 10, "0xseed")
    _fund(ledger, BOB)
    svc.wallets.connect(BOB)

    async def main():
        handle = await svc.engine.cast_vote(BOB, creator.id, 5)
        assert handle.state is FlowState.DONE, handle.failure
        assert [s for s, _ in handle.transitions] == [
            FlowState.IDLE, FlowState.VALIDATING,
            FlowState.SUBMITTING_APPROVE, FlowState.AWAITING_APPROVAL,
            FlowState.SUBMITTING_VOTE, FlowState.AWAITING_VOTE_CONFIRMATION,
            FlowState.RECONCILING, FlowState.DONE,
        ]
        return handle

    handle = asyncio.run(main())
    assert handle.result["total_votes"] == 15
    assert [op for op, _ in ledger.submissions] == ["approve", "voteForCreator"]
    assert ledger.creator_votes[ALICE] == 5 * UNIT

    assert store.get_creator(creator.id).total_votes == 15
    latest = store.list_votes(creator.id)
    assert {v.transaction_hash for v in latest} == {"0xseed", handle.tx_hashes["Vote"]}
    assert store.audit_totals() == []


def test_concurrent_votes_from_different_curators(svc, ledger, store, creator):
    curators = ["0x" + f"{i:02x}" * 20 for i in range(16, 22)]
    amounts = [1, 4, 10, 7, 2, 9]
    for c in curators:
        _fund(ledger, c)
        svc.wallets.connect(c)

    async def main():
        return await asyncio.gather(*[
            svc.engine.cast_vote(c, creator.id, a) for c, a in zip(curators, amounts)
        ])

    handles = asyncio.run(main())
    assert all(h.state is FlowState.DONE for h in handles)
    assert store.get_creator(creator.id).total_votes == sum(amounts)
    assert len(store.list_votes(creator.id)) == len(amounts)
    assert ledger.creator_votes[ALICE] == sum(amounts) * UNIT


def test_same_curator_can_vote_again(svc, ledger, store, creator):
    _fund(ledger, BOB)
    svc.wallets.connect(BOB)

    async def main():
        await svc.engine.cast_vote(BOB, creator.id, 2)
        await svc.engine.cast_vote(BOB, creator.id, 3)

    asyncio.run(main())
    assert store.get_creator(creator.id).total_votes == 5


def test_self_vote_is_rejected_before_signing(svc, ledger, store, creator):
    _fund(ledger, ALICE)
    svc.wallets.connect(ALICE)

    async def main():
        with pytest.raises(ValidationError, match="yourself"):
            await svc.engine.start_vote(ALICE, creator.id, 3)

    asyncio.run(main())
    assert ledger.submissions == []
    assert store.get_creator(creator.id).total_votes == 0


@pytest.mark.parametrize("amount", [0, 11, 2.5, "3"])
def test_bad_amount_is_rejected_before_signing(svc, ledger, store, creator, amount):
    svc.wallets.connect(BOB)

    async def main():
        with pytest.raises(ValidationError):
            await svc.engine.start_vote(BOB, creator.id, amount)

    asyncio.run(main())
    assert ledger.submissions == []
    assert store.list_votes(creator.id) == []


def test_unknown_creator(svc, ledger):
    svc.wallets.connect(BOB)

    async def main():
        with pytest.raises(ValidationError, match="not found"):
            await svc.engine.start_vote(BOB, "missing", 3)

    asyncio.run(main())
    assert ledger.submissions == []


def test_failed_approval_never_submits_vote(svc, ledger, store, creator):
    _fund(ledger, BOB)
    svc.wallets.connect(BOB)
    ledger.revert_next("approve")

    async def main():
        return await svc.engine.cast_vote(BOB, creator.id, 3)

    handle = asyncio.run(main())
    assert handle.state is FlowState.FAILED
    assert isinstance(handle.failure, TransactionReverted)
    assert FlowState.SUBMITTING_VOTE not in [s for s, _ in handle.transitions]
    assert [op for op, _ in ledger.submissions] == ["approve"]
    assert store.get_creator(creator.id).total_votes == 0


def test_reverted_vote_leaves_store_untouched(svc, ledger, store, creator):
    svc.wallets.connect(BOB)  # no tokens: the DAO transfer fails

    async def main():
        return await svc.engine.cast_vote(BOB, creator.id, 3)

    handle = asyncio.run(main())
    assert handle.state is FlowState.FAILED
    assert isinstance(handle.failure, TransactionReverted)
    assert handle.failure.tx_hash == handle.tx_hashes["Vote"]
    assert store.get_creator(creator.id).total_votes == 0
    assert store.list_votes(creator.id) == []


def test_store_outage_surfaces_reconciliation_error_then_sweep_replays(
        svc, settings, ledger, store, creator):
    flaky = FlakyStore(store)
    svc.engine.store = flaky
    _fund(ledger, BOB)
    svc.wallets.connect(BOB)
    sweep = ReconciliationSweep(store, svc.engine, ledger, settings)

    async def main():
        handle = await svc.engine.cast_vote(BOB, creator.id, 4)
        assert handle.state is FlowState.FAILED
        assert isinstance(handle.failure, ReconciliationError)
        assert handle.failure.tx_hash == handle.tx_hashes["Vote"]
        assert flaky.attempts == settings.reconcile_max_attempts
        assert len(svc.engine.unreconciled) == 1

        # still failing: nothing replayed, the vote stays queued
        report = await sweep.run_once()
        assert report.replayed == 0
        assert report.chain_mismatches == [(creator.id, 0, 4)]

        flaky.down = False
        report = await sweep.run_once()
        assert report.replayed == 1
        assert report.chain_mismatches == []
        return handle

    handle = asyncio.run(main())
    assert svc.engine.unreconciled == []
    assert store.get_creator(creator.id).total_votes == 4
    assert store.get_vote_by_hash(handle.tx_hashes["Vote"]).amount == 4
    assert ledger.creator_votes[ALICE] == 4 * UNIT


def test_sweep_repairs_drifted_totals(svc, settings, ledger, store, creator):
    from sqlalchemy import text

    store.apply_vote(creator.id, BOB, 6, "0x06")
    ledger.creator_votes[ALICE] = 6 * UNIT
    with store.engine.begin() as conn:
        conn.execute(text("UPDATE creators SET total_votes = 1 WHERE id = :id"), {"id": creator.id})

    report = asyncio.run(svc.sweep.run_once(repair=True))
    assert report.repaired == [(creator.id, 1, 6)]
    assert report.chain_mismatches == []
    assert store.get_creator(creator.id).total_votes == 6


# ────────────────────────────────────────────────────────────
# Handles: cancellation, soft timeout, duplicate submissions
# ────────────────────────────────────────────────────────────

def test_cancel_before_signing(svc, ledger, store, creator):
    _fund(ledger, BOB)
    svc.wallets.connect(BOB)

    async def main():
        handle = await svc.engine.start_vote(BOB, creator.id, 3)
        assert handle.cancel() is True
        await handle.wait()
        return handle

    handle = asyncio.run(main())
    assert handle.state is FlowState.FAILED
    assert isinstance(handle.failure, ValidationError)
    assert handle.failure.user_message == "Operation cancelled"
    assert ledger.submissions == []


def test_cancel_while_submitting(svc, ledger, monkeypatch):
    svc.wallets.connect(BOB)
    release = None
    original = svc.writer._check_preconditions

    async def held(wallet, op):
        await release.wait()
        await original(wallet, op)

    monkeypatch.setattr(svc.writer, "_check_preconditions", held)

    async def main():
        nonlocal release
        release = asyncio.Event()
        handle = await svc.engine.start_claim(BOB)
        await _until(lambda: handle.state is FlowState.SUBMITTING)
        assert handle.to_dict(180)["cancellable"] is True
        assert handle.cancel() is True
        release.set()
        await handle.wait(timeout=5)
        return handle

    handle = asyncio.run(main())
    assert handle.state is FlowState.FAILED
    assert isinstance(handle.failure, ValidationError)
    assert ledger.submissions == []
    assert svc.engine.get_handle(handle.id) is handle


def test_cannot_cancel_after_signing(svc, ledger):
    ledger.confirmation_delay = 1000
    svc.wallets.connect(BOB)

    async def main():
        handle = await svc.engine.start_claim(BOB)
        await _until(lambda: handle.state is FlowState.AWAITING_CONFIRMATION)
        assert handle.cancel() is False

    asyncio.run(main())


def test_slow_confirmation_shows_still_pending(svc, ledger, clock):
    ledger.confirmation_delay = 1000
    svc.wallets.connect(BOB)

    async def main():
        handle = await svc.engine.start_claim(BOB)
        assert await handle.wait(timeout=0.05) == STILL_PENDING
        await _until(lambda: handle.state is FlowState.AWAITING_CONFIRMATION)
        assert handle.display_state(180, now=handle.started_at + 10) == "AwaitingConfirmation"
        assert handle.display_state(180, now=handle.started_at + 181) == STILL_PENDING

        clock.advance(1001)
        assert await handle.wait(timeout=5) == "Done"
        assert handle.display_state(180, now=handle.started_at + 5000) == "Done"

    asyncio.run(main())


def test_duplicate_submission_returns_inflight_handle(svc, ledger, clock, creator):
    ledger.confirmation_delay = 1000
    _fund(ledger, BOB)
    svc.wallets.connect(BOB)

    async def main():
        first = await svc.engine.start_claim(BOB)
        second = await svc.engine.start_claim(BOB)
        assert second is first

        vote = await svc.engine.start_vote(BOB, creator.id, 3)
        assert await svc.engine.start_vote(BOB, creator.id, 5) is vote

        ledger.confirmation_delay = 0
        clock.advance(1001)
        assert await first.wait(timeout=5) == "Done"
        assert await vote.wait(timeout=5) == "Done"
        assert vote.result["amount"] == 3
        assert svc.engine.get_handle(first.id) is first

    asyncio.run(main())
    assert [op for op, _ in ledger.submissions].count("claimFromFaucet") == 1


def test_overlapping_starts_share_one_handle(svc, ledger, clock, creator):
    ledger.confirmation_delay = 1000
    _fund(ledger, BOB)
    svc.wallets.connect(BOB)

    async def main():
        first, second = await asyncio.gather(
            svc.engine.start_claim(BOB), svc.engine.start_claim(BOB),
        )
        assert second is first

        vote_a, vote_b = await asyncio.gather(
            svc.engine.start_vote(BOB, creator.id, 3),
            svc.engine.start_vote(BOB, creator.id, 3),
        )
        assert vote_b is vote_a

        ledger.confirmation_delay = 0
        clock.advance(1001)
        assert await first.wait(timeout=5) == "Done"
        assert await vote_a.wait(timeout=5) == "Done"

    asyncio.run(main())
    ops = [op for op, _ in ledger.submissions]
    assert ops.count("claimFromFaucet") == 1
    assert ops.count("approve") == 1
    assert ops.count("voteForCreator") == 1


def test_rejected_start_frees_the_slot(svc, ledger):
    svc.wallets.connect(BOB)
    ledger.last_claim[BOB] = int(ledger.clock())

    async def main():
        with pytest.raises(ValidationError):
            await svc.engine.start_claim(BOB)
        ledger.last_claim.pop(BOB)
        handle = await svc.engine.start_claim(BOB)
        assert await handle.wait(timeout=5) == "Done"

    asyncio.run(main())


def test_sweep_checks_creators_outside_the_leaderboard(svc, ledger, store, creator):
    quiet = store.create_creator(CAROL, "Carol")
    store.apply_vote(creator.id, BOB, 4, "0x04")
    ledger.creator_votes[ALICE] = 4 * UNIT
    ledger.creator_votes[CAROL] = 2 * UNIT

    report = asyncio.run(svc.sweep.run_once(repair=False))
    assert report.chain_mismatches == [(quiet.id, 0, 2)]
