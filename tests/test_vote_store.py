"""
Vote ledger store against a throwaway SQLite file.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import text

from errors import ValidationError
from tests.conftest import ALICE, BOB, CAROL


def test_create_creator_normalizes_fields(store):
    c = store.create_creator(
        ALICE.upper().replace("0X", "0x"), "Alice", "bio", "music",
        skills=["mixing", " ", ""], portfolio_links=["https://a.example", ""],
        ai_tags=["producer"],
    )
    assert c.wallet_address == ALICE
    assert c.total_votes == 0
    assert c.skills == ["mixing"]
    assert c.portfolio_links == ["https://a.example"]

    loaded = store.get_creator(c.id)
    assert loaded.ai_tags == ["producer"]
    assert store.get_creator_by_wallet(ALICE).id == c.id


def test_one_profile_per_wallet(store, creator):
    with pytest.raises(ValidationError):
        store.create_creator(ALICE, "Alice again", "bio", "art")


def test_invalid_wallet_rejected(store):
    with pytest.raises(ValidationError):
        store.create_creator("not-an-address", "X", "bio", "art")


def test_increment_returns_new_total(store, creator):
    assert store.increment_creator_votes(creator.id, 3) == 3
    assert store.increment_creator_votes(creator.id, 4) == 7
    assert store.get_creator(creator.id).total_votes == 7


def test_increment_unknown_creator(store):
    with pytest.raises(ValidationError):
        store.increment_creator_votes("missing", 1)


def test_apply_vote_records_audit_row(store, creator):
    vote, total = store.apply_vote(creator.id, BOB, 5, "0xabc")
    assert total == 5
    assert vote.curator_address == BOB
    votes = store.list_votes(creator.id)
    assert [v.transaction_hash for v in votes] == ["0xabc"]


def test_apply_vote_is_idempotent_per_transaction(store, creator):
    first, total = store.apply_vote(creator.id, BOB, 5, "0xabc")
    again, total_again = store.apply_vote(creator.id, BOB, 5, "0xabc")
    assert again.id == first.id
    assert total == total_again == 5
    assert len(store.list_votes(creator.id)) == 1


def test_apply_vote_rejects_out_of_range_amount(store, creator):
    with pytest.raises(Exception):
        store.apply_vote(creator.id, BOB, 11, "0xbig")
    assert store.get_creator(creator.id).total_votes == 0
    assert store.list_votes(creator.id) == []


def test_concurrent_votes_are_not_lost(store, creator):
    amounts = [1, 2, 3, 4, 5, 6, 7, 8, 9, 10] * 2

    def vote(i):
        return store.apply_vote(creator.id, BOB, amounts[i], f"0x{i:064x}")

    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(vote, range(len(amounts))))

    assert store.get_creator(creator.id).total_votes == sum(amounts)
    assert store.audit_totals() == []


def test_total_matches_audit_sum(store, creator):
    for i, amount in enumerate((2, 9, 1)):
        store.apply_vote(creator.id, CAROL, amount, f"0xtx{i}")
    total = store.get_creator(creator.id).total_votes
    assert total == sum(v.amount for v in store.list_votes(creator.id)) == 12


def test_audit_and_repair_drift(store, creator):
    store.apply_vote(creator.id, BOB, 4, "0x01")
    with store.engine.begin() as conn:
        conn.execute(text("UPDATE creators SET total_votes = 99 WHERE id = :id"), {"id": creator.id})

    drifts = store.audit_totals()
    assert len(drifts) == 1
    assert drifts[0].cached_total == 99
    assert drifts[0].audit_total == 4
    assert drifts[0].delta == -95

    repaired = store.repair_totals()
    assert [d.creator_id for d in repaired] == [creator.id]
    assert store.get_creator(creator.id).total_votes == 4
    assert store.audit_totals() == []


def test_leaderboard_orders_by_votes(store):
    a = store.create_creator(ALICE, "Alice", "bio", "art")
    b = store.create_creator(BOB, "Bob", "bio", "music")
    store.apply_vote(b.id, CAROL, 7, "0xb")
    store.apply_vote(a.id, CAROL, 3, "0xa")
    assert [c.id for c in store.leaderboard()] == [b.id, a.id]
    assert len(store.leaderboard(limit=1)) == 1


def test_opportunities_round_through_store(store):
    opp = store.create_opportunity("Poster", 25, company="Acme", tags=["print"])
    assert store.get_opportunity(opp.id).tags == ["print"]
    assert [o.id for o in store.list_opportunities()] == [opp.id]
    with pytest.raises(ValidationError):
        store.create_opportunity("Bad", -1)


def test_mark_nft_minted(store, creator):
    assert store.mark_nft_minted(creator.id) is True
    assert store.get_creator(creator.id).nft_minted is True
    assert store.mark_nft_minted("missing") is False


def test_iter_creators_reads_every_page(store):
    made = [store.create_creator("0x" + f"{i + 1:040x}", f"c{i}") for i in range(5)]
    seen = list(store.iter_creators(page_size=2))
    assert sorted(c.id for c in seen) == sorted(c.id for c in made)
    assert len(seen) == 5
