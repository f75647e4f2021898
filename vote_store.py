# app/vote_store.py
"""
Off-chain vote ledger: creators with their aggregate vote count, the
append-only vote audit log, and the opportunity catalog.

creators.total_votes is a cache of SUM(votes.amount) per creator. It is only
ever changed through increment_creator_votes (a single atomic UPDATE) or by
repair_totals, which rebuilds it from the audit log.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError

from db import decode_list, encode_list
from entities import Creator, Opportunity, Vote, normalize_address
from errors import NetworkError, ValidationError

logger = logging.getLogger(__name__)

_CREATOR_COLUMNS = (
    "id, wallet_address, name, bio, category, skills, portfolio_links, ai_tags, "
    "nft_minted, total_votes, created_at"
)
_VOTE_COLUMNS = "id, creator_id, curator_address, amount, transaction_hash, created_at"
_OPPORTUNITY_COLUMNS = (
    "id, title, description, company, category, required_tokens, tags, "
    "application_url, created_at"
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _creator(row) -> Creator:
    return Creator(
        id=row[0],
        wallet_address=row[1],
        name=row[2],
        bio=row[3],
        category=row[4],
        skills=decode_list(row[5]),
        portfolio_links=decode_list(row[6]),
        ai_tags=decode_list(row[7]),
        nft_minted=bool(row[8]),
        total_votes=int(row[9]),
        created_at=row[10],
    )


def _vote(row) -> Vote:
    return Vote(
        id=row[0], creator_id=row[1], curator_address=row[2],
        amount=int(row[3]), transaction_hash=row[4], created_at=row[5],
    )


def _opportunity(row) -> Opportunity:
    return Opportunity(
        id=row[0], title=row[1], description=row[2], company=row[3],
        category=row[4], required_tokens=int(row[5]), tags=decode_list(row[6]),
        application_url=row[7], created_at=row[8],
    )


@dataclass(frozen=True)
class TotalDrift:
    creator_id: str
    cached_total: int
    audit_total: int

    @property
    def delta(self) -> int:
        return self.audit_total - self.cached_total


class VoteLedgerStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def ensure_schema(self):
        from migrate import run_migrations
        run_migrations(self.engine)

    def _store_error(self, op: str, e: SQLAlchemyError) -> NetworkError:
        logger.warning("Vote store %s failed: %s", op, e)
        err = NetworkError(f"{op}: {e}")
        err.user_message = "Vote store unavailable. Please retry."
        return err

    # ------------------------------------------------------------
    # Vote ledger
    # ------------------------------------------------------------

    def increment_creator_votes(self, creator_id: str, amount: int,
                                conn: Optional[Connection] = None) -> int:
        """Atomically add `amount` to a creator's total and return the new total."""
        if amount <= 0:
            raise ValidationError("Vote amount must be positive")
        stmt = text(
            "UPDATE creators SET total_votes = total_votes + :a, updated_at = :u "
            "WHERE id = :id RETURNING total_votes"
        )
        params = {"a": amount, "u": _now_iso(), "id": creator_id}
        if conn is not None:
            row = conn.execute(stmt, params).first()
        else:
            try:
                with self.engine.begin() as c:
                    row = c.execute(stmt, params).first()
            except DBAPIError as e:
                raise self._store_error("increment_creator_votes", e) from e
        if row is None:
            raise ValidationError(f"Creator {creator_id} not found")
        return int(row[0])

    def record_vote(self, vote: Vote, conn: Optional[Connection] = None) -> str:
        stmt = text(
            f"INSERT INTO votes ({_VOTE_COLUMNS}) "
            "VALUES (:id, :creator_id, :curator, :amount, :tx, :created_at)"
        )
        params = {
            "id": vote.id, "creator_id": vote.creator_id,
            "curator": vote.curator_address.lower(), "amount": vote.amount,
            "tx": vote.transaction_hash, "created_at": vote.created_at,
        }
        if conn is not None:
            conn.execute(stmt, params)
        else:
            try:
                with self.engine.begin() as c:
                    c.execute(stmt, params)
            except DBAPIError as e:
                raise self._store_error("record_vote", e) from e
        return vote.id

    def apply_vote(self, creator_id: str, curator_address: str, amount: int,
                   transaction_hash: str) -> Tuple[Vote, int]:
        """
        Record the audit row and bump the aggregate in one transaction.

        Re-applying the same transaction hash is a no-op that returns the
        stored vote, so a retry after a lost commit acknowledgement cannot
        double count.
        """
        vote = Vote(
            id=str(uuid.uuid4()),
            creator_id=creator_id,
            curator_address=curator_address.lower(),
            amount=amount,
            transaction_hash=transaction_hash,
            created_at=_now_iso(),
        )
        try:
            with self.engine.begin() as conn:
                new_total = self.increment_creator_votes(creator_id, amount, conn=conn)
                self.record_vote(vote, conn=conn)
        except IntegrityError as e:
            existing = self.get_vote_by_hash(transaction_hash)
            if existing is None:
                raise self._store_error("apply_vote", e) from e
            creator = self.get_creator(existing.creator_id)
            logger.info("Vote %s already reconciled", transaction_hash)
            return existing, creator.total_votes if creator else 0
        except DBAPIError as e:
            raise self._store_error("apply_vote", e) from e
        logger.info(
            "Reconciled vote tx=%s creator=%s amount=%d total=%d",
            transaction_hash, creator_id, amount, new_total,
        )
        return vote, new_total

    def _query(self, op: str, sql: str, params=None):
        try:
            with self.engine.connect() as conn:
                return conn.execute(text(sql), params or {}).fetchall()
        except DBAPIError as e:
            raise self._store_error(op, e) from e

    def get_vote_by_hash(self, transaction_hash: str) -> Optional[Vote]:
        rows = self._query(
            "get_vote_by_hash",
            f"SELECT {_VOTE_COLUMNS} FROM votes WHERE transaction_hash = :tx",
            {"tx": transaction_hash},
        )
        return _vote(rows[0]) if rows else None

    def list_votes(self, creator_id: str) -> List[Vote]:
        rows = self._query(
            "list_votes",
            f"SELECT {_VOTE_COLUMNS} FROM votes WHERE creator_id = :cid "
            "ORDER BY created_at DESC",
            {"cid": creator_id},
        )
        return [_vote(r) for r in rows]

    # ------------------------------------------------------------
    # Creators
    # ------------------------------------------------------------

    def get_creator(self, creator_id: str) -> Optional[Creator]:
        rows = self._query(
            "get_creator",
            f"SELECT {_CREATOR_COLUMNS} FROM creators WHERE id = :id",
            {"id": creator_id},
        )
        return _creator(rows[0]) if rows else None

    def get_creator_by_wallet(self, wallet_address: str) -> Optional[Creator]:
        rows = self._query(
            "get_creator_by_wallet",
            f"SELECT {_CREATOR_COLUMNS} FROM creators WHERE wallet_address = :w",
            {"w": (wallet_address or "").strip().lower()},
        )
        return _creator(rows[0]) if rows else None

    def leaderboard(self, limit: int = 50) -> List[Creator]:
        rows = self._query(
            "leaderboard",
            f"SELECT {_CREATOR_COLUMNS} FROM creators "
            "ORDER BY total_votes DESC, created_at ASC LIMIT :n",
            {"n": limit},
        )
        return [_creator(r) for r in rows]

    def iter_creators(self, page_size: int = 500) -> Iterator[Creator]:
        """All creators in creation order, read a page at a time."""
        offset = 0
        while True:
            rows = self._query(
                "iter_creators",
                f"SELECT {_CREATOR_COLUMNS} FROM creators "
                "ORDER BY created_at ASC, id ASC LIMIT :n OFFSET :o",
                {"n": page_size, "o": offset},
            )
            for r in rows:
                yield _creator(r)
            if len(rows) < page_size:
                return
            offset += page_size

    def create_creator(self, wallet_address: str, name: str, bio: str = "",
                       category: str = "", skills: Iterable[str] = (),
                       portfolio_links: Iterable[str] = (),
                       ai_tags: Iterable[str] = ()) -> Creator:
        now = _now_iso()
        creator = Creator(
            id=str(uuid.uuid4()),
            wallet_address=normalize_address(wallet_address),
            name=name,
            bio=bio,
            category=category,
            skills=[s.strip() for s in skills if s and s.strip()],
            portfolio_links=[p.strip() for p in portfolio_links if p and p.strip()],
            ai_tags=[t for t in ai_tags if t],
            nft_minted=False,
            total_votes=0,
            created_at=now,
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    text(
                        "INSERT INTO creators (id, wallet_address, name, bio, category, "
                        "skills, portfolio_links, ai_tags, nft_minted, total_votes, "
                        "created_at, updated_at) VALUES (:id, :w, :name, :bio, :cat, "
                        ":skills, :links, :tags, FALSE, 0, :now, :now)"
                    ),
                    {
                        "id": creator.id, "w": creator.wallet_address, "name": name,
                        "bio": bio, "cat": category,
                        "skills": encode_list(creator.skills),
                        "links": encode_list(creator.portfolio_links),
                        "tags": encode_list(creator.ai_tags), "now": now,
                    },
                )
        except IntegrityError as e:
            raise ValidationError("A profile already exists for this wallet") from e
        except DBAPIError as e:
            raise self._store_error("create_creator", e) from e
        logger.info("Created creator %s for %s", creator.id, creator.wallet_address)
        return creator

    def mark_nft_minted(self, creator_id: str) -> bool:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    text("UPDATE creators SET nft_minted = TRUE, updated_at = :u WHERE id = :id"),
                    {"u": _now_iso(), "id": creator_id},
                )
        except DBAPIError as e:
            raise self._store_error("mark_nft_minted", e) from e
        return result.rowcount == 1

    # ------------------------------------------------------------
    # Opportunities (read-only for the core; create is for seeding)
    # ------------------------------------------------------------

    def create_opportunity(self, title: str, required_tokens: int, description: str = "",
                           company: str = "", category: str = "",
                           tags: Iterable[str] = (), application_url: str = "") -> Opportunity:
        if required_tokens < 0:
            raise ValidationError("required_tokens must be non-negative")
        opp = Opportunity(
            id=str(uuid.uuid4()), required_tokens=int(required_tokens), title=title,
            description=description, company=company, category=category,
            tags=list(tags), application_url=application_url, created_at=_now_iso(),
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    text(
                        f"INSERT INTO opportunities ({_OPPORTUNITY_COLUMNS}) VALUES "
                        "(:id, :title, :d, :c, :cat, :req, :tags, :url, :at)"
                    ),
                    {
                        "id": opp.id, "title": title, "d": description, "c": company,
                        "cat": category, "req": opp.required_tokens,
                        "tags": encode_list(opp.tags), "url": application_url,
                        "at": opp.created_at,
                    },
                )
        except DBAPIError as e:
            raise self._store_error("create_opportunity", e) from e
        return opp

    def list_opportunities(self) -> List[Opportunity]:
        rows = self._query(
            "list_opportunities",
            f"SELECT {_OPPORTUNITY_COLUMNS} FROM opportunities ORDER BY created_at DESC",
        )
        return [_opportunity(r) for r in rows]

    def get_opportunity(self, opportunity_id: str) -> Optional[Opportunity]:
        rows = self._query(
            "get_opportunity",
            f"SELECT {_OPPORTUNITY_COLUMNS} FROM opportunities WHERE id = :id",
            {"id": opportunity_id},
        )
        return _opportunity(rows[0]) if rows else None

    # ------------------------------------------------------------
    # Cache audit
    # ------------------------------------------------------------

    def audit_totals(self) -> List[TotalDrift]:
        """Creators whose cached total differs from their audit-log sum."""
        rows = self._query(
            "audit_totals",
            "SELECT c.id, c.total_votes, COALESCE(SUM(v.amount), 0) "
            "FROM creators c LEFT JOIN votes v ON v.creator_id = c.id "
            "GROUP BY c.id, c.total_votes",
        )
        return [
            TotalDrift(r[0], int(r[1]), int(r[2]))
            for r in rows if int(r[1]) != int(r[2])
        ]

    def repair_totals(self) -> List[TotalDrift]:
        drifts = self.audit_totals()
        if not drifts:
            return []
        try:
            with self.engine.begin() as conn:
                for d in drifts:
                    # recompute inside the transaction so concurrent votes are not lost
                    conn.execute(
                        text(
                            "UPDATE creators SET total_votes = ("
                            "SELECT COALESCE(SUM(amount), 0) FROM votes WHERE creator_id = :id"
                            "), updated_at = :u WHERE id = :id"
                        ),
                        {"id": d.creator_id, "u": _now_iso()},
                    )
        except DBAPIError as e:
            raise self._store_error("repair_totals", e) from e
        for d in drifts:
            logger.warning(
                "Repaired total_votes for %s: cached=%d audit=%d",
                d.creator_id, d.cached_total, d.audit_total,
            )
        return drifts
