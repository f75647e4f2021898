from __future__ import annotations

import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(address: str) -> str:
    """Canonical lowercase form used for identity comparisons and storage."""
    a = (address or "").strip()
    if not _ADDRESS_RE.match(a):
        from errors import ValidationError
        raise ValidationError(f"Invalid wallet address: {address!r}")
    return a.lower()


def same_address(a: str, b: str) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


@dataclass
class Creator:
    id: str
    wallet_address: str
    name: str = ""
    bio: str = ""
    category: str = ""
    skills: List[str] = field(default_factory=list)
    portfolio_links: List[str] = field(default_factory=list)
    ai_tags: List[str] = field(default_factory=list)
    nft_minted: bool = False
    total_votes: int = 0
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Vote:
    id: str
    creator_id: str
    curator_address: str
    amount: int
    transaction_hash: str
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Opportunity:
    id: str
    required_tokens: int
    title: str = ""
    description: str = ""
    company: str = ""
    category: str = ""
    tags: List[str] = field(default_factory=list)
    application_url: str = ""
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AccountSnapshot:
    """Last ledger reading for one account, as cached by the chain reader."""
    address: str
    balance: Optional[int] = None
    can_claim: Optional[bool] = None
    cooldown_remaining: Optional[int] = None
    balance_read_at: float = 0.0
    eligibility_read_at: float = 0.0
    stale: bool = False
