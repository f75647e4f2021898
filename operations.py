"""
In-flight ledger operations.

A PendingOperation lives only in memory: it is created when the writer
accepts a submission and dropped once its terminal status has been
consumed. Nothing here is persisted across restarts.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Optional, Union

from errors import TalentLinkError


class OperationKind(str, Enum):
    CLAIM = "Claim"
    APPROVE = "Approve"
    VOTE = "Vote"


class OperationStatus(str, Enum):
    SUBMITTED = "Submitted"
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (OperationStatus.CONFIRMED, OperationStatus.FAILED)


@dataclass(frozen=True)
class Claim:
    kind = OperationKind.CLAIM


@dataclass(frozen=True)
class Approve:
    spender: str
    amount: int  # base units
    kind = OperationKind.APPROVE


@dataclass(frozen=True)
class CastVote:
    creator: str
    amount: int  # whole tokens, 1..10
    kind = OperationKind.VOTE


Operation = Union[Claim, Approve, CastVote]

_ALLOWED = {
    OperationStatus.SUBMITTED: {OperationStatus.PENDING, OperationStatus.FAILED},
    OperationStatus.PENDING: {OperationStatus.CONFIRMED, OperationStatus.FAILED},
}


class PendingOperation:
    def __init__(self, kind: OperationKind, account: str, tx_hash: str,
                 submitted_at: Optional[float] = None):
        self.kind = kind
        self.account = account
        self.hash = tx_hash
        self.submitted_at = submitted_at if submitted_at is not None else time.time()
        self.status = OperationStatus.SUBMITTED
        self.error: Optional[TalentLinkError] = None
        self._history: List[OperationStatus] = [OperationStatus.SUBMITTED]
        self._changed = asyncio.Event()
        self._done = asyncio.get_running_loop().create_future()

    def __repr__(self):
        return f"<PendingOperation {self.kind.value} {self.hash} {self.status.value}>"

    @property
    def history(self) -> List[OperationStatus]:
        return list(self._history)

    def transition(self, status: OperationStatus, error: Optional[TalentLinkError] = None):
        if status not in _ALLOWED.get(self.status, ()):
            raise RuntimeError(f"illegal transition {self.status.value} -> {status.value}")
        self.status = status
        self._history.append(status)
        if status is OperationStatus.FAILED:
            self.error = error
        if status.terminal and not self._done.done():
            self._done.set_result(status)
        self._changed.set()
        self._changed = asyncio.Event()

    async def subscribe(self) -> AsyncIterator[OperationStatus]:
        """Yield every status from Submitted through the terminal one."""
        seen = 0
        while True:
            while seen < len(self._history):
                status = self._history[seen]
                seen += 1
                yield status
                if status.terminal:
                    return
            await self._changed.wait()

    async def wait(self) -> OperationStatus:
        # shielded: a caller giving up must not stop confirmation tracking
        return await asyncio.shield(self._done)
