"""
Failure taxonomy shared by the chain layer, the store and the reconciliation
engine. Route handlers map these onto HTTP responses via `status_code` and
`user_message`.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureReason(str, Enum):
    USER_REJECTED = "UserRejected"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    NETWORK_ERROR = "NetworkError"
    VALIDATION_ERROR = "ValidationError"
    RECONCILIATION_ERROR = "ReconciliationError"
    TRANSACTION_REVERTED = "TransactionReverted"


class TalentLinkError(Exception):
    reason: Optional[FailureReason] = None
    status_code = 500
    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str = "", *, user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class ValidationError(TalentLinkError):
    reason = FailureReason.VALIDATION_ERROR
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, user_message=message)


class SignerRejected(TalentLinkError):
    reason = FailureReason.USER_REJECTED
    status_code = 400
    user_message = "Transaction cancelled by user"


class InsufficientFunds(TalentLinkError):
    reason = FailureReason.INSUFFICIENT_FUNDS
    status_code = 402
    user_message = "Insufficient ETH for gas fees"


class NetworkError(TalentLinkError):
    reason = FailureReason.NETWORK_ERROR
    status_code = 503
    user_message = "Network unavailable. Please retry."


class TransactionReverted(TalentLinkError):
    reason = FailureReason.TRANSACTION_REVERTED
    status_code = 400
    user_message = (
        "Transaction reverted on-chain. "
        "Common causes: insufficient token balance or allowance."
    )

    def __init__(self, tx_hash: str):
        super().__init__(f"transaction {tx_hash} reverted")
        self.tx_hash = tx_hash


class ReconciliationError(TalentLinkError):
    reason = FailureReason.RECONCILIATION_ERROR
    status_code = 409
    user_message = (
        "Your vote was recorded on-chain but may not yet be reflected. "
        "It will appear once reconciliation completes."
    )

    def __init__(self, tx_hash: str, cause: Optional[BaseException] = None):
        super().__init__(f"on-chain operation {tx_hash} confirmed but store update failed: {cause}")
        self.tx_hash = tx_hash
        self.cause = cause


class EnrichmentError(TalentLinkError):
    """Never leaves enrichment.py; kept in the taxonomy for logging."""


_REJECTED_MARKERS = ("user rejected", "user denied", "rejected by user", "cancelled by user")
_FUNDS_MARKERS = ("insufficient funds",)
_NETWORK_MARKERS = (
    "timeout", "timed out", "connection", "unreachable", "temporarily unavailable",
    "max retries", "502", "503", "504",
)


def classify_chain_error(exc: BaseException) -> TalentLinkError:
    """Map a raw signer / RPC exception onto the failure taxonomy."""
    if isinstance(exc, TalentLinkError):
        return exc
    msg = str(exc).lower()
    if any(m in msg for m in _REJECTED_MARKERS):
        return SignerRejected(str(exc))
    if any(m in msg for m in _FUNDS_MARKERS):
        return InsufficientFunds(str(exc))
    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return NetworkError(str(exc))
    if any(m in msg for m in _NETWORK_MARKERS):
        return NetworkError(str(exc))
    err = NetworkError(str(exc))
    err.user_message = "Transaction failed. Please try again."
    return err
