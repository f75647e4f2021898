"""
Faucet claim cooldown arithmetic.
"""
from __future__ import annotations

from dataclasses import dataclass

DEFAULT_CLAIM_INTERVAL = 86400


@dataclass(frozen=True)
class ClaimEligibility:
    can_claim: bool
    cooldown_remaining: int


def cooldown_remaining(last_claim_timestamp: int, now: float,
                       claim_interval: int = DEFAULT_CLAIM_INTERVAL) -> int:
    """Seconds until the next claim; 0 when an account has never claimed."""
    if last_claim_timestamp <= 0:
        return 0
    elapsed = int(now) - int(last_claim_timestamp)
    return max(0, claim_interval - max(0, elapsed))


def eligibility(last_claim_timestamp: int, now: float,
                claim_interval: int = DEFAULT_CLAIM_INTERVAL) -> ClaimEligibility:
    remaining = cooldown_remaining(last_claim_timestamp, now, claim_interval)
    return ClaimEligibility(can_claim=remaining == 0, cooldown_remaining=remaining)


def from_remaining(remaining: int) -> ClaimEligibility:
    # can_claim is always derived, never trusted separately from the countdown
    remaining = max(0, int(remaining))
    return ClaimEligibility(can_claim=remaining == 0, cooldown_remaining=remaining)


def format_time_until_claim(seconds: int) -> str:
    if seconds <= 0:
        return ""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def wait_message(seconds: int) -> str:
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    return f"Please wait {hours}h {minutes}m before claiming again"
