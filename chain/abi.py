# app/chain/abi.py
"""
Contract ABIs for the vote token, profile NFT and DAO.
Prefers Foundry/Hardhat build artifacts when they are mounted, otherwise
falls back to the minimal fragments the app actually calls.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Dict, Any, Optional

logger = logging.getLogger(__name__)

_ARTIFACTS_DIR = Path(os.getenv("CONTRACT_ARTIFACTS_DIR", "/core/out"))


def load_abi(contract_name: str) -> Optional[List[Dict[str, Any]]]:
    """
    Load ABI for a contract from the build output.

    Args:
        contract_name: e.g. "TalentLinkToken", "TalentLinkDAO"

    Returns:
        ABI as a list of dicts, or None when the artifact is missing
        or unreadable.
    """
    artifact = _ARTIFACTS_DIR / f"{contract_name}.sol" / f"{contract_name}.json"
    if not artifact.exists():
        return None
    try:
        with artifact.open() as f:
            return json.load(f).get("abi")
    except (OSError, ValueError) as e:
        logger.warning("Unreadable ABI artifact %s: %s", artifact, e)
        return None


VOTE_TOKEN_ABI = load_abi("TalentLinkToken") or [
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "decimals",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "type": "function",
        "name": "claimFromFaucet",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "canClaimFromFaucet",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "getTimeUntilNextClaim",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

DAO_ABI = load_abi("TalentLinkDAO") or [
    {
        "type": "function",
        "name": "voteForCreator",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "creator", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getCreatorVotes",
        "stateMutability": "view",
        "inputs": [{"name": "creator", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "canVoteForCreator",
        "stateMutability": "view",
        "inputs": [
            {"name": "curator", "type": "address"},
            {"name": "creator", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]
