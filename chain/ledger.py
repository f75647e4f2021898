# app/chain/ledger.py
"""
Ledger access for the vote token and DAO contracts.

All methods are synchronous, like the rest of the web3 code; async callers
push them onto a worker thread. Reads raise NetworkError on any RPC failure,
writes raise the classified signer/RPC error.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from web3 import Web3
from web3.exceptions import TransactionNotFound

from config import Settings
from errors import NetworkError, classify_chain_error
from .abi import VOTE_TOKEN_ABI, DAO_ABI

logger = logging.getLogger(__name__)


class Ledger(Protocol):
    decimals: int

    def balance_of(self, account: str) -> int: ...
    def can_claim_from_faucet(self, account: str) -> bool: ...
    def get_time_until_next_claim(self, account: str) -> int: ...
    def get_creator_votes(self, creator: str) -> int: ...
    def claim_from_faucet(self, wallet) -> str: ...
    def approve(self, wallet, spender: str, amount: int) -> str: ...
    def vote_for_creator(self, wallet, creator: str, amount: int) -> str: ...
    def get_receipt_status(self, tx_hash: str) -> Optional[bool]: ...


class Web3Ledger:
    def __init__(self, settings: Settings, w3: Optional[Web3] = None):
        self.settings = settings
        self.w3 = w3 or Web3(Web3.HTTPProvider(settings.rpc_url))
        self.decimals = settings.token_decimals
        self._token = self.w3.eth.contract(
            address=Web3.to_checksum_address(settings.vote_token_address),
            abi=VOTE_TOKEN_ABI,
        )
        self._dao = self.w3.eth.contract(
            address=Web3.to_checksum_address(settings.dao_address),
            abi=DAO_ABI,
        )

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def _call(self, fn, label):
        try:
            return fn.call()
        except Exception as e:
            logger.warning("Ledger read %s failed: %s", label, e)
            raise NetworkError(str(e)) from e

    def balance_of(self, account: str) -> int:
        addr = Web3.to_checksum_address(account)
        return int(self._call(self._token.functions.balanceOf(addr), "balanceOf"))

    def can_claim_from_faucet(self, account: str) -> bool:
        addr = Web3.to_checksum_address(account)
        return bool(self._call(self._token.functions.canClaimFromFaucet(addr), "canClaimFromFaucet"))

    def get_time_until_next_claim(self, account: str) -> int:
        addr = Web3.to_checksum_address(account)
        return int(self._call(
            self._token.functions.getTimeUntilNextClaim(addr), "getTimeUntilNextClaim"
        ))

    def get_creator_votes(self, creator: str) -> int:
        addr = Web3.to_checksum_address(creator)
        return int(self._call(self._dao.functions.getCreatorVotes(addr), "getCreatorVotes"))

    def get_receipt_status(self, tx_hash: str) -> Optional[bool]:
        """None while the transaction is not mined, else whether it succeeded."""
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise NetworkError(str(e)) from e
        if receipt is None:
            return None
        return receipt["status"] == 1

    # ------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------

    def _send(self, wallet, fn, label) -> str:
        try:
            tx = fn.build_transaction({"from": Web3.to_checksum_address(wallet.address)})
            tx_hash = wallet.sign_and_send(self.w3, tx)
        except Exception as e:
            err = classify_chain_error(e)
            logger.warning("Ledger write %s failed (%s): %s", label, err.reason, e)
            raise err from e
        logger.info("Submitted %s from=%s tx=%s", label, wallet.address, tx_hash)
        return tx_hash

    def claim_from_faucet(self, wallet) -> str:
        return self._send(wallet, self._token.functions.claimFromFaucet(), "claimFromFaucet")

    def approve(self, wallet, spender: str, amount: int) -> str:
        return self._send(
            wallet,
            self._token.functions.approve(Web3.to_checksum_address(spender), amount),
            "approve",
        )

    def vote_for_creator(self, wallet, creator: str, amount: int) -> str:
        return self._send(
            wallet,
            self._dao.functions.voteForCreator(Web3.to_checksum_address(creator), amount),
            "voteForCreator",
        )
