# app/chain/wallet.py
"""
Server-side signers and the set of currently connected wallets.

In web3 mode only addresses whose private keys are configured can connect;
in simulated mode any well-formed address can.
"""
from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, Optional

from eth_account import Account

from entities import normalize_address
from errors import ValidationError

logger = logging.getLogger(__name__)


class LocalWallet:
    """Signs and broadcasts transactions with a locally held key."""

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign_and_send(self, w3, tx: dict) -> str:
        tx = dict(tx)
        tx.pop("gasPrice", None)

        try:
            base_fee = w3.eth.get_block("latest").baseFeePerGas
            priority = w3.eth.max_priority_fee * 150 // 100
            tx["type"] = 2
            tx["maxFeePerGas"] = base_fee + priority
            tx["maxPriorityFeePerGas"] = priority
        except Exception as e:
            logger.debug("EIP-1559 fee fetch failed, using legacy gasPrice: %s", e)
            tx["gasPrice"] = w3.eth.gas_price * 120 // 100

        tx["nonce"] = w3.eth.get_transaction_count(self._account.address, "pending")
        tx["chainId"] = w3.eth.chain_id

        if "gas" not in tx:
            try:
                tx["gas"] = w3.eth.estimate_gas(tx)
            except Exception as e:
                logger.debug("Gas estimation failed: %s", e)
                tx["gas"] = 250_000

        signed = self._account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction).hex()
        # hexbytes>=1.0 drops the prefix
        return tx_hash if tx_hash.startswith("0x") else "0x" + tx_hash


class SimulatedWallet:
    """Stand-in signer for the simulated ledger; it never holds a key."""

    def __init__(self, address: str):
        self.address = address

    def sign_and_send(self, w3, tx: dict) -> str:
        raise RuntimeError("simulated wallets submit through SimulatedLedger")


class WalletSessions:
    def __init__(self, *, simulated: bool, private_keys: Iterable[str] = ()):
        self._simulated = simulated
        self._lock = threading.Lock()
        self._available: Dict[str, LocalWallet] = {}
        self._connected: Dict[str, object] = {}
        for key in private_keys:
            w = LocalWallet(key)
            self._available[w.address.lower()] = w

    def connect(self, address: str):
        addr = normalize_address(address)
        with self._lock:
            if addr in self._connected:
                return self._connected[addr]
            if self._simulated:
                wallet = SimulatedWallet(addr)
            else:
                wallet = self._available.get(addr)
                if wallet is None:
                    raise ValidationError("No signer is configured for this wallet")
            self._connected[addr] = wallet
        logger.info("Wallet connected: %s", addr)
        return wallet

    def disconnect(self, address: str) -> bool:
        addr = normalize_address(address)
        with self._lock:
            removed = self._connected.pop(addr, None) is not None
        if removed:
            logger.info("Wallet disconnected: %s", addr)
        return removed

    def get(self, address: str) -> Optional[object]:
        with self._lock:
            return self._connected.get((address or "").strip().lower())

    def is_connected(self, address: str) -> bool:
        return self.get(address) is not None
