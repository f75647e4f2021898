"""
Builds the object graph once per process from a Settings instance.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from config import Settings
from db import make_engine
from enrichment import MatchEnrichmentClient
from llm_provider import make_completer
from reconcile import ReconciliationEngine
from sweep import ReconciliationSweep
from vote_store import VoteLedgerStore
from chain.reader import ChainReader
from chain.wallet import WalletSessions
from chain.writer import ChainWriter

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    ledger: object
    store: VoteLedgerStore
    wallets: WalletSessions
    reader: ChainReader
    writer: ChainWriter
    engine: ReconciliationEngine
    sweep: ReconciliationSweep
    enrichment: MatchEnrichmentClient


def make_ledger(settings: Settings):
    if settings.simulated:
        from chain.simulated import SimulatedLedger
        return SimulatedLedger(settings)
    from chain.ledger import Web3Ledger
    return Web3Ledger(settings)


def build_services(settings: Settings, ledger=None, enrichment: Optional[MatchEnrichmentClient] = None,
                   store: Optional[VoteLedgerStore] = None, clock=time.time) -> Services:
    ledger = ledger if ledger is not None else make_ledger(settings)
    if store is None:
        store = VoteLedgerStore(make_engine(settings.database_url))
        store.ensure_schema()
    wallets = WalletSessions(simulated=settings.simulated, private_keys=settings.wallet_private_keys)
    reader = ChainReader(ledger, settings, clock=clock)
    writer = ChainWriter(ledger, settings, reader=reader)
    engine = ReconciliationEngine(settings, reader, writer, store, wallets, clock=clock)
    sweep = ReconciliationSweep(store, engine, ledger, settings)
    if enrichment is None:
        enrichment = MatchEnrichmentClient(make_completer(settings))
    return Services(
        settings=settings, ledger=ledger, store=store, wallets=wallets,
        reader=reader, writer=writer, engine=engine, sweep=sweep,
        enrichment=enrichment,
    )
