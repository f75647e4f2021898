import pytest

from config import Settings
from db import make_engine
from enrichment import MatchEnrichmentClient
from services import build_services
from vote_store import VoteLedgerStore
from chain.simulated import SimulatedLedger

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20

T0 = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        chain_mode="simulated",
        database_url=f"sqlite:///{tmp_path / 'talentlink.db'}",
        receipt_poll_interval=0.01,
        read_retries=0,
        read_retry_delay=0.0,
        reconcile_max_attempts=3,
        reconcile_base_delay=0.001,
        sim_confirmation_delay=0.0,
        llm_api_key="",
    )


@pytest.fixture
def store(settings):
    s = VoteLedgerStore(make_engine(settings.database_url))
    s.ensure_schema()
    return s


@pytest.fixture
def ledger(settings, clock):
    return SimulatedLedger(settings, clock=clock, confirmation_delay=0)


@pytest.fixture
def svc(settings, ledger, store, clock):
    return build_services(
        settings, ledger=ledger, store=store,
        enrichment=MatchEnrichmentClient(None), clock=clock,
    )


@pytest.fixture
def creator(store):
    return store.create_creator(ALICE, "Alice", "Illustrator and motion designer", "art")
