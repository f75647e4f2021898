# app/config.py
from dotenv import load_dotenv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple
import os, json

# ------------------------------------------------------------
# Deployment artifact (Foundry broadcast JSON)
# ------------------------------------------------------------
BROADCAST_PATH = Path(os.getenv(
    "BROADCAST_PATH", "/app/broadcast/Deploy.s.sol/31337/run-latest.json"
))

# Local hardhat/anvil defaults used by the demo deployment
DEFAULT_VOTE_TOKEN_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
DEFAULT_PROFILE_NFT_ADDRESS = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
DEFAULT_DAO_ADDRESS = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"


def load_deployed(path: Path = BROADCAST_PATH) -> Dict[str, str]:
    if not path.exists():
        print(f"⚠️ deployment artifact missing: {path}")
        return {}

    try:
        with path.open() as f:
            data = json.load(f)

        out = {}
        for tx in data.get("transactions", []):
            name = tx.get("contractName")
            addr = tx.get("contractAddress")
            if name and addr:
                out[name] = addr
        return out
    except Exception as e:
        print("⚠️ failed to load deployment JSON:", e)
        return {}


def _int(env, name, default):
    return int(env.get(name, default))


def _float(env, name, default):
    return float(env.get(name, default))


@dataclass(frozen=True)
class Settings:
    # chain
    chain_mode: str = "simulated"
    chain_id: int = 31337
    rpc_url: str = "http://127.0.0.1:8545"
    vote_token_address: str = DEFAULT_VOTE_TOKEN_ADDRESS
    profile_nft_address: str = DEFAULT_PROFILE_NFT_ADDRESS
    dao_address: str = DEFAULT_DAO_ADDRESS
    wallet_private_keys: Tuple[str, ...] = ()
    token_decimals: int = 18

    # faucet / voting rules
    claim_interval: int = 86400
    faucet_amount: int = 100
    min_vote: int = 1
    max_vote: int = 10

    # polling cadence (seconds)
    balance_poll_interval: float = 5.0
    eligibility_poll_interval: float = 10.0
    countdown_poll_interval: float = 1.0
    receipt_poll_interval: float = 2.0
    read_retries: int = 2
    read_retry_delay: float = 0.25

    # reconciliation
    reconcile_max_attempts: int = 5
    reconcile_base_delay: float = 0.5
    sweep_interval: float = 300.0
    soft_timeout: float = 180.0
    sim_confirmation_delay: float = 1.0

    # store
    database_url: str = "sqlite:///./talentlink.db"

    # enrichment
    llm_provider: str = "openai"
    llm_model: str = "openai/gpt-3.5-turbo"
    llm_base_url: Optional[str] = "https://openrouter.ai/api/v1"
    llm_api_key: str = ""
    anthropic_api_key: str = ""
    enrichment_timeout: float = 15.0

    deployed: Dict[str, str] = field(default_factory=dict)

    @property
    def simulated(self) -> bool:
        return self.chain_mode == "simulated"


def load_settings(env=None, deployed=None) -> Settings:
    """Build the process-wide settings from the environment.

    Called once at startup; everything downstream receives the returned
    object instead of reading os.environ.
    """
    if env is None:
        load_dotenv()
        env = os.environ
    if deployed is None:
        deployed = load_deployed()

    keys = tuple(
        k.strip() for k in env.get("WALLET_PRIVATE_KEYS", "").split(",") if k.strip()
    )

    return Settings(
        chain_mode=env.get("CHAIN_MODE", "simulated").lower().strip(),
        chain_id=_int(env, "CHAIN_ID", "31337"),
        rpc_url=env.get("RPC_URL", "http://127.0.0.1:8545"),
        vote_token_address=(
            env.get("VOTE_TOKEN_ADDRESS")
            or deployed.get("TalentLinkToken")
            or DEFAULT_VOTE_TOKEN_ADDRESS
        ),
        profile_nft_address=(
            env.get("PROFILE_NFT_ADDRESS")
            or deployed.get("TalentLinkNFT")
            or DEFAULT_PROFILE_NFT_ADDRESS
        ),
        dao_address=(
            env.get("DAO_ADDRESS")
            or deployed.get("TalentLinkDAO")
            or DEFAULT_DAO_ADDRESS
        ),
        wallet_private_keys=keys,
        token_decimals=_int(env, "TOKEN_DECIMALS", "18"),
        claim_interval=_int(env, "CLAIM_INTERVAL", "86400"),
        faucet_amount=_int(env, "FAUCET_AMOUNT", "100"),
        min_vote=_int(env, "MIN_VOTE", "1"),
        max_vote=_int(env, "MAX_VOTE", "10"),
        balance_poll_interval=_float(env, "BALANCE_POLL_INTERVAL", "5"),
        eligibility_poll_interval=_float(env, "ELIGIBILITY_POLL_INTERVAL", "10"),
        countdown_poll_interval=_float(env, "COUNTDOWN_POLL_INTERVAL", "1"),
        receipt_poll_interval=_float(env, "RECEIPT_POLL_INTERVAL", "2"),
        read_retries=_int(env, "READ_RETRIES", "2"),
        read_retry_delay=_float(env, "READ_RETRY_DELAY", "0.25"),
        reconcile_max_attempts=_int(env, "RECONCILE_MAX_ATTEMPTS", "5"),
        reconcile_base_delay=_float(env, "RECONCILE_BASE_DELAY", "0.5"),
        sweep_interval=_float(env, "SWEEP_INTERVAL", "300"),
        soft_timeout=_float(env, "SOFT_TIMEOUT", "180"),
        sim_confirmation_delay=_float(env, "SIM_CONFIRMATION_DELAY", "1"),
        database_url=env.get("DATABASE_URL", "sqlite:///./talentlink.db"),
        llm_provider=env.get("LLM_PROVIDER", "openai").lower().strip(),
        llm_model=env.get("LLM_MODEL", "openai/gpt-3.5-turbo"),
        llm_base_url=env.get("LLM_BASE_URL", "https://openrouter.ai/api/v1") or None,
        llm_api_key=env.get("OPENROUTER_API_KEY") or env.get("OPENAI_API_KEY", ""),
        anthropic_api_key=env.get("ANTHROPIC_API_KEY", ""),
        enrichment_timeout=_float(env, "ENRICHMENT_TIMEOUT", "15"),
        deployed=dict(deployed),
    )


def print_banner(settings: Settings):
    print("Config loaded:")
    print("  CHAIN_MODE:", settings.chain_mode)
    print("  CHAIN_ID:", settings.chain_id)
    print("  VOTE_TOKEN:", settings.vote_token_address)
    print("  DAO:", settings.dao_address)
    print("  RPC_URL:", settings.rpc_url[:48] + ("…" if len(settings.rpc_url) > 48 else ""))
    print("  SIGNER KEYS:", len(settings.wallet_private_keys))
    print("  LLM:", settings.llm_provider, settings.llm_model,
          "<key set>" if settings.llm_api_key or settings.anthropic_api_key else "<no key>")
    print("  From deployment JSON:", len(settings.deployed), "contracts")
