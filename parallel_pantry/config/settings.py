from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal

from dotenv import load_dotenv


DEFAULT_ENV_FILE = "~/.parallel_pantry.env"
DEFAULT_RPC_URL = "https://rpc.moderato.tempo.xyz"
DEFAULT_VAULT_ADDRESS = "0x0b3012EdaA34872d536CeE2f80D4BfFD6e854B6A"
UNLIMITED = {"", "0", "none", "unlimited", "inf"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.environ.get(name)
    if raw is None:
        value = default
    else:
        value = int(raw)
    if min_value is not None:
        value = max(min_value, value)
    return value


def _env_float(name: str, default: float, min_value: float | None = None) -> float:
    raw = os.environ.get(name)
    if raw is None:
        value = default
    else:
        value = float(raw)
    if min_value is not None:
        value = max(min_value, value)
    return value


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.environ.get(name)
    return Decimal(str(raw if raw is not None else default).strip())


def _env_claim_limit(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip().lower() in UNLIMITED:
        return None
    value = int(raw)
    return value if value > 0 else None


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    data_dir: str
    log_level: str
    dry_run: bool
    api_host: str
    api_port: int
    scheduler_enabled: bool
    round_interval_sec: float
    score_threshold: int
    max_claims_per_address: int | None
    payout_amount: Decimal
    amount_policy: str
    submit_stagger_ms: float
    rpc_urls: tuple[str, ...]
    chain_id: int
    vault_address: str
    token_decimals: int
    gas_limit: int
    priority_fee_gwei: float
    receipt_timeout_sec: float
    lane_nonce_mode: str = "sequential"
    agent_private_key: str = field(default="", repr=False)


def load_settings(env_file: str | None = DEFAULT_ENV_FILE) -> Settings:
    if env_file:
        load_dotenv(os.path.expanduser(env_file))
    return Settings(
        data_dir=os.environ.get("DATA_DIR", "./data"),
        log_level=os.environ.get("LOG_LEVEL", "INFO").strip().upper(),
        dry_run=_env_bool("DRY_RUN", True),
        api_host=os.environ.get("API_HOST", "0.0.0.0").strip(),
        api_port=_env_int("API_PORT", 8080, min_value=1),
        scheduler_enabled=_env_bool("SCHEDULER_ENABLED", True),
        round_interval_sec=_env_float("RELIEF_ROUND_SEC", 60.0, min_value=1.0),
        score_threshold=_env_int("RELIEF_SCORE_THRESHOLD", 85, min_value=0),
        max_claims_per_address=_env_claim_limit("MAX_CLAIMS_PER_ADDRESS"),
        payout_amount=_env_decimal("PAYOUT_AMOUNT", "50"),
        amount_policy=os.environ.get("AMOUNT_POLICY", "fixed").strip().lower(),
        submit_stagger_ms=_env_float("SUBMIT_STAGGER_MS", 50.0, min_value=0.0),
        rpc_urls=_env_list("TEMPO_RPC_URLS", DEFAULT_RPC_URL),
        chain_id=_env_int("TEMPO_CHAIN_ID", 42431, min_value=1),
        vault_address=os.environ.get("VAULT_ADDRESS", DEFAULT_VAULT_ADDRESS).strip(),
        token_decimals=_env_int("TOKEN_DECIMALS", 6, min_value=0),
        gas_limit=_env_int("TX_GAS_LIMIT", 200_000, min_value=21_000),
        priority_fee_gwei=_env_float("PRIORITY_FEE_GWEI", 1.0, min_value=0.0),
        receipt_timeout_sec=_env_float("RECEIPT_TIMEOUT_SEC", 60.0, min_value=1.0),
        lane_nonce_mode=os.environ.get("LANE_NONCE_MODE", "sequential").strip().lower(),
        agent_private_key=os.environ.get("AI_AGENT_PRIVATE_KEY", "").strip(),
    )
