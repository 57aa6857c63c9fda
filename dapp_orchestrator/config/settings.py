"""
Orchestrator settings: RPC endpoint, confirmation polling budget, lookup table
warm-up, transfer parameters and sign-in challenge defaults.

Every field defaults from the environment (see config.env for RPC resolution).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache

from dapp_orchestrator.config.env import get_solana_rpc_url, load_env

DEFAULT_CONFIRM_POLL_INTERVAL_SEC = 2.0
DEFAULT_CONFIRM_MAX_ATTEMPTS = 15
# Empirical wait after the extension confirms; verify against the target cluster.
DEFAULT_LOOKUP_TABLE_WARMUP_SEC = 6.0
DEFAULT_TRANSFER_LAMPORTS = 100
DEFAULT_COMMITMENT = "confirmed"
DEFAULT_SIGN_IN_DOMAIN = "localhost:3000"
DEFAULT_SIGN_IN_URI = "http://localhost:3000"
DEFAULT_SIGN_IN_CHAIN_ID = "solana:devnet"
DEFAULT_SIGN_IN_STATEMENT = (
    "Clicking Sign or Approve only means you have proved this wallet is owned by you. "
    "This request will not trigger any blockchain transaction or cost any gas fee."
)


def _env_float(name: str, default: float) -> float:
    load_env()
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    load_env()
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_str(name: str, default: str | None = None) -> str | None:
    load_env()
    raw = (os.getenv(name) or "").strip()
    return raw or default


@dataclass
class OrchestratorConfig:
    """Config for the orchestration layer (env or explicit)."""

    rpc_url: str = field(default_factory=get_solana_rpc_url)
    commitment: str = field(default_factory=lambda: _env_str("COMMITMENT", DEFAULT_COMMITMENT))
    confirm_poll_interval_sec: float = field(
        default_factory=lambda: _env_float("CONFIRM_POLL_INTERVAL_SEC", DEFAULT_CONFIRM_POLL_INTERVAL_SEC)
    )
    confirm_max_attempts: int = field(
        default_factory=lambda: _env_int("CONFIRM_MAX_ATTEMPTS", DEFAULT_CONFIRM_MAX_ATTEMPTS)
    )
    lookup_table_warmup_sec: float = field(
        default_factory=lambda: _env_float("LOOKUP_TABLE_WARMUP_SEC", DEFAULT_LOOKUP_TABLE_WARMUP_SEC)
    )
    transfer_lamports: int = field(default_factory=lambda: _env_int("TRANSFER_LAMPORTS", DEFAULT_TRANSFER_LAMPORTS))
    transfer_recipient: str | None = field(default_factory=lambda: _env_str("TRANSFER_RECIPIENT"))
    sign_in_domain: str = field(default_factory=lambda: _env_str("SIGN_IN_DOMAIN", DEFAULT_SIGN_IN_DOMAIN))
    sign_in_uri: str = field(default_factory=lambda: _env_str("SIGN_IN_URI", DEFAULT_SIGN_IN_URI))
    sign_in_chain_id: str = field(default_factory=lambda: _env_str("SIGN_IN_CHAIN_ID", DEFAULT_SIGN_IN_CHAIN_ID))
    sign_in_statement: str = DEFAULT_SIGN_IN_STATEMENT

    def __post_init__(self) -> None:
        if not self.rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        if self.commitment not in ("processed", "confirmed", "finalized"):
            self.commitment = DEFAULT_COMMITMENT
        if self.confirm_poll_interval_sec < 0:
            self.confirm_poll_interval_sec = DEFAULT_CONFIRM_POLL_INTERVAL_SEC
        if self.confirm_max_attempts < 1:
            self.confirm_max_attempts = 1
        if self.lookup_table_warmup_sec < 0:
            self.lookup_table_warmup_sec = 0.0
        if self.transfer_lamports < 1:
            self.transfer_lamports = DEFAULT_TRANSFER_LAMPORTS


@lru_cache(maxsize=1)
def get_settings() -> OrchestratorConfig:
    """Return the process-wide settings built from the environment."""
    return OrchestratorConfig()
