"""
Run one wallet use-case against the configured cluster with a local keypair wallet.

Usage:
  python main.py transfer --keypair ~/.config/solana/id.json
  python main.py transfer-v0-lookup-table            (keypair from WALLET_PRIVATE_KEY)

Config via env: SOLANA_NETWORK, SOLANA_RPC_URL, HELIUS_API_KEY, WALLET_PRIVATE_KEY,
CONFIRM_POLL_INTERVAL_SEC, CONFIRM_MAX_ATTEMPTS, LOOKUP_TABLE_WARMUP_SEC, ...
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

import base58
from solders.keypair import Keypair

from dapp_orchestrator.config.env import get_solana_network, is_devnet, load_env, mask_rpc_url
from dapp_orchestrator.config.settings import OrchestratorConfig
from dapp_orchestrator.dapp_logging import get_logger
from dapp_orchestrator.facade.event_log import LogStatus
from dapp_orchestrator.facade.orchestrator import WalletOrchestrator
from dapp_orchestrator.wallet.capabilities import KeypairWallet
from dapp_orchestrator.wallet.session import WalletSession

logger = get_logger(__name__)

USE_CASES = {
    "transfer": "sign_and_send_transaction",
    "transfer-v0": "sign_and_send_transaction_v0",
    "transfer-v0-lookup-table": "sign_and_send_transaction_v0_with_lookup_table",
    "sign-transaction": "sign_transaction",
    "sign-all-transactions": "sign_all_transactions",
    "sign-message": "sign_message",
    "sign-in": "sign_in",
    "sign-in-error": "sign_in_error",
}


def load_keypair(private_key: str) -> Keypair:
    """Load Keypair from a base58 string, a JSON array of 64 bytes, or a path to such a JSON file."""
    raw = private_key.strip()
    path = Path(raw).expanduser()
    if not raw.startswith("[") and path.is_file():
        raw = path.read_text(encoding="utf-8").strip()
    if raw.startswith("["):
        try:
            arr = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError("Invalid keypair JSON") from e
        if len(arr) < 64:
            raise ValueError("Keypair JSON must hold 64 bytes")
        return Keypair.from_bytes(bytes(arr[:64]))
    try:
        return Keypair.from_bytes(base58.b58decode(raw))
    except ValueError as e:
        raise ValueError("Invalid base58 private key") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a wallet use-case with a local keypair wallet.")
    parser.add_argument("use_case", choices=sorted(USE_CASES), help="Use-case to run")
    parser.add_argument(
        "--keypair",
        default=None,
        help="Keypair file, JSON byte array or base58 secret (default: WALLET_PRIVATE_KEY env)",
    )
    parser.add_argument("--auto-connect", action="store_true", help="Connect through a verified sign-in")
    return parser


async def run(use_case: str, keypair: Keypair, *, auto_connect: bool = False, config: OrchestratorConfig | None = None) -> int:
    cfg = config or OrchestratorConfig()
    wallet = KeypairWallet(keypair, origin=cfg.sign_in_domain)
    session = WalletSession(wallet, config=cfg)
    orchestrator = WalletOrchestrator.from_config(session, cfg)
    try:
        if auto_connect:
            await orchestrator.auto_connect()
        else:
            await orchestrator.connect()
        await getattr(orchestrator, USE_CASES[use_case])()
    finally:
        await orchestrator.close()
    for entry in orchestrator.log.entries():
        print(entry)
    failed = any(e.status is LogStatus.ERROR for e in orchestrator.log.entries())
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    load_env()
    secret = args.keypair or (os.getenv("WALLET_PRIVATE_KEY") or "").strip()
    if not secret:
        logger.error("cli_config_error", message="Pass --keypair or set WALLET_PRIVATE_KEY")
        return 2
    try:
        keypair = load_keypair(secret)
    except ValueError as e:
        logger.error("cli_keypair_load_failed", error=str(e))
        return 2
    cfg = OrchestratorConfig()
    logger.info(
        "cli_starting",
        use_case=args.use_case,
        network=get_solana_network(),
        rpc_url=mask_rpc_url(cfg.rpc_url),
    )
    if not is_devnet():
        logger.warning("cli_mainnet_selected", message="Transfers spend real SOL on mainnet")
    return asyncio.run(run(args.use_case, keypair, auto_connect=args.auto_connect, config=cfg))


if __name__ == "__main__":
    sys.exit(main())
