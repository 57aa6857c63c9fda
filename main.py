"""
Main entrypoint: run one wallet use-case against the configured Solana cluster.

Env: SOLANA_NETWORK, SOLANA_RPC_URL, HELIUS_API_KEY, WALLET_PRIVATE_KEY, LOG_LEVEL, LOG_FORMAT.
See dapp_orchestrator.cli for the available use-cases.
"""

import sys

from dapp_orchestrator.cli import main

if __name__ == "__main__":
    sys.exit(main())
