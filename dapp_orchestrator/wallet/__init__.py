"""
Wallet boundary: capability set, adapters, session state and sign-in helpers.
"""

from dapp_orchestrator.wallet.capabilities import (
    ALL_CAPABILITIES,
    KeypairWallet,
    Wallet,
    WalletCapability,
)
from dapp_orchestrator.wallet.session import WalletSession

__all__ = [
    "ALL_CAPABILITIES",
    "KeypairWallet",
    "Wallet",
    "WalletCapability",
    "WalletSession",
]
