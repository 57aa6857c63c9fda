"""
Account/session provider: which wallet is selected and which account is active.

The active account only becomes set through connect() or a verified
auto_connect(); a failed sign-in verification leaves the session disconnected.
"""

from __future__ import annotations

from typing import Callable

from solders.pubkey import Pubkey

from dapp_orchestrator.config.settings import OrchestratorConfig
from dapp_orchestrator.core.exceptions import NotConnected, SignInVerificationFailed
from dapp_orchestrator.dapp_logging import get_logger
from dapp_orchestrator.wallet.capabilities import Wallet, WalletCapability
from dapp_orchestrator.wallet.sign_in import (
    SignInInput,
    SignInOutput,
    create_sign_in_data,
    verify_sign_in,
)

logger = get_logger(__name__)

SignInVerifier = Callable[[SignInInput, SignInOutput], bool]


class WalletSession:
    """Holds the selected wallet and the active account reference."""

    def __init__(
        self,
        wallet: Wallet | None = None,
        *,
        config: OrchestratorConfig | None = None,
        verifier: SignInVerifier = verify_sign_in,
    ) -> None:
        self._wallet = wallet
        self._config = config
        self._verifier = verifier
        self._public_key: Pubkey | None = None

    @property
    def wallet(self) -> Wallet | None:
        return self._wallet

    @property
    def public_key(self) -> Pubkey | None:
        return self._public_key

    @property
    def connected(self) -> bool:
        return self._wallet is not None and self._public_key is not None

    def select(self, wallet: Wallet | None) -> None:
        """Switch wallets; the previous account reference is dropped."""
        self._wallet = wallet
        self._public_key = None

    def active_wallet(self) -> Wallet:
        if self._wallet is None or self._public_key is None:
            raise NotConnected("No wallet connected")
        return self._wallet

    async def connect(self) -> Pubkey:
        if self._wallet is None:
            raise NotConnected("No wallet selected")
        self._public_key = await self._wallet.connect()
        logger.info("session_connected", wallet=self._wallet.name, account=str(self._public_key))
        return self._public_key

    async def disconnect(self) -> None:
        if self._wallet is None:
            return
        await self._wallet.disconnect()
        self._public_key = None
        logger.info("session_disconnected", wallet=self._wallet.name)

    async def auto_connect(self) -> Pubkey:
        """
        Connect, proving account ownership first when the wallet supports sign-in.

        Raises SignInVerificationFailed when the signed output does not verify. The
        wallet is disconnected again (signing in may have connected it), so no
        account stays usable, and the attempt is not retried.
        """
        wallet = self._wallet
        if wallet is None:
            raise NotConnected("No wallet selected")
        if not wallet.supports(WalletCapability.SIGN_IN):
            return await self.connect()
        data = create_sign_in_data(self._config)
        self._public_key = None
        try:
            output = await wallet.sign_in(data)
        except Exception:
            await wallet.disconnect()
            raise
        if not self._verifier(data, output):
            logger.warning("session_sign_in_verification_failed", wallet=wallet.name)
            await wallet.disconnect()
            raise SignInVerificationFailed("Sign In verification failed!")
        self._public_key = Pubkey.from_string(output.account_address)
        logger.info("session_auto_connected", wallet=wallet.name, account=output.account_address)
        return self._public_key
