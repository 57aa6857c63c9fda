"""
Wallet capability set and adapters.

A wallet exposes a variable subset of signing methods. Callers check
``supports()`` (the dispatcher does this for them) instead of assuming every
wallet implements everything; calling an unsupported method raises
CapabilityUnavailable.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Iterable, Sequence

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction

from dapp_orchestrator.config.settings import DEFAULT_SIGN_IN_DOMAIN
from dapp_orchestrator.core.exceptions import CapabilityUnavailable, NotConnected, SigningRejected
from dapp_orchestrator.dapp_logging import get_logger
from dapp_orchestrator.transactions.models import SolanaTransaction, UnsignedTransaction
from dapp_orchestrator.wallet.sign_in import SignInInput, SignInOutput, create_sign_in_message_text

if TYPE_CHECKING:
    from dapp_orchestrator.transactions.connection import NetworkContext

logger = get_logger(__name__)


class WalletCapability(str, Enum):
    SIGN_MESSAGE = "signMessage"
    SIGN_IN = "signIn"
    SIGN_TRANSACTION = "signTransaction"
    SIGN_ALL_TRANSACTIONS = "signAllTransactions"
    SIGN_AND_SEND_TRANSACTION = "signAndSendTransaction"


ALL_CAPABILITIES = frozenset(WalletCapability)


class Wallet:
    """
    Base adapter. Subclasses set ``capabilities`` and override the matching
    coroutines; the defaults raise CapabilityUnavailable.
    """

    name = "Wallet"
    capabilities: frozenset[WalletCapability] = frozenset()

    def __init__(self) -> None:
        self._public_key: Pubkey | None = None

    @property
    def public_key(self) -> Pubkey | None:
        return self._public_key

    @property
    def connected(self) -> bool:
        return self._public_key is not None

    def supports(self, capability: WalletCapability) -> bool:
        return capability in self.capabilities

    def require_connected(self) -> Pubkey:
        if self._public_key is None:
            raise NotConnected(f"{self.name} is not connected")
        return self._public_key

    async def connect(self) -> Pubkey:
        raise NotImplementedError

    async def disconnect(self) -> None:
        self._public_key = None

    def _unsupported(self, capability: WalletCapability) -> CapabilityUnavailable:
        return CapabilityUnavailable(capability.value, self.name)

    async def sign_transaction(self, tx: UnsignedTransaction) -> SolanaTransaction:
        raise self._unsupported(WalletCapability.SIGN_TRANSACTION)

    async def sign_all_transactions(self, txs: Sequence[UnsignedTransaction]) -> list[SolanaTransaction]:
        raise self._unsupported(WalletCapability.SIGN_ALL_TRANSACTIONS)

    async def sign_and_send_transaction(self, tx: UnsignedTransaction, context: "NetworkContext") -> Signature:
        raise self._unsupported(WalletCapability.SIGN_AND_SEND_TRANSACTION)

    async def sign_message(self, message: bytes) -> Signature:
        raise self._unsupported(WalletCapability.SIGN_MESSAGE)

    async def sign_in(self, data: SignInInput) -> SignInOutput:
        raise self._unsupported(WalletCapability.SIGN_IN)


class KeypairWallet(Wallet):
    """
    Wallet backed by a local keypair; approves every request it can sign.

    ``origin`` is the domain it accepts sign-in challenges from; challenges for any
    other domain are refused the way browser wallets refuse phishing requests.
    """

    name = "KeypairWallet"

    def __init__(
        self,
        keypair: Keypair,
        *,
        origin: str = DEFAULT_SIGN_IN_DOMAIN,
        capabilities: Iterable[WalletCapability] = ALL_CAPABILITIES,
    ) -> None:
        super().__init__()
        self._keypair = keypair
        self._origin = origin
        self.capabilities = frozenset(capabilities)

    async def connect(self) -> Pubkey:
        self._public_key = self._keypair.pubkey()
        logger.info("wallet_connected", wallet=self.name, account=str(self._public_key))
        return self._public_key

    def _check(self, capability: WalletCapability) -> Pubkey:
        if not self.supports(capability):
            raise self._unsupported(capability)
        return self.require_connected()

    def _sign(self, tx: UnsignedTransaction) -> SolanaTransaction:
        pubkey = self.require_connected()
        if set(tx.signers) != {pubkey}:
            raise SigningRejected(
                f"{self.name} can only sign transactions whose sole signer is {pubkey}"
            )
        if tx.is_versioned:
            return VersionedTransaction(tx.message, [self._keypair])
        return Transaction([self._keypair], tx.message, tx.anchor.blockhash)

    async def sign_transaction(self, tx: UnsignedTransaction) -> SolanaTransaction:
        self._check(WalletCapability.SIGN_TRANSACTION)
        return self._sign(tx)

    async def sign_all_transactions(self, txs: Sequence[UnsignedTransaction]) -> list[SolanaTransaction]:
        self._check(WalletCapability.SIGN_ALL_TRANSACTIONS)
        return [self._sign(tx) for tx in txs]

    async def sign_and_send_transaction(self, tx: UnsignedTransaction, context: "NetworkContext") -> Signature:
        self._check(WalletCapability.SIGN_AND_SEND_TRANSACTION)
        signed = self._sign(tx)
        return await context.send_raw(bytes(signed))

    async def sign_message(self, message: bytes) -> Signature:
        self._check(WalletCapability.SIGN_MESSAGE)
        return self._keypair.sign_message(message)

    async def sign_in(self, data: SignInInput) -> SignInOutput:
        if not self.supports(WalletCapability.SIGN_IN):
            raise self._unsupported(WalletCapability.SIGN_IN)
        if data.domain != self._origin:
            raise SigningRejected(
                f"Sign-in request from {data.domain} does not match the requesting origin {self._origin}"
            )
        pubkey = self._public_key or await self.connect()
        if data.address and data.address != str(pubkey):
            raise SigningRejected(f"Sign-in request is for {data.address}, not {pubkey}")
        text = create_sign_in_message_text(data.model_copy(update={"address": str(pubkey)}))
        signed_message = text.encode("utf-8")
        signature = self._keypair.sign_message(signed_message)
        return SignInOutput(
            account_address=str(pubkey),
            signed_message=signed_message,
            signature=bytes(signature),
        )
