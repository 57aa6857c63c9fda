"""
Orchestration facade: one coroutine per wallet use-case.

Each use-case is a no-op until an account is connected, logs an ``info`` entry
before reaching the wallet, follows submitted transactions through the poller
(whose progress lands in the same log) and ends with one ``success``,
``warning`` or ``error`` entry. Nothing raised inside a use-case escapes it.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from solders.pubkey import Pubkey
from solders.signature import Signature

from dapp_orchestrator.config.settings import OrchestratorConfig, get_settings
from dapp_orchestrator.core.clock import SystemClock
from dapp_orchestrator.core.exceptions import (
    ConfirmationTimeout,
    PollingCancelled,
    SigningRejected,
    SignInVerificationFailed,
    TransactionFailed,
)
from dapp_orchestrator.dapp_logging import get_logger
from dapp_orchestrator.facade.event_log import EventLog
from dapp_orchestrator.transactions.builder import TransactionBuilder
from dapp_orchestrator.transactions.connection import NetworkContext
from dapp_orchestrator.transactions.dispatcher import SigningDispatcher, require_capability
from dapp_orchestrator.transactions.lookup_table import SYS_PROGRAM_ID, LookupTableManager
from dapp_orchestrator.transactions.models import (
    ConfirmationState,
    ConfirmationStatus,
    SignedTransaction,
    SubmissionReceipt,
)
from dapp_orchestrator.transactions.poller import ConfirmationPoller
from dapp_orchestrator.wallet.capabilities import Wallet, WalletCapability
from dapp_orchestrator.wallet.session import WalletSession
from dapp_orchestrator.wallet.sign_in import (
    SignInInput,
    create_sign_in_data,
    create_sign_in_error_data,
    verify_sign_in,
)

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MESSAGE = "To avoid digital dognappers, sign below to authenticate with CryptoCorgis."

SIGN_AND_SEND_TRANSACTION = "signAndSendTransaction"
SIGN_AND_SEND_TRANSACTION_V0 = "signAndSendTransactionV0"
SIGN_AND_SEND_TRANSACTION_V0_WITH_LOOKUP_TABLE = "signAndSendTransactionV0WithLookupTable"
SIGN_TRANSACTION = "signTransaction"
SIGN_ALL_TRANSACTIONS = "signAllTransactions"
SIGN_MESSAGE = "signMessage"
SIGN_IN = "signIn"
CONNECT = "connect"
DISCONNECT = "disconnect"
AUTO_CONNECT = "autoConnect"

STEP_CREATE_LOOKUP_TABLE = "createAddressLookupTable"
STEP_EXTEND_LOOKUP_TABLE = "extendAddressLookupTable"
STEP_WARMUP = "waitForLookupTableWarmup"
STEP_SEND_WITH_LOOKUP_TABLE = "sendTransactionV0WithLookupTable"


class WalletOrchestrator:
    """
    Composes builder, dispatcher, lookup table manager and poller into use-cases.

    Components default to ones built from ``config``; pass them explicitly to
    share state (e.g. one poller cache) or to stub them in tests.
    """

    def __init__(
        self,
        session: WalletSession,
        context: NetworkContext,
        *,
        config: OrchestratorConfig | None = None,
        log: EventLog | None = None,
        clock: SystemClock | None = None,
        builder: TransactionBuilder | None = None,
        dispatcher: SigningDispatcher | None = None,
        poller: ConfirmationPoller | None = None,
        lookup_tables: LookupTableManager | None = None,
    ) -> None:
        cfg = config or get_settings()
        self._config = cfg
        self._session = session
        self._context = context
        self._clock = clock or SystemClock()
        self.log = log or EventLog()
        recipient = Pubkey.from_string(cfg.transfer_recipient) if cfg.transfer_recipient else None
        self._builder = builder or TransactionBuilder(
            context, lamports=cfg.transfer_lamports, recipient=recipient, clock=self._clock
        )
        self._dispatcher = dispatcher or SigningDispatcher(context, clock=self._clock)
        self._poller = poller or ConfirmationPoller(
            context,
            interval_sec=cfg.confirm_poll_interval_sec,
            max_attempts=cfg.confirm_max_attempts,
            clock=self._clock,
        )
        self._lookup_tables = lookup_tables or LookupTableManager(
            context,
            self._builder,
            self._dispatcher,
            warmup_sec=cfg.lookup_table_warmup_sec,
            clock=self._clock,
        )

    @classmethod
    def from_config(
        cls,
        session: WalletSession,
        config: OrchestratorConfig | None = None,
        *,
        log: EventLog | None = None,
    ) -> "WalletOrchestrator":
        cfg = config or get_settings()
        context = NetworkContext.from_url(cfg.rpc_url, commitment=cfg.commitment)
        return cls(session, context, config=cfg, log=log)

    @property
    def session(self) -> WalletSession:
        return self._session

    @property
    def poller(self) -> ConfirmationPoller:
        return self._poller

    async def close(self) -> None:
        await self._context.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _connected_wallet(self) -> Wallet | None:
        """Active wallet, or None when nothing is connected (use-cases then do nothing)."""
        if not self._session.connected:
            return None
        return self._session.wallet

    def _report(self, method: str, error: Exception, step: str | None = None) -> None:
        text = str(error) or type(error).__name__
        if step:
            text = f"{step} failed: {text}"
        kind = getattr(error, "kind", type(error).__name__)
        if isinstance(error, (ConfirmationTimeout, PollingCancelled)):
            self.log.warning(method, text)
            logger.warning("use_case_incomplete", method=method, step=step, kind=kind, error=str(error))
            return
        self.log.error(method, text)
        logger.error("use_case_failed", method=method, step=step, kind=kind, error=str(error))

    async def _confirm(
        self,
        method: str,
        receipt: SubmissionReceipt,
        cancel: asyncio.Event | None,
    ) -> ConfirmationStatus:
        """Poll ``receipt``; raise unless it reaches confirmed or finalized."""

        def _progress(status: ConfirmationStatus) -> None:
            self.log.info(method, f"Transaction {receipt} status: {status}")

        status = await self._poller.poll(receipt, on_progress=_progress, cancel=cancel)
        if status.is_success:
            return status
        if status.state is ConfirmationState.TIMED_OUT:
            raise ConfirmationTimeout(
                f"Transaction {receipt} was not confirmed in time; it may still land. "
                "Poll again before resubmitting."
            )
        raise TransactionFailed(f"Transaction {receipt} failed: {status.reason}")

    async def _guarded(self, method: str, body: Callable[[Wallet], Awaitable[T]]) -> T | None:
        wallet = self._connected_wallet()
        if wallet is None:
            return None
        try:
            return await body(wallet)
        except Exception as e:
            self._report(method, e)
            return None

    # ------------------------------------------------------------------
    # Transaction use-cases
    # ------------------------------------------------------------------

    async def sign_and_send_transaction(self, cancel: asyncio.Event | None = None) -> SubmissionReceipt | None:
        """Legacy self-transfer: sign and submit in one wallet call, then confirm."""
        method = SIGN_AND_SEND_TRANSACTION

        async def body(wallet: Wallet) -> SubmissionReceipt:
            tx = await self._builder.build_transfer(wallet.require_connected())
            self.log.info(method, f"Requesting signature for: {tx.describe()}")
            receipt = await self._dispatcher.sign_and_submit(tx, wallet)
            self.log.info(method, f"Signed and submitted transaction {receipt}.")
            status = await self._confirm(method, receipt, cancel)
            self.log.success(method, f"Transaction {receipt} {status.state.value}.")
            return receipt

        return await self._guarded(method, body)

    async def sign_and_send_transaction_v0(self, cancel: asyncio.Event | None = None) -> SubmissionReceipt | None:
        """Same as sign_and_send_transaction with a v0 message."""
        method = SIGN_AND_SEND_TRANSACTION_V0

        async def body(wallet: Wallet) -> SubmissionReceipt:
            tx = await self._builder.build_transfer_versioned(wallet.require_connected())
            self.log.info(method, f"Requesting signature for: {tx.describe()}")
            receipt = await self._dispatcher.sign_and_submit(tx, wallet)
            self.log.info(method, f"Signed and submitted transaction {receipt}.")
            status = await self._confirm(method, receipt, cancel)
            self.log.success(method, f"Transaction {receipt} {status.state.value}.")
            return receipt

        return await self._guarded(method, body)

    async def sign_and_send_transaction_v0_with_lookup_table(
        self,
        cancel: asyncio.Event | None = None,
    ) -> SubmissionReceipt | None:
        """
        Create a lookup table, extend it, wait out the warm-up, then send a v0
        transfer compiled against it. The first failing step aborts the chain and
        is named in the log entry.
        """
        method = SIGN_AND_SEND_TRANSACTION_V0_WITH_LOOKUP_TABLE
        wallet = self._connected_wallet()
        if wallet is None:
            return None
        step = STEP_CREATE_LOOKUP_TABLE
        try:
            authority = wallet.require_connected()
            self.log.info(method, f"Creating address lookup table for {authority}")
            receipt, table = await self._lookup_tables.create(wallet)
            self.log.info(method, f"Lookup table {table.address} creation submitted: {receipt}")
            self._lookup_tables.mark_created(table, await self._confirm(method, receipt, cancel))

            step = STEP_EXTEND_LOOKUP_TABLE
            addresses = [authority, SYS_PROGRAM_ID]
            recipient = self._builder.recipient_for(authority)
            if recipient not in addresses:
                addresses.append(recipient)
            receipt = await self._lookup_tables.extend(wallet, table, addresses)
            self.log.info(method, f"Lookup table {table.address} extension submitted: {receipt}")
            self._lookup_tables.mark_extended(table, await self._confirm(method, receipt, cancel))

            step = STEP_WARMUP
            self.log.info(method, f"Waiting {table.warmup_sec:g}s for lookup table {table.address} to warm up")
            if await self._clock.sleep(table.warmup_sec, cancel):
                raise PollingCancelled(f"Cancelled while waiting for lookup table {table.address}")

            step = STEP_SEND_WITH_LOOKUP_TABLE
            tx = await self._builder.build_transfer_versioned(authority, lookup_table=table)
            self.log.info(method, f"Requesting signature for: {tx.describe()} using lookup table {table.address}")
            receipt = await self._dispatcher.sign_and_submit(tx, wallet)
            self.log.info(method, f"Signed and submitted transaction {receipt}.")
            status = await self._confirm(method, receipt, cancel)
            self.log.success(method, f"Transaction {receipt} {status.state.value}.")
            return receipt
        except Exception as e:
            self._report(method, e, step)
            return None

    async def sign_transaction(self) -> SignedTransaction | None:
        """Sign a legacy transfer without submitting it."""
        method = SIGN_TRANSACTION

        async def body(wallet: Wallet) -> SignedTransaction:
            tx = await self._builder.build_transfer(wallet.require_connected())
            self.log.info(method, f"Requesting signature for: {tx.describe()}")
            signed = await self._dispatcher.sign_only(tx, wallet)
            self.log.success(method, f"Transaction signed: {signed.signature}")
            return signed

        return await self._guarded(method, body)

    async def sign_all_transactions(self, count: int = 2) -> list[SignedTransaction] | None:
        """Sign ``count`` legacy transfers in one wallet request."""
        method = SIGN_ALL_TRANSACTIONS

        async def body(wallet: Wallet) -> list[SignedTransaction]:
            sender = wallet.require_connected()
            txs = [await self._builder.build_transfer(sender) for _ in range(count)]
            self.log.info(method, f"Requesting signature for {len(txs)} transactions")
            signed = await self._dispatcher.sign_batch(txs, wallet)
            signatures = ", ".join(str(s.signature) for s in signed)
            self.log.success(method, f"Transactions signed: {signatures}")
            return signed

        return await self._guarded(method, body)

    # ------------------------------------------------------------------
    # Message and session use-cases
    # ------------------------------------------------------------------

    async def sign_message(self, message: str = DEFAULT_MESSAGE) -> Signature | None:
        method = SIGN_MESSAGE

        async def body(wallet: Wallet) -> Signature:
            require_capability(wallet, WalletCapability.SIGN_MESSAGE)
            data = message.encode("utf-8")
            self.log.info(method, f"Requesting signature for message: {message}")
            signature = await wallet.sign_message(data)
            if not signature.verify(wallet.require_connected(), data):
                raise SigningRejected("Message signature does not verify against the connected account")
            self.log.success(method, f"Message signed: {signature}")
            return signature

        return await self._guarded(method, body)

    async def _sign_in_with(self, data: SignInInput) -> str | None:
        method = SIGN_IN

        async def body(wallet: Wallet) -> str:
            require_capability(wallet, WalletCapability.SIGN_IN)
            self.log.info(method, f"Requesting sign-in for {data.domain}")
            output = await wallet.sign_in(data)
            if not verify_sign_in(data, output):
                raise SignInVerificationFailed("Sign In verification failed!")
            text = output.signed_message.decode("utf-8")
            signature = Signature.from_bytes(output.signature)
            self.log.success(
                method,
                f"Message signed: {text} by {output.account_address} with signature {signature}",
            )
            return output.account_address

        return await self._guarded(method, body)

    async def sign_in(self) -> str | None:
        return await self._sign_in_with(create_sign_in_data(self._config))

    async def sign_in_error(self) -> str | None:
        """Sign-in with a challenge from a foreign domain; exercises the rejection path."""
        return await self._sign_in_with(create_sign_in_error_data(self._config))

    async def connect(self) -> Pubkey | None:
        if self._session.wallet is None:
            return None
        try:
            public_key = await self._session.connect()
        except Exception as e:
            self._report(CONNECT, e)
            return None
        self.log.success(CONNECT, f"Connected to account {public_key}")
        return public_key

    async def auto_connect(self) -> Pubkey | None:
        """Connect, establishing trust through a verified sign-in when the wallet supports it."""
        if self._session.wallet is None:
            return None
        try:
            public_key = await self._session.auto_connect()
        except Exception as e:
            self._report(AUTO_CONNECT, e)
            return None
        self.log.success(AUTO_CONNECT, f"Connected to account {public_key}")
        return public_key

    async def disconnect(self) -> None:
        if not self._session.connected:
            return
        try:
            await self._session.disconnect()
        except Exception as e:
            self._report(DISCONNECT, e)
            return
        self.log.warning(DISCONNECT, "👋")
