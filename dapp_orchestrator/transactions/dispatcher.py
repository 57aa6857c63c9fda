"""
Signing dispatcher: routes unsigned transactions through exactly one wallet mode.

Modes are chosen by the caller, never inferred: sign-only, sign-and-submit,
sign-batch. The wallet is asked for membership before use and the wait for user
approval is not bounded here.
"""

from __future__ import annotations

from collections import deque
from typing import Sequence

import httpx
from solana.exceptions import SolanaRpcException

from dapp_orchestrator.core.clock import SystemClock
from dapp_orchestrator.core.exceptions import (
    AlreadySubmitted,
    CapabilityUnavailable,
    ContextUnavailable,
    LookupTableNotWarm,
    NotConnected,
    SigningRejected,
    SubmissionRejected,
)
from dapp_orchestrator.dapp_logging import get_logger
from dapp_orchestrator.transactions.connection import NetworkContext, error_text
from dapp_orchestrator.transactions.models import (
    SignedTransaction,
    SubmissionReceipt,
    UnsignedTransaction,
)
from dapp_orchestrator.wallet.capabilities import Wallet, WalletCapability

logger = get_logger(__name__)

# Raised by the submission half of sign-and-send; passed through untouched.
_SUBMISSION_ERRORS = (SubmissionRejected, LookupTableNotWarm, ContextUnavailable)
# Transport failures out of a combined sign-and-send call; a user cannot cause these by declining.
_TRANSPORT_ERRORS = (SolanaRpcException, httpx.HTTPError, ConnectionError, TimeoutError)
# Signatures remembered for the at-most-once submit check
MAX_TRACKED_SIGNATURES = 4096


def require_capability(wallet: Wallet | None, capability: WalletCapability) -> Wallet:
    if wallet is None:
        raise NotConnected("No wallet connected")
    if wallet.public_key is None:
        raise NotConnected(f"{wallet.name} is not connected")
    if not wallet.supports(capability):
        raise CapabilityUnavailable(capability.value, wallet.name)
    return wallet


class SigningDispatcher:
    """
    Sign-only, sign-and-submit and sign-batch against one network context.

    Submitted signatures are remembered for the at-most-once check up to
    ``max_tracked``; the oldest are forgotten first. By then their blockhash has
    long expired and the cluster refuses them anyway.
    """

    def __init__(
        self,
        context: NetworkContext,
        *,
        clock: SystemClock | None = None,
        max_tracked: int = MAX_TRACKED_SIGNATURES,
    ) -> None:
        if max_tracked < 1:
            raise ValueError("max_tracked must be at least 1")
        self._context = context
        self._clock = clock or SystemClock()
        self._max_tracked = max_tracked
        self._submitted: set[str] = set()
        self._submitted_order: deque[str] = deque()

    def _remember(self, signature: str) -> None:
        if signature in self._submitted:
            return
        if len(self._submitted) >= self._max_tracked and self._submitted_order:
            old = self._submitted_order.popleft()
            self._submitted.discard(old)
        self._submitted.add(signature)
        self._submitted_order.append(signature)

    def was_submitted(self, signature: str) -> bool:
        return signature in self._submitted

    async def sign_only(self, tx: UnsignedTransaction, wallet: Wallet | None) -> SignedTransaction:
        """Collect a signature without touching the network."""
        w = require_capability(wallet, WalletCapability.SIGN_TRANSACTION)
        try:
            signed = await w.sign_transaction(tx)
        except SigningRejected:
            raise
        except Exception as e:
            raise SigningRejected(str(e)) from e
        logger.info("dispatch_signed", wallet=w.name, signature=str(signed.signatures[0]))
        return SignedTransaction(unsigned=tx, transaction=signed)

    async def sign_and_submit(self, tx: UnsignedTransaction, wallet: Wallet | None) -> SubmissionReceipt:
        """
        One combined wallet call signs and submits. Rejections from the signing half
        surface as SigningRejected, from the submission half as SubmissionRejected
        (or LookupTableNotWarm / ContextUnavailable when the cluster says so).
        """
        w = require_capability(wallet, WalletCapability.SIGN_AND_SEND_TRANSACTION)
        try:
            signature = await w.sign_and_send_transaction(tx, self._context)
        except (SigningRejected, *_SUBMISSION_ERRORS):
            raise
        except _TRANSPORT_ERRORS as e:
            raise SubmissionRejected(f"Submission failed: {error_text(e)}") from e
        except Exception as e:
            raise SigningRejected(error_text(e)) from e
        self._remember(str(signature))
        logger.info("dispatch_signed_and_submitted", wallet=w.name, signature=str(signature))
        return SubmissionReceipt(signature=signature, submitted_at=self._clock.now())

    async def sign_batch(
        self,
        txs: Sequence[UnsignedTransaction],
        wallet: Wallet | None,
    ) -> list[SignedTransaction]:
        """
        Sign all of ``txs`` in one wallet request. Output order matches input order;
        any rejection (or a reply that does not line up with the input) fails the batch.
        """
        w = require_capability(wallet, WalletCapability.SIGN_ALL_TRANSACTIONS)
        if not txs:
            return []
        try:
            signed = await w.sign_all_transactions(list(txs))
        except SigningRejected:
            raise
        except Exception as e:
            raise SigningRejected(str(e)) from e
        if len(signed) != len(txs):
            raise SigningRejected(f"{w.name} returned {len(signed)} transactions for a batch of {len(txs)}")
        out: list[SignedTransaction] = []
        for i, (unsigned, signed_tx) in enumerate(zip(txs, signed)):
            if signed_tx.message != unsigned.message:
                raise SigningRejected(f"{w.name} returned a different transaction at position {i}")
            out.append(SignedTransaction(unsigned=unsigned, transaction=signed_tx))
        logger.info("dispatch_batch_signed", wallet=w.name, count=len(out))
        return out

    async def submit(self, signed: SignedTransaction) -> SubmissionReceipt:
        """Submit a sign-only result. A signature is submitted at most once."""
        key = str(signed.signature)
        if self.was_submitted(key):
            raise AlreadySubmitted(f"Transaction {key} was already submitted")
        signature = await self._context.send_raw(signed.serialize())
        self._remember(key)
        return SubmissionReceipt(signature=signature, submitted_at=self._clock.now())
