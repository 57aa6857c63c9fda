"""
Network context: the RPC primitives the orchestration layer needs.

Wraps solana-py's AsyncClient and translates its failures into the
orchestration error kinds: fetch failures become ContextUnavailable, refused
submissions SubmissionRejected, and lookup table rejections LookupTableNotWarm.
"""

from __future__ import annotations

from typing import Any

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from dapp_orchestrator.core.clock import SystemClock
from dapp_orchestrator.core.exceptions import (
    ContextUnavailable,
    LookupTableNotWarm,
    SubmissionRejected,
)
from dapp_orchestrator.dapp_logging import get_logger
from dapp_orchestrator.transactions.models import Anchor, ConfirmationStatus

logger = get_logger(__name__)

# Substrings of the cluster's error text when a v0 message references a table it cannot load yet
_LOOKUP_TABLE_ERROR_MARKERS = (
    "address table lookup",
    "address lookup table",
    "loads an address table account",
)


def _is_lookup_table_rejection(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _LOOKUP_TABLE_ERROR_MARKERS)


def error_text(e: Exception) -> str:
    """Readable text for an RPC failure; solana-py wrappers carry it in ``error_msg``, not args."""
    return getattr(e, "error_msg", None) or str(e) or type(e).__name__


class NetworkContext:
    """
    Anchor fetch, slot fetch, status query and raw submission against one cluster.

    Every call may be slow and every call may fail; none is retried here.
    """

    def __init__(
        self,
        client: Any,
        *,
        commitment: str = "confirmed",
        clock: SystemClock | None = None,
    ) -> None:
        self._client = client
        self._commitment = Commitment(commitment)
        self._clock = clock or SystemClock()

    @classmethod
    def from_url(cls, rpc_url: str, *, commitment: str = "confirmed", clock: SystemClock | None = None) -> "NetworkContext":
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        return cls(AsyncClient(rpc_url, commitment=Commitment(commitment)), commitment=commitment, clock=clock)

    @property
    def commitment(self) -> str:
        return str(self._commitment)

    async def latest_anchor(self) -> Anchor:
        """Fetch a fresh blockhash. Raises ContextUnavailable on any failure."""
        try:
            resp = await self._client.get_latest_blockhash(self._commitment)
            value = resp.value
        except Exception as e:
            logger.warning("rpc_anchor_fetch_failed", error=error_text(e))
            raise ContextUnavailable(f"Failed to fetch recent blockhash: {error_text(e)}") from e
        if value is None:
            raise ContextUnavailable("Failed to fetch recent blockhash: empty response")
        return Anchor(
            blockhash=value.blockhash,
            last_valid_block_height=int(value.last_valid_block_height),
            fetched_at=self._clock.now(),
        )

    async def get_slot(self) -> int:
        try:
            resp = await self._client.get_slot(self._commitment)
        except Exception as e:
            logger.warning("rpc_slot_fetch_failed", error=error_text(e))
            raise ContextUnavailable(f"Failed to fetch slot: {error_text(e)}") from e
        return int(resp.value)

    async def account_exists(self, pubkey: Pubkey) -> bool:
        try:
            resp = await self._client.get_account_info(pubkey, self._commitment)
        except Exception as e:
            logger.warning("rpc_account_fetch_failed", account=str(pubkey), error=error_text(e))
            raise ContextUnavailable(f"Failed to fetch account {pubkey}: {error_text(e)}") from e
        return resp.value is not None

    async def get_status(self, signature: Signature) -> ConfirmationStatus:
        """
        Query one signature. Unknown signatures and processed-only ones are pending.
        Transport errors propagate; the poller decides how to treat them.
        """
        resp = await self._client.get_signature_statuses([signature])
        statuses = resp.value or []
        status = statuses[0] if statuses else None
        if status is None:
            return ConfirmationStatus.pending()
        if status.err is not None:
            return ConfirmationStatus.failed(str(status.err))
        confirmation = status.confirmation_status
        if confirmation == TransactionConfirmationStatus.Finalized:
            return ConfirmationStatus.finalized()
        if confirmation == TransactionConfirmationStatus.Confirmed:
            return ConfirmationStatus.confirmed()
        return ConfirmationStatus.pending()

    async def send_raw(self, raw: bytes) -> Signature:
        """
        Submit serialized, fully signed transaction bytes with preflight enabled.

        Every failure leaves as SubmissionRejected (or LookupTableNotWarm): the
        transaction was already signed, so nothing raised here is a signing failure.
        """
        opts = TxOpts(skip_preflight=False, preflight_commitment=self._commitment)
        try:
            resp = await self._client.send_raw_transaction(raw, opts=opts)
        except RPCException as e:
            message = str(e)
            if _is_lookup_table_rejection(message):
                raise LookupTableNotWarm(f"Lookup table not usable yet: {message}") from e
            raise SubmissionRejected(message) from e
        except Exception as e:
            # The provider wraps httpx failures in SolanaRpcException
            logger.warning("rpc_submit_failed", error=error_text(e))
            raise SubmissionRejected(f"Submission failed: {error_text(e)}") from e
        signature = resp.value
        logger.info("rpc_tx_submitted", signature=str(signature))
        return signature

    async def close(self) -> None:
        await self._client.close()
