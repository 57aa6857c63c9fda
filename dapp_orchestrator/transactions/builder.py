"""
Transaction builder: unsigned system-program transfers, legacy and v0.

A fresh anchor is fetched for every build; anchors expire, so one is never
reused across builds or retries. Anchor failures propagate as ContextUnavailable.
"""

from __future__ import annotations

from typing import Sequence

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.instruction import Instruction
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from dapp_orchestrator.core.clock import SystemClock
from dapp_orchestrator.core.exceptions import LookupTableNotWarm
from dapp_orchestrator.dapp_logging import get_logger
from dapp_orchestrator.transactions.connection import NetworkContext
from dapp_orchestrator.transactions.models import (
    Anchor,
    LookupTable,
    TransactionVersion,
    UnsignedTransaction,
)

logger = get_logger(__name__)

DEFAULT_TRANSFER_LAMPORTS = 100


def build_transfer_instruction(sender: Pubkey, recipient: Pubkey, lamports: int) -> Instruction:
    if lamports <= 0:
        raise ValueError("lamports must be positive")
    return transfer(TransferParams(from_pubkey=sender, to_pubkey=recipient, lamports=lamports))


def _required_signers(message: Message | MessageV0) -> tuple[Pubkey, ...]:
    count = message.header.num_required_signatures
    return tuple(message.account_keys[:count])


class TransactionBuilder:
    """
    Builds unsigned transfers for ``sender``. The recipient defaults to the sender
    (a self-transfer); pass ``recipient`` to send elsewhere.
    """

    def __init__(
        self,
        context: NetworkContext,
        *,
        lamports: int = DEFAULT_TRANSFER_LAMPORTS,
        recipient: Pubkey | None = None,
        clock: SystemClock | None = None,
    ) -> None:
        if lamports <= 0:
            raise ValueError("lamports must be positive")
        self._context = context
        self._lamports = lamports
        self._recipient = recipient
        self._clock = clock or SystemClock()

    def recipient_for(self, sender: Pubkey) -> Pubkey:
        return self._recipient or sender

    async def build(
        self,
        payer: Pubkey,
        instructions: Sequence[Instruction],
        *,
        versioned: bool = False,
        lookup_tables: Sequence[AddressLookupTableAccount] = (),
        anchor: Anchor | None = None,
    ) -> UnsignedTransaction:
        """
        Compile ``instructions`` into a message. Without ``anchor`` a fresh blockhash
        is fetched; a caller passing one owns its freshness.
        """
        if not instructions:
            raise ValueError("instructions must be non-empty")
        if lookup_tables and not versioned:
            raise ValueError("lookup tables require a versioned transaction")
        if anchor is None:
            anchor = await self._context.latest_anchor()
        if versioned:
            message = MessageV0.try_compile(payer, list(instructions), list(lookup_tables), anchor.blockhash)
            version = TransactionVersion.V0
        else:
            message = Message.new_with_blockhash(list(instructions), payer, anchor.blockhash)
            version = TransactionVersion.LEGACY
        tx = UnsignedTransaction(
            message=message,
            version=version,
            payer=payer,
            anchor=anchor,
            signers=_required_signers(message),
            lookup_tables=tuple(t.key for t in lookup_tables),
            built_at=self._clock.now(),
        )
        logger.debug(
            "tx_built",
            version=version.value,
            payer=str(payer),
            instruction_count=tx.instruction_count,
            blockhash=str(anchor.blockhash),
        )
        return tx

    async def build_transfer(self, sender: Pubkey) -> UnsignedTransaction:
        ix = build_transfer_instruction(sender, self.recipient_for(sender), self._lamports)
        return await self.build(sender, [ix])

    async def build_transfer_versioned(
        self,
        sender: Pubkey,
        lookup_table: LookupTable | None = None,
    ) -> UnsignedTransaction:
        """
        v0 transfer. With ``lookup_table`` the account list is compressed against it;
        the table must be active (extension confirmed plus warm-up) or
        LookupTableNotWarm is raised before any network call.
        """
        tables: list[AddressLookupTableAccount] = []
        if lookup_table is not None:
            now = self._clock.now()
            if not lookup_table.is_active(now):
                ready = lookup_table.active_at()
                detail = "extension not confirmed" if ready is None else f"usable in {ready - now:.1f}s"
                raise LookupTableNotWarm(f"Lookup table {lookup_table.address} is not active yet ({detail})")
            tables.append(lookup_table.to_account())
        ix = build_transfer_instruction(sender, self.recipient_for(sender), self._lamports)
        return await self.build(sender, [ix], versioned=True, lookup_tables=tables)
