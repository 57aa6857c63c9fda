"""
Address lookup table lifecycle: create, extend, warm up, use.

    proposed --create confirmed--> created --extend confirmed--> extended --warm-up--> active

Instructions are built directly from the Address Lookup Table program layout
(u32 variant index, then bincode fields). The table address is the PDA of
[authority, recent_slot]; the slot is the monotonic sequence value that keeps
repeated creates by one authority from colliding.
"""

from __future__ import annotations

import struct
from typing import Sequence

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from dapp_orchestrator.core.clock import SystemClock
from dapp_orchestrator.core.exceptions import ContextUnavailable, LookupTableError, LookupTableNotWarm
from dapp_orchestrator.dapp_logging import get_logger
from dapp_orchestrator.transactions.builder import TransactionBuilder
from dapp_orchestrator.transactions.connection import NetworkContext
from dapp_orchestrator.transactions.dispatcher import SigningDispatcher
from dapp_orchestrator.transactions.models import (
    Anchor,
    ConfirmationStatus,
    LookupTable,
    LookupTableState,
    SubmissionReceipt,
    UnsignedTransaction,
)
from dapp_orchestrator.wallet.capabilities import Wallet

logger = get_logger(__name__)

ADDRESS_LOOKUP_TABLE_PROGRAM_ID = Pubkey.from_string("AddressLookupTab1e1111111111111111111111111")
SYS_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

CREATE_LOOKUP_TABLE_VARIANT = 0
EXTEND_LOOKUP_TABLE_VARIANT = 2
# Keeps one extend transaction under the packet size limit
MAX_ADDRESSES_PER_EXTEND = 20
SLOT_REFETCH_ATTEMPTS = 3
# About one slot
SLOT_REFETCH_DELAY_SEC = 0.4
DEFAULT_WARMUP_SEC = 6.0


def derive_lookup_table_address(authority: Pubkey, recent_slot: int) -> tuple[Pubkey, int]:
    """Table PDA and bump. Seeds: [authority, recent_slot as u64 LE]."""
    seeds = [bytes(authority), struct.pack("<Q", recent_slot)]
    return Pubkey.find_program_address(seeds, ADDRESS_LOOKUP_TABLE_PROGRAM_ID)


def build_create_lookup_table_instruction(
    authority: Pubkey,
    payer: Pubkey,
    recent_slot: int,
) -> tuple[Instruction, Pubkey]:
    """CreateLookupTable instruction. Returns (Instruction, table_address)."""
    table, bump = derive_lookup_table_address(authority, recent_slot)
    data = struct.pack("<IQB", CREATE_LOOKUP_TABLE_VARIANT, recent_slot, bump)
    accounts = [
        AccountMeta(pubkey=table, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=ADDRESS_LOOKUP_TABLE_PROGRAM_ID, data=data, accounts=accounts), table


def build_extend_lookup_table_instruction(
    table: Pubkey,
    authority: Pubkey,
    payer: Pubkey,
    addresses: Sequence[Pubkey],
) -> Instruction:
    """ExtendLookupTable instruction appending ``addresses`` (u64 length prefix, 32 bytes each)."""
    if not addresses:
        raise ValueError("addresses must be non-empty")
    data = struct.pack("<IQ", EXTEND_LOOKUP_TABLE_VARIANT, len(addresses)) + b"".join(bytes(a) for a in addresses)
    accounts = [
        AccountMeta(pubkey=table, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=ADDRESS_LOOKUP_TABLE_PROGRAM_ID, data=data, accounts=accounts)


class LookupTableManager:
    """
    Creates and extends lookup tables through sign-and-submit and records
    confirmation outcomes. Callers poll each receipt and report the status back
    with mark_created() / mark_extended() before taking the next step.
    """

    def __init__(
        self,
        context: NetworkContext,
        builder: TransactionBuilder,
        dispatcher: SigningDispatcher,
        *,
        warmup_sec: float = DEFAULT_WARMUP_SEC,
        clock: SystemClock | None = None,
    ) -> None:
        if warmup_sec < 0:
            raise ValueError("warmup_sec must be non-negative")
        self._context = context
        self._builder = builder
        self._dispatcher = dispatcher
        self._warmup_sec = warmup_sec
        self._clock = clock or SystemClock()
        self._last_slot: dict[str, int] = {}

    async def _next_slot(self, authority: Pubkey) -> int:
        """
        Current slot, strictly greater than the last one claimed for ``authority``.

        The slot is claimed before returning, with no await in between, so
        concurrent creates for one authority never derive the same address.
        """
        key = str(authority)
        last = None
        for _ in range(SLOT_REFETCH_ATTEMPTS):
            slot = await self._context.get_slot()
            last = self._last_slot.get(key)
            if last is None or slot > last:
                self._last_slot[key] = slot
                return slot
            await self._clock.sleep(SLOT_REFETCH_DELAY_SEC)
        raise ContextUnavailable(f"Slot did not advance past {last} for authority {authority}")

    async def _build(self, payer: Pubkey, ix: Instruction, anchor: Anchor | None) -> UnsignedTransaction:
        return await self._builder.build(payer, [ix], anchor=anchor)

    async def create(
        self,
        wallet: Wallet,
        anchor: Anchor | None = None,
    ) -> tuple[SubmissionReceipt, LookupTable]:
        authority = wallet.require_connected()
        slot = await self._next_slot(authority)
        ix, address = build_create_lookup_table_instruction(authority, authority, slot)
        if await self._context.account_exists(address):
            raise LookupTableError(f"Lookup table address {address} is already claimed")
        tx = await self._build(authority, ix, anchor)
        receipt = await self._dispatcher.sign_and_submit(tx, wallet)
        table = LookupTable(
            address=address,
            authority=authority,
            recent_slot=slot,
            warmup_sec=self._warmup_sec,
        )
        logger.info("lookup_table_create_submitted", table=str(address), slot=slot, signature=str(receipt))
        return receipt, table

    def mark_created(self, table: LookupTable, status: ConfirmationStatus) -> None:
        if not status.is_success:
            raise LookupTableError(f"Lookup table {table.address} creation not confirmed: {status}")
        if table.state is LookupTableState.PROPOSED:
            table.state = LookupTableState.CREATED
        logger.info("lookup_table_created", table=str(table.address), status=str(status))

    async def extend(
        self,
        wallet: Wallet,
        table: LookupTable,
        addresses: Sequence[Pubkey],
        anchor: Anchor | None = None,
    ) -> SubmissionReceipt:
        authority = wallet.require_connected()
        if table.state is LookupTableState.PROPOSED:
            raise LookupTableError(f"Lookup table {table.address} must be confirmed created before extending")
        if authority != table.authority:
            raise LookupTableError(f"{authority} is not the authority of lookup table {table.address}")
        if len(addresses) > MAX_ADDRESSES_PER_EXTEND:
            raise ValueError(f"at most {MAX_ADDRESSES_PER_EXTEND} addresses per extend")
        ix = build_extend_lookup_table_instruction(table.address, authority, authority, addresses)
        tx = await self._build(authority, ix, anchor)
        receipt = await self._dispatcher.sign_and_submit(tx, wallet)
        table.addresses.extend(addresses)
        logger.info(
            "lookup_table_extend_submitted",
            table=str(table.address),
            address_count=len(addresses),
            signature=str(receipt),
        )
        return receipt

    def mark_extended(self, table: LookupTable, status: ConfirmationStatus) -> None:
        """Record the extension as confirmed now; the table is usable after the warm-up."""
        if not status.is_success:
            raise LookupTableError(f"Lookup table {table.address} extension not confirmed: {status}")
        table.extended_confirmed_at = self._clock.now()
        table.state = LookupTableState.EXTENDED
        logger.info(
            "lookup_table_extended",
            table=str(table.address),
            active_at=table.active_at(),
            warmup_sec=table.warmup_sec,
        )

    def resolve(self, table: LookupTable) -> AddressLookupTableAccount:
        """AddressLookupTableAccount for compiling a v0 message; raises LookupTableNotWarm if not active."""
        if not table.is_active(self._clock.now()):
            raise LookupTableNotWarm(f"Lookup table {table.address} is not active yet")
        return table.to_account()
