"""
Tests for the lookup table manager: address derivation, instruction layout,
lifecycle ordering and warm-up.
"""

from __future__ import annotations

import asyncio
import struct

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from conftest import run
from dapp_orchestrator.core.exceptions import ContextUnavailable, LookupTableError, LookupTableNotWarm
from dapp_orchestrator.transactions.builder import TransactionBuilder
from dapp_orchestrator.transactions.dispatcher import SigningDispatcher
from dapp_orchestrator.transactions.lookup_table import (
    ADDRESS_LOOKUP_TABLE_PROGRAM_ID,
    MAX_ADDRESSES_PER_EXTEND,
    SLOT_REFETCH_DELAY_SEC,
    SYS_PROGRAM_ID,
    LookupTableManager,
    build_create_lookup_table_instruction,
    build_extend_lookup_table_instruction,
    derive_lookup_table_address,
)
from dapp_orchestrator.transactions.models import ConfirmationStatus, LookupTableState
from dapp_orchestrator.wallet.capabilities import KeypairWallet


@pytest.fixture
def builder(context, clock):
    return TransactionBuilder(context, recipient=Pubkey.new_unique(), clock=clock)


@pytest.fixture
def manager(context, clock, builder):
    dispatcher = SigningDispatcher(context, clock=clock)
    return LookupTableManager(context, builder, dispatcher, warmup_sec=6.0, clock=clock)


def _created_and_extended(manager, wallet, addresses):
    _, table = run(manager.create(wallet))
    manager.mark_created(table, ConfirmationStatus.confirmed())
    run(manager.extend(wallet, table, addresses))
    manager.mark_extended(table, ConfirmationStatus.finalized())
    return table


def test_derive_address_is_deterministic_per_slot():
    authority = Pubkey.new_unique()
    a1, bump1 = derive_lookup_table_address(authority, 100)
    a2, bump2 = derive_lookup_table_address(authority, 100)
    a3, _ = derive_lookup_table_address(authority, 101)
    assert (a1, bump1) == (a2, bump2)
    assert a1 != a3
    assert not a1.is_on_curve()


def test_create_instruction_layout():
    authority = Pubkey.new_unique()
    ix, table = build_create_lookup_table_instruction(authority, authority, 777)
    _, bump = derive_lookup_table_address(authority, 777)
    assert ix.program_id == ADDRESS_LOOKUP_TABLE_PROGRAM_ID
    assert bytes(ix.data) == struct.pack("<IQB", 0, 777, bump)
    assert [m.pubkey for m in ix.accounts] == [table, authority, authority, SYS_PROGRAM_ID]
    assert ix.accounts[0].is_writable and not ix.accounts[0].is_signer
    assert ix.accounts[1].is_signer


def test_extend_instruction_layout():
    table, authority = Pubkey.new_unique(), Pubkey.new_unique()
    addresses = [Pubkey.new_unique(), Pubkey.new_unique()]
    ix = build_extend_lookup_table_instruction(table, authority, authority, addresses)
    data = bytes(ix.data)
    assert data[:12] == struct.pack("<IQ", 2, 2)
    assert data[12:] == bytes(addresses[0]) + bytes(addresses[1])
    with pytest.raises(ValueError):
        build_extend_lookup_table_instruction(table, authority, authority, [])


def test_create_submits_and_returns_proposed_table(manager, wallet, context):
    receipt, table = run(manager.create(wallet))
    assert len(context.sent) == 1
    assert table.authority == wallet.public_key
    assert table.state is LookupTableState.PROPOSED
    assert table.address == derive_lookup_table_address(wallet.public_key, table.recent_slot)[0]
    manager.mark_created(table, ConfirmationStatus.confirmed())
    assert table.state is LookupTableState.CREATED


def test_repeated_creates_use_distinct_slots(manager, wallet, context):
    _, first = run(manager.create(wallet))
    _, second = run(manager.create(wallet))
    assert second.recent_slot > first.recent_slot
    assert first.address != second.address


def test_stalled_slot_raises_context_unavailable(manager, wallet, context):
    context.slot_step = 0
    run(manager.create(wallet))
    with pytest.raises(ContextUnavailable, match="did not advance"):
        run(manager.create(wallet))


def _manager_for(context, clock) -> LookupTableManager:
    builder = TransactionBuilder(context, recipient=Pubkey.new_unique(), clock=clock)
    return LookupTableManager(context, builder, SigningDispatcher(context, clock=clock), warmup_sec=6.0, clock=clock)


def test_concurrent_creates_claim_distinct_slots(yielding_context, clock, wallet):
    """Two creates racing on one authority both see the same slot first; the second waits for the next."""
    manager = _manager_for(yielding_context, clock)

    async def both():
        return await asyncio.gather(manager.create(wallet), manager.create(wallet))

    (r1, t1), (r2, t2) = run(both())
    assert t1.recent_slot != t2.recent_slot
    assert t1.address != t2.address
    assert r1.signature != r2.signature
    assert len(yielding_context.sent) == 2
    assert clock.sleeps == [SLOT_REFETCH_DELAY_SEC]


def test_concurrent_creates_with_stalled_slot_send_once(yielding_context, clock, wallet):
    yielding_context.slot_step = 0
    manager = _manager_for(yielding_context, clock)

    async def both():
        return await asyncio.gather(manager.create(wallet), manager.create(wallet), return_exceptions=True)

    first, second = run(both())
    assert first[1].recent_slot == yielding_context.slot
    assert isinstance(second, ContextUnavailable)
    assert len(yielding_context.sent) == 1


def test_claimed_address_is_refused(manager, wallet, context):
    slot = context.slot + context.slot_step
    claimed, _ = derive_lookup_table_address(wallet.public_key, slot)
    context.claimed.add(str(claimed))
    with pytest.raises(LookupTableError, match="already claimed"):
        run(manager.create(wallet))
    assert context.sent == []


def test_extend_before_create_confirmed_is_refused(manager, wallet, context):
    _, table = run(manager.create(wallet))
    sent = len(context.sent)
    with pytest.raises(LookupTableError, match="confirmed created"):
        run(manager.extend(wallet, table, [SYS_PROGRAM_ID]))
    assert len(context.sent) == sent


def test_create_not_confirmed_blocks_chain(manager, wallet):
    _, table = run(manager.create(wallet))
    with pytest.raises(LookupTableError, match="creation not confirmed"):
        manager.mark_created(table, ConfirmationStatus.timed_out())
    assert table.state is LookupTableState.PROPOSED


def test_extend_requires_authority(manager, wallet):
    _, table = run(manager.create(wallet))
    manager.mark_created(table, ConfirmationStatus.confirmed())
    other = KeypairWallet(Keypair(), origin="localhost:3000")
    run(other.connect())
    with pytest.raises(LookupTableError, match="not the authority"):
        run(manager.extend(other, table, [SYS_PROGRAM_ID]))


def test_extend_limit(manager, wallet):
    _, table = run(manager.create(wallet))
    manager.mark_created(table, ConfirmationStatus.confirmed())
    too_many = [Pubkey.new_unique() for _ in range(MAX_ADDRESSES_PER_EXTEND + 1)]
    with pytest.raises(ValueError):
        run(manager.extend(wallet, table, too_many))


def test_extend_records_addresses_in_order(manager, wallet):
    addresses = [wallet.public_key, SYS_PROGRAM_ID, Pubkey.new_unique()]
    table = _created_and_extended(manager, wallet, addresses)
    assert table.addresses == addresses
    assert table.state is LookupTableState.EXTENDED
    assert table.to_dict()["addresses"] == [str(a) for a in addresses]


def test_failed_extension_leaves_table_unusable(manager, wallet):
    _, table = run(manager.create(wallet))
    manager.mark_created(table, ConfirmationStatus.confirmed())
    run(manager.extend(wallet, table, [SYS_PROGRAM_ID]))
    with pytest.raises(LookupTableError, match="extension not confirmed"):
        manager.mark_extended(table, ConfirmationStatus.failed("InstructionError"))
    assert table.extended_confirmed_at is None
    with pytest.raises(LookupTableNotWarm):
        manager.resolve(table)


def test_warmup_elapsed_then_usable(manager, builder, wallet, clock):
    """After extension confirms and the warm-up passes, a v0 build resolves the table."""
    recipient = builder.recipient_for(wallet.public_key)
    table = _created_and_extended(manager, wallet, [wallet.public_key, SYS_PROGRAM_ID, recipient])
    clock.advance(6.0)
    account = manager.resolve(table)
    assert account.key == table.address
    tx = run(builder.build_transfer_versioned(wallet.public_key, lookup_table=table))
    assert tx.lookup_tables == (table.address,)
    assert table.state is LookupTableState.ACTIVE


def test_zero_warmup_elapsed_is_not_warm(manager, builder, wallet, context):
    """Using the table right after the extension confirms fails without reaching the network."""
    table = _created_and_extended(manager, wallet, [wallet.public_key, SYS_PROGRAM_ID])
    calls = context.network_calls
    with pytest.raises(LookupTableNotWarm):
        manager.resolve(table)
    with pytest.raises(LookupTableNotWarm, match="usable in 6.0s"):
        run(builder.build_transfer_versioned(wallet.public_key, lookup_table=table))
    assert context.network_calls == calls


def test_negative_warmup_rejected(context, builder, clock):
    with pytest.raises(ValueError):
        LookupTableManager(context, builder, SigningDispatcher(context), warmup_sec=-1, clock=clock)
