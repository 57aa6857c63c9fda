"""
Tests for the signing dispatcher: sign-only, sign-and-submit, sign-batch, submit.
"""

from __future__ import annotations

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from conftest import ORIGIN, FakeClock, RejectingWallet, run
from dapp_orchestrator.core.exceptions import (
    AlreadySubmitted,
    CapabilityUnavailable,
    NotConnected,
    SigningRejected,
    SubmissionRejected,
)
from dapp_orchestrator.transactions.builder import TransactionBuilder, build_transfer_instruction
from dapp_orchestrator.transactions.connection import NetworkContext
from dapp_orchestrator.transactions.dispatcher import SigningDispatcher
from dapp_orchestrator.transactions.models import Anchor
from dapp_orchestrator.wallet.capabilities import KeypairWallet, WalletCapability


@pytest.fixture
def builder(context, clock):
    return TransactionBuilder(context, clock=clock)


@pytest.fixture
def dispatcher(context, clock):
    return SigningDispatcher(context, clock=clock)


def test_sign_only_returns_verifiable_signature(builder, dispatcher, wallet, context):
    tx = run(builder.build_transfer(wallet.public_key))
    signed = run(dispatcher.sign_only(tx, wallet))
    assert signed.unsigned is tx
    assert len(signed.signatures) == 1
    assert signed.signature.verify(wallet.public_key, bytes(tx.message))
    assert context.sent == []


def test_sign_only_rejected_makes_no_network_calls(builder, dispatcher, context, keypair):
    """A declining signer yields SigningRejected and nothing reaches the network."""
    rejecting = RejectingWallet(keypair, origin=ORIGIN)
    run(rejecting.connect())
    tx = run(builder.build_transfer(rejecting.public_key))
    calls_before = context.network_calls
    with pytest.raises(SigningRejected, match="User rejected"):
        run(dispatcher.sign_only(tx, rejecting))
    assert context.network_calls == calls_before


def test_missing_capability_is_signing_rejection(builder, dispatcher, keypair):
    limited = KeypairWallet(keypair, origin=ORIGIN, capabilities=[WalletCapability.SIGN_MESSAGE])
    run(limited.connect())
    tx = run(builder.build_transfer(limited.public_key))
    with pytest.raises(CapabilityUnavailable) as exc_info:
        run(dispatcher.sign_only(tx, limited))
    assert isinstance(exc_info.value, SigningRejected)
    assert exc_info.value.capability == "signTransaction"


def test_dispatch_requires_connected_account(builder, dispatcher, keypair, wallet):
    tx = run(builder.build_transfer(wallet.public_key))
    disconnected = KeypairWallet(keypair, origin=ORIGIN)
    with pytest.raises(NotConnected):
        run(dispatcher.sign_only(tx, disconnected))
    with pytest.raises(NotConnected):
        run(dispatcher.sign_and_submit(tx, None))


def test_wallet_refuses_foreign_signer(builder, dispatcher, wallet):
    tx = run(builder.build_transfer(Pubkey.new_unique()))
    with pytest.raises(SigningRejected, match="sole signer"):
        run(dispatcher.sign_only(tx, wallet))


def test_sign_and_submit_returns_receipt(builder, dispatcher, wallet, context, clock):
    tx = run(builder.build_transfer(wallet.public_key))
    receipt = run(dispatcher.sign_and_submit(tx, wallet))
    assert len(context.sent) == 1
    assert receipt.signature.verify(wallet.public_key, bytes(tx.message))
    assert receipt.submitted_at == clock.now()
    assert str(receipt) == str(receipt.signature)


def test_sign_and_submit_distinguishes_submission_failure(builder, dispatcher, wallet, context):
    context.send_errors = [SubmissionRejected("Blockhash not found")]
    tx = run(builder.build_transfer(wallet.public_key))
    with pytest.raises(SubmissionRejected, match="Blockhash not found") as exc_info:
        run(dispatcher.sign_and_submit(tx, wallet))
    assert not isinstance(exc_info.value, SigningRejected)


def test_sign_and_submit_unreachable_endpoint_is_submission_failure(wallet):
    """A signed transaction that cannot reach the cluster is a submission failure with a message."""

    async def _go():
        network = NetworkContext.from_url("http://127.0.0.1:1", clock=FakeClock())
        try:
            ix = build_transfer_instruction(wallet.public_key, wallet.public_key, 1)
            anchor = Anchor(blockhash=Hash.new_unique(), last_valid_block_height=0, fetched_at=0.0)
            tx = await TransactionBuilder(network).build(wallet.public_key, [ix], anchor=anchor)
            return await SigningDispatcher(network).sign_and_submit(tx, wallet)
        finally:
            await network.close()

    with pytest.raises(SubmissionRejected) as exc_info:
        run(_go())
    assert not isinstance(exc_info.value, SigningRejected)
    assert str(exc_info.value).startswith("Submission failed: ")
    assert len(str(exc_info.value)) > len("Submission failed: ")


def test_wallet_transport_error_is_submission_failure(builder, dispatcher, keypair):
    class DroppingWallet(KeypairWallet):
        async def sign_and_send_transaction(self, tx, context):
            raise ConnectionError("connection reset by peer")

    dropping = DroppingWallet(keypair, origin=ORIGIN)
    run(dropping.connect())
    tx = run(builder.build_transfer(dropping.public_key))
    with pytest.raises(SubmissionRejected, match="connection reset by peer") as exc_info:
        run(dispatcher.sign_and_submit(tx, dropping))
    assert not isinstance(exc_info.value, SigningRejected)


def test_sign_and_submit_signing_failure_sends_nothing(builder, dispatcher, context, keypair):
    rejecting = RejectingWallet(keypair, origin=ORIGIN)
    run(rejecting.connect())
    tx = run(builder.build_transfer(rejecting.public_key))
    with pytest.raises(SigningRejected):
        run(dispatcher.sign_and_submit(tx, rejecting))
    assert context.sent == []


def test_unexpected_wallet_error_becomes_signing_rejection(builder, dispatcher, wallet):
    class BrokenWallet(KeypairWallet):
        async def sign_transaction(self, tx):
            raise RuntimeError("extension crashed")

    broken = BrokenWallet(Keypair(), origin=ORIGIN)
    run(broken.connect())
    tx = run(builder.build_transfer(broken.public_key))
    with pytest.raises(SigningRejected, match="extension crashed"):
        run(dispatcher.sign_only(tx, broken))


def test_sign_batch_preserves_order(builder, dispatcher, wallet):
    txs = [run(builder.build_transfer(wallet.public_key)) for _ in range(4)]
    signed = run(dispatcher.sign_batch(txs, wallet))
    assert len(signed) == 4
    for original, result in zip(txs, signed):
        assert result.unsigned is original
        assert result.transaction.message == original.message
        assert result.signature.verify(wallet.public_key, bytes(original.message))


def test_sign_batch_rejects_reordered_reply(builder, dispatcher, keypair):
    class ShufflingWallet(KeypairWallet):
        async def sign_all_transactions(self, txs):
            return list(reversed(await super().sign_all_transactions(txs)))

    shuffling = ShufflingWallet(keypair, origin=ORIGIN)
    run(shuffling.connect())
    txs = [run(builder.build_transfer(shuffling.public_key)) for _ in range(2)]
    with pytest.raises(SigningRejected, match="position 0"):
        run(dispatcher.sign_batch(txs, shuffling))


def test_sign_batch_is_atomic_on_rejection(builder, dispatcher, keypair):
    rejecting = RejectingWallet(keypair, origin=ORIGIN)
    run(rejecting.connect())
    txs = [run(builder.build_transfer(rejecting.public_key)) for _ in range(3)]
    with pytest.raises(SigningRejected):
        run(dispatcher.sign_batch(txs, rejecting))


def test_sign_batch_empty(dispatcher, wallet):
    assert run(dispatcher.sign_batch([], wallet)) == []


def test_submit_signed_once(builder, dispatcher, wallet, context):
    tx = run(builder.build_transfer(wallet.public_key))
    signed = run(dispatcher.sign_only(tx, wallet))
    receipt = run(dispatcher.submit(signed))
    assert receipt.signature == signed.signature
    with pytest.raises(AlreadySubmitted):
        run(dispatcher.submit(signed))
    assert len(context.sent) == 1


def test_submitted_signatures_are_bounded(builder, context, clock, wallet):
    dispatcher = SigningDispatcher(context, clock=clock, max_tracked=2)
    signed = [run(dispatcher.sign_only(run(builder.build_transfer(wallet.public_key)), wallet)) for _ in range(3)]
    for s in signed:
        run(dispatcher.submit(s))
    keys = [str(s.signature) for s in signed]
    assert not dispatcher.was_submitted(keys[0])
    assert dispatcher.was_submitted(keys[1]) and dispatcher.was_submitted(keys[2])
    with pytest.raises(AlreadySubmitted):
        run(dispatcher.submit(signed[2]))
    assert len(context.sent) == 3


def test_invalid_tracking_limit(context):
    with pytest.raises(ValueError):
        SigningDispatcher(context, max_tracked=0)
