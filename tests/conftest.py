"""
Pytest fixtures for dapp_orchestrator tests: fake clock, scripted network contexts
(one suspends on every call), keypair wallets (approving and rejecting) and a
wired orchestrator.
"""

from __future__ import annotations

import asyncio

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature

from dapp_orchestrator.config.settings import OrchestratorConfig
from dapp_orchestrator.core.exceptions import ContextUnavailable, SigningRejected
from dapp_orchestrator.facade.orchestrator import WalletOrchestrator
from dapp_orchestrator.transactions.models import Anchor, ConfirmationStatus
from dapp_orchestrator.wallet.capabilities import KeypairWallet
from dapp_orchestrator.wallet.session import WalletSession

ORIGIN = "localhost:3000"


class FakeClock:
    """Synthetic clock: sleep() advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.t = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds

    async def sleep(self, seconds: float, cancel: asyncio.Event | None = None) -> bool:
        if cancel is not None and cancel.is_set():
            return True
        self.sleeps.append(seconds)
        self.t += seconds
        return cancel is not None and cancel.is_set()


class StubContext:
    """
    Network context with scripted answers and call counters.

    ``statuses`` is consumed one item per get_status call (an Exception instance is
    raised instead of returned); once empty, ``default_status`` is returned.
    """

    def __init__(self, clock: FakeClock, statuses=None, default_status=None) -> None:
        self.clock = clock
        self.statuses = list(statuses or [])
        self.default_status = default_status or ConfirmationStatus.confirmed()
        self.slot = 5000
        self.slot_step = 1
        self.claimed: set[str] = set()
        self.anchor_error: Exception | None = None
        self.send_errors: list[Exception | None] = []
        self.anchor_calls = 0
        self.slot_calls = 0
        self.status_calls = 0
        self.account_calls = 0
        self.sent: list[bytes] = []
        self.commitment = "confirmed"

    @property
    def network_calls(self) -> int:
        return self.anchor_calls + self.slot_calls + self.status_calls + self.account_calls + len(self.sent)

    async def latest_anchor(self) -> Anchor:
        self.anchor_calls += 1
        if self.anchor_error is not None:
            raise ContextUnavailable(str(self.anchor_error))
        return Anchor(
            blockhash=Hash.new_unique(),
            last_valid_block_height=100 + self.anchor_calls,
            fetched_at=self.clock.now(),
        )

    async def get_slot(self) -> int:
        self.slot_calls += 1
        self.slot += self.slot_step
        return self.slot

    async def account_exists(self, pubkey) -> bool:
        self.account_calls += 1
        return str(pubkey) in self.claimed

    async def get_status(self, signature) -> ConfirmationStatus:
        self.status_calls += 1
        item = self.statuses.pop(0) if self.statuses else self.default_status
        if isinstance(item, Exception):
            raise item
        return item

    async def send_raw(self, raw: bytes) -> Signature:
        err = self.send_errors.pop(0) if self.send_errors else None
        if err is not None:
            raise err
        self.sent.append(raw)
        # Wire format: shortvec signature count (1 byte here), then the fee payer signature.
        return Signature.from_bytes(raw[1:65])

    async def close(self) -> None:
        return None


class YieldingContext(StubContext):
    """
    StubContext whose network calls suspend once before answering, so concurrent
    callers interleave at every await. The slot only moves on when the clock
    sleeps: callers fetching together see the same slot.
    """

    async def latest_anchor(self) -> Anchor:
        await asyncio.sleep(0)
        return await super().latest_anchor()

    async def get_slot(self) -> int:
        await asyncio.sleep(0)
        self.slot_calls += 1
        return self.slot + self.slot_step * len(self.clock.sleeps)

    async def account_exists(self, pubkey) -> bool:
        await asyncio.sleep(0)
        return await super().account_exists(pubkey)

    async def get_status(self, signature) -> ConfirmationStatus:
        await asyncio.sleep(0)
        return await super().get_status(signature)

    async def send_raw(self, raw: bytes) -> Signature:
        await asyncio.sleep(0)
        return await super().send_raw(raw)


class RejectingWallet(KeypairWallet):
    """Keypair wallet whose user declines every request."""

    name = "RejectingWallet"

    async def sign_transaction(self, tx):
        raise SigningRejected("User rejected the request.")

    async def sign_all_transactions(self, txs):
        raise SigningRejected("User rejected the request.")

    async def sign_and_send_transaction(self, tx, context):
        raise SigningRejected("User rejected the request.")

    async def sign_message(self, message):
        raise SigningRejected("User rejected the request.")


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def context(clock):
    return StubContext(clock)


@pytest.fixture
def yielding_context(clock):
    return YieldingContext(clock)


@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
def wallet(keypair):
    w = KeypairWallet(keypair, origin=ORIGIN)
    run(w.connect())
    return w


@pytest.fixture
def config():
    return OrchestratorConfig(
        rpc_url="http://localhost:8899",
        commitment="confirmed",
        confirm_poll_interval_sec=2.0,
        confirm_max_attempts=5,
        lookup_table_warmup_sec=6.0,
        transfer_lamports=100,
        transfer_recipient=None,
        sign_in_domain=ORIGIN,
        sign_in_uri=f"http://{ORIGIN}",
        sign_in_chain_id="solana:devnet",
    )


@pytest.fixture
def make_orchestrator(context, clock, config):
    """Build an orchestrator around ``wallet`` (connected unless connect=False)."""

    def _make(wallet, *, connect: bool = True, **kwargs):
        session = WalletSession(wallet, config=config)
        if connect:
            run(session.connect())
        return WalletOrchestrator(session, context, config=config, clock=clock, **kwargs)

    return _make
