"""
Value objects passed between builder, dispatcher, poller and facade.

Transactions, signed transactions and receipts are frozen; the lookup table is
the one mutable object because it carries its own lifecycle state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.hash import Hash
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction

SolanaMessage = Union[Message, MessageV0]
SolanaTransaction = Union[Transaction, VersionedTransaction]


class TransactionVersion(str, Enum):
    LEGACY = "legacy"
    V0 = "v0"


@dataclass(frozen=True)
class Anchor:
    """Recent blockhash plus the last block height at which it is still valid."""

    blockhash: Hash
    last_valid_block_height: int
    fetched_at: float


@dataclass(frozen=True)
class UnsignedTransaction:
    """
    Message ready for signing. ``signers`` are the accounts whose signatures the
    message requires; ``lookup_tables`` lists tables the v0 message was compiled against.
    """

    message: SolanaMessage
    version: TransactionVersion
    payer: Pubkey
    anchor: Anchor
    signers: tuple[Pubkey, ...]
    lookup_tables: tuple[Pubkey, ...] = ()
    built_at: float = 0.0

    @property
    def is_versioned(self) -> bool:
        return self.version is TransactionVersion.V0

    @property
    def instruction_count(self) -> int:
        return len(self.message.instructions)

    def describe(self) -> str:
        return (
            f"{self.version.value} transaction with {self.instruction_count} instruction(s), "
            f"fee payer {self.payer}, blockhash {self.anchor.blockhash}"
        )


@dataclass(frozen=True)
class SignedTransaction:
    """Original unsigned transaction plus the signed solders transaction."""

    unsigned: UnsignedTransaction
    transaction: SolanaTransaction

    @property
    def signatures(self) -> list[Signature]:
        return list(self.transaction.signatures)

    @property
    def signature(self) -> Signature:
        """Fee payer signature; the cluster uses it as the transaction id."""
        return self.transaction.signatures[0]

    def serialize(self) -> bytes:
        return bytes(self.transaction)


@dataclass(frozen=True)
class SubmissionReceipt:
    """Transaction id returned when the cluster accepted the transaction."""

    signature: Signature
    submitted_at: float

    def __str__(self) -> str:
        return str(self.signature)


class ConfirmationState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"
    TIMED_OUT = "timed-out"


# Forward order; failed and timed-out are terminal and rank above everything else.
_STATE_RANK = {
    ConfirmationState.PENDING: 0,
    ConfirmationState.CONFIRMED: 1,
    ConfirmationState.FINALIZED: 2,
    ConfirmationState.FAILED: 3,
    ConfirmationState.TIMED_OUT: 3,
}


@dataclass(frozen=True)
class ConfirmationStatus:
    state: ConfirmationState
    reason: str | None = None

    @classmethod
    def pending(cls) -> "ConfirmationStatus":
        return cls(ConfirmationState.PENDING)

    @classmethod
    def confirmed(cls) -> "ConfirmationStatus":
        return cls(ConfirmationState.CONFIRMED)

    @classmethod
    def finalized(cls) -> "ConfirmationStatus":
        return cls(ConfirmationState.FINALIZED)

    @classmethod
    def failed(cls, reason: str) -> "ConfirmationStatus":
        return cls(ConfirmationState.FAILED, reason)

    @classmethod
    def timed_out(cls) -> "ConfirmationStatus":
        return cls(ConfirmationState.TIMED_OUT)

    @property
    def is_success(self) -> bool:
        return self.state in (ConfirmationState.CONFIRMED, ConfirmationState.FINALIZED)

    @property
    def is_terminal(self) -> bool:
        return self.state in (ConfirmationState.FAILED, ConfirmationState.TIMED_OUT)

    def advances(self, other: "ConfirmationStatus") -> bool:
        """True if moving from ``other`` to self is a forward transition."""
        return _STATE_RANK[self.state] > _STATE_RANK[other.state]

    def __str__(self) -> str:
        if self.reason:
            return f"{self.state.value} ({self.reason})"
        return self.state.value


class LookupTableState(str, Enum):
    PROPOSED = "proposed"
    CREATED = "created"
    EXTENDED = "extended"
    ACTIVE = "active"


@dataclass
class LookupTable:
    """
    Address lookup table owned by ``authority``. ``addresses`` mirrors what the
    extend transactions wrote on chain, in order.
    """

    address: Pubkey
    authority: Pubkey
    recent_slot: int
    warmup_sec: float
    addresses: list[Pubkey] = field(default_factory=list)
    state: LookupTableState = LookupTableState.PROPOSED
    extended_confirmed_at: float | None = None

    def active_at(self) -> float | None:
        if self.extended_confirmed_at is None:
            return None
        return self.extended_confirmed_at + self.warmup_sec

    def is_active(self, now: float) -> bool:
        ready = self.active_at()
        if ready is None or now < ready:
            return False
        self.state = LookupTableState.ACTIVE
        return True

    def to_account(self) -> AddressLookupTableAccount:
        return AddressLookupTableAccount(key=self.address, addresses=list(self.addresses))

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": str(self.address),
            "authority": str(self.authority),
            "recent_slot": self.recent_slot,
            "addresses": [str(a) for a in self.addresses],
            "state": self.state.value,
        }
