"""
Application-level exceptions.

Every failure an orchestration step can raise derives from OrchestrationError.
The facade catches these at its boundary and turns the message into a log entry;
internal steps let them propagate.
"""

from __future__ import annotations


class OrchestrationError(Exception):
    """Base class for orchestration failures. ``kind`` names the error for log output."""

    kind = "orchestration_error"


class NotConnected(OrchestrationError):
    """No account reference is active; use-cases treat this as a no-op."""

    kind = "not_connected"


class SigningRejected(OrchestrationError):
    """The wallet (or its user) declined to sign."""

    kind = "signing_rejected"


class CapabilityUnavailable(SigningRejected):
    """The connected wallet does not expose the signing method a use-case needs."""

    kind = "capability_unavailable"

    def __init__(self, capability: str, wallet_name: str = "wallet") -> None:
        self.capability = capability
        self.wallet_name = wallet_name
        super().__init__(f"{wallet_name} does not support {capability}")


class SubmissionRejected(OrchestrationError):
    """The cluster refused the transaction (bad anchor, failed preflight, ...)."""

    kind = "submission_rejected"


class AlreadySubmitted(SubmissionRejected):
    """A signed transaction was handed to submit() a second time."""

    kind = "already_submitted"


class ContextUnavailable(OrchestrationError):
    """An RPC fetch (anchor, slot, account) failed."""

    kind = "context_unavailable"


class LookupTableNotWarm(OrchestrationError):
    """A lookup table was referenced before its extension confirmed and warmed up."""

    kind = "lookup_table_not_warm"


class LookupTableError(OrchestrationError):
    """Lookup table lifecycle violated (extend before create, address already claimed)."""

    kind = "lookup_table_error"


class ConfirmationTimeout(OrchestrationError):
    """Polling budget exhausted without a terminal status. The transaction may still land."""

    kind = "timeout"


class TransactionFailed(OrchestrationError):
    """The cluster reported the transaction as failed."""

    kind = "transaction_failed"


class PollingCancelled(OrchestrationError):
    """The caller's cancellation event fired while polling."""

    kind = "polling_cancelled"


class SignInVerificationFailed(OrchestrationError):
    """Signed sign-in output did not match the challenge."""

    kind = "sign_in_verification_failed"
