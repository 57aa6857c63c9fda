"""
Sign-In-With-Solana helpers: challenge payloads, message text and verification.

The message text follows the SIWS layout the wallet signs, so verification can
rebuild it from the challenge and compare byte for byte before checking the
ed25519 signature.
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from solders.pubkey import Pubkey
from solders.signature import Signature

from dapp_orchestrator.config.settings import OrchestratorConfig, get_settings
from dapp_orchestrator.dapp_logging import get_logger

logger = get_logger(__name__)

NONCE_LENGTH = 10
_NONCE_ALPHABET = string.ascii_letters + string.digits
ERROR_SIGN_IN_DOMAIN = "phishing.example"
DEFAULT_RESOURCES = ["https://example.com", "https://phantom.app/"]


class SignInInput(BaseModel):
    """Challenge handed to the wallet. Field aliases match the wallet-standard names."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    domain: str = Field(..., min_length=1, description="Origin (host[:port]) requesting sign-in")
    address: str | None = Field(None, description="Account expected to sign; wallet fills it when None")
    statement: str | None = None
    uri: str | None = None
    version: str | None = "1"
    chain_id: str | None = Field(None, alias="chainId")
    nonce: str | None = None
    issued_at: str | None = Field(None, alias="issuedAt")
    expiration_time: str | None = Field(None, alias="expirationTime")
    not_before: str | None = Field(None, alias="notBefore")
    request_id: str | None = Field(None, alias="requestId")
    resources: list[str] = Field(default_factory=list)


class SignInOutput(BaseModel):
    """What the wallet returns: the account, the exact bytes it signed and the signature."""

    model_config = ConfigDict(frozen=True)

    account_address: str
    signed_message: bytes
    signature: bytes


def _nonce() -> str:
    return "".join(secrets.choice(_NONCE_ALPHABET) for _ in range(NONCE_LENGTH))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def create_sign_in_data(config: OrchestratorConfig | None = None) -> SignInInput:
    """Fresh challenge for the configured domain, with a random nonce."""
    cfg = config or get_settings()
    return SignInInput(
        domain=cfg.sign_in_domain,
        statement=cfg.sign_in_statement,
        uri=cfg.sign_in_uri,
        version="1",
        chain_id=cfg.sign_in_chain_id,
        nonce=_nonce(),
        issued_at=_now_iso(),
        resources=list(DEFAULT_RESOURCES),
    )


def create_sign_in_error_data(config: OrchestratorConfig | None = None) -> SignInInput:
    """Challenge for a foreign domain; a well-behaved wallet refuses to sign it."""
    cfg = config or get_settings()
    return SignInInput(
        domain=ERROR_SIGN_IN_DOMAIN,
        statement="Sign-in to connect!",
        uri=f"https://{ERROR_SIGN_IN_DOMAIN}",
        version="1",
        chain_id=cfg.sign_in_chain_id,
        nonce=_nonce(),
        issued_at=_now_iso(),
        resources=list(DEFAULT_RESOURCES),
    )


def create_sign_in_message_text(data: SignInInput) -> str:
    """Render the SIWS message. ``data.address`` must be set."""
    if not data.address:
        raise ValueError("address is required to render a sign-in message")
    message = f"{data.domain} wants you to sign in with your Solana account:\n{data.address}"
    if data.statement:
        message += f"\n\n{data.statement}"
    fields: list[str] = []
    if data.uri:
        fields.append(f"URI: {data.uri}")
    if data.version:
        fields.append(f"Version: {data.version}")
    if data.chain_id:
        fields.append(f"Chain ID: {data.chain_id}")
    if data.nonce:
        fields.append(f"Nonce: {data.nonce}")
    if data.issued_at:
        fields.append(f"Issued At: {data.issued_at}")
    if data.expiration_time:
        fields.append(f"Expiration Time: {data.expiration_time}")
    if data.not_before:
        fields.append(f"Not Before: {data.not_before}")
    if data.request_id:
        fields.append(f"Request ID: {data.request_id}")
    if data.resources:
        fields.append("Resources:")
        fields.extend(f"- {resource}" for resource in data.resources)
    if fields:
        message += "\n\n" + "\n".join(fields)
    return message


def verify_sign_in(data: SignInInput, output: SignInOutput) -> bool:
    """
    True if ``output`` is a valid signature over exactly the message ``data`` describes.

    The challenge's address (when set) must match the signing account, the signed
    bytes must equal the rebuilt message text, and the signature must verify.
    """
    if data.address and data.address != output.account_address:
        logger.warning("sign_in_address_mismatch", expected=data.address, actual=output.account_address)
        return False
    try:
        pubkey = Pubkey.from_string(output.account_address)
        signature = Signature.from_bytes(output.signature)
    except Exception as e:
        logger.warning("sign_in_output_malformed", error=str(e))
        return False
    expected = create_sign_in_message_text(data.model_copy(update={"address": output.account_address}))
    if expected.encode("utf-8") != output.signed_message:
        logger.warning("sign_in_message_mismatch", account=output.account_address)
        return False
    return signature.verify(pubkey, output.signed_message)
