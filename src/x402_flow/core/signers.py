"""
Signers produce the opaque evidence blobs carried in a payment payload.

The flow treats a signer as an external wallet capability: it hands over the
requirements and gets back a ``transaction`` blob and a ``senderAuthenticator``
blob. Key generation and custody live outside this package.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from hexbytes import HexBytes

from .codec import canonical_json
from .models import PaymentRequirements

__all__ = [
    "EthAccountSigner",
    "PaymentSigner",
    "PlaceholderSigner",
    "SignedAuthorization",
    "SignerError",
    "build_authorization_message",
    "parse_authorization_message",
    "recover_payer",
]


class SignerError(Exception):
    """Raised when a signer cannot produce evidence for the requirements."""


@dataclass(frozen=True)
class SignedAuthorization:
    transaction: bytes
    sender_authenticator: bytes
    payer: Optional[str] = None


class PaymentSigner(Protocol):
    def sign(self, requirements: PaymentRequirements) -> SignedAuthorization:
        ...


def build_authorization_message(
    requirements: PaymentRequirements,
    payer: str,
    nonce: bytes,
) -> bytes:
    """
    Canonical bytes of the authorization a payer signs.

    The message binds every term the facilitator checks, so a signature over
    it cannot be replayed against different terms.
    """
    message = {
        "scheme": requirements.scheme,
        "network": requirements.network,
        "amount": requirements.amount,
        "asset": requirements.asset,
        "payTo": requirements.pay_to,
        "from": payer,
        "nonce": "0x" + nonce.hex(),
    }
    return canonical_json(message).encode("utf-8")


def parse_authorization_message(transaction: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(transaction.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"Transaction blob is not an authorization message: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("Transaction blob is not an authorization message")
    return data


def recover_payer(transaction: bytes, sender_authenticator: bytes) -> str:
    """Address whose key produced ``sender_authenticator`` over ``transaction``."""
    return Account.recover_message(
        encode_defunct(primitive=transaction),
        signature=sender_authenticator,
    )


class EthAccountSigner:
    """Signs authorization messages with an ``eth_account`` local key (EIP-191)."""

    def __init__(self, private_key: str) -> None:
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign(
        self,
        requirements: PaymentRequirements,
        *,
        nonce: Optional[Union[bytes, str]] = None,
    ) -> SignedAuthorization:
        nonce_bytes = bytes(HexBytes(nonce)) if nonce is not None else secrets.token_bytes(32)
        if len(nonce_bytes) != 32:
            raise SignerError(f"Nonce must be 32 bytes, got {len(nonce_bytes)}")

        transaction = build_authorization_message(requirements, self.address, nonce_bytes)
        signed = self._account.sign_message(encode_defunct(primitive=transaction))
        return SignedAuthorization(
            transaction=transaction,
            sender_authenticator=bytes(signed.signature),
            payer=self.address,
        )


class PlaceholderSigner:
    """
    Demo signer that emits zero-filled blobs of a fixed size.

    It holds no key material; a facilitator running a real verifier rejects
    its output.
    """

    blob_size = 64

    def sign(self, requirements: PaymentRequirements) -> SignedAuthorization:
        logging.warning(
            "No payer key configured; using placeholder evidence for %s payment on %s",
            requirements.scheme,
            requirements.network,
        )
        return SignedAuthorization(
            transaction=bytes(self.blob_size),
            sender_authenticator=bytes(self.blob_size),
        )
