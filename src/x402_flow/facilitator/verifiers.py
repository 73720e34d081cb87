"""
Network capabilities the facilitator delegates to.

A :class:`NetworkVerifier` confirms that the payer's authorization covers the
advertised terms; a :class:`Settler` finalizes a verified payment. Neither
variant here talks to a chain: broadcasting stays out of scope, and settlement
is simulated with a digest of the evidence.
"""

from __future__ import annotations

from typing import Optional, Protocol

from eth_utils import keccak, to_checksum_address

from ..core.models import PaymentRequirements
from ..core.signers import parse_authorization_message, recover_payer

__all__ = [
    "AcceptAllVerifier",
    "AuthorizationError",
    "NetworkVerifier",
    "SettlementError",
    "Settler",
    "SignatureVerifier",
    "SimulatedSettler",
    "claimed_payer",
]

SIGNATURE_LENGTH = 65


class AuthorizationError(Exception):
    """The evidence does not authorize the requested payment."""

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        super().__init__(message or reason)
        self.reason = reason


class SettlementError(Exception):
    """Settlement could not be completed; no funds moved."""

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        super().__init__(message or reason)
        self.reason = reason


class NetworkVerifier(Protocol):
    def verify_authorization(
        self,
        transaction: bytes,
        sender_authenticator: bytes,
        requirements: PaymentRequirements,
    ) -> Optional[str]:
        """Return the payer address, or raise :class:`AuthorizationError`."""
        ...


class Settler(Protocol):
    def settle(
        self,
        transaction: bytes,
        sender_authenticator: bytes,
        requirements: PaymentRequirements,
    ) -> str:
        """Return the settlement transaction identifier."""
        ...


def claimed_payer(transaction: bytes) -> Optional[str]:
    """Payer named inside an authorization message, if the blob is one."""
    try:
        message = parse_authorization_message(transaction)
    except ValueError:
        return None
    payer = message.get("from")
    return payer if isinstance(payer, str) else None


class AcceptAllVerifier:
    """Demo stub: every authorization passes."""

    def verify_authorization(
        self,
        transaction: bytes,
        sender_authenticator: bytes,
        requirements: PaymentRequirements,
    ) -> Optional[str]:
        return claimed_payer(transaction)


class SignatureVerifier:
    """
    Checks authorizations produced by :class:`~x402_flow.core.signers.EthAccountSigner`.

    The transaction blob must be an authorization message whose terms equal
    the requirements, and the authenticator must be the named payer's
    signature over exactly those bytes.
    """

    def verify_authorization(
        self,
        transaction: bytes,
        sender_authenticator: bytes,
        requirements: PaymentRequirements,
    ) -> str:
        try:
            message = parse_authorization_message(transaction)
        except ValueError as exc:
            raise AuthorizationError("malformed-authorization", str(exc)) from exc

        expected = {
            "scheme": requirements.scheme,
            "network": requirements.network,
            "amount": requirements.amount,
            "asset": requirements.asset,
            "payTo": requirements.pay_to,
        }
        for field_name, value in expected.items():
            if message.get(field_name) != value:
                raise AuthorizationError(
                    "authorization-mismatch",
                    f"Signed {field_name} {message.get(field_name)!r} does not match {value!r}",
                )

        if len(sender_authenticator) != SIGNATURE_LENGTH:
            raise AuthorizationError(
                "invalid-signature",
                f"Invalid signature length: {len(sender_authenticator)}",
            )
        try:
            payer = recover_payer(transaction, sender_authenticator)
        except Exception as exc:  # noqa: BLE001
            raise AuthorizationError("invalid-signature", f"Signature recovery failed: {exc}") from exc

        claimed = message.get("from")
        try:
            claimed = to_checksum_address(claimed)
        except (TypeError, ValueError) as exc:
            raise AuthorizationError("invalid-signature", f"Invalid payer address {claimed!r}") from exc
        if claimed != payer:
            raise AuthorizationError(
                "invalid-signature",
                f"Recovered address {payer} does not match sender {claimed}",
            )
        return payer


class SimulatedSettler:
    """Derives a transaction identifier from the evidence without broadcasting."""

    def settle(
        self,
        transaction: bytes,
        sender_authenticator: bytes,
        requirements: PaymentRequirements,
    ) -> str:
        return "0x" + keccak(transaction + sender_authenticator).hex()
