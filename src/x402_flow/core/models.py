"""
Wire types exchanged between the client, the resource server and the facilitator.

All models are immutable and serialize with the camelCase names used on the
wire (``payTo``, ``isValid``, ``x402Version`` ...).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

__all__ = [
    "EXACT_SCHEME",
    "X402_VERSION",
    "ExactPayload",
    "FacilitatorRequest",
    "PaymentPayload",
    "PaymentRequirements",
    "SettleResult",
    "VerifyResult",
]

X402_VERSION = 2
EXACT_SCHEME = "exact"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self, *, exclude_none: bool = False) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=exclude_none)


class PaymentRequirements(_WireModel):
    """
    Terms a resource server demands before granting access.

    Unknown keys advertised by the server are kept so they survive the trip
    through ``PaymentPayload.accepted`` and take part in equality checks.
    """

    model_config = ConfigDict(extra="allow")

    scheme: str
    network: str
    amount: str
    asset: str
    pay_to: str
    extra: Optional[Dict[str, Any]] = None

    @property
    def sponsored(self) -> bool:
        return bool((self.extra or {}).get("sponsored", False))


class ExactPayload(_WireModel):
    """Evidence for the ``exact`` scheme; both fields hold base64 blobs."""

    transaction: str
    sender_authenticator: str


class PaymentPayload(_WireModel):
    x402_version: int = X402_VERSION
    accepted: PaymentRequirements
    payload: Dict[str, Any]


class FacilitatorRequest(_WireModel):
    """Body posted to both ``/verify`` and ``/settle``."""

    x402_version: int = X402_VERSION
    payment_payload: PaymentPayload
    payment_requirements: PaymentRequirements


class VerifyResult(_WireModel):
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None

    @classmethod
    def valid(cls, payer: Optional[str] = None) -> "VerifyResult":
        return cls(is_valid=True, payer=payer)

    @classmethod
    def invalid(cls, reason: str) -> "VerifyResult":
        return cls(is_valid=False, invalid_reason=reason)


class SettleResult(_WireModel):
    success: bool
    transaction: Optional[str] = None
    network: Optional[str] = None
    payer: Optional[str] = None
    error_reason: Optional[str] = None

    @classmethod
    def failed(cls, reason: str, *, network: Optional[str] = None) -> "SettleResult":
        return cls(success=False, error_reason=reason, network=network)
