"""
Facilitator backends: the policy that adjudicates and settles payment proofs.

Every backend satisfies :class:`~x402_flow.core.client.FacilitatorBackend`, so
the HTTP service, the resource-client flow and tests can swap them freely.
"""

from __future__ import annotations

import logging
import re
import threading
from collections import OrderedDict
from typing import Iterable, Optional, Tuple

from eth_utils import keccak
from pydantic import ValidationError

from ..core.codec import PaymentCodecError, canonical_json, decode_blob
from ..core.models import (
    EXACT_SCHEME,
    ExactPayload,
    PaymentPayload,
    PaymentRequirements,
    SettleResult,
    VerifyResult,
)
from .verifiers import (
    AuthorizationError,
    NetworkVerifier,
    SettlementError,
    Settler,
    SignatureVerifier,
    SimulatedSettler,
    claimed_payer,
)

__all__ = [
    "CannedFacilitator",
    "LocalFacilitator",
    "PLACEHOLDER_PAYER",
    "proof_digest",
    "settlement_key",
]

logger = logging.getLogger(__name__)

PLACEHOLDER_PAYER = "0x" + "0" * 40

_BASE_UNITS = re.compile(r"[0-9]+")


def settlement_key(payload: PaymentPayload, requirements: PaymentRequirements) -> str:
    """
    Idempotency key of a settlement: keccak of ``{transaction, requirements}``.

    Two submissions of the same signed evidence against the same terms share a
    key no matter how the JSON was ordered on the wire.
    """
    document = {
        "transaction": payload.payload.get("transaction"),
        "requirements": requirements.to_wire(),
    }
    return "0x" + keccak(text=canonical_json(document)).hex()


def proof_digest(payload: PaymentPayload, requirements: PaymentRequirements) -> str:
    """Digest of the whole submission: evidence, accepted terms and requirements."""
    document = {
        "payload": payload.to_wire(),
        "requirements": requirements.to_wire(),
    }
    return "0x" + keccak(text=canonical_json(document)).hex()


def _exact_evidence(payload: PaymentPayload) -> Tuple[bytes, bytes]:
    try:
        evidence = ExactPayload.model_validate(payload.payload)
    except ValidationError as exc:
        raise ValueError(f"Payload fields are missing or mistyped: {exc}") from exc
    try:
        transaction = decode_blob(evidence.transaction)
        sender_authenticator = decode_blob(evidence.sender_authenticator)
    except PaymentCodecError as exc:
        raise ValueError(str(exc)) from exc
    if not transaction or not sender_authenticator:
        raise ValueError("Payload evidence must not be empty")
    return transaction, sender_authenticator


class LocalFacilitator:
    """
    In-process facilitator.

    Verification checks, in order: the payload accepted exactly the supplied
    requirements, the amount is a non-negative integer of base units, the
    scheme and network are served here, the evidence is well formed, and the
    network verifier accepts the authorization.

    Settlement is keyed by :func:`settlement_key`. A repeated settle of the
    same submission returns the first result instead of settling twice. With
    ``require_verified`` only the exact submission that verified as valid
    (compared by :func:`proof_digest`) is settled.
    """

    name = "local"

    def __init__(
        self,
        *,
        verifier: Optional[NetworkVerifier] = None,
        settler: Optional[Settler] = None,
        network: Optional[str] = None,
        schemes: Iterable[str] = (EXACT_SCHEME,),
        require_verified: bool = True,
        max_tracked: int = 10_000,
    ) -> None:
        self.verifier = verifier or SignatureVerifier()
        self.settler = settler or SimulatedSettler()
        self.network = network
        self.schemes = frozenset(schemes)
        self.require_verified = require_verified
        self.max_tracked = max_tracked
        self._lock = threading.Lock()
        # settlement key -> (proof digest, payer) / (proof digest, result)
        self._verified: "OrderedDict[str, Tuple[str, Optional[str]]]" = OrderedDict()
        self._settled: "OrderedDict[str, Tuple[str, SettleResult]]" = OrderedDict()

    def _remember(self, table: OrderedDict, key: str, value: object) -> None:
        table[key] = value
        table.move_to_end(key)
        while len(table) > self.max_tracked:
            table.popitem(last=False)

    def _adjudicate(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResult:
        if payload.accepted != requirements:
            return VerifyResult.invalid("requirements-mismatch")
        if not _BASE_UNITS.fullmatch(requirements.amount):
            return VerifyResult.invalid("invalid-amount")
        if requirements.scheme not in self.schemes:
            return VerifyResult.invalid("unsupported-scheme")
        if self.network is not None and requirements.network != self.network:
            return VerifyResult.invalid("unsupported-network")

        try:
            transaction, sender_authenticator = _exact_evidence(payload)
        except ValueError as exc:
            logger.info("Rejecting malformed payload: %s", exc)
            return VerifyResult.invalid("malformed-payload")

        try:
            payer = self.verifier.verify_authorization(transaction, sender_authenticator, requirements)
        except AuthorizationError as exc:
            logger.info("Authorization rejected (%s): %s", exc.reason, exc)
            return VerifyResult.invalid(exc.reason)
        return VerifyResult.valid(payer=payer)

    def verify(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResult:
        logger.info(
            "Verifying %s payment of %s %s to %s on %s",
            requirements.scheme,
            requirements.amount,
            requirements.asset,
            requirements.pay_to,
            requirements.network,
        )
        result = self._adjudicate(payload, requirements)
        if result.is_valid:
            with self._lock:
                self._remember(
                    self._verified,
                    settlement_key(payload, requirements),
                    (proof_digest(payload, requirements), result.payer),
                )
            logger.info("Payment verified for payer %s", result.payer)
        else:
            logger.info("Payment invalid: %s", result.invalid_reason)
        return result

    def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettleResult:
        key = settlement_key(payload, requirements)
        digest = proof_digest(payload, requirements)
        logger.info("Settling payment %s", key)

        if payload.accepted != requirements:
            logger.warning("Refusing to settle %s: payload accepted different terms", key)
            return SettleResult.failed("requirements-mismatch", network=requirements.network)

        # Held across the settler call so one key can never settle twice.
        with self._lock:
            previous = self._settled.get(key)
            if previous is not None:
                settled_digest, settled = previous
                if settled_digest != digest:
                    logger.warning("Refusing to settle %s: already settled with other evidence", key)
                    return SettleResult.failed("already-settled", network=requirements.network)
                logger.warning("Duplicate settlement for %s; returning %s", key, settled.transaction)
                return settled

            verified = self._verified.get(key)
            if verified is not None and verified[0] != digest:
                verified = None
            if self.require_verified and verified is None:
                logger.warning("Refusing to settle unverified payment %s", key)
                return SettleResult.failed("not-verified", network=requirements.network)

            try:
                transaction, sender_authenticator = _exact_evidence(payload)
            except ValueError as exc:
                logger.warning("Cannot settle malformed payload: %s", exc)
                return SettleResult.failed("malformed-payload", network=requirements.network)

            try:
                transaction_id = self.settler.settle(transaction, sender_authenticator, requirements)
            except SettlementError as exc:
                logger.error("Settlement failed (%s): %s", exc.reason, exc)
                return SettleResult.failed(exc.reason, network=requirements.network)

            payer = (verified[1] if verified else None) or claimed_payer(transaction) or PLACEHOLDER_PAYER
            result = SettleResult(
                success=True,
                transaction=transaction_id,
                network=requirements.network,
                payer=payer,
            )
            self._remember(self._settled, key, (digest, result))

        logger.info("Settlement successful: %s", transaction_id)
        return result


class CannedFacilitator:
    """
    Minimal backend used when no real facilitator is configured.

    Every proof is valid and every settlement succeeds with a deterministic
    placeholder transaction. Ordering between verify and settle is not enforced.
    """

    name = "canned"

    def __init__(self, *, network: str = "testnet", payer: str = PLACEHOLDER_PAYER) -> None:
        self.network = network
        self.payer = payer

    def verify(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResult:
        logger.info("Canned verify for %s %s", requirements.amount, requirements.asset)
        return VerifyResult.valid(payer=self.payer)

    def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettleResult:
        logger.info("Canned settle for %s %s", requirements.amount, requirements.asset)
        return SettleResult(
            success=True,
            transaction=settlement_key(payload, requirements),
            network=self.network,
            payer=self.payer,
        )
