"""
The resource-client flow.

One invocation walks a strictly linear pipeline::

    PROBING -> AWAITING_PAYMENT_TERMS -> BUILDING_PROOF -> VERIFYING
            -> SETTLING -> RETRYING -> DONE

and stops in ``FAILED`` the first time a step cannot continue. Nothing is
retried automatically; the only "retry" is the single resource request that
carries the settled proof.
"""

from __future__ import annotations

import concurrent.futures
import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

import requests

from .client import FacilitatorBackend, FacilitatorError
from .codec import (
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_SIGNATURE_HEADER,
    PaymentCodecError,
    decode_requirements_header,
    encode_blob,
    encode_payload_header,
)
from .models import (
    X402_VERSION,
    ExactPayload,
    PaymentPayload,
    PaymentRequirements,
    SettleResult,
    VerifyResult,
)
from .signers import PaymentSigner, PlaceholderSigner, SignerError

__all__ = ["FailureKind", "FlowReport", "FlowState", "PaymentFlow"]

_T = TypeVar("_T")

_CANCEL_POLL_SECONDS = 0.05


class FlowState(str, enum.Enum):
    PROBING = "probing"
    AWAITING_PAYMENT_TERMS = "awaiting-payment-terms"
    BUILDING_PROOF = "building-proof"
    VERIFYING = "verifying"
    SETTLING = "settling"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"


class FailureKind(str, enum.Enum):
    TRANSPORT = "transport"
    PROTOCOL = "protocol"
    ADJUDICATION = "adjudication"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FlowReport:
    """Outcome of one flow invocation, including any partial progress."""

    url: str
    state: FlowState
    reached: FlowState
    elapsed: float
    reason: Optional[str] = None
    kind: Optional[FailureKind] = None
    cause: Optional[str] = None
    payment_required: bool = False
    requirements: Optional[PaymentRequirements] = None
    verification: Optional[VerifyResult] = None
    settlement: Optional[SettleResult] = None
    status_code: Optional[int] = None
    body: Optional[bytes] = None

    @property
    def ok(self) -> bool:
        return self.state is FlowState.DONE

    @property
    def incomplete(self) -> bool:
        # Verified (and possibly settled) but the resource was never delivered.
        return (
            self.state is FlowState.FAILED
            and self.verification is not None
            and self.verification.is_valid
        )

    @property
    def transaction(self) -> Optional[str]:
        if self.settlement is not None and self.settlement.success:
            return self.settlement.transaction
        return None

    @property
    def text(self) -> Optional[str]:
        if self.body is None:
            return None
        return self.body.decode("utf-8", errors="replace")

    def summary(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "state": self.state.value,
            "reached": self.reached.value,
            "reason": self.reason,
            "kind": self.kind.value if self.kind else None,
            "elapsedMs": round(self.elapsed * 1000),
            "paymentRequired": self.payment_required,
            "transaction": self.transaction,
            "payer": self.settlement.payer if self.settlement else None,
            "status": self.status_code,
            "incomplete": self.incomplete,
        }


class _FlowFailed(Exception):
    def __init__(self, reason: str, kind: FailureKind, cause: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.kind = kind
        self.cause = cause


class _Attempt:
    """Progress of a single invocation; never shared between invocations."""

    def __init__(self, url: str, cancel: Optional[threading.Event]) -> None:
        self.url = url
        self.cancel = cancel
        self.started = time.monotonic()
        self.state = FlowState.PROBING
        self.payment_required = False
        self.requirements: Optional[PaymentRequirements] = None
        self.verification: Optional[VerifyResult] = None
        self.settlement: Optional[SettleResult] = None
        self.status_code: Optional[int] = None
        self.body: Optional[bytes] = None

    def enter(self, state: FlowState) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise _FlowFailed("cancelled", FailureKind.CANCELLED)
        logging.info("Payment flow %s: %s", self.url, state.value)
        self.state = state

    def call(self, func: Callable[..., _T], *args: Any, **kwargs: Any) -> _T:
        """
        Run one blocking network call.

        With a cancel event the call runs on a worker thread and is abandoned
        as soon as the event is set; its late result is discarded and the
        worker finishes within the call's own timeout.
        """
        if self.cancel is None:
            return func(*args, **kwargs)

        pool = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="x402-flow")
        try:
            future = pool.submit(func, *args, **kwargs)
            while not future.done():
                concurrent.futures.wait([future], timeout=_CANCEL_POLL_SECONDS)
                if self.cancel.is_set() and not future.done():
                    raise _FlowFailed(
                        "cancelled",
                        FailureKind.CANCELLED,
                        cause=f"aborted while {self.state.value}",
                    )
            return future.result()
        finally:
            pool.shutdown(wait=False)

    def record(self, response: requests.Response) -> None:
        self.status_code = response.status_code
        self.body = response.content

    def report(self, state: FlowState, failure: Optional[_FlowFailed] = None) -> FlowReport:
        return FlowReport(
            url=self.url,
            state=state,
            reached=self.state,
            elapsed=time.monotonic() - self.started,
            reason=failure.reason if failure else None,
            kind=failure.kind if failure else None,
            cause=failure.cause if failure else None,
            payment_required=self.payment_required,
            requirements=self.requirements,
            verification=self.verification,
            settlement=self.settlement,
            status_code=self.status_code,
            body=self.body,
        )


class PaymentFlow:
    """
    Drives one probe/verify/settle/retry cycle per :meth:`run` call.

    The instance only holds read-only collaborators, so concurrent runs
    against different resources need no coordination.
    """

    def __init__(
        self,
        backend: FacilitatorBackend,
        *,
        signer: Optional[PaymentSigner] = None,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 30.0,
        x402_version: int = X402_VERSION,
    ) -> None:
        self.backend = backend
        self.signer = signer or PlaceholderSigner()
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds
        self.x402_version = x402_version

    def run(self, url: str, *, cancel: Optional[threading.Event] = None) -> FlowReport:
        """
        Run one cycle against ``url`` and report how far it got.

        Setting ``cancel`` stops the run before the next step, or abandons the
        network call in flight; either way the report ends ``FAILED`` with kind
        ``CANCELLED`` and no further call is made.
        """
        attempt = _Attempt(url, cancel)
        try:
            self._run(attempt)
        except _FlowFailed as failure:
            report = attempt.report(FlowState.FAILED, failure)
        else:
            report = attempt.report(FlowState.DONE)
        _log_summary(report)
        return report

    def _run(self, attempt: _Attempt) -> None:
        attempt.enter(FlowState.PROBING)
        response = self._get(attempt, None, "probe-transport-error")

        if 200 <= response.status_code < 300:
            attempt.record(response)
            return
        if response.status_code != 402:
            attempt.record(response)
            raise _FlowFailed(
                "unexpected-status",
                FailureKind.PROTOCOL,
                cause=f"expected 402 or 2xx, got {response.status_code}",
            )

        attempt.payment_required = True
        attempt.enter(FlowState.AWAITING_PAYMENT_TERMS)
        requirements = self._read_terms(response)
        attempt.requirements = requirements
        logging.info(
            "Payment required: %s %s to %s on %s",
            requirements.amount,
            requirements.asset,
            requirements.pay_to,
            requirements.network,
        )

        attempt.enter(FlowState.BUILDING_PROOF)
        payload = self._build_proof(requirements)

        attempt.enter(FlowState.VERIFYING)
        attempt.verification = self._verify(attempt, payload, requirements)

        attempt.enter(FlowState.SETTLING)
        attempt.settlement = self._settle(attempt, payload, requirements)
        logging.info(
            "Payment settled on %s: transaction %s from %s",
            attempt.settlement.network,
            attempt.settlement.transaction,
            attempt.settlement.payer,
        )

        attempt.enter(FlowState.RETRYING)
        headers = {PAYMENT_SIGNATURE_HEADER: encode_payload_header(payload)}
        response = self._get(attempt, headers, "retry-transport-error")
        attempt.record(response)
        if not 200 <= response.status_code < 300:
            logging.warning("Resource %s answered %s after payment", attempt.url, response.status_code)

    def _get(
        self,
        attempt: _Attempt,
        headers: Optional[Mapping[str, str]],
        reason: str,
    ) -> requests.Response:
        try:
            return attempt.call(
                self.session.get,
                attempt.url,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise _FlowFailed(reason, FailureKind.TRANSPORT, cause=str(exc)) from exc

    def _read_terms(self, response: requests.Response) -> PaymentRequirements:
        header = response.headers.get(PAYMENT_REQUIRED_HEADER)
        if header is None:
            raise _FlowFailed("missing-payment-required-header", FailureKind.PROTOCOL)
        try:
            return decode_requirements_header(header)
        except PaymentCodecError as exc:
            raise _FlowFailed(exc.reason, FailureKind.PROTOCOL, cause=str(exc)) from exc

    def _build_proof(self, requirements: PaymentRequirements) -> PaymentPayload:
        try:
            signed = self.signer.sign(requirements)
        except SignerError as exc:
            raise _FlowFailed("signing-failed", FailureKind.PROTOCOL, cause=str(exc)) from exc
        if not signed.transaction or not signed.sender_authenticator:
            raise _FlowFailed("empty-proof", FailureKind.PROTOCOL)

        evidence = ExactPayload(
            transaction=encode_blob(signed.transaction),
            sender_authenticator=encode_blob(signed.sender_authenticator),
        )
        return PaymentPayload(
            x402_version=self.x402_version,
            accepted=requirements,
            payload=evidence.to_wire(),
        )

    def _verify(
        self,
        attempt: _Attempt,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> VerifyResult:
        try:
            verification = attempt.call(self.backend.verify, payload, requirements)
        except FacilitatorError as exc:
            raise _FlowFailed("verify-transport-error", FailureKind.TRANSPORT, cause=str(exc)) from exc
        if not verification.is_valid:
            raise _FlowFailed(
                f"payment-invalid: {verification.invalid_reason or 'unknown'}",
                FailureKind.ADJUDICATION,
            )
        return verification

    def _settle(
        self,
        attempt: _Attempt,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettleResult:
        try:
            settlement = attempt.call(self.backend.settle, payload, requirements)
        except FacilitatorError as exc:
            raise _FlowFailed("settlement-failed", FailureKind.TRANSPORT, cause=str(exc)) from exc
        if not settlement.success:
            raise _FlowFailed(
                "settlement-failed",
                FailureKind.ADJUDICATION,
                cause=settlement.error_reason,
            )
        if not settlement.transaction:
            raise _FlowFailed(
                "settlement-failed",
                FailureKind.TRANSPORT,
                cause="facilitator reported success without a transaction id",
            )
        return settlement


def _log_summary(report: FlowReport) -> None:
    if report.ok:
        logging.info(
            "Payment flow complete for %s in %dms: transaction=%s status=%s",
            report.url,
            round(report.elapsed * 1000),
            report.transaction,
            report.status_code,
        )
        return

    level = logging.WARNING if report.kind is FailureKind.ADJUDICATION else logging.ERROR
    logging.log(
        level,
        "Payment flow for %s stopped while %s: %s%s%s",
        report.url,
        report.reached.value,
        report.reason,
        f" ({report.cause})" if report.cause else "",
        " [payment incomplete]" if report.incomplete else "",
    )
