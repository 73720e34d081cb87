"""
HTTP client helpers for the x402 facilitator.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import requests
from pydantic import ValidationError

from .models import (
    FacilitatorRequest,
    PaymentPayload,
    PaymentRequirements,
    SettleResult,
    VerifyResult,
)

__all__ = [
    "FacilitatorBackend",
    "FacilitatorError",
    "HTTPFacilitatorBackend",
    "build_request_body",
    "settle_payment",
    "verify_payment",
]


class FacilitatorError(Exception):
    """
    The facilitator could not adjudicate: unreachable, non-2xx, or garbled.

    Distinct from a facilitator that answered and rejected the payment.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.cause = cause


class FacilitatorBackend(Protocol):
    name: str

    def verify(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResult:
        ...

    def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettleResult:
        ...


def build_request_body(payload: PaymentPayload, requirements: PaymentRequirements) -> Dict[str, Any]:
    return FacilitatorRequest(
        x402_version=payload.x402_version,
        payment_payload=payload,
        payment_requirements=requirements,
    ).to_wire()


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return response.text


def _post_json(
    session: requests.Session,
    url: str,
    body: Dict[str, Any],
    timeout: float,
) -> Dict[str, Any]:
    try:
        response = session.post(url, json=body, timeout=timeout)
    except requests.RequestException as exc:
        raise FacilitatorError(f"Could not reach facilitator at {url}: {exc}", cause=exc) from exc

    if not 200 <= response.status_code < 300:
        raise FacilitatorError(
            f"Facilitator responded with {response.status_code}: {_error_message(response)}",
            status_code=response.status_code,
        )
    try:
        data = response.json()
    except ValueError as exc:
        raise FacilitatorError(
            f"Failed to parse JSON from facilitator at {url}: {response.text}",
            status_code=response.status_code,
            cause=exc,
        ) from exc
    if not isinstance(data, dict):
        raise FacilitatorError(f"Facilitator at {url} returned a non-object body: {data!r}")
    return data


def verify_payment(
    session: requests.Session,
    base_url: str,
    body: Dict[str, Any],
    *,
    timeout: float = 30.0,
) -> VerifyResult:
    verify_url = f"{base_url}/verify"
    logging.info("Submitting payment for verification to %s", verify_url)
    data = _post_json(session, verify_url, body, timeout)
    try:
        return VerifyResult.model_validate(data)
    except ValidationError as exc:
        raise FacilitatorError(f"Unexpected verify response: {data!r}", cause=exc) from exc


def settle_payment(
    session: requests.Session,
    base_url: str,
    body: Dict[str, Any],
    *,
    timeout: float = 30.0,
) -> SettleResult:
    settle_url = f"{base_url}/settle"
    logging.info("Submitting payment for settlement to %s", settle_url)
    data = _post_json(session, settle_url, body, timeout)
    try:
        return SettleResult.model_validate(data)
    except ValidationError as exc:
        raise FacilitatorError(f"Unexpected settle response: {data!r}", cause=exc) from exc


class HTTPFacilitatorBackend:
    """
    Facilitator reached over HTTP.

    The base URL is explicit so the same flow can target a remote service or
    an in-process fake.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds

    def verify(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResult:
        body = build_request_body(payload, requirements)
        return verify_payment(self.session, self.base_url, body, timeout=self.timeout_seconds)

    def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettleResult:
        body = build_request_body(payload, requirements)
        return settle_payment(self.session, self.base_url, body, timeout=self.timeout_seconds)
