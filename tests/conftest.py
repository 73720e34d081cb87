"""
Shared fixtures: payment terms, signed payloads and a scripted HTTP session.
"""

import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from x402_flow.core.client import build_request_body
from x402_flow.core.codec import encode_blob
from x402_flow.core.models import ExactPayload, PaymentPayload, PaymentRequirements
from x402_flow.core.signers import EthAccountSigner

PAYER_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32

RESOURCE_URL = "http://resource.test/premium"
FACILITATOR_URL = "http://facilitator.test"

REQUIREMENTS_WIRE = {
    "scheme": "exact",
    "network": "testnet",
    "amount": "1000",
    "asset": "USDC",
    "payTo": "0xabc",
}


def header_for(document: Any) -> str:
    """Base64 JSON header exactly as a resource server would send it."""
    return base64.b64encode(json.dumps(document).encode("utf-8")).decode("ascii")


def make_response(
    status_code: int,
    *,
    content: bytes = b"",
    json_body: Optional[Any] = None,
    headers: Optional[Dict[str, str]] = None,
) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    merged = dict(headers or {})
    if json_body is not None:
        content = json.dumps(json_body).encode("utf-8")
        merged.setdefault("Content-Type", "application/json")
    response._content = content
    response.headers = CaseInsensitiveDict(merged)
    response.encoding = "utf-8"
    return response


def build_payload(
    requirements: PaymentRequirements,
    *,
    signer: Optional[EthAccountSigner] = None,
    accepted: Optional[PaymentRequirements] = None,
) -> PaymentPayload:
    signer = signer or EthAccountSigner(PAYER_KEY)
    signed = signer.sign(requirements, nonce=b"\x01" * 32)
    evidence = ExactPayload(
        transaction=encode_blob(signed.transaction),
        sender_authenticator=encode_blob(signed.sender_authenticator),
    )
    return PaymentPayload(accepted=accepted or requirements, payload=evidence.to_wire())


def request_body(payload: PaymentPayload, requirements: PaymentRequirements) -> Dict[str, Any]:
    return build_request_body(payload, requirements)


@dataclass
class RecordedCall:
    method: str
    url: str
    headers: Optional[Dict[str, str]]
    json: Optional[Dict[str, Any]]
    timeout: Optional[float]


class RecordingSession:
    """
    Stand-in for ``requests.Session`` answering from per-route scripts.

    Each route holds a queue of responses (or exceptions to raise); the last
    entry repeats once the queue is drained.
    """

    def __init__(self) -> None:
        self.calls: List[RecordedCall] = []
        self._routes: Dict[tuple, list] = {}

    def add(self, method: str, url: str, *outcomes: Any) -> "RecordingSession":
        self._routes.setdefault((method, url), []).extend(outcomes)
        return self

    def get(self, url, headers=None, timeout=None, **kwargs):
        return self._dispatch("GET", url, headers=headers, timeout=timeout)

    def post(self, url, json=None, timeout=None, **kwargs):
        return self._dispatch("POST", url, body=json, timeout=timeout)

    def _dispatch(self, method, url, *, headers=None, body=None, timeout=None):
        self.calls.append(
            RecordedCall(
                method=method,
                url=url,
                headers=dict(headers) if headers else None,
                json=body,
                timeout=timeout,
            )
        )
        queue = self._routes.get((method, url))
        if not queue:
            raise AssertionError(f"Unexpected {method} {url}")
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def routes_called(self) -> List[str]:
        return [f"{call.method} {call.url}" for call in self.calls]


@pytest.fixture
def requirements() -> PaymentRequirements:
    return PaymentRequirements.model_validate(REQUIREMENTS_WIRE)


@pytest.fixture
def signer() -> EthAccountSigner:
    return EthAccountSigner(PAYER_KEY)


@pytest.fixture
def payload(requirements, signer) -> PaymentPayload:
    return build_payload(requirements, signer=signer)


@pytest.fixture
def session() -> RecordingSession:
    return RecordingSession()
