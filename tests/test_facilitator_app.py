"""
Tests for the facilitator HTTP service: verify policy, settlement ordering,
idempotency and the error envelope.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import OTHER_KEY, REQUIREMENTS_WIRE, build_payload, request_body
from x402_flow.core.client import FacilitatorError
from x402_flow.core.codec import encode_blob
from x402_flow.core.models import PaymentPayload, PaymentRequirements
from x402_flow.core.signers import EthAccountSigner
from x402_flow.facilitator.app import create_app
from x402_flow.facilitator.backends import PLACEHOLDER_PAYER, CannedFacilitator, LocalFacilitator
from x402_flow.facilitator.verifiers import AcceptAllVerifier, SimulatedSettler


class CountingSettler(SimulatedSettler):
    def __init__(self):
        self.calls = 0

    def settle(self, transaction, sender_authenticator, requirements):
        self.calls += 1
        return super().settle(transaction, sender_authenticator, requirements)


def _terms(**changes) -> PaymentRequirements:
    wire = dict(REQUIREMENTS_WIRE)
    wire.update(changes)
    return PaymentRequirements.model_validate(wire)


@pytest.fixture
def settler():
    return CountingSettler()


@pytest.fixture
def backend(settler):
    return LocalFacilitator(settler=settler, network="testnet")


@pytest.fixture
def client(backend):
    return TestClient(create_app(backend))


class TestVerify:
    """POST /verify adjudication."""

    def test_valid_signed_payment(self, client, payload, requirements, signer):
        response = client.post("/verify", json=request_body(payload, requirements))

        assert response.status_code == 200
        assert response.json() == {"isValid": True, "payer": signer.address}

    @pytest.mark.parametrize(
        "changes",
        [
            {"amount": "2000"},
            {"network": "mainnet"},
            {"asset": "USDT"},
            {"payTo": "0xdef"},
            {"scheme": "upto"},
            {"extra": {"sponsored": True}},
        ],
    )
    def test_requirements_mismatch(self, client, payload, changes):
        """Payload accepted one set of terms, request carries another."""
        other = _terms(**changes)

        response = client.post("/verify", json=request_body(payload, other))

        assert response.status_code == 200
        assert response.json() == {"isValid": False, "invalidReason": "requirements-mismatch"}

    @pytest.mark.parametrize("amount", ["1.5", "-1", "abc", "", "1e3", "١٢", "1000\n"])
    def test_invalid_amount(self, client, amount):
        terms = _terms(amount=amount)
        payload = build_payload(terms)

        response = client.post("/verify", json=request_body(payload, terms))

        assert response.json() == {"isValid": False, "invalidReason": "invalid-amount"}

    def test_zero_amount_is_allowed(self, client):
        terms = _terms(amount="0")

        response = client.post("/verify", json=request_body(build_payload(terms), terms))

        assert response.json()["isValid"] is True

    @pytest.mark.parametrize(
        "evidence",
        [
            {},
            {"transaction": "", "senderAuthenticator": ""},
            {"transaction": "!!!", "senderAuthenticator": "AAAA"},
            {"transaction": encode_blob(b"tx")},
            {"transaction": 12, "senderAuthenticator": 34},
        ],
    )
    def test_malformed_payload(self, client, requirements, evidence):
        payload = PaymentPayload(accepted=requirements, payload=evidence)

        response = client.post("/verify", json=request_body(payload, requirements))

        assert response.json() == {"isValid": False, "invalidReason": "malformed-payload"}

    def test_unsupported_scheme(self, client):
        terms = _terms(scheme="upto")

        response = client.post("/verify", json=request_body(build_payload(terms), terms))

        assert response.json()["invalidReason"] == "unsupported-scheme"

    def test_unsupported_network(self, client):
        terms = _terms(network="mainnet")

        response = client.post("/verify", json=request_body(build_payload(terms), terms))

        assert response.json()["invalidReason"] == "unsupported-network"

    def test_signature_over_other_terms(self, client, signer):
        """Evidence signed for 1000 cannot pay terms of 2000."""
        signed_terms = _terms(amount="1000")
        demanded = _terms(amount="2000")
        payload = build_payload(signed_terms, signer=signer, accepted=demanded)

        response = client.post("/verify", json=request_body(payload, demanded))

        assert response.json() == {"isValid": False, "invalidReason": "authorization-mismatch"}

    def test_signature_from_another_key(self, client, requirements, signer):
        genuine = signer.sign(requirements, nonce=b"\x02" * 32)
        forged = EthAccountSigner(OTHER_KEY).sign(requirements, nonce=b"\x02" * 32)
        payload = PaymentPayload(
            accepted=requirements,
            payload={
                "transaction": encode_blob(genuine.transaction),
                "senderAuthenticator": encode_blob(forged.sender_authenticator),
            },
        )

        response = client.post("/verify", json=request_body(payload, requirements))

        assert response.json() == {"isValid": False, "invalidReason": "invalid-signature"}

    def test_placeholder_evidence_fails_signature_check(self, client, requirements):
        payload = PaymentPayload(
            accepted=requirements,
            payload={"transaction": encode_blob(bytes(64)), "senderAuthenticator": encode_blob(bytes(64))},
        )

        response = client.post("/verify", json=request_body(payload, requirements))

        assert response.json() == {"isValid": False, "invalidReason": "malformed-authorization"}

    def test_verify_is_idempotent(self, client, settler, payload, requirements):
        body = request_body(payload, requirements)

        first = client.post("/verify", json=body)
        second = client.post("/verify", json=body)

        assert first.json() == second.json()
        assert settler.calls == 0


class TestSettle:
    """POST /settle ordering and at-most-once behavior."""

    def test_settle_after_verify(self, client, settler, payload, requirements, signer):
        body = request_body(payload, requirements)
        client.post("/verify", json=body)

        response = client.post("/settle", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["transaction"].startswith("0x")
        assert data["network"] == "testnet"
        assert data["payer"] == signer.address
        assert settler.calls == 1

    def test_settle_without_verify_is_refused(self, client, settler, payload, requirements):
        response = client.post("/settle", json=request_body(payload, requirements))

        assert response.status_code == 200
        assert response.json() == {"success": False, "network": "testnet", "errorReason": "not-verified"}
        assert settler.calls == 0

    def test_settle_after_failed_verify_is_refused(self, client, settler, payload):
        other = _terms(amount="2000")
        body = request_body(payload, other)
        client.post("/verify", json=body)

        response = client.post("/settle", json=body)

        assert response.json()["success"] is False
        assert settler.calls == 0

    def test_repeated_settle_returns_first_result(self, client, settler, payload, requirements):
        body = request_body(payload, requirements)
        client.post("/verify", json=body)

        first = client.post("/settle", json=body).json()
        second = client.post("/settle", json=body).json()

        assert first == second
        assert settler.calls == 1

    def test_swapped_authenticator_is_not_settled(self, client, settler, payload, requirements):
        client.post("/verify", json=request_body(payload, requirements))
        tampered = PaymentPayload(
            accepted=requirements,
            payload={
                "transaction": payload.payload["transaction"],
                "senderAuthenticator": encode_blob(b"\x00" * 3),
            },
        )

        response = client.post("/settle", json=request_body(tampered, requirements))

        assert response.json() == {"success": False, "network": "testnet", "errorReason": "not-verified"}
        assert settler.calls == 0

    def test_accepted_terms_must_match_on_settle(self, client, settler, payload, requirements):
        client.post("/verify", json=request_body(payload, requirements))
        cheaper = PaymentPayload(accepted=_terms(amount="1"), payload=payload.payload)

        response = client.post("/settle", json=request_body(cheaper, requirements))

        assert response.json()["errorReason"] == "requirements-mismatch"
        assert settler.calls == 0

    def test_other_evidence_after_settlement(self, client, settler, payload, requirements):
        body = request_body(payload, requirements)
        client.post("/verify", json=body)
        client.post("/settle", json=body)
        tampered = PaymentPayload(
            accepted=requirements,
            payload={**payload.payload, "senderAuthenticator": encode_blob(b"\x01" * 65)},
        )

        response = client.post("/settle", json=request_body(tampered, requirements))

        assert response.json()["success"] is False
        assert response.json()["errorReason"] == "already-settled"
        assert settler.calls == 1

    def test_unguarded_settle_when_ordering_disabled(self, settler, payload, requirements):
        client = TestClient(create_app(LocalFacilitator(settler=settler, require_verified=False)))

        response = client.post("/settle", json=request_body(payload, requirements))

        assert response.json()["success"] is True
        assert settler.calls == 1

    def test_tracking_is_bounded(self, requirements):
        backend = LocalFacilitator(verifier=AcceptAllVerifier(), max_tracked=2)
        payloads = [
            build_payload(requirements, signer=EthAccountSigner("0x" + f"{i:02x}" * 32))
            for i in (3, 4, 5)
        ]
        for item in payloads:
            backend.verify(item, requirements)

        oldest = backend.settle(payloads[0], requirements)
        newest = backend.settle(payloads[2], requirements)

        assert oldest.error_reason == "not-verified"
        assert newest.success is True


class TestErrorEnvelope:
    def test_malformed_body(self, client):
        response = client.post("/verify", json={"paymentPayload": {}})

        assert response.status_code == 400
        assert "error" in response.json()
        assert "paymentRequirements" in response.json()["error"]

    def test_backend_unreachable(self, payload, requirements):
        backend = MagicMock()
        backend.name = "http"
        backend.verify.side_effect = FacilitatorError("upstream down", status_code=503)
        client = TestClient(create_app(backend))

        response = client.post("/verify", json=request_body(payload, requirements))

        assert response.status_code == 502
        assert response.json() == {"error": "upstream down"}

    def test_unexpected_failure(self, payload, requirements):
        backend = MagicMock()
        backend.name = "broken"
        backend.settle.side_effect = RuntimeError("disk on fire")
        client = TestClient(create_app(backend))

        response = client.post("/settle", json=request_body(payload, requirements))

        assert response.status_code == 500
        assert response.json() == {"error": "settle error: disk on fire"}


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["backend"] == "local"
        assert data["network"] == "testnet"
        assert "T" in data["timestamp"]


class TestCannedFacilitator:
    """Demo backend used when nothing real is configured."""

    def test_always_valid_and_settles(self, requirements):
        client = TestClient(create_app(CannedFacilitator(network="testnet")))
        payload = PaymentPayload(
            accepted=requirements,
            payload={"transaction": encode_blob(bytes(64)), "senderAuthenticator": encode_blob(bytes(64))},
        )
        body = request_body(payload, requirements)

        verify = client.post("/verify", json=body).json()
        settle = client.post("/settle", json=body).json()

        assert verify == {"isValid": True, "payer": PLACEHOLDER_PAYER}
        assert settle["success"] is True
        assert settle["network"] == "testnet"
        assert settle["payer"] == PLACEHOLDER_PAYER
        assert settle["transaction"].startswith("0x")
