"""
Tests for assembling and serving the facilitator.
"""

from unittest.mock import patch

from x402_flow.core.config import FacilitatorSettings
from x402_flow.facilitator.backends import CannedFacilitator, LocalFacilitator
from x402_flow.facilitator.transport import build_backend, create_facilitator_app, serve
from x402_flow.facilitator.verifiers import AcceptAllVerifier, SignatureVerifier


def test_canned_by_default():
    backend = build_backend(FacilitatorSettings(network="devnet"))

    assert isinstance(backend, CannedFacilitator)
    assert backend.network == "devnet"


def test_local_backend_uses_selected_verifier():
    signature = build_backend(FacilitatorSettings(mode="local"))
    permissive = build_backend(FacilitatorSettings(mode="local", verifier="accept-all"))

    assert isinstance(signature, LocalFacilitator)
    assert isinstance(signature.verifier, SignatureVerifier)
    assert isinstance(permissive.verifier, AcceptAllVerifier)


def test_explicit_backend_wins():
    backend = LocalFacilitator()

    app = create_facilitator_app(FacilitatorSettings(), backend=backend)

    assert app.state.backend is backend


def test_serve_passes_listener_settings():
    settings = FacilitatorSettings(host="0.0.0.0", port=4021, read_timeout_seconds=2.5)

    with patch("x402_flow.facilitator.transport.uvicorn.run") as run:
        serve(settings)

    run.assert_called_once()
    _, kwargs = run.call_args
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 4021
    assert kwargs["timeout_keep_alive"] == 3


def test_default_read_timeout_is_five_seconds():
    with patch("x402_flow.facilitator.transport.uvicorn.run") as run:
        serve(FacilitatorSettings())

    assert run.call_args.kwargs["timeout_keep_alive"] == 5
