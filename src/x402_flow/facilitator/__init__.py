"""
Facilitator service: adjudicates and settles payment proofs over HTTP.
"""

from .app import create_app
from .backends import (
    PLACEHOLDER_PAYER,
    CannedFacilitator,
    LocalFacilitator,
    proof_digest,
    settlement_key,
)
from .transport import build_backend, create_facilitator_app, serve
from .verifiers import (
    AcceptAllVerifier,
    AuthorizationError,
    NetworkVerifier,
    SettlementError,
    Settler,
    SignatureVerifier,
    SimulatedSettler,
)

__all__ = [
    "PLACEHOLDER_PAYER",
    "AcceptAllVerifier",
    "AuthorizationError",
    "CannedFacilitator",
    "LocalFacilitator",
    "NetworkVerifier",
    "SettlementError",
    "Settler",
    "SignatureVerifier",
    "SimulatedSettler",
    "build_backend",
    "create_app",
    "create_facilitator_app",
    "proof_digest",
    "serve",
    "settlement_key",
]
