"""
Network front end of the facilitator service.

Without a real backend configured the service degrades to canned responses,
which is enough to drive the resource-client flow end to end in demos.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

import uvicorn
from fastapi import FastAPI

from ..core.client import FacilitatorBackend
from ..core.config import FacilitatorSettings
from .app import create_app
from .backends import CannedFacilitator, LocalFacilitator
from .verifiers import AcceptAllVerifier, SignatureVerifier, SimulatedSettler

__all__ = ["build_backend", "create_facilitator_app", "serve"]

logger = logging.getLogger(__name__)


def build_backend(settings: FacilitatorSettings) -> FacilitatorBackend:
    if settings.mode == "canned":
        logger.warning("No facilitator backend configured; answering with canned responses")
        return CannedFacilitator(network=settings.network)

    verifier = SignatureVerifier() if settings.verifier == "signature" else AcceptAllVerifier()
    return LocalFacilitator(
        verifier=verifier,
        settler=SimulatedSettler(),
        network=settings.network,
        schemes=settings.schemes,
        require_verified=settings.require_verified,
    )


def create_facilitator_app(
    settings: FacilitatorSettings,
    *,
    backend: Optional[FacilitatorBackend] = None,
) -> FastAPI:
    return create_app(backend or build_backend(settings), network=settings.network)


def serve(settings: FacilitatorSettings, *, backend: Optional[FacilitatorBackend] = None) -> None:
    """Run the facilitator in the foreground until interrupted."""
    app = create_facilitator_app(settings, backend=backend)
    logger.info(
        "Starting facilitator on %s (network %s, %s backend)",
        settings.url,
        settings.network,
        app.state.backend.name,
    )
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        timeout_keep_alive=max(1, math.ceil(settings.read_timeout_seconds)),
        log_level="info",
    )
