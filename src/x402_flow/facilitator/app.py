"""
HTTP surface of the facilitator service.

``POST /verify`` and ``POST /settle`` take ``{paymentPayload,
paymentRequirements}`` and answer 200 with the adjudication, whatever its
verdict. Failures to adjudicate answer with ``{"error": "..."}``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core.client import FacilitatorBackend, FacilitatorError
from ..core.models import FacilitatorRequest

__all__ = ["create_app"]

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _describe(exc: RequestValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location or 'body'}: {error.get('msg')}")
    return "; ".join(problems) or "malformed body"


def _adjudicate(operation: str, call: Callable[[], BaseModel]) -> JSONResponse:
    try:
        result = call()
    except FacilitatorError as exc:
        logger.error("%s failed upstream: %s", operation, exc)
        return _error(502, str(exc))
    except Exception as exc:  # noqa: BLE001
        logger.error("Error during %s: %s", operation, exc, exc_info=True)
        return _error(500, f"{operation} error: {exc!s}")
    return JSONResponse(content=result.to_wire(exclude_none=True))


def create_app(backend: FacilitatorBackend, *, network: str = "testnet") -> FastAPI:
    app = FastAPI(title="x402 Facilitator")
    app.state.backend = backend

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Rejecting malformed %s request: %s", request.url.path, exc)
        return _error(400, f"Invalid request body: {_describe(exc)}")

    @app.get("/health")
    def health() -> dict:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "network": network,
            "backend": backend.name,
        }

    @app.post("/verify")
    def verify(request: FacilitatorRequest) -> JSONResponse:
        logger.info("Verifying payment")
        return _adjudicate(
            "verify",
            lambda: backend.verify(request.payment_payload, request.payment_requirements),
        )

    @app.post("/settle")
    def settle(request: FacilitatorRequest) -> JSONResponse:
        logger.info("Settling payment")
        return _adjudicate(
            "settle",
            lambda: backend.settle(request.payment_payload, request.payment_requirements),
        )

    return app
