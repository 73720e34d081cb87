"""
Header encoding for payment requirements and payment payloads.

Both structures travel as standard (padded) base64 of their UTF-8 JSON form.
Decoding failures are reported through :class:`PaymentCodecError` subclasses,
each carrying a short machine-readable ``reason``.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .models import PaymentPayload, PaymentRequirements

__all__ = [
    "PAYMENT_REQUIRED_HEADER",
    "PAYMENT_SIGNATURE_HEADER",
    "InvalidUtf8",
    "MalformedHeader",
    "PaymentCodecError",
    "SchemaError",
    "canonical_json",
    "decode_blob",
    "decode_payload_header",
    "decode_requirements_header",
    "encode_blob",
    "encode_payload_header",
    "encode_requirements_header",
]

PAYMENT_REQUIRED_HEADER = "PAYMENT-REQUIRED"
PAYMENT_SIGNATURE_HEADER = "PAYMENT-SIGNATURE"

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class PaymentCodecError(ValueError):
    """Base class for wire decoding failures."""

    reason = "codec-error"


class MalformedHeader(PaymentCodecError):
    reason = "malformed-header"


class InvalidUtf8(PaymentCodecError):
    reason = "invalid-utf8"


class SchemaError(PaymentCodecError):
    reason = "schema-error"


def canonical_json(value: Any) -> str:
    """Compact JSON with sorted keys, used wherever bytes must be reproducible."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def encode_blob(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_blob(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedHeader(f"Value is not valid base64: {exc}") from exc


def _encode_model(model: BaseModel) -> str:
    return encode_blob(model.model_dump_json(by_alias=True).encode("utf-8"))


def _decode_model(value: str, model_class: Type[_ModelT]) -> _ModelT:
    raw = decode_blob(value.strip())
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidUtf8(f"Decoded header is not valid UTF-8: {exc}") from exc

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SchemaError(f"Decoded header is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SchemaError(
            f"Expected a JSON object for {model_class.__name__}, got {type(data).__name__}"
        )

    try:
        return model_class.model_validate(data)
    except ValidationError as exc:
        raise SchemaError(f"Invalid {model_class.__name__}: {exc}") from exc


def encode_requirements_header(requirements: PaymentRequirements) -> str:
    """Value for the ``PAYMENT-REQUIRED`` response header."""
    return _encode_model(requirements)


def decode_requirements_header(value: str) -> PaymentRequirements:
    return _decode_model(value, PaymentRequirements)


def encode_payload_header(payload: PaymentPayload) -> str:
    """Value for the ``PAYMENT-SIGNATURE`` request header."""
    return _encode_model(payload)


def decode_payload_header(value: str) -> PaymentPayload:
    return _decode_model(value, PaymentPayload)
