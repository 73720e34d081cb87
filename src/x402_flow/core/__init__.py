"""
Core primitives that implement the x402 pay-for-access exchange.
"""

from .client import (
    FacilitatorBackend,
    FacilitatorError,
    HTTPFacilitatorBackend,
    build_request_body,
    settle_payment,
    verify_payment,
)
from .codec import (
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_SIGNATURE_HEADER,
    InvalidUtf8,
    MalformedHeader,
    PaymentCodecError,
    SchemaError,
    decode_payload_header,
    decode_requirements_header,
    encode_payload_header,
    encode_requirements_header,
)
from .config import (
    ConfigError,
    FacilitatorSettings,
    FlowConfig,
    load_facilitator_settings,
    load_flow_config,
)
from .flow import FailureKind, FlowReport, FlowState, PaymentFlow
from .models import (
    ExactPayload,
    FacilitatorRequest,
    PaymentPayload,
    PaymentRequirements,
    SettleResult,
    VerifyResult,
)
from .signers import (
    EthAccountSigner,
    PaymentSigner,
    PlaceholderSigner,
    SignedAuthorization,
    SignerError,
)

__all__ = [
    "PAYMENT_REQUIRED_HEADER",
    "PAYMENT_SIGNATURE_HEADER",
    "ConfigError",
    "EthAccountSigner",
    "ExactPayload",
    "FacilitatorBackend",
    "FacilitatorError",
    "FacilitatorRequest",
    "FacilitatorSettings",
    "FailureKind",
    "FlowConfig",
    "FlowReport",
    "FlowState",
    "HTTPFacilitatorBackend",
    "InvalidUtf8",
    "MalformedHeader",
    "PaymentCodecError",
    "PaymentFlow",
    "PaymentPayload",
    "PaymentRequirements",
    "PaymentSigner",
    "PlaceholderSigner",
    "SchemaError",
    "SettleResult",
    "SignedAuthorization",
    "SignerError",
    "VerifyResult",
    "build_request_body",
    "decode_payload_header",
    "decode_requirements_header",
    "encode_payload_header",
    "encode_requirements_header",
    "load_facilitator_settings",
    "load_flow_config",
    "settle_payment",
    "verify_payment",
]
