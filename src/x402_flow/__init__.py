"""
Public facade for the x402 pay-for-access package.

Re-exports the pieces integrators need so they can ``from x402_flow import ...``
without navigating the package.
"""

from .api import create_payment_flow, create_signer, pay_for_resource
from .core import (
    ConfigError,
    EthAccountSigner,
    FacilitatorBackend,
    FacilitatorError,
    FacilitatorSettings,
    FailureKind,
    FlowConfig,
    FlowReport,
    FlowState,
    HTTPFacilitatorBackend,
    PaymentCodecError,
    PaymentFlow,
    PaymentPayload,
    PaymentRequirements,
    PlaceholderSigner,
    SettleResult,
    VerifyResult,
    decode_payload_header,
    decode_requirements_header,
    encode_payload_header,
    encode_requirements_header,
    load_facilitator_settings,
    load_flow_config,
)
from .facilitator import CannedFacilitator, LocalFacilitator, create_app, serve

__all__ = (
    "CannedFacilitator",
    "ConfigError",
    "EthAccountSigner",
    "FacilitatorBackend",
    "FacilitatorError",
    "FacilitatorSettings",
    "FailureKind",
    "FlowConfig",
    "FlowReport",
    "FlowState",
    "HTTPFacilitatorBackend",
    "LocalFacilitator",
    "PaymentCodecError",
    "PaymentFlow",
    "PaymentPayload",
    "PaymentRequirements",
    "PlaceholderSigner",
    "SettleResult",
    "VerifyResult",
    "create_app",
    "create_payment_flow",
    "create_signer",
    "decode_payload_header",
    "decode_requirements_header",
    "encode_payload_header",
    "encode_requirements_header",
    "load_facilitator_settings",
    "load_flow_config",
    "pay_for_resource",
    "serve",
)
