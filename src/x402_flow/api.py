"""
Public, high-level helpers for paying for x402-protected resources.
"""

from __future__ import annotations

import logging
import threading
from typing import Mapping, Optional

import requests

from .core.client import HTTPFacilitatorBackend
from .core.config import FlowConfig, load_flow_config
from .core.flow import FlowReport, PaymentFlow
from .core.signers import EthAccountSigner, PaymentSigner, PlaceholderSigner

__all__ = ["create_payment_flow", "create_signer", "pay_for_resource"]


def create_signer(config: FlowConfig) -> PaymentSigner:
    """Signer for the configured payer key, or placeholder evidence without one."""
    if config.payer_private_key:
        logging.info("Signing payments as %s", config.payer_address)
        return EthAccountSigner(config.payer_private_key)
    return PlaceholderSigner()


def _resolve_config(
    config: Optional[FlowConfig],
    *,
    env_file: Optional[str],
    overrides: Optional[Mapping[str, str]],
    base: Optional[Mapping[str, str]],
    facilitator_url: Optional[str],
    payer_private_key: Optional[str],
    timeout_seconds: Optional[float | str],
) -> FlowConfig:
    if config is None:
        return load_flow_config(
            env_file=env_file,
            overrides=overrides,
            base=base,
            facilitator_url=facilitator_url,
            payer_private_key=payer_private_key,
            timeout_seconds=timeout_seconds,
        )

    extras = (overrides, base, facilitator_url, payer_private_key, timeout_seconds)
    if any(item is not None and item != {} for item in extras):
        raise ValueError("Provide either a pre-built FlowConfig or individual parameters, not both.")
    return config


def create_payment_flow(
    *,
    config: Optional[FlowConfig] = None,
    session: Optional[requests.Session] = None,
    signer: Optional[PaymentSigner] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    facilitator_url: Optional[str] = None,
    payer_private_key: Optional[str] = None,
    timeout_seconds: Optional[float | str] = None,
) -> PaymentFlow:
    """
    Construct a :class:`PaymentFlow` talking to an HTTP facilitator.

    Callers can either supply a ready-made :class:`FlowConfig` or let the
    helper assemble one from environment data.
    """
    cfg = _resolve_config(
        config,
        env_file=env_file,
        overrides=overrides,
        base=base,
        facilitator_url=facilitator_url,
        payer_private_key=payer_private_key,
        timeout_seconds=timeout_seconds,
    )
    session = session or requests.Session()
    backend = HTTPFacilitatorBackend(
        cfg.facilitator_url,
        session=session,
        timeout_seconds=cfg.timeout_seconds,
    )
    return PaymentFlow(
        backend,
        signer=signer or create_signer(cfg),
        session=session,
        timeout_seconds=cfg.timeout_seconds,
        x402_version=cfg.x402_version,
    )


def pay_for_resource(
    url: str,
    *,
    config: Optional[FlowConfig] = None,
    session: Optional[requests.Session] = None,
    signer: Optional[PaymentSigner] = None,
    cancel: Optional[threading.Event] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    facilitator_url: Optional[str] = None,
    payer_private_key: Optional[str] = None,
    timeout_seconds: Optional[float | str] = None,
) -> FlowReport:
    """
    High-level convenience wrapper that runs one probe/verify/settle/retry cycle.
    """
    flow = create_payment_flow(
        config=config,
        session=session,
        signer=signer,
        env_file=env_file,
        overrides=overrides,
        base=base,
        facilitator_url=facilitator_url,
        payer_private_key=payer_private_key,
        timeout_seconds=timeout_seconds,
    )
    return flow.run(url, cancel=cancel)
