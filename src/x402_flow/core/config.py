"""
Configuration objects for the resource-client flow and the facilitator service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from eth_account import Account

from .environment import SettingsEnvironment, build_environment
from .models import EXACT_SCHEME, X402_VERSION

__all__ = [
    "ConfigError",
    "FacilitatorSettings",
    "FlowConfig",
    "load_facilitator_settings",
    "load_flow_config",
]

DEFAULT_FACILITATOR_URL = "http://localhost:3001"

FACILITATOR_MODES = ("canned", "local")
FACILITATOR_VERIFIERS = ("signature", "accept-all")

_FLOW_PARAMETERS = {
    "facilitator_url": "X402_FACILITATOR_URL",
    "payer_private_key": "X402_PAYER_PRIVATE_KEY",
    "timeout_seconds": "X402_HTTP_TIMEOUT_SECONDS",
    "x402_version": "X402_PROTOCOL_VERSION",
}

_FACILITATOR_PARAMETERS = {
    "host": "X402_FACILITATOR_HOST",
    "port": "X402_FACILITATOR_PORT",
    "network": "X402_FACILITATOR_NETWORK",
    "mode": "X402_FACILITATOR_MODE",
    "verifier": "X402_FACILITATOR_VERIFIER",
    "read_timeout_seconds": "X402_FACILITATOR_READ_TIMEOUT",
    "require_verified": "X402_FACILITATOR_REQUIRE_VERIFIED",
    "schemes": "X402_FACILITATOR_SCHEMES",
}


class ConfigError(Exception):
    """Raised when the supplied configuration is invalid."""


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(str(item) for item in value)
    return str(value)


def _collect_overrides(
    table: Mapping[str, str],
    overrides: Optional[Mapping[str, str]],
    explicit: Mapping[str, Any],
) -> Dict[str, str]:
    merged: Dict[str, str] = dict(overrides or {})
    for key, value in explicit.items():
        if value is None:
            continue
        try:
            env_key = table[key]
        except KeyError as exc:
            raise TypeError(f"Unknown configuration parameter '{key}'") from exc
        merged[env_key] = _stringify(value)
    return merged


def _parse_int(env: SettingsEnvironment, key: str, default: int, *, minimum: int) -> int:
    raw = env.get(key, str(default))
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got '{raw}'") from exc
    if value < minimum:
        raise ConfigError(f"{key} must be at least {minimum}, got {value}")
    return value


def _parse_positive_float(env: SettingsEnvironment, key: str, default: float) -> float:
    raw = env.get(key, str(default))
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number, got '{raw}'") from exc
    if value <= 0:
        raise ConfigError(f"{key} must be greater than zero")
    return value


def _parse_bool(env: SettingsEnvironment, key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{key} must be a boolean, got '{raw}'")


def _parse_choice(env: SettingsEnvironment, key: str, default: str, choices: Tuple[str, ...]) -> str:
    value = env.get(key, default).strip().lower()
    if value not in choices:
        raise ConfigError(f"{key} must be one of {', '.join(choices)}, got '{value}'")
    return value


def _normalize_private_key(raw_key: str) -> str:
    key = raw_key.strip()
    if not key.startswith("0x"):
        key = "0x" + key
    if len(key) != 66:
        raise ConfigError("X402_PAYER_PRIVATE_KEY must be 32 bytes (64 hex chars)")
    return key


@dataclass(frozen=True)
class FlowConfig:
    """Settings consumed by the resource-client flow."""

    facilitator_url: str = DEFAULT_FACILITATOR_URL
    payer_private_key: Optional[str] = None
    # Derived from the key, never configured separately.
    payer_address: Optional[str] = None
    timeout_seconds: float = 30.0
    x402_version: int = X402_VERSION

    def __repr__(self) -> str:
        key_state = "set" if self.payer_private_key else "unset"
        return (
            f"FlowConfig(facilitator_url={self.facilitator_url!r}, "
            f"payer_address={self.payer_address!r}, payer_private_key=<{key_state}>, "
            f"timeout_seconds={self.timeout_seconds!r}, x402_version={self.x402_version!r})"
        )

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "FlowConfig":
        env = SettingsEnvironment(values)
        facilitator_url = env.get("X402_FACILITATOR_URL", DEFAULT_FACILITATOR_URL).strip().rstrip("/")
        if not facilitator_url.startswith(("http://", "https://")):
            raise ConfigError("X402_FACILITATOR_URL must be an http(s) URL")

        private_key = None
        payer_address = None
        raw_key = env.get("X402_PAYER_PRIVATE_KEY")
        if raw_key is not None:
            private_key = _normalize_private_key(raw_key)
            try:
                payer_address = Account.from_key(private_key).address
            except ValueError as exc:
                raise ConfigError(f"X402_PAYER_PRIVATE_KEY is not a usable key: {exc}") from exc

        return cls(
            facilitator_url=facilitator_url,
            payer_private_key=private_key,
            payer_address=payer_address,
            timeout_seconds=_parse_positive_float(env, "X402_HTTP_TIMEOUT_SECONDS", 30.0),
            x402_version=_parse_int(env, "X402_PROTOCOL_VERSION", X402_VERSION, minimum=1),
        )


@dataclass(frozen=True)
class FacilitatorSettings:
    """
    Process-wide facilitator settings.

    Read once at startup and never mutated afterwards.
    """

    host: str = "127.0.0.1"
    port: int = 3001
    network: str = "testnet"
    mode: str = "canned"
    verifier: str = "signature"
    read_timeout_seconds: float = 5.0
    require_verified: bool = True
    schemes: Tuple[str, ...] = (EXACT_SCHEME,)

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "FacilitatorSettings":
        env = SettingsEnvironment(values)
        port = _parse_int(env, "X402_FACILITATOR_PORT", 3001, minimum=0)
        if port > 65535:
            raise ConfigError("X402_FACILITATOR_PORT must be at most 65535")

        schemes = tuple(
            item.strip()
            for item in env.get("X402_FACILITATOR_SCHEMES", EXACT_SCHEME).split(",")
            if item.strip()
        )
        if not schemes:
            raise ConfigError("X402_FACILITATOR_SCHEMES must name at least one scheme")

        return cls(
            host=env.get("X402_FACILITATOR_HOST", "127.0.0.1").strip(),
            port=port,
            network=env.get("X402_FACILITATOR_NETWORK", "testnet").strip(),
            mode=_parse_choice(env, "X402_FACILITATOR_MODE", "canned", FACILITATOR_MODES),
            verifier=_parse_choice(
                env, "X402_FACILITATOR_VERIFIER", "signature", FACILITATOR_VERIFIERS
            ),
            read_timeout_seconds=_parse_positive_float(env, "X402_FACILITATOR_READ_TIMEOUT", 5.0),
            require_verified=_parse_bool(env, "X402_FACILITATOR_REQUIRE_VERIFIED", True),
            schemes=schemes,
        )


def load_flow_config(
    *,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    facilitator_url: Optional[str] = None,
    payer_private_key: Optional[str] = None,
    timeout_seconds: Optional[float | str] = None,
    x402_version: Optional[int | str] = None,
) -> FlowConfig:
    """
    Build a :class:`FlowConfig` from the environment, a ``.env`` file,
    explicit overrides and keyword arguments (highest priority last).
    """
    merged = _collect_overrides(
        _FLOW_PARAMETERS,
        overrides,
        {
            "facilitator_url": facilitator_url,
            "payer_private_key": payer_private_key,
            "timeout_seconds": timeout_seconds,
            "x402_version": x402_version,
        },
    )
    environment = build_environment(env_file=env_file, base=base, overrides=merged)
    return FlowConfig.from_mapping(environment.variables)


def load_facilitator_settings(
    *,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    host: Optional[str] = None,
    port: Optional[int | str] = None,
    network: Optional[str] = None,
    mode: Optional[str] = None,
    verifier: Optional[str] = None,
    read_timeout_seconds: Optional[float | str] = None,
    require_verified: Optional[bool] = None,
    schemes: Optional[Tuple[str, ...]] = None,
) -> FacilitatorSettings:
    """Same layering as :func:`load_flow_config`, for the facilitator process."""
    merged = _collect_overrides(
        _FACILITATOR_PARAMETERS,
        overrides,
        {
            "host": host,
            "port": port,
            "network": network,
            "mode": mode,
            "verifier": verifier,
            "read_timeout_seconds": read_timeout_seconds,
            "require_verified": require_verified,
            "schemes": schemes,
        },
    )
    environment = build_environment(env_file=env_file, base=base, overrides=merged)
    return FacilitatorSettings.from_mapping(environment.variables)
