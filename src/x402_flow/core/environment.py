"""
Layered environment used to configure the payment flow and the facilitator.

Sources are merged in increasing priority: the process environment (or an
explicit ``base`` mapping), a ``.env`` file that only fills missing keys, and
explicit overrides.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

__all__ = ["SettingsEnvironment", "build_environment", "parse_env_file"]


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_env_file(path: Path) -> Dict[str, str]:
    """Read ``KEY=VALUE`` lines; a missing file yields an empty mapping."""
    values: Dict[str, str] = {}
    try:
        data = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return values

    for raw_line in data.splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = _unquote(value.strip())
    return values


@dataclass(frozen=True)
class SettingsEnvironment:
    variables: Mapping[str, str]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.variables.get(key)
        if value is None or value == "":
            return default
        return value


def build_environment(
    *,
    env_file: Optional[str] = ".env",
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
) -> SettingsEnvironment:
    """
    Assemble a :class:`SettingsEnvironment`.

    ``base`` defaults to :data:`os.environ`; pass ``env_file=None`` to skip the
    file entirely. ``overrides`` always win.
    """
    merged: Dict[str, str] = dict(os.environ if base is None else base)

    if env_file is not None:
        for key, value in parse_env_file(Path(env_file)).items():
            merged.setdefault(key, value)

    if overrides:
        merged.update(overrides)

    return SettingsEnvironment(variables=merged)
