"""Resolve CLI values against ``HY2_*`` environment fallbacks."""

from __future__ import annotations

import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "HY2_"


@dataclass(frozen=True, slots=True)
class InputResolution:
    """How to resolve one setup input when the CLI leaves it unset."""

    env_key: str
    default: str | Path | None = None
    required: bool = False
    as_path: bool = False


def resolve_input(
    param_value: str | Path | None,
    resolution: InputResolution,
    env: cabc.Mapping[str, str] | None = None,
) -> str | Path | None:
    """Return the CLI value, else ``HY2_<env_key>``, else the default.

    Blank environment values count as unset so an exported-but-empty
    ``HY2_DOMAIN`` does not masquerade as a domain.

    Examples
    --------
    >>> resolve_input(None, InputResolution("SSH_PORT", default="22"), env={})
    '22'
    >>> resolve_input(None, InputResolution("CONFIG_DIR", as_path=True),
    ...               env={"HY2_CONFIG_DIR": "/etc/hysteria"})
    PosixPath('/etc/hysteria')
    """

    if param_value is not None:
        return param_value

    env_value = (os.environ if env is None else env).get(
        f"{ENV_PREFIX}{resolution.env_key}"
    )
    if env_value is not None and env_value.strip():
        return Path(env_value) if resolution.as_path else env_value

    if resolution.required:
        msg = f"{ENV_PREFIX}{resolution.env_key} is required"
        raise SystemExit(msg)

    return resolution.default


def parse_bool(value: str | bool | None, *, default: bool = False) -> bool:
    """Parse a boolean flag given as text.

    Examples
    --------
    >>> parse_bool("yes")
    True
    >>> parse_bool(None)
    False
    """

    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


__all__ = ["ENV_PREFIX", "InputResolution", "parse_bool", "resolve_input"]
