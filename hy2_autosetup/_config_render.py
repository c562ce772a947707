"""Render and persist the Hysteria2 server configuration document.

The document has exactly one certificate block: ``acme`` when both a domain
and a contact email are known, otherwise ``tls`` pointing at a pre-supplied
certificate pair. Obfuscation, authentication and masquerade settings are
always present.

Examples
--------
>>> from hy2_autosetup._hy2_models import Credentials, SetupConfig
>>> doc = build_server_config(
...     SetupConfig(domain="vpn.example.com", email="ops@example.com"),
...     Credentials(obfs_password="o", auth_password="a"),
... )
>>> certificate_mode(doc)
'acme'
"""

from __future__ import annotations

import os
from contextlib import suppress
from pathlib import Path
from typing import Any

import yaml

from hy2_autosetup._hy2_commands import CommandRunner, check_command
from hy2_autosetup._hy2_errors import ConfigError
from hy2_autosetup._hy2_models import OBFS_ALGORITHM, Credentials, SetupConfig

CONFIG_MODE = 0o640
CERTIFICATE_BLOCKS = ("acme", "tls")
_HEADER = "# Generated by hy2-autosetup; rerunning the installer overwrites this file.\n"


def build_server_config(config: SetupConfig, credentials: Credentials) -> dict[str, Any]:
    """Return the configuration document as an ordered mapping."""

    document: dict[str, Any] = {"listen": f":{config.service_port}"}
    if config.acme_enabled:
        document["acme"] = {
            "domains": [config.domain],
            "email": config.email,
        }
    else:
        document["tls"] = {
            "cert": str(config.cert_path),
            "key": str(config.key_path),
        }

    document["obfs"] = {
        "type": OBFS_ALGORITHM,
        OBFS_ALGORITHM: {"password": credentials.obfs_password},
    }
    document["auth"] = {
        "type": "password",
        "password": credentials.auth_password,
    }

    masquerade: dict[str, Any] = {
        "type": "proxy",
        "proxy": {
            "url": config.masquerade_url,
            "rewriteHost": True,
        },
    }
    if config.masquerade_listen_https:
        masquerade["listenHTTP"] = f":{config.acme_port}"
        masquerade["listenHTTPS"] = f":{config.service_port}"
    document["masquerade"] = masquerade
    return document


def render_server_config(config: SetupConfig, credentials: Credentials) -> str:
    """Serialise the configuration document to YAML."""

    body = yaml.safe_dump(
        build_server_config(config, credentials),
        sort_keys=False,
        default_flow_style=False,
    )
    return _HEADER + body


def _write_atomic(path: Path, payload: str, mode: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
    except Exception:
        with suppress(FileNotFoundError):
            os.unlink(tmp_path)
        raise

    tmp_path.replace(path)
    os.chmod(path, mode)


def write_server_config(
    path: Path,
    text: str,
    runner: CommandRunner,
    owner: str | None = "hysteria",
) -> None:
    """Write *text* to ``path`` atomically with mode 640.

    When *owner* is set, ownership is handed to ``owner:owner`` so the
    unprivileged service account can read its configuration.
    """

    _write_atomic(path, text, CONFIG_MODE)
    if owner:
        check_command(runner, "chown", f"{owner}:{owner}", str(path))


def load_server_config(path: Path) -> dict[str, Any]:
    """Parse an existing configuration document.

    Raises
    ------
    ConfigError
        When the file is missing, is not YAML, or is not a mapping.
    """

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        msg = f"Server configuration not found at {path}"
        raise ConfigError(msg) from exc
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        msg = f"Failed to parse server configuration {path}: {exc}"
        raise ConfigError(msg) from exc
    if not isinstance(document, dict):
        msg = f"Server configuration {path} must be a mapping"
        raise ConfigError(msg)
    return document


def certificate_mode(document: dict[str, Any]) -> str:
    """Return which certificate block the document carries.

    Examples
    --------
    >>> certificate_mode({"tls": {"cert": "c", "key": "k"}})
    'tls'
    >>> certificate_mode({"acme": {}, "tls": {}})
    Traceback (most recent call last):
    ...
    hy2_autosetup._hy2_errors.ConfigError: configuration must contain exactly one of acme, tls; found acme, tls
    """

    present = [block for block in CERTIFICATE_BLOCKS if block in document]
    if len(present) != 1:
        found = ", ".join(present) or "none"
        msg = (
            "configuration must contain exactly one of "
            f"{', '.join(CERTIFICATE_BLOCKS)}; found {found}"
        )
        raise ConfigError(msg)
    return present[0]


def configured_domain(document: dict[str, Any]) -> str | None:
    """Return the first ACME domain declared by *document*, if any."""

    domains = (document.get("acme") or {}).get("domains") or []
    if domains and isinstance(domains[0], str):
        return domains[0]
    return None


def configured_credentials(document: dict[str, Any]) -> Credentials:
    """Extract the secrets embedded in *document*."""

    try:
        obfs = document["obfs"][OBFS_ALGORITHM]["password"]
        auth = document["auth"]["password"]
    except (KeyError, TypeError) as exc:
        msg = f"configuration lacks obfuscation or auth secrets: {exc}"
        raise ConfigError(msg) from exc
    try:
        return Credentials(obfs_password=str(obfs), auth_password=str(auth))
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


__all__ = [
    "CERTIFICATE_BLOCKS",
    "CONFIG_MODE",
    "build_server_config",
    "certificate_mode",
    "configured_credentials",
    "configured_domain",
    "load_server_config",
    "render_server_config",
    "write_server_config",
]
