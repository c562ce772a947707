#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.11"
# dependencies = ["cyclopts>=2.9", "plumbum", "pyyaml"]
# ///
"""Automated Hysteria2 server setup for Ubuntu 22.04+ hosts.

This script:
- installs the OS prerequisites and the upstream Hysteria2 binary;
- renders ``/etc/hysteria/config.yaml`` with ACME TLS, Salamander
  obfuscation and a masquerade proxy;
- opens 22/tcp, 80/tcp, 443/tcp and 443/udp in UFW without locking out SSH;
- enables ``hysteria-server.service`` and waits for the certificate; and
- writes the client URI to ``/etc/hysteria/client-uri.txt``.

Usage::

    sudo hy2-autosetup yourdomain.com admin@example.com
    sudo hy2-autosetup --check
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from hy2_autosetup._hy2_commands import run_command
from hy2_autosetup._hy2_errors import Hy2SetupError
from hy2_autosetup._hy2_models import DEFAULT_CONFIG_DIR, DEFAULT_MASQUERADE_URL, SetupConfig
from hy2_autosetup._input_resolution import InputResolution, parse_bool, resolve_input
from hy2_autosetup._preflight import check_platform, ensure_root
from hy2_autosetup._workflow import check_installation, provision

PROGRAM = "hy2-autosetup"
USAGE = (
    f"Usage: {PROGRAM} <domain> <email>\n"
    f"       {PROGRAM} --check [domain]\n"
    f"Example: {PROGRAM} yourdomain.com admin@example.com"
)

app = App(name=PROGRAM, help="Install and configure a Hysteria2 server.")
logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RawSetupInputs:
    """Setup inputs as given on the command line; ``None`` means unset."""

    domain: str | None = None
    email: str | None = None
    masquerade_url: str | None = None
    ssh_port: int | None = None
    config_dir: Path | None = None
    readiness_timeout: float | None = None
    masquerade_listen_https: bool | None = None
    log_window: str | None = None
    strict: bool | None = None


def _to_int(value: object, env_key: str) -> int:
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        msg = f"HY2_{env_key} must be an integer, got: {value!r}"
        raise SystemExit(msg) from exc


def _to_float(value: object, env_key: str) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        msg = f"HY2_{env_key} must be a number, got: {value!r}"
        raise SystemExit(msg) from exc


def _resolve_flag(value: bool | None, env_key: str, env: dict[str, str] | None) -> bool:
    raw = resolve_input(
        None if value is None else str(value),
        InputResolution(env_key=env_key, default="false"),
        env=env,
    )
    return parse_bool(str(raw))


def build_config(raw: RawSetupInputs, env: dict[str, str] | None = None) -> SetupConfig:
    """Merge CLI values with ``HY2_*`` environment fallbacks.

    Domain and email are positional only; they never come from the
    environment, so a bare invocation always stops at the usage message.

    Examples
    --------
    >>> build_config(RawSetupInputs(domain="vpn.example.com"), env={"HY2_SSH_PORT": "2222"}).ssh_port
    2222
    """

    domain = raw.domain or ""
    email = raw.email or ""
    masquerade_url = resolve_input(
        raw.masquerade_url,
        InputResolution(env_key="MASQUERADE_URL", default=DEFAULT_MASQUERADE_URL),
        env=env,
    )
    ssh_port = resolve_input(
        None if raw.ssh_port is None else str(raw.ssh_port),
        InputResolution(env_key="SSH_PORT", default="22"),
        env=env,
    )
    config_dir = resolve_input(
        raw.config_dir,
        InputResolution(env_key="CONFIG_DIR", default=DEFAULT_CONFIG_DIR, as_path=True),
        env=env,
    )
    readiness_timeout = resolve_input(
        None if raw.readiness_timeout is None else str(raw.readiness_timeout),
        InputResolution(env_key="READINESS_TIMEOUT", default="60"),
        env=env,
    )
    log_window = resolve_input(
        raw.log_window,
        InputResolution(env_key="LOG_WINDOW", default="10 min ago"),
        env=env,
    )

    return SetupConfig(
        domain=str(domain).strip().lower(),
        email=str(email).strip(),
        config_dir=Path(config_dir),
        masquerade_url=str(masquerade_url),
        masquerade_listen_https=_resolve_flag(
            raw.masquerade_listen_https, "MASQUERADE_LISTEN_HTTPS", env
        ),
        ssh_port=_to_int(ssh_port, "SSH_PORT"),
        readiness_timeout=_to_float(readiness_timeout, "READINESS_TIMEOUT"),
        log_window=str(log_window),
        strict=_resolve_flag(raw.strict, "STRICT", env),
    )


def _configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")


def _run_check(config: SetupConfig) -> int:
    report = check_installation(config, run_command)
    if report.failed:
        print("error: installation check failed", file=sys.stderr)
        return 1
    if config.strict and report.has_warnings:
        print("error: installation check reported warnings (--strict)", file=sys.stderr)
        return 1
    return 0


def _run_install(config: SetupConfig) -> int:
    check_platform(delay=config.platform_warning_delay)
    result = provision(config, run_command)
    if result.advisory_failures:
        for failure in result.advisory_failures:
            logger.warning("%s", failure)
        if config.strict:
            print("error: advisory checks failed (--strict)", file=sys.stderr)
            return 1
    return 0


@app.default
def main(
    domain: Annotated[str | None, Parameter(help="Domain pointing at this server.")] = None,
    email: Annotated[str | None, Parameter(help="Let's Encrypt contact email.")] = None,
    *,
    check: Annotated[
        bool, Parameter(help="Only diagnose an existing installation.")
    ] = False,
    masquerade_url: Annotated[
        str | None, Parameter(help="Site proxied for non-Hysteria traffic.")
    ] = None,
    ssh_port: Annotated[
        int | None, Parameter(help="Administrative SSH port kept open in UFW.")
    ] = None,
    config_dir: Annotated[
        Path | None, Parameter(help="Directory for config, URI and logs.")
    ] = None,
    readiness_timeout: Annotated[
        float | None, Parameter(help="Seconds to wait for the certificate.")
    ] = None,
    masquerade_listen_https: Annotated[
        bool | None, Parameter(help="Serve the masquerade site on TCP 80/443.")
    ] = None,
    log_window: Annotated[
        str | None, Parameter(help="journalctl --since window for the log scan.")
    ] = None,
    strict: Annotated[
        bool | None, Parameter(help="Exit non-zero when advisory checks fail.")
    ] = None,
) -> int:
    """Install Hysteria2 for DOMAIN with ACME contact EMAIL."""

    _configure_logging()
    config = build_config(
        RawSetupInputs(
            domain=domain,
            email=email,
            masquerade_url=masquerade_url,
            ssh_port=ssh_port,
            config_dir=config_dir,
            readiness_timeout=readiness_timeout,
            masquerade_listen_https=masquerade_listen_https,
            log_window=log_window,
            strict=strict,
        ),
    )

    if not check and not config.acme_enabled:
        print(USAGE, file=sys.stderr)
        return 1

    try:
        ensure_root()
        if check:
            return _run_check(config)
        return _run_install(config)
    except Hy2SetupError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


def run() -> None:
    """Console-script entry point."""

    raise SystemExit(app())


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    run()
