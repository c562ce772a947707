"""Provisioning orchestration for the Hysteria2 server.

The install flow runs strictly in order: prerequisites, an advisory DNS
check, secrets, binary, configuration, firewall, service activation,
optional diagnostics and finally the client URI. Fatal errors propagate as
:class:`~hy2_autosetup._hy2_errors.Hy2SetupError`; everything after the
configuration is written is advisory and only recorded in the result.

Examples
--------
Run the whole flow against the real host:

>>> from hy2_autosetup._hy2_commands import run_command
>>> result = provision(SetupConfig(domain="vpn.example.com", email="ops@example.com"), run_command)
>>> result.uri.startswith("hysteria2://")
True
"""

from __future__ import annotations

import datetime as dt
import shutil
import socket
import time
from collections import abc as cabc
from dataclasses import dataclass, replace
from pathlib import Path

from hy2_autosetup._config_render import (
    configured_domain,
    load_server_config,
    render_server_config,
    write_server_config,
)
from hy2_autosetup._diagnostics import (
    CheckResult,
    DiagnosticsReport,
    check_dns,
    run_diagnostics,
)
from hy2_autosetup._firewall import FirewallReport, configure_firewall
from hy2_autosetup._hy2_commands import CommandRunner
from hy2_autosetup._hy2_errors import ConfigError
from hy2_autosetup._hy2_models import Credentials, SetupConfig
from hy2_autosetup._install import (
    ensure_config_dir,
    install_hysteria_binary,
    install_prerequisites,
)
from hy2_autosetup._secrets import generate_credentials
from hy2_autosetup._service import activate_service, journal_hint, wait_for_service
from hy2_autosetup._uri import build_client_uri, publish_client_uri

JOURNAL_SINCE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(slots=True)
class ProvisionResult:
    """Artefacts and advisory findings of one install run."""

    credentials: Credentials
    uri: str
    uri_path: Path
    binary: Path
    dns: CheckResult
    firewall: FirewallReport
    service_started: bool
    service_ready: bool
    diagnostics: DiagnosticsReport | None = None

    @property
    def advisory_failures(self) -> list[str]:
        """Human-readable list of soft failures, empty on a clean run."""

        failures: list[str] = []
        if self.dns.status in {"warn", "fail"}:
            failures.append(f"dns: {self.dns.detail}")
        failures.extend(
            f"firewall: {rule} not verified" for rule in self.firewall.failed_rules
        )
        if not self.service_started:
            failures.append("service: failed to start")
        elif not self.service_ready:
            failures.append("service: not ready before timeout")
        if self.diagnostics is not None:
            failures.extend(
                f"{result.name}: {result.detail}"
                for result in self.diagnostics.results
                if result.status in {"warn", "fail"} and result.name != "dns"
            )
        return failures


@dataclass(frozen=True, slots=True)
class HostHooks:
    """Host primitives that tests replace alongside the command runner."""

    which: cabc.Callable[[str], str | None] = shutil.which
    connect: cabc.Callable[..., socket.socket] = socket.create_connection
    sleep: cabc.Callable[[float], None] = time.sleep
    clock: cabc.Callable[[], float] = time.monotonic


def _print_summary(config: SetupConfig, uri: str) -> None:
    print()
    print("=== Setup complete! ===")
    print(f"Client URI saved to: {config.uri_path}")
    print()
    print("Content:")
    print(uri)
    print()
    print("Logs:")
    print(f"  Server: {journal_hint(config)}")
    print(f"  Firewall: cat {config.firewall_log_path}")


def provision(
    config: SetupConfig,
    runner: CommandRunner,
    *,
    hooks: HostHooks | None = None,
    run_checks: bool = True,
) -> ProvisionResult:
    """Install, configure and start the server, then publish the client URI."""

    hooks = hooks or HostHooks()
    print("== SERVER setup (automated) ==")
    print(f"Domain: {config.domain}")
    print(f"Email: {config.email}")
    print()

    install_prerequisites(config, runner)

    print(f"Checking DNS resolution for {config.domain}...")
    dns = check_dns(config, runner)
    print(dns.render())
    print()

    print("Generating random passwords...")
    credentials = generate_credentials()

    binary = install_hysteria_binary(config, runner, hooks.which)
    ensure_config_dir(config)
    write_server_config(
        config.config_path,
        render_server_config(config, credentials),
        runner,
        owner=config.service_user,
    )
    print(f"Server configuration written to {config.config_path}")

    firewall = configure_firewall(config, runner)

    since = dt.datetime.now().strftime(JOURNAL_SINCE_FORMAT)
    started = activate_service(config, runner)
    print()
    ready = wait_for_service(
        config,
        runner,
        since,
        sleep=hooks.sleep,
        clock=hooks.clock,
    )

    diagnostics = None
    if run_checks:
        print()
        print("=== Diagnostics ===")
        diagnostics = run_diagnostics(
            config,
            runner,
            which=hooks.which,
            connect=hooks.connect,
            include_config=False,
        )

    uri = build_client_uri(credentials, config.domain, config.service_port)
    publish_client_uri(config.uri_path, uri)
    _print_summary(config, uri)

    return ProvisionResult(
        credentials=credentials,
        uri=uri,
        uri_path=config.uri_path,
        binary=binary,
        dns=dns,
        firewall=firewall,
        service_started=started,
        service_ready=ready,
        diagnostics=diagnostics,
    )


def installed_domain(config: SetupConfig) -> str:
    """Return the domain to diagnose, falling back to the installed document."""

    if config.domain:
        return config.domain
    try:
        document = load_server_config(config.config_path)
    except ConfigError:
        return ""
    return configured_domain(document) or ""


def check_installation(
    config: SetupConfig,
    runner: CommandRunner,
    *,
    hooks: HostHooks | None = None,
) -> DiagnosticsReport:
    """Run the read-only diagnostics against an existing installation."""

    hooks = hooks or HostHooks()
    domain = installed_domain(config)
    if domain != config.domain:
        config = replace(config, domain=domain)

    print("=== Hysteria2 installation check ===")
    return run_diagnostics(
        config,
        runner,
        which=hooks.which,
        connect=hooks.connect,
    )


__all__ = [
    "HostHooks",
    "ProvisionResult",
    "check_installation",
    "installed_domain",
    "provision",
]
