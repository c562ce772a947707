"""Read-only post-install checks.

Each check returns a :class:`CheckResult` instead of raising, so one broken
check (no ``dig``, an unreachable echo service) never hides the others. None
of the checks write to the host.
"""

from __future__ import annotations

import ipaddress
import re
import shutil
import socket
from collections import abc as cabc
from dataclasses import dataclass, field
from typing import Literal

from hy2_autosetup._config_render import (
    certificate_mode,
    configured_credentials,
    configured_domain,
    load_server_config,
)
from hy2_autosetup._firewall import rule_allowed
from hy2_autosetup._hy2_commands import CommandRunner
from hy2_autosetup._hy2_errors import ConfigError
from hy2_autosetup._hy2_models import SetupConfig
from hy2_autosetup._install import find_binary
from hy2_autosetup._service import is_service_active, journal_hint
from hy2_autosetup._uri import parse_client_uri

CheckStatus = Literal["ok", "warn", "fail", "skip"]

PUBLIC_IP_ECHO_SERVICES = ("ifconfig.me", "icanhazip.com")
ECHO_TIMEOUT_SECONDS = "10"
REACHABILITY_TIMEOUT = 5.0
LOG_ERROR_PATTERN = re.compile(r"error|fail|fatal|panic", re.IGNORECASE)

_MARKS: dict[str, str] = {"ok": "✓", "warn": "⚠️ ", "fail": "✗", "skip": "-"}


@dataclass(frozen=True, slots=True)
class CheckResult:
    """Outcome of a single diagnostic check."""

    name: str
    status: CheckStatus
    detail: str

    def render(self) -> str:
        return f"{_MARKS[self.status]} {self.name}: {self.detail}"


@dataclass(slots=True)
class DiagnosticsReport:
    """Ordered collection of check results."""

    results: list[CheckResult] = field(default_factory=list)

    def add(self, result: CheckResult) -> CheckResult:
        self.results.append(result)
        print(result.render())
        return result

    def get(self, name: str) -> CheckResult | None:
        return next((result for result in self.results if result.name == name), None)

    @property
    def failed(self) -> bool:
        return any(result.status == "fail" for result in self.results)

    @property
    def has_warnings(self) -> bool:
        return any(result.status == "warn" for result in self.results)


def _parse_ipv4(text: str) -> str | None:
    candidate = text.strip()
    try:
        return str(ipaddress.IPv4Address(candidate))
    except ValueError:
        return None


def check_binary_installed(
    config: SetupConfig,
    which: cabc.Callable[[str], str | None] = shutil.which,
) -> CheckResult:
    located = find_binary(config, which)
    if located is None:
        return CheckResult("binary", "fail", f"{config.binary_name} is not installed")
    return CheckResult("binary", "ok", f"{config.binary_name} found at {located}")


def check_config_document(config: SetupConfig) -> CheckResult:
    """Validate the installed document and its agreement with the client URI."""

    try:
        document = load_server_config(config.config_path)
        mode = certificate_mode(document)
        credentials = configured_credentials(document)
    except ConfigError as exc:
        return CheckResult("config", "fail", str(exc))

    domain = configured_domain(document)
    detail = f"{config.config_path} uses {mode} certificates"
    if domain:
        detail += f" for {domain}"
    try:
        published = parse_client_uri(config.uri_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return CheckResult("config", "warn", f"{detail}; no client URI at {config.uri_path}")
    except ValueError as exc:
        return CheckResult("config", "warn", f"{detail}; unreadable client URI: {exc}")
    # urlsplit lowercases the host; DNS names compare case-insensitively.
    domain_differs = bool(domain) and published.domain.lower() != domain.lower()
    if published.credentials != credentials or domain_differs:
        return CheckResult(
            "config",
            "warn",
            f"{detail}; {config.uri_path} does not match the server secrets",
        )
    return CheckResult("config", "ok", detail)


def check_service_active(config: SetupConfig, runner: CommandRunner) -> CheckResult:
    if is_service_active(config, runner):
        return CheckResult("service", "ok", f"{config.service_unit} is active")
    return CheckResult(
        "service",
        "fail",
        f"{config.service_unit} is not active; see {journal_hint(config)}",
    )


def detect_public_ip(runner: CommandRunner) -> str | None:
    """Ask the echo services for this host's public IPv4 address."""

    for service in PUBLIC_IP_ECHO_SERVICES:
        result = runner("curl", "-s", "-4", "--max-time", ECHO_TIMEOUT_SECONDS, service)
        if result.success:
            address = _parse_ipv4(result.stdout)
            if address is not None:
                return address
    return None


def resolve_domain(runner: CommandRunner, domain: str) -> str | None:
    """Return the first A record for *domain*, skipping CNAME targets."""

    result = runner("dig", "+short", domain, "A")
    if not result.success:
        return None
    for line in result.stdout.splitlines():
        address = _parse_ipv4(line)
        if address is not None:
            return address
    return None


def check_dns(
    config: SetupConfig,
    runner: CommandRunner,
    public_ip: str | None = None,
) -> CheckResult:
    """Compare the domain's A record with this host's public address.

    A mismatch is only a warning: ACME validation can still succeed, for
    example behind a forwarding proxy.
    """

    domain = config.domain
    if not domain:
        return CheckResult("dns", "skip", "no domain configured")

    server_ip = public_ip or detect_public_ip(runner)
    if server_ip is None:
        return CheckResult("dns", "warn", "could not determine server IP address")

    resolved = resolve_domain(runner, domain)
    if resolved is None:
        return CheckResult(
            "dns",
            "warn",
            f"{domain} does not resolve to any IP; "
            "make sure your DNS A/AAAA record is configured",
        )
    if resolved != server_ip:
        return CheckResult(
            "dns",
            "warn",
            f"{domain} resolves to {resolved} but server IP is {server_ip}; "
            "ACME validation may fail!",
        )
    return CheckResult("dns", "ok", f"{domain} → {server_ip}")


def _listening_ports(ss_output: str) -> set[int]:
    ports: set[int] = set()
    for line in ss_output.splitlines():
        fields = line.split()
        if len(fields) < 5:
            continue
        _, _, port = fields[3].rpartition(":")
        if port.isdigit():
            ports.add(int(port))
    return ports


def check_listening(
    config: SetupConfig,
    runner: CommandRunner,
    protocol: Literal["udp", "tcp"],
) -> CheckResult:
    """Look for a local socket bound to the service port."""

    name = f"listen-{protocol}"
    port = config.service_port
    if protocol == "tcp" and not config.masquerade_listen_https:
        return CheckResult(name, "skip", "no TCP listener configured")

    flag = "-lnu" if protocol == "udp" else "-lnt"
    result = runner("ss", "-H", flag)
    if not result.success:
        return CheckResult(name, "warn", "could not list sockets with ss")
    if port in _listening_ports(result.stdout):
        return CheckResult(name, "ok", f"listening on {port}/{protocol}")
    severity: CheckStatus = "fail" if protocol == "udp" else "warn"
    return CheckResult(name, severity, f"nothing listening on {port}/{protocol}")


def check_firewall(config: SetupConfig, runner: CommandRunner) -> CheckResult:
    result = runner("ufw", "status")
    if not result.success:
        return CheckResult("firewall", "warn", "could not query ufw status")
    if "Status: inactive" in result.stdout:
        return CheckResult("firewall", "warn", "ufw is inactive")
    missing = [
        str(rule)
        for rule in config.firewall_rules
        if not rule_allowed(result.stdout, rule)
    ]
    if missing:
        return CheckResult(
            "firewall",
            "warn",
            "no ALLOW rule for " + ", ".join(missing) + "; check: sudo ufw status verbose",
        )
    return CheckResult("firewall", "ok", "all expected ports allowed")


def check_reachability(
    config: SetupConfig,
    connect: cabc.Callable[..., socket.socket] = socket.create_connection,
) -> CheckResult:
    """Open a TCP connection to the domain's service port.

    Only meaningful when the masquerade HTTPS listener serves TCP; the QUIC
    side cannot be tested without a client.
    """

    if not config.masquerade_listen_https:
        return CheckResult("reachability", "skip", "no TCP listener configured")
    if not config.domain:
        return CheckResult("reachability", "skip", "no domain configured")
    target = (config.domain, config.service_port)
    try:
        with connect(target, timeout=REACHABILITY_TIMEOUT):
            pass
    except OSError as exc:
        return CheckResult(
            "reachability",
            "warn",
            f"{config.domain}:{config.service_port}/tcp unreachable: {exc}",
        )
    return CheckResult(
        "reachability", "ok", f"{config.domain}:{config.service_port}/tcp reachable"
    )


def count_log_errors(text: str) -> int:
    """Count log lines that mention an error condition.

    Examples
    --------
    >>> count_log_errors("INFO started\\nERROR acme: timeout\\nFailed to bind\\n")
    2
    """

    return sum(1 for line in text.splitlines() if LOG_ERROR_PATTERN.search(line))


def scan_service_logs(config: SetupConfig, runner: CommandRunner) -> CheckResult:
    result = runner(
        "journalctl",
        "-u",
        config.service_unit,
        "--since",
        config.log_window,
        "--no-pager",
        "-o",
        "cat",
    )
    if not result.success:
        return CheckResult("logs", "warn", "could not read service journal")
    errors = count_log_errors(result.stdout)
    if errors:
        return CheckResult(
            "logs",
            "warn",
            f"{errors} error line(s) since {config.log_window}; see {journal_hint(config)}",
        )
    return CheckResult("logs", "ok", f"no errors since {config.log_window}")


def run_diagnostics(
    config: SetupConfig,
    runner: CommandRunner,
    *,
    which: cabc.Callable[[str], str | None] = shutil.which,
    connect: cabc.Callable[..., socket.socket] = socket.create_connection,
    include_config: bool = True,
) -> DiagnosticsReport:
    """Run every check in order; stop after the binary check if it fails.

    ``include_config`` is disabled during installation, where the client URI
    is only published after the checks.
    """

    report = DiagnosticsReport()
    if report.add(check_binary_installed(config, which)).status == "fail":
        return report

    if include_config:
        report.add(check_config_document(config))
    report.add(check_service_active(config, runner))
    report.add(check_listening(config, runner, "udp"))
    report.add(check_listening(config, runner, "tcp"))
    report.add(check_firewall(config, runner))
    report.add(check_dns(config, runner))
    report.add(check_reachability(config, connect))
    report.add(scan_service_logs(config, runner))
    return report


__all__ = [
    "CheckResult",
    "CheckStatus",
    "DiagnosticsReport",
    "check_binary_installed",
    "check_config_document",
    "check_dns",
    "check_firewall",
    "check_listening",
    "check_reachability",
    "check_service_active",
    "count_log_errors",
    "detect_public_ip",
    "resolve_domain",
    "run_diagnostics",
    "scan_service_logs",
]
