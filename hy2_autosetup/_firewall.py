"""UFW allow-list management with a persisted transcript.

The administrative-access rule is added and confirmed before anything else;
an inactive firewall is only switched on once that confirmation succeeded,
so the operator cannot lock themselves out of the host. Every other problem
is recorded and reported, never raised.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import re
from collections import abc as cabc
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import TextIO

from hy2_autosetup._hy2_commands import CommandRunner
from hy2_autosetup._hy2_models import PortRule, SetupConfig

TRANSCRIPT_MODE = 0o600

logger = logging.getLogger(__name__)


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class FirewallTranscript:
    """Timestamped, owner-only log of firewall mutations and checks."""

    def __init__(
        self,
        path: Path,
        clock: cabc.Callable[[], dt.datetime] = _utc_now,
    ) -> None:
        self.path = path
        self._clock = clock
        self._handle: TextIO | None = None

    def __enter__(self) -> FirewallTranscript:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(
            self.path,
            os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
            TRANSCRIPT_MODE,
        )
        self._handle = os.fdopen(fd, "w", encoding="utf-8")
        self._handle.write(
            f"=== Firewall setup log {self._clock().isoformat(timespec='seconds')} ===\n"
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        os.chmod(self.path, TRANSCRIPT_MODE)

    def record(self, line: str = "") -> None:
        """Append *line*; blank lines are kept bare as section breaks."""

        if self._handle is None:
            msg = "transcript is not open"
            raise RuntimeError(msg)
        if not line:
            self._handle.write("\n")
            return
        stamp = self._clock().isoformat(timespec="seconds")
        self._handle.write(f"[{stamp}] {line}\n")
        self._handle.flush()

    def record_output(self, text: str) -> None:
        for line in text.splitlines():
            if line.strip():
                self.record(f"  {line.rstrip()}")


@dataclass(slots=True)
class FirewallReport:
    """What :func:`configure_firewall` did and what it could verify."""

    applied: dict[str, bool] = field(default_factory=dict)
    verified: dict[str, bool] = field(default_factory=dict)
    admin_confirmed: bool = False
    was_inactive: bool = False
    enabled: bool = False
    log_path: Path | None = None

    @property
    def failed_rules(self) -> list[str]:
        return [rule for rule, ok in self.verified.items() if not ok]

    @property
    def all_verified(self) -> bool:
        return bool(self.verified) and not self.failed_rules


def rule_allowed(status_output: str, rule: PortRule) -> bool:
    """Return whether ``ufw status`` output lists an ALLOW entry for *rule*.

    Examples
    --------
    >>> out = "Status: active\\n\\nTo    Action  From\\n443/udp   ALLOW   Anywhere\\n"
    >>> rule_allowed(out, PortRule(443, "udp"))
    True
    >>> rule_allowed(out, PortRule(443, "tcp"))
    False
    """

    pattern = rf"^{rule.port}/{rule.protocol}(?:\s+\(v6\))?\s+ALLOW\b"
    return re.search(pattern, status_output, flags=re.MULTILINE) is not None


def rule_added(added_output: str, rule: PortRule) -> bool:
    """Return whether ``ufw show added`` output contains ``ufw allow <rule>``.

    Unlike ``ufw status`` this listing is populated while the firewall is
    still inactive.
    """

    pattern = rf"^ufw allow {rule.port}/{rule.protocol}\s*$"
    return re.search(pattern, added_output, flags=re.MULTILINE) is not None


def firewall_inactive(runner: CommandRunner) -> bool:
    result = runner("ufw", "status")
    return result.success and "Status: inactive" in result.stdout


def _allow(runner: CommandRunner, rule: PortRule, transcript: FirewallTranscript) -> bool:
    transcript.record(f"ufw allow {rule}")
    result = runner("ufw", "allow", str(rule))
    transcript.record_output(result.stdout + result.stderr)
    if not result.success:
        logger.warning("ufw allow %s failed: %s", rule, result.stderr.strip())
        transcript.record(f"ufw allow {rule} exited with status {result.return_code}")
    return result.success


def _confirm_admin_rule(
    runner: CommandRunner,
    rule: PortRule,
    transcript: FirewallTranscript,
) -> bool:
    result = runner("ufw", "show", "added")
    confirmed = result.success and rule_added(result.stdout, rule)
    if confirmed:
        transcript.record(f"Admin access rule {rule} confirmed")
    else:
        transcript.record(f"Admin access rule {rule} could NOT be confirmed")
    return confirmed


def _enable_if_inactive(
    runner: CommandRunner,
    report: FirewallReport,
    transcript: FirewallTranscript,
) -> None:
    if not firewall_inactive(runner):
        transcript.record("Firewall already active")
        return

    report.was_inactive = True
    if not report.admin_confirmed:
        logger.warning(
            "Firewall left inactive: admin access rule was not confirmed"
        )
        transcript.record("Firewall inactive; NOT enabling without confirmed admin rule")
        return

    transcript.record("ufw --force enable")
    result = runner("ufw", "--force", "enable")
    transcript.record_output(result.stdout + result.stderr)
    report.enabled = result.success
    if not result.success:
        logger.warning("ufw enable failed: %s", result.stderr.strip())


def _verify_rules(
    runner: CommandRunner,
    rules: cabc.Iterable[PortRule],
    report: FirewallReport,
    transcript: FirewallTranscript,
) -> None:
    transcript.record()
    transcript.record("=== Port check results ===")
    status = runner("ufw", "status")
    status_output = status.stdout if status.success else ""
    for rule in rules:
        ok = rule_allowed(status_output, rule)
        report.verified[str(rule)] = ok
        if ok:
            transcript.record(f"✓ Port {rule} is OPEN")
        else:
            transcript.record(f"✗ Port {rule} FAILED to open")


def configure_firewall(config: SetupConfig, runner: CommandRunner) -> FirewallReport:
    """Open the fixed allow-list, enable UFW if needed, and verify each rule."""

    report = FirewallReport(log_path=config.firewall_log_path)
    rules = config.firewall_rules
    admin, *service_rules = rules

    with FirewallTranscript(config.firewall_log_path) as transcript:
        report.applied[str(admin)] = _allow(runner, admin, transcript)
        report.admin_confirmed = _confirm_admin_rule(runner, admin, transcript)

        for rule in service_rules:
            report.applied[str(rule)] = _allow(runner, rule, transcript)

        _enable_if_inactive(runner, report, transcript)
        _verify_rules(runner, rules, report, transcript)

        if report.failed_rules:
            transcript.record()
            transcript.record(
                "WARNING: Some ports failed to open. Check firewall rules manually:"
            )
            transcript.record("  sudo ufw status verbose")

    if report.failed_rules:
        logger.warning(
            "Some ports failed to open: %s", ", ".join(report.failed_rules)
        )
        print(f"    Check log: cat {config.firewall_log_path}")
    else:
        print("Firewall rules verified: " + ", ".join(str(rule) for rule in rules))
    return report


__all__ = [
    "FirewallReport",
    "FirewallTranscript",
    "configure_firewall",
    "firewall_inactive",
    "rule_added",
    "rule_allowed",
]
