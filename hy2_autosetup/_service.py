"""systemd activation and readiness polling for the Hysteria2 server."""

from __future__ import annotations

import logging
import re
import time
from collections import abc as cabc

from hy2_autosetup._hy2_commands import CommandRunner
from hy2_autosetup._hy2_models import SetupConfig

# The server only reports "up and running" once ACME has issued or loaded a
# cached certificate, so either line means TLS is in place.
CERTIFICATE_READY_PATTERN = re.compile(
    r"certificate obtained successfully|server up and running",
    re.IGNORECASE,
)
INITIAL_POLL_DELAY = 1.0
MAX_POLL_DELAY = 8.0
BACKOFF_FACTOR = 2.0

logger = logging.getLogger(__name__)


def journal_hint(config: SetupConfig) -> str:
    return f"journalctl -u {config.service_unit} -e --no-pager"


def activate_service(config: SetupConfig, runner: CommandRunner) -> bool:
    """Enable the unit for boot and start it now; failures are advisory.

    Certificate issuance continues asynchronously after start, so a unit that
    has not settled yet is reported with the log command rather than aborting
    the run.
    """

    unit = config.service_unit
    enabled = runner("systemctl", "enable", "--now", unit)
    if not enabled.success:
        logger.warning(
            "systemctl enable --now %s failed: %s", unit, enabled.stderr.strip()
        )

    status = runner("systemctl", "--no-pager", "-l", "status", unit)
    if status.stdout.strip():
        print(status.stdout.rstrip())
    print()
    print(f"Server logs: {journal_hint(config)}")
    return enabled.success


def is_service_active(config: SetupConfig, runner: CommandRunner) -> bool:
    return runner("systemctl", "is-active", "--quiet", config.service_unit).success


def certificate_obtained(config: SetupConfig, runner: CommandRunner, since: str) -> bool:
    """Return whether the unit journal shows a usable certificate since *since*.

    A fresh issuance logs "certificate obtained successfully"; a re-run with a
    cached certificate only logs the server start.
    """

    result = runner(
        "journalctl",
        "-u",
        config.service_unit,
        "--since",
        since,
        "--no-pager",
        "-o",
        "cat",
    )
    return result.success and CERTIFICATE_READY_PATTERN.search(result.stdout) is not None


def wait_until_ready(
    check: cabc.Callable[[], bool],
    timeout: float,
    *,
    initial_delay: float = INITIAL_POLL_DELAY,
    max_delay: float = MAX_POLL_DELAY,
    factor: float = BACKOFF_FACTOR,
    sleep: cabc.Callable[[float], None] = time.sleep,
    clock: cabc.Callable[[], float] = time.monotonic,
) -> bool:
    """Poll *check* with exponential backoff until it passes or *timeout* ends.

    Examples
    --------
    >>> wait_until_ready(lambda: True, timeout=0)
    True
    """

    deadline = clock() + timeout
    delay = initial_delay
    while True:
        if check():
            return True
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        sleep(min(delay, remaining))
        delay = min(delay * factor, max_delay)


def wait_for_service(
    config: SetupConfig,
    runner: CommandRunner,
    since: str,
    *,
    sleep: cabc.Callable[[float], None] = time.sleep,
    clock: cabc.Callable[[], float] = time.monotonic,
) -> bool:
    """Wait for the unit to run and, in ACME mode, for its certificate."""

    def service_ready() -> bool:
        if not is_service_active(config, runner):
            return False
        if not config.acme_enabled:
            return True
        return certificate_obtained(config, runner, since)

    if config.acme_enabled:
        print(
            "Waiting for ACME certificate "
            f"(up to {config.readiness_timeout:g}s)..."
        )
    ready = wait_until_ready(
        service_ready,
        config.readiness_timeout,
        sleep=sleep,
        clock=clock,
    )
    if ready:
        print("✓ Hysteria server is running")
    else:
        logger.warning(
            "Hysteria server not ready after %gs. Check logs: %s",
            config.readiness_timeout,
            journal_hint(config),
        )
    return ready


__all__ = [
    "CERTIFICATE_READY_PATTERN",
    "activate_service",
    "certificate_obtained",
    "is_service_active",
    "journal_hint",
    "wait_for_service",
    "wait_until_ready",
]
