"""Execution-context checks performed before the host is touched."""

from __future__ import annotations

import logging
import os
import time
from collections import abc as cabc
from pathlib import Path

from hy2_autosetup._hy2_errors import PreflightError

OS_RELEASE_PATH = Path("/etc/os-release")
MINIMUM_UBUNTU = (22, 4)

logger = logging.getLogger(__name__)


def ensure_root(geteuid: cabc.Callable[[], int] = os.geteuid) -> None:
    """Fail unless running with an effective uid of 0."""

    if geteuid() != 0:
        msg = "Please run as root: sudo hy2-autosetup <domain> <email>"
        raise PreflightError(msg)


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def read_os_release(path: Path = OS_RELEASE_PATH) -> dict[str, str]:
    """Parse ``os-release`` into a mapping; a missing file yields ``{}``.

    Examples
    --------
    >>> tmp = Path("os-release"); _ = tmp.write_text('NAME="Ubuntu"\\nVERSION_ID="24.04"\\n')
    >>> read_os_release(tmp)["VERSION_ID"]
    '24.04'
    >>> tmp.unlink()
    """

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    release: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        release[key.strip()] = _unquote(value)
    return release


def _version_tuple(version: str) -> tuple[int, ...] | None:
    try:
        return tuple(int(part) for part in version.split("."))
    except ValueError:
        return None


def is_supported_ubuntu(release: cabc.Mapping[str, str]) -> bool:
    """Return whether *release* describes Ubuntu 22.04 or later.

    Examples
    --------
    >>> is_supported_ubuntu({"NAME": "Ubuntu", "VERSION_ID": "22.04"})
    True
    >>> is_supported_ubuntu({"NAME": "Ubuntu", "VERSION_ID": "20.04"})
    False
    >>> is_supported_ubuntu({"NAME": "Debian GNU/Linux", "VERSION_ID": "12"})
    False
    """

    if release.get("NAME") != "Ubuntu":
        return False
    version = _version_tuple(release.get("VERSION_ID", "0"))
    return version is not None and version >= MINIMUM_UBUNTU


def check_platform(
    *,
    delay: float,
    release_path: Path = OS_RELEASE_PATH,
    sleep: cabc.Callable[[float], None] = time.sleep,
) -> bool:
    """Warn and pause on unsupported systems; never aborts.

    Returns whether the platform is supported.
    """

    release = read_os_release(release_path)
    if is_supported_ubuntu(release):
        return True

    logger.warning("This installer is designed for Ubuntu 22.04 or later")
    logger.warning("Current system: %s", release.get("PRETTY_NAME", "Unknown"))
    print("Proceeding anyway at your own risk...")
    if delay > 0:
        sleep(delay)
    return False


__all__ = [
    "MINIMUM_UBUNTU",
    "OS_RELEASE_PATH",
    "check_platform",
    "ensure_root",
    "is_supported_ubuntu",
    "read_os_release",
]
