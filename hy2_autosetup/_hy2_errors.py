"""Exception hierarchy for the Hysteria2 setup helpers.

Fatal conditions raise one of these; the CLI catches the base class, prints
``error: <message>`` to stderr and exits with status 1. Advisory problems
(DNS mismatch, unverified firewall rules, a slow service start) are never
raised; they are logged and recorded in the step reports instead.

Examples
--------
>>> raise BinaryInstallError("hysteria not found after install")
"""

from __future__ import annotations


class Hy2SetupError(RuntimeError):
    """Base error for the Hysteria2 provisioning workflow.

    Parameters
    ----------
    message
        Human-readable error message describing the failure.
    """


class PreflightError(Hy2SetupError):
    """Raised when the execution context cannot run the installer."""


class CommandError(Hy2SetupError):
    """Raised when a required external command exits non-zero.

    Examples
    --------
    >>> raise CommandError("Command 'apt-get' failed: exit status 100")
    """


class BinaryInstallError(Hy2SetupError):
    """Raised when the Hysteria2 binary is missing after installation."""


class ConfigError(Hy2SetupError):
    """Raised when a server configuration document is missing or malformed."""


__all__ = [
    "BinaryInstallError",
    "CommandError",
    "ConfigError",
    "Hy2SetupError",
    "PreflightError",
]
