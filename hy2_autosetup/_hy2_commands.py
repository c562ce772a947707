"""Command helpers for driving the host's package, firewall and service tools.

Every component receives a :class:`CommandRunner` instead of calling plumbum
directly, so the provisioning steps can be exercised against a scripted fake
without root privileges.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol

from plumbum import local
from plumbum.commands.processes import CommandNotFound, ProcessTimedOut

from hy2_autosetup._hy2_errors import CommandError
from hy2_autosetup._hy2_models import CommandResult

COMMAND_NOT_FOUND = 127
COMMAND_TIMED_OUT = 124


@dataclass(slots=True)
class CommandContext:
    """Execution options for :func:`run_command`."""

    env: dict[str, str] | None = None
    stdin: str | None = None
    timeout: float | None = None


class CommandRunner(Protocol):
    """Callable that runs ``command *args`` and reports the outcome."""

    def __call__(
        self,
        command: str,
        *args: str,
        context: CommandContext | None = None,
    ) -> CommandResult: ...


def _validate_command_args(args: tuple[str, ...]) -> None:
    for arg in args:
        if not isinstance(arg, str):
            msg = f"Command argument must be a string, got {type(arg).__name__}"
            raise TypeError(msg)
        if any(char in arg for char in ("\x00", "\n", "\r")):
            msg = "Command argument contains an invalid control character"
            raise ValueError(msg)


def run_command(
    command: str,
    *args: str,
    context: CommandContext | None = None,
) -> CommandResult:
    """Execute an external command and return its result without raising.

    A missing executable or a timeout is reported as a failed result
    (exit status 127 and 124 respectively), mirroring the shell.

    Examples
    --------
    >>> run_command("printf", "hello").stdout
    'hello'
    >>> run_command("false").success
    False
    """

    ctx = context or CommandContext()
    _validate_command_args(args)
    try:
        bound = local[command][list(args)]
    except CommandNotFound:
        return CommandResult(
            success=False,
            stdout="",
            stderr=f"{command}: command not found",
            return_code=COMMAND_NOT_FOUND,
        )

    env = {**os.environ, **ctx.env} if ctx.env is not None else None
    if ctx.stdin is not None:
        bound = bound << ctx.stdin
    try:
        return_code, stdout, stderr = bound.run(
            retcode=None,
            env=env,
            timeout=ctx.timeout,
        )
    except ProcessTimedOut:
        return CommandResult(
            success=False,
            stdout="",
            stderr=f"{command}: timed out after {ctx.timeout}s",
            return_code=COMMAND_TIMED_OUT,
        )
    return CommandResult(
        success=return_code == 0,
        stdout=stdout,
        stderr=stderr,
        return_code=return_code,
    )


def check_command(
    runner: CommandRunner,
    command: str,
    *args: str,
    context: CommandContext | None = None,
) -> str:
    """Run a command that must succeed and return its standard output.

    Raises
    ------
    CommandError
        When the command exits non-zero.
    """

    result = runner(command, *args, context=context)
    if not result.success:
        detail = result.stderr.strip() or f"exit status {result.return_code}"
        msg = f"Command {' '.join([command, *args])!r} failed: {detail}"
        raise CommandError(msg)
    return result.stdout


__all__ = [
    "COMMAND_NOT_FOUND",
    "COMMAND_TIMED_OUT",
    "CommandContext",
    "CommandRunner",
    "check_command",
    "run_command",
]
