"""Scripted host doubles for the provisioning tests."""

from __future__ import annotations

from collections import abc as cabc

from hy2_autosetup._hy2_commands import CommandContext
from hy2_autosetup._hy2_models import CommandResult


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(True, stdout, "", 0)


def failed(stderr: str = "boom", return_code: int = 1) -> CommandResult:
    return CommandResult(False, "", stderr, return_code)


class FakeUfw:
    """In-memory UFW: rules are only listed by ``status`` once enabled."""

    def __init__(self, *, active: bool = False, broken_rules: cabc.Iterable[str] = ()) -> None:
        self.active = active
        self.rules: list[str] = []
        self.broken_rules = set(broken_rules)
        self.rules_at_enable: list[str] | None = None

    def __call__(self, argv: tuple[str, ...]) -> CommandResult:
        args = argv[1:]
        if args[:1] == ("allow",):
            rule = args[1]
            if rule in self.broken_rules:
                return failed("ERROR: Could not add rule")
            if rule in self.rules:
                return ok("Skipping adding existing rule\n")
            self.rules.append(rule)
            return ok("Rules updated\nRules updated (v6)\n")
        if args == ("show", "added"):
            lines = ["Added user rules (see 'ufw status' for running firewall):"]
            lines.extend(f"ufw allow {rule}" for rule in self.rules)
            return ok("\n".join(lines) + "\n")
        if args == ("--force", "enable"):
            self.active = True
            self.rules_at_enable = list(self.rules)
            return ok("Firewall is active and enabled on system startup\n")
        if args == ("status",):
            if not self.active:
                return ok("Status: inactive\n")
            lines = ["Status: active", "", "To                         Action      From"]
            for rule in self.rules:
                lines.append(f"{rule:<27}ALLOW       Anywhere")
                lines.append(f"{rule + ' (v6)':<27}ALLOW       Anywhere (v6)")
            return ok("\n".join(lines) + "\n")
        return failed(f"unexpected ufw args {args!r}")


class FakeRunner:
    """Scripted stand-in for :func:`hy2_autosetup._hy2_commands.run_command`.

    Responses are keyed by argv prefix; the longest matching prefix wins.
    Queued responses are consumed in order and the last one repeats.
    Unknown commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.contexts: list[CommandContext | None] = []
        self.handlers: dict[str, cabc.Callable[[tuple[str, ...]], CommandResult]] = {}
        self._responses: dict[tuple[str, ...], list[CommandResult]] = {}

    def on(self, *prefix: str, result: CommandResult | None = None, stdout: str = "") -> FakeRunner:
        self._responses.setdefault(prefix, []).append(result or ok(stdout))
        return self

    def __call__(
        self,
        command: str,
        *args: str,
        context: CommandContext | None = None,
    ) -> CommandResult:
        argv = (command, *args)
        self.calls.append(argv)
        self.contexts.append(context)
        if command in self.handlers:
            return self.handlers[command](argv)
        matches = [prefix for prefix in self._responses if argv[: len(prefix)] == prefix]
        if not matches:
            return ok()
        queue = self._responses[max(matches, key=len)]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def index(self, *prefix: str) -> int:
        """Position of the first call starting with *prefix*."""

        for position, argv in enumerate(self.calls):
            if argv[: len(prefix)] == prefix:
                return position
        raise AssertionError(f"no call starting with {prefix!r}: {self.calls!r}")

    def commands(self) -> list[str]:
        return [argv[0] for argv in self.calls]
