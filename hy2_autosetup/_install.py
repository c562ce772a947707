"""Install OS prerequisites and the Hysteria2 server binary."""

from __future__ import annotations

import os
import shutil
import tempfile
from collections import abc as cabc
from pathlib import Path

from hy2_autosetup._hy2_commands import CommandContext, CommandRunner, check_command
from hy2_autosetup._hy2_errors import BinaryInstallError, CommandError
from hy2_autosetup._hy2_models import SetupConfig

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
INSTALLER_TIMEOUT = 600


def install_prerequisites(config: SetupConfig, runner: CommandRunner) -> None:
    """Refresh the package index and install the utilities the setup drives.

    Raises
    ------
    CommandError
        When ``apt-get`` fails; a host without its tools cannot be set up.
    """

    context = CommandContext(env=dict(APT_ENV))
    print("Installing prerequisites: " + " ".join(config.packages))
    check_command(runner, "apt-get", "update", "-y", context=context)
    check_command(
        runner,
        "apt-get",
        "install",
        "-y",
        "--no-install-recommends",
        *config.packages,
        context=context,
    )


def find_binary(
    config: SetupConfig,
    which: cabc.Callable[[str], str | None] = shutil.which,
) -> Path | None:
    """Locate the server binary on ``PATH`` or at its install location.

    Examples
    --------
    >>> find_binary(SetupConfig(binary_fallback=Path("/nonexistent")), which=lambda _: None) is None
    True
    """

    located = which(config.binary_name)
    if located:
        return Path(located)
    fallback = config.binary_fallback
    if fallback.is_file() and os.access(fallback, os.X_OK):
        return fallback
    return None


def install_hysteria_binary(
    config: SetupConfig,
    runner: CommandRunner,
    which: cabc.Callable[[str], str | None] = shutil.which,
) -> Path:
    """Ensure the server binary exists, running the upstream installer if not.

    The upstream script installs both the binary and the systemd unit. It is
    fetched to a private temporary directory and run with ``bash``.

    Raises
    ------
    BinaryInstallError
        When the installer fails or the binary is still missing afterwards.
    """

    existing = find_binary(config, which)
    if existing is not None:
        print(f"Hysteria2 already installed at {existing}; skipping installer")
        return existing

    print(f"Installing Hysteria2 via {config.installer_url}")
    with tempfile.TemporaryDirectory(prefix="hy2-installer-") as workdir:
        script = Path(workdir) / "install_server.sh"
        try:
            check_command(
                runner,
                "curl",
                "-fsSL",
                config.installer_url,
                "-o",
                str(script),
            )
            check_command(
                runner,
                "bash",
                str(script),
                context=CommandContext(timeout=INSTALLER_TIMEOUT),
            )
        except CommandError as exc:
            msg = f"Hysteria2 installer failed: {exc}"
            raise BinaryInstallError(msg) from exc

    installed = find_binary(config, which)
    if installed is None:
        msg = f"{config.binary_name} not found after install"
        raise BinaryInstallError(msg)
    return installed


def ensure_config_dir(config: SetupConfig) -> Path:
    """Create the configuration directory with mode 755."""

    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.config_dir.chmod(0o755)
    return config.config_dir


__all__ = [
    "APT_ENV",
    "ensure_config_dir",
    "find_binary",
    "install_hysteria_binary",
    "install_prerequisites",
]
