"""Data models shared by the Hysteria2 setup helpers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_CONFIG_DIR = Path("/etc/hysteria")
DEFAULT_MASQUERADE_URL = "https://www.google.com"
DEFAULT_SERVICE_UNIT = "hysteria-server.service"
DEFAULT_INSTALLER_URL = "https://get.hy2.sh/"
OBFS_ALGORITHM = "salamander"
URI_SCHEME = "hysteria2"


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of an external command execution."""

    success: bool
    stdout: str
    stderr: str
    return_code: int


@dataclass(frozen=True, slots=True)
class PortRule:
    """A firewall allow-list entry for one port/protocol pair.

    Examples
    --------
    >>> str(PortRule(443, "udp"))
    '443/udp'
    """

    port: int
    protocol: str

    def __str__(self) -> str:
        return f"{self.port}/{self.protocol}"


@dataclass(frozen=True, slots=True)
class Credentials:
    """Secrets generated for one provisioning run."""

    obfs_password: str
    auth_password: str

    def __post_init__(self) -> None:
        if self.obfs_password == self.auth_password:
            msg = "obfuscation and authentication secrets must differ"
            raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class SetupConfig:
    """Resolved settings for a provisioning or diagnostics run."""

    domain: str = ""
    email: str = ""
    config_dir: Path = DEFAULT_CONFIG_DIR
    masquerade_url: str = DEFAULT_MASQUERADE_URL
    masquerade_listen_https: bool = False
    ssh_port: int = 22
    service_port: int = 443
    acme_port: int = 80
    service_unit: str = DEFAULT_SERVICE_UNIT
    binary_name: str = "hysteria"
    binary_fallback: Path = Path("/usr/local/bin/hysteria")
    installer_url: str = DEFAULT_INSTALLER_URL
    service_user: str | None = "hysteria"
    readiness_timeout: float = 60.0
    platform_warning_delay: float = 3.0
    log_window: str = "10 min ago"
    strict: bool = False
    packages: tuple[str, ...] = (
        "curl",
        "ca-certificates",
        "ufw",
        "jq",
        "dnsutils",
        "iproute2",
    )

    @property
    def acme_enabled(self) -> bool:
        """ACME issuance needs both a domain and a contact address."""

        return bool(self.domain) and bool(self.email)

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.yaml"

    @property
    def uri_path(self) -> Path:
        return self.config_dir / "client-uri.txt"

    @property
    def firewall_log_path(self) -> Path:
        return self.config_dir / "firewall-setup.log"

    @property
    def cert_path(self) -> Path:
        return self.config_dir / "cert.pem"

    @property
    def key_path(self) -> Path:
        return self.config_dir / "key.pem"

    @property
    def admin_rule(self) -> PortRule:
        return PortRule(self.ssh_port, "tcp")

    @property
    def firewall_rules(self) -> tuple[PortRule, ...]:
        """Every rule the firewall must allow, admin access first.

        Examples
        --------
        >>> [str(rule) for rule in SetupConfig().firewall_rules]
        ['22/tcp', '80/tcp', '443/tcp', '443/udp']
        """

        return (
            self.admin_rule,
            PortRule(self.acme_port, "tcp"),
            PortRule(self.service_port, "tcp"),
            PortRule(self.service_port, "udp"),
        )


__all__ = [
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_INSTALLER_URL",
    "DEFAULT_MASQUERADE_URL",
    "DEFAULT_SERVICE_UNIT",
    "OBFS_ALGORITHM",
    "URI_SCHEME",
    "CommandResult",
    "Credentials",
    "PortRule",
    "SetupConfig",
]
