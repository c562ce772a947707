"""Build, persist and parse the client connection URI."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from hy2_autosetup._hy2_models import OBFS_ALGORITHM, URI_SCHEME, Credentials

URI_MODE = 0o600


@dataclass(frozen=True, slots=True)
class ClientURI:
    """Decoded parts of a published connection URI."""

    credentials: Credentials
    domain: str
    port: int
    sni: str


def build_client_uri(credentials: Credentials, domain: str, port: int = 443) -> str:
    """Interpolate the secrets and domain into a ``hysteria2://`` URI.

    Examples
    --------
    >>> build_client_uri(Credentials("obfs", "auth"), "vpn.example.com")
    'hysteria2://auth@vpn.example.com:443/?obfs=salamander&obfs-password=obfs&sni=vpn.example.com'
    """

    query = urlencode(
        {
            "obfs": OBFS_ALGORITHM,
            "obfs-password": credentials.obfs_password,
            "sni": domain,
        },
        quote_via=quote,
    )
    auth = quote(credentials.auth_password, safe="")
    return f"{URI_SCHEME}://{auth}@{domain}:{port}/?{query}"


def parse_client_uri(uri: str) -> ClientURI:
    """Split a connection URI back into its parts.

    Raises
    ------
    ValueError
        When the scheme, secrets or host are missing.
    """

    parts = urlsplit(uri.strip())
    if parts.scheme != URI_SCHEME:
        msg = f"expected a {URI_SCHEME}:// URI, got scheme {parts.scheme!r}"
        raise ValueError(msg)
    query = parse_qs(parts.query)
    obfs_password = query.get("obfs-password", [""])[0]
    if not parts.username or not obfs_password or not parts.hostname:
        msg = "connection URI lacks credentials or host"
        raise ValueError(msg)
    return ClientURI(
        credentials=Credentials(
            obfs_password=obfs_password,
            auth_password=unquote(parts.username),
        ),
        domain=parts.hostname,
        port=parts.port or 443,
        sni=query.get("sni", [parts.hostname])[0],
    )


def publish_client_uri(path: Path, uri: str) -> Path:
    """Write the URI as a single line readable only by its owner."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, URI_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(uri.strip() + "\n")
    os.chmod(path, URI_MODE)
    return path


__all__ = [
    "URI_MODE",
    "ClientURI",
    "build_client_uri",
    "parse_client_uri",
    "publish_client_uri",
]
