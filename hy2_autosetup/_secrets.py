"""Random credential generation for the obfuscation and auth layers."""

from __future__ import annotations

import base64
import secrets

from hy2_autosetup._hy2_models import Credentials

SECRET_BYTES = 16


def generate_secret(nbytes: int = SECRET_BYTES) -> str:
    """Return *nbytes* of CSPRNG output as unpadded URL-safe base64.

    Examples
    --------
    >>> len(generate_secret())
    22
    """

    if nbytes < SECRET_BYTES:
        msg = f"secrets need at least {SECRET_BYTES} bytes of entropy, got {nbytes}"
        raise ValueError(msg)
    raw = secrets.token_bytes(nbytes)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_secret(text: str) -> bytes:
    """Restore the stripped padding and return the raw secret bytes.

    Examples
    --------
    >>> len(decode_secret(generate_secret()))
    16
    """

    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def generate_credentials(nbytes: int = SECRET_BYTES) -> Credentials:
    """Generate independent obfuscation and authentication secrets."""

    auth_password = generate_secret(nbytes)
    obfs_password = generate_secret(nbytes)
    while obfs_password == auth_password:
        obfs_password = generate_secret(nbytes)
    return Credentials(obfs_password=obfs_password, auth_password=auth_password)


__all__ = ["SECRET_BYTES", "decode_secret", "generate_credentials", "generate_secret"]
