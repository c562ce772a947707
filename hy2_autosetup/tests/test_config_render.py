"""Tests for rendering and persisting the server configuration."""

from __future__ import annotations

import dataclasses
import stat
import sys
from pathlib import Path

import pytest
import yaml

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from _fakes import FakeRunner, failed  # imported after sys.path mutation
from hy2_autosetup._config_render import (  # imported after sys.path mutation
    build_server_config,
    certificate_mode,
    configured_credentials,
    configured_domain,
    load_server_config,
    render_server_config,
    write_server_config,
)
from hy2_autosetup._hy2_errors import CommandError, ConfigError  # imported after sys.path mutation
from hy2_autosetup._hy2_models import Credentials, SetupConfig  # imported after sys.path mutation

CREDENTIALS = Credentials(obfs_password="obfs-secret", auth_password="auth-secret")


def test_acme_document_shape(config: SetupConfig) -> None:
    document = build_server_config(config, CREDENTIALS)

    assert list(document) == ["listen", "acme", "obfs", "auth", "masquerade"]
    assert document["listen"] == ":443"
    assert document["acme"] == {
        "domains": ["vpn.example.com"],
        "email": "ops@example.com",
    }
    assert document["obfs"] == {
        "type": "salamander",
        "salamander": {"password": "obfs-secret"},
    }
    assert document["auth"] == {"type": "password", "password": "auth-secret"}
    assert document["masquerade"] == {
        "type": "proxy",
        "proxy": {"url": "https://www.google.com", "rewriteHost": True},
    }


def test_static_tls_when_email_missing(config: SetupConfig) -> None:
    static = dataclasses.replace(config, email="")

    document = build_server_config(static, CREDENTIALS)

    assert "acme" not in document
    assert document["tls"] == {
        "cert": str(static.config_dir / "cert.pem"),
        "key": str(static.config_dir / "key.pem"),
    }
    assert certificate_mode(document) == "tls"


def test_masquerade_listeners_are_optional(config: SetupConfig) -> None:
    listening = dataclasses.replace(
        config,
        masquerade_listen_https=True,
        masquerade_url="https://news.example.org",
    )

    masquerade = build_server_config(listening, CREDENTIALS)["masquerade"]

    assert masquerade["proxy"]["url"] == "https://news.example.org"
    assert masquerade["listenHTTP"] == ":80"
    assert masquerade["listenHTTPS"] == ":443"


def test_rendered_yaml_parses_back(config: SetupConfig) -> None:
    text = render_server_config(config, CREDENTIALS)

    assert text.startswith("# Generated by hy2-autosetup")
    assert yaml.safe_load(text) == build_server_config(config, CREDENTIALS)


def test_write_server_config_sets_mode_and_owner(
    runner: FakeRunner,
    config: SetupConfig,
) -> None:
    path = config.config_path

    write_server_config(path, render_server_config(config, CREDENTIALS), runner)

    assert stat.S_IMODE(path.stat().st_mode) == 0o640
    assert runner.calls == [("chown", "hysteria:hysteria", str(path))]
    assert not (path.parent / "config.yaml.tmp").exists()
    document = load_server_config(path)
    assert configured_domain(document) == "vpn.example.com"
    assert configured_credentials(document) == CREDENTIALS


def test_write_server_config_overwrites_previous_run(
    runner: FakeRunner,
    config: SetupConfig,
) -> None:
    path = config.config_path
    write_server_config(path, "stale: true\n", runner, owner=None)

    write_server_config(path, render_server_config(config, CREDENTIALS), runner, owner=None)

    assert "stale" not in path.read_text(encoding="utf-8")
    assert runner.calls == []


def test_failed_chown_is_fatal(runner: FakeRunner, config: SetupConfig) -> None:
    runner.on("chown", result=failed("chown: invalid user: 'hysteria:hysteria'"))

    with pytest.raises(CommandError, match="invalid user"):
        write_server_config(config.config_path, "listen: :443\n", runner)


def test_load_missing_config(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_server_config(tmp_path / "config.yaml")


def test_load_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="must be a mapping"):
        load_server_config(path)


@pytest.mark.parametrize(
    "document",
    [
        {"listen": ":443"},
        {"acme": {"domains": ["a"]}, "tls": {"cert": "c", "key": "k"}},
    ],
)
def test_certificate_mode_requires_exactly_one_block(document: dict[str, object]) -> None:
    with pytest.raises(ConfigError, match="exactly one of acme, tls"):
        certificate_mode(document)


def test_configured_credentials_requires_secrets() -> None:
    with pytest.raises(ConfigError, match="lacks obfuscation or auth secrets"):
        configured_credentials({"auth": {"type": "password", "password": "x"}})
