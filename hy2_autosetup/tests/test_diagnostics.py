"""Tests for the read-only post-install checks."""

from __future__ import annotations

import dataclasses
import socket
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from _fakes import FakeRunner, failed  # imported after sys.path mutation
from hy2_autosetup._config_render import (  # imported after sys.path mutation
    render_server_config,
    write_server_config,
)
from hy2_autosetup._diagnostics import (  # imported after sys.path mutation
    check_config_document,
    check_dns,
    check_listening,
    check_reachability,
    count_log_errors,
    detect_public_ip,
    run_diagnostics,
    scan_service_logs,
)
from hy2_autosetup._hy2_models import Credentials, SetupConfig  # imported after sys.path mutation
from hy2_autosetup._uri import build_client_uri, publish_client_uri  # imported after sys.path mutation

SERVER_IP = "203.0.113.7"


def _install(config: SetupConfig, credentials: Credentials) -> None:
    write_server_config(
        config.config_path,
        render_server_config(config, credentials),
        FakeRunner(),
        owner=None,
    )


def test_dns_matches_public_address(runner: FakeRunner, config: SetupConfig) -> None:
    runner.on("curl", stdout=f"{SERVER_IP}\n")
    runner.on("dig", stdout=f"{SERVER_IP}\n")

    result = check_dns(config, runner)

    assert result.status == "ok"
    assert ("dig", "+short", "vpn.example.com", "A") in runner.calls


def test_dns_mismatch_is_a_warning(runner: FakeRunner, config: SetupConfig) -> None:
    runner.on("curl", stdout=SERVER_IP)
    runner.on("dig", stdout="edge.example.net.\n198.51.100.9\n")

    result = check_dns(config, runner)

    assert result.status == "warn"
    assert "198.51.100.9" in result.detail
    assert SERVER_IP in result.detail


def test_dns_unresolved_domain_is_a_warning(runner: FakeRunner, config: SetupConfig) -> None:
    runner.on("curl", stdout=SERVER_IP)
    runner.on("dig", stdout="")

    result = check_dns(config, runner)

    assert result.status == "warn"
    assert "does not resolve" in result.detail


def test_dns_without_domain_is_skipped(runner: FakeRunner, config: SetupConfig) -> None:
    result = check_dns(dataclasses.replace(config, domain=""), runner)

    assert result.status == "skip"
    assert runner.calls == []


def test_public_ip_falls_back_to_second_echo_service(runner: FakeRunner) -> None:
    runner.on("curl", "-s", "-4", "--max-time", "10", "ifconfig.me", result=failed())
    runner.on("curl", "-s", "-4", "--max-time", "10", "icanhazip.com", stdout=f"{SERVER_IP}\n")

    assert detect_public_ip(runner) == SERVER_IP


def test_public_ip_rejects_non_address_output(runner: FakeRunner) -> None:
    runner.on("curl", stdout="<html>rate limited</html>")

    assert detect_public_ip(runner) is None


def test_udp_listener_found(runner: FakeRunner, config: SetupConfig) -> None:
    runner.on(
        "ss",
        "-H",
        "-lnu",
        stdout="UNCONN 0      0                *:443              *:*\n",
    )

    result = check_listening(config, runner, "udp")

    assert result.status == "ok"


def test_udp_listener_missing_fails(runner: FakeRunner, config: SetupConfig) -> None:
    runner.on(
        "ss",
        "-H",
        "-lnu",
        stdout="UNCONN 0      0          0.0.0.0:4433       0.0.0.0:*\n",
    )

    result = check_listening(config, runner, "udp")

    assert result.status == "fail"


def test_tcp_listener_skipped_without_masquerade_listener(
    runner: FakeRunner,
    config: SetupConfig,
) -> None:
    result = check_listening(config, runner, "tcp")

    assert result.status == "skip"
    assert runner.calls == []


def test_tcp_listener_missing_is_a_warning(runner: FakeRunner, config: SetupConfig) -> None:
    runner.on("ss", "-H", "-lnt", stdout="LISTEN 0      4096       0.0.0.0:22       0.0.0.0:*\n")

    result = check_listening(
        dataclasses.replace(config, masquerade_listen_https=True), runner, "tcp"
    )

    assert result.status == "warn"


def test_reachability_skipped_by_default(config: SetupConfig) -> None:
    def connect(*_args: object, **_kwargs: object) -> socket.socket:
        raise AssertionError("connect should not be called")

    assert check_reachability(config, connect).status == "skip"


def test_reachability_failure_is_a_warning(config: SetupConfig) -> None:
    def connect(*_args: object, **_kwargs: object) -> socket.socket:
        raise ConnectionRefusedError(111, "Connection refused")

    result = check_reachability(
        dataclasses.replace(config, masquerade_listen_https=True), connect
    )

    assert result.status == "warn"
    assert "vpn.example.com:443/tcp" in result.detail


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("", 0),
        ("server up and running\n", 0),
        ("ERROR acme: timeout\nfailed to bind 0.0.0.0:443\nPanic: oops\n", 3),
        ("2 errors during handshake\ngoroutine panicked\nfatally closed\n", 3),
        ("handshake FAILURE\nINFO closed\n", 1),
    ],
)
def test_count_log_errors(text: str, expected: int) -> None:
    assert count_log_errors(text) == expected


def test_scan_service_logs_reports_error_count(runner: FakeRunner, config: SetupConfig) -> None:
    runner.on("journalctl", stdout="ERROR acme: challenge failed\nINFO retrying\n")

    result = scan_service_logs(config, runner)

    assert result.status == "warn"
    assert result.detail.startswith("1 error line(s) since 10 min ago")


def test_run_diagnostics_stops_without_binary(runner: FakeRunner, config: SetupConfig) -> None:
    report = run_diagnostics(config, runner, which=lambda _name: None)

    assert [result.name for result in report.results] == ["binary"]
    assert report.failed is True
    assert runner.calls == []


def test_config_document_agrees_with_client_uri(config: SetupConfig) -> None:
    credentials = Credentials(obfs_password="obfs-secret", auth_password="auth-secret")
    _install(config, credentials)
    publish_client_uri(config.uri_path, build_client_uri(credentials, config.domain))

    result = check_config_document(config)

    assert result.status == "ok"
    assert "acme" in result.detail


def test_config_document_domain_match_ignores_case(config: SetupConfig) -> None:
    mixed = dataclasses.replace(config, domain="VPN.Example.com")
    credentials = Credentials(obfs_password="obfs-secret", auth_password="auth-secret")
    _install(mixed, credentials)
    publish_client_uri(mixed.uri_path, build_client_uri(credentials, mixed.domain))

    result = check_config_document(mixed)

    assert result.status == "ok"


def test_config_document_without_uri_is_a_warning(config: SetupConfig) -> None:
    _install(config, Credentials(obfs_password="o", auth_password="a"))

    result = check_config_document(config)

    assert result.status == "warn"
    assert "no client URI" in result.detail


def test_config_document_with_stale_uri_is_a_warning(config: SetupConfig) -> None:
    _install(config, Credentials(obfs_password="new-obfs", auth_password="new-auth"))
    stale = Credentials(obfs_password="old-obfs", auth_password="old-auth")
    publish_client_uri(config.uri_path, build_client_uri(stale, config.domain))

    result = check_config_document(config)

    assert result.status == "warn"
    assert "does not match" in result.detail


def test_missing_config_document_fails(config: SetupConfig) -> None:
    result = check_config_document(config)

    assert result.status == "fail"
