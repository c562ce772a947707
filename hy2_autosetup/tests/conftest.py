from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from _fakes import FakeRunner  # imported after sys.path mutation
from hy2_autosetup._hy2_models import SetupConfig  # imported after sys.path mutation


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def config(tmp_path: Path) -> SetupConfig:
    return SetupConfig(
        domain="vpn.example.com",
        email="ops@example.com",
        config_dir=tmp_path / "hysteria",
        binary_fallback=tmp_path / "missing" / "hysteria",
        service_user=None,
        readiness_timeout=5.0,
        platform_warning_delay=0.0,
    )
