"""Shared test fixtures and factories."""

import sys
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from nimlink.config.models import NimlinkConfig
from nimlink.config.paths import ENV_VAR, get_nimlink_home
from nimlink.suggest.projects import ProjectFile
from nimlink.suggest.supervisor import SuggestSupervisor

FIXTURES_DIR = Path(__file__).parent / "fixtures"

# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path: Path) -> Path:
    """Point NIMLINK_HOME at a temp dir so tests never touch ~/.nimlink."""
    home = tmp_path / "nimlink-home"
    monkeypatch.setenv(ENV_VAR, str(home))
    monkeypatch.delenv("NIMLINK_NIMSUGGEST", raising=False)
    monkeypatch.delenv("NIMLINK_LOG_LEVEL", raising=False)
    get_nimlink_home.cache_clear()
    yield home
    get_nimlink_home.cache_clear()


@pytest.fixture
def minimal_config() -> NimlinkConfig:
    """Configuration with every default."""
    return NimlinkConfig()


@pytest.fixture
def config_toml_content() -> str:
    """Valid TOML config content."""
    return """
projects = ["/work/app/app.nim"]

[suggest]
executable = "/opt/nim/bin/nimsuggest"
idle_timeout = 120
call_timeout = 2.5
refresh_on_check = true

[logging]
level = "DEBUG"
"""


@pytest.fixture
def config_file(tmp_path: Path, config_toml_content: str) -> Path:
    """Create a temporary config file."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(config_toml_content)
    return config_path


# =============================================================================
# Daemon Fixtures
# =============================================================================


@pytest.fixture
def fake_daemon_command() -> list[str]:
    """Command line that starts the fake nimsuggest fixture."""
    return [sys.executable, str(FIXTURES_DIR / "fake_nimsuggest.py")]


def make_project(directory: Path, name: str = "main.nim") -> ProjectFile:
    """Create a Nim source file and return it as a project."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("echo 1\n")
    return ProjectFile.from_path(path)


@pytest.fixture
def project(tmp_path: Path) -> ProjectFile:
    return make_project(tmp_path / "app")


@pytest.fixture
async def supervisor(
    fake_daemon_command: list[str],
) -> AsyncGenerator[SuggestSupervisor, None]:
    """Supervisor over the fake daemon, without the idle sweeper."""
    sup = SuggestSupervisor(fake_daemon_command, idle_timeout=0)
    yield sup
    await sup.close_all()


# =============================================================================
# CLI Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1"})
