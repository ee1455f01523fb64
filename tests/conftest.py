"""Shared pytest fixtures and utilities for StockFlow tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from stockflow import core_logic, data_manager  # noqa: E402
from stockflow.setup_excel import build_seed_data  # noqa: E402

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n\n"
    "[Analysis]\n"
    "ApiKeyEnv = {api_key_env}\n"
    "Model = test-model\n"
    "Temperature = 0.2\n"
    "MaxTokens = 256\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    data_file: Path
    store_name: str
    api_key_env: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that writes config files into fresh folders."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        api_key_env: str = "STOCKFLOW_TEST_API_KEY",
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        data_file = bundle_dir / "state.xlsx"
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file.name if make_relative else str(data_file),
                store_name=store_name,
                api_key_env=api_key_env,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            data_file=data_file,
            store_name=store_name,
            api_key_env=api_key_env,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    return config_factory()


@pytest.fixture
def runtime_context(config_bundle: ConfigBundle) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    return core_logic.load_runtime_context(config_bundle.config_path, now=FIXED_NOW)


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "state.xlsx",
        store_name="Test Store",
        api_key_env="STOCKFLOW_TEST_API_KEY",
        analysis_model="test-model",
        analysis_temperature=0.2,
        analysis_max_tokens=256,
    )


@pytest.fixture
def seed_data() -> data_manager.AppData:
    """The seed dataset dated relative to :data:`FIXED_NOW`."""

    return build_seed_data(FIXED_NOW)


@pytest.fixture
def store(seed_data: data_manager.AppData, tmp_path: Path) -> core_logic.LedgerStore:
    """A store holding the seed dataset and saving into a temp folder."""

    return core_logic.LedgerStore(seed_data, tmp_path / "store" / "state.xlsx")


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="stockflow", description="StockFlow CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")
