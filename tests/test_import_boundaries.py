"""Import-boundary tests: every module must import on its own."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import pytest

# Each entry is imported first in a fresh interpreter.
MODULES = [
    "switchboard",
    "switchboard.config",
    "switchboard.errors",
    "switchboard.metrics",
    "switchboard.service",
    "switchboard.stats",
    "switchboard.store",
    "switchboard.cli",
    "adapters",
    "adapters.base",
    "adapters.router",
]

# Orders that previously resolved a half-initialized module.
IMPORT_SEQUENCES = [
    ["switchboard.store", "switchboard.config"],
    ["switchboard.config", "adapters.router"],
    ["switchboard.stats", "switchboard.service"],
]


def _run_python(code: str) -> subprocess.CompletedProcess[str]:
    project_root = Path(__file__).resolve().parents[1]
    return subprocess.run(
        [sys.executable, "-c", code],
        cwd=project_root,
        capture_output=True,
        text=True,
    )


@pytest.mark.parametrize("module_name", MODULES)
def test_module_imports_first(module_name: str) -> None:
    """A module should import without another module loaded ahead of it."""
    proc = _run_python(f"import importlib; importlib.import_module({module_name!r})")
    assert proc.returncode == 0, (
        f"{module_name} failed to import in a fresh interpreter.\n"
        f"stdout:\n{proc.stdout}\n"
        f"stderr:\n{proc.stderr}"
    )


@pytest.mark.parametrize("modules", IMPORT_SEQUENCES)
def test_import_sequences(modules: list[str]) -> None:
    """Mixed import orders should resolve without circular import errors."""
    proc = _run_python("; ".join(f"import {name}" for name in modules))
    assert proc.returncode == 0, f"stderr:\n{proc.stderr}"


def test_config_exposes_router_config() -> None:
    """Settings helpers and the registry model are reachable from switchboard.config."""
    proc = _run_python(
        "from switchboard.config import RouterConfig, get_settings\n"
        "from adapters.base import RouterConfig as Base\n"
        "assert RouterConfig is Base\n"
        "assert get_settings().store_url"
    )
    assert proc.returncode == 0, f"stderr:\n{proc.stderr}"
