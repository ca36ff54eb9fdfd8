from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path

import pytest


_ISOLATED_ENV_VARS = (
    "PHOENIXTOOL_ARTIFACTS_ROOT",
    "PHOENIXTOOL_IN_DOCKER",
    "PHOENIX_MARKET_CLUSTER",
)

_PREVIOUS_CWD: Path | None = None
_PREVIOUS_ENV: dict[str, str | None] = {}
_WORKSPACE_ROOT: Path | None = None


def pytest_configure(config: pytest.Config) -> None:
    """Run every test from a throwaway workspace with isolated artifacts."""
    global _PREVIOUS_CWD, _PREVIOUS_ENV, _WORKSPACE_ROOT
    repo_root = Path(__file__).resolve().parent.parent
    workspace_root = repo_root / ".tmp" / "test-workspaces" / uuid.uuid4().hex
    artifacts_root = workspace_root / "artifacts"
    artifacts_root.mkdir(parents=True, exist_ok=True)

    _PREVIOUS_CWD = Path.cwd()
    _PREVIOUS_ENV = {key: os.environ.get(key) for key in _ISOLATED_ENV_VARS}
    _WORKSPACE_ROOT = workspace_root

    os.environ["PHOENIXTOOL_ARTIFACTS_ROOT"] = str(artifacts_root)
    os.environ.pop("PHOENIXTOOL_IN_DOCKER", None)
    os.environ.pop("PHOENIX_MARKET_CLUSTER", None)
    # No stray .env is picked up by the CLI entrypoints.
    os.chdir(workspace_root)


def pytest_unconfigure(config: pytest.Config) -> None:
    if _PREVIOUS_CWD is not None:
        os.chdir(_PREVIOUS_CWD)
    for key, value in _PREVIOUS_ENV.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
    if _WORKSPACE_ROOT is not None:
        shutil.rmtree(_WORKSPACE_ROOT, ignore_errors=True)
