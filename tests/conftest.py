"""Shared fixtures: fake repair tools and a throwaway Cargo project."""

from __future__ import annotations

import pytest

from rextract.config import RextractConfig
from rextract.pipeline import TOOL_ENV_VARS

# Tool invocations:
#   normalizer run <file> <file> <enclosing> <new>
#   borrower   run <file> <file> <enclosing> <new>
#   repairer   cargo <file> <manifest> <new> <strategy>
OK_NORMALIZER = 'echo "normalized $4 -> $5"; echo "// normalized" >> "$2"'
OK_BORROWER = 'echo "// borrowed" >> "$2"'
OK_REPAIRER = 'echo "// repaired with $5" >> "$2"'


@pytest.fixture(autouse=True)
def _clear_tool_env(monkeypatch):
    for var in TOOL_ENV_VARS.values():
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_tool(tmp_path):
    """Return a factory writing an executable shell script into tmp_path."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def _make(name: str, body: str) -> str:
        path = bin_dir / name
        path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        path.chmod(0o755)
        return str(path)

    return _make


@pytest.fixture
def crate(tmp_path):
    """A directory holding a Cargo.toml, for lifetime repair to find."""
    root = tmp_path / "crate"
    (root / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text(
        '[package]\nname = "demo"\nversion = "0.1.0"\n', encoding="utf-8"
    )
    return root


@pytest.fixture
def tool_config(tmp_path, make_tool):
    """Return a factory for a config whose three tools run the given scripts."""

    def _config(
        normalizer: str = OK_NORMALIZER,
        borrower: str = OK_BORROWER,
        repairer: str = OK_REPAIRER,
        **overrides,
    ) -> RextractConfig:
        cfg = RextractConfig(
            normalizer=make_tool("normalizer", normalizer),
            borrower=make_tool("borrower", borrower),
            repairer=make_tool("repairer", repairer),
            backup_dir=str(tmp_path / "backups"),
        )
        for key, value in overrides.items():
            setattr(cfg, key, value)
        return cfg

    return _config


@pytest.fixture
def tools_in_env(make_tool, monkeypatch):
    """Return a function installing the three tools through the environment."""

    def _install(
        normalizer: str = OK_NORMALIZER,
        borrower: str = OK_BORROWER,
        repairer: str = OK_REPAIRER,
    ) -> None:
        for name, body in (
            ("normalizer", normalizer),
            ("borrower", borrower),
            ("repairer", repairer),
        ):
            monkeypatch.setenv(TOOL_ENV_VARS[name], make_tool(name, body))

    return _install
