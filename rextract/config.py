"""Load rextract configuration from pyproject.toml and optional .rextract.toml."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional


@dataclass
class RextractConfig:
    """Runtime configuration for rextract."""

    # External tools.  Each may be overridden by an environment variable
    # (REXTRACT_NORMALIZER, REXTRACT_BORROWER, REXTRACT_REPAIRER); the
    # pipeline resolves and validates them once at construction.
    normalizer: Optional[str] = None
    borrower: Optional[str] = None
    repairer: Optional[str] = None

    # Wall-clock limit in seconds for each external stage.  Expiry is a
    # stage failure and triggers a restore.  0 disables the limit.
    stage_timeout: float = 120.0

    # Repair policy passed to the lifetime-repair stage.
    lifetime_strategy: str = "weakest-bounds-first"
    # Slower policy offered when the default one fails ("cargo mode").
    escalation_strategy: str = "cargo-exhaustive"

    # Directory for per-stage snapshots.  None means the system temp dir.
    backup_dir: Optional[str] = None

    # Name proposed for the new function before the user edits it.
    default_name: str = "extracted"

    # When set, method calls with a mutably borrowed receiver inside the new
    # function are written here (one per line) before the pipeline starts.
    mutability_dump_path: Optional[str] = None

    # Type name -> use path, e.g. {"HashMap": "std::collections::HashMap"}.
    # Consulted when the new signature mentions a type not yet imported.
    imports: Dict[str, str] = field(default_factory=dict)

    # Ask the LLM to propose a name for the new function.
    suggest_names: bool = False
    # LLM provider to use: "anthropic" (default), "moonshot", "openai",
    # "deepseek", or "lmstudio"
    provider: str = "anthropic"
    # LLM model used for name suggestion
    model: str = "claude-sonnet-4-6"
    # Optional base URL override for OpenAI-compatible providers.
    base_url: Optional[str] = None
    # HTTP timeout in seconds for each LLM API call.  A hard wall-clock limit
    # of api_timeout + 30 s is enforced on top of this.
    api_timeout: float = 60.0


def _read_toml(path: Path) -> dict:
    """Read a TOML file; return empty dict if missing or unparseable."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError, UnicodeDecodeError):
        return {}


def _apply(cfg: RextractConfig, d: dict) -> None:
    """Overlay dict values onto cfg, ignoring unknown keys."""
    valid = set(cfg.__dataclass_fields__)
    for key, val in d.items():
        if key in valid:
            setattr(cfg, key, val)


def find_project_root(start: Path) -> Path:
    """Return the nearest ancestor of *start* holding a rextract config file.

    Falls back to *start* itself (or its directory when it is a file).
    """
    here = (start if start.is_dir() else start.parent).resolve()
    for candidate in [here, *here.parents]:
        if (candidate / ".rextract.toml").is_file():
            return candidate
        if (candidate / "pyproject.toml").is_file():
            return candidate
    return here


def load_config(project_root: Optional[Path] = None) -> RextractConfig:
    """Load config from pyproject.toml [tool.rextract], then .rextract.toml."""
    if project_root is None:
        project_root = Path.cwd()
    cfg = RextractConfig()
    pyproject = _read_toml(project_root / "pyproject.toml")
    _apply(cfg, pyproject.get("tool", {}).get("rextract", {}))
    local = _read_toml(project_root / ".rextract.toml")
    _apply(cfg, local)
    return cfg
