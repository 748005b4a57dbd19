"""Drive the external repair tools over the rewritten file.

Three stages run in order, each a separate executable that rewrites the
file in place: control-flow normalization, borrow inference and lifetime
repair.  Every stage is bracketed by a snapshot; a stage that exits
non-zero, times out or cannot be launched has its snapshot restored and
stops the pipeline.
"""

from __future__ import annotations

import contextlib
import enum
import os
import shutil
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Mapping, Optional, Set

from .backup import BackupManager
from .config import RextractConfig
from .errors import (
    BackupError,
    ExtractionInProgress,
    ManifestNotFound,
    StageError,
    ToolNotFound,
)

# Environment variables that override the configured tool locations.
TOOL_ENV_VARS = {
    "normalizer": "REXTRACT_NORMALIZER",
    "borrower": "REXTRACT_BORROWER",
    "repairer": "REXTRACT_REPAIRER",
}

_MAX_DIAGNOSTIC_CHARS = 4000

_IN_FLIGHT: Set[Path] = set()
_IN_FLIGHT_LOCK = threading.Lock()


class Stage(enum.Enum):
    NORMALIZE = "normalize"
    BORROW_INFER = "borrow-infer"
    LIFETIME_REPAIR = "lifetime-repair"

    @property
    def hard(self) -> bool:
        """Failures before lifetime repair leave code whose meaning is untrusted."""
        return self is not Stage.LIFETIME_REPAIR


class PipelineState(enum.Enum):
    IDLE = "idle"
    NORMALIZING = "normalizing"
    BORROW_INFERRING = "borrow-inferring"
    LIFETIME_REPAIRING = "lifetime-repairing"
    DONE = "done"
    FAILED = "failed"


_STAGE_STATE = {
    Stage.NORMALIZE: PipelineState.NORMALIZING,
    Stage.BORROW_INFER: PipelineState.BORROW_INFERRING,
    Stage.LIFETIME_REPAIR: PipelineState.LIFETIME_REPAIRING,
}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageResult:
    stage: Stage
    # None when the tool never produced an exit status (launch failure,
    # timeout, or the stage was aborted before launch).
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def describe(self) -> str:
        if self.timed_out:
            status = "timed out"
        elif self.exit_code is None:
            status = "did not run"
        else:
            status = f"exit {self.exit_code}"
        lines = [f"{self.stage.value}: {status}"]
        for label, stream in (("stdout", self.stdout), ("stderr", self.stderr)):
            text = stream.strip()
            if text:
                if len(text) > _MAX_DIAGNOSTIC_CHARS:
                    text = text[:_MAX_DIAGNOSTIC_CHARS] + "\n..."
                lines.append(f"  {label}:")
                lines.extend(f"    {line}" for line in text.splitlines())
        return "\n".join(lines)


@dataclass(frozen=True)
class StageFailure:
    """A failed stage, as reported to the interaction strategy."""

    stage: Stage
    result: StageResult

    @property
    def hard(self) -> bool:
        return self.stage.hard

    def describe(self) -> str:
        kind = "hard" if self.hard else "soft"
        return f"{kind} failure in {self.result.describe()}"


@dataclass
class PipelineResult:
    state: PipelineState
    failed_stage: Optional[Stage] = None
    results: List[StageResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.DONE

    @property
    def hard(self) -> bool:
        return self.failed_stage is not None and self.failed_stage.hard

    @property
    def failure(self) -> Optional[StageFailure]:
        if self.failed_stage is None:
            return None
        for result in reversed(self.results):
            if result.stage is self.failed_stage:
                return StageFailure(self.failed_stage, result)
        return StageFailure(self.failed_stage, StageResult(self.failed_stage, None))


# ---------------------------------------------------------------------------
# Tool and manifest resolution
# ---------------------------------------------------------------------------


def _resolve_tool(name: str, value: Optional[str]) -> str:
    var = TOOL_ENV_VARS[name]
    if not value:
        raise ToolNotFound(
            f"{name} is not configured: set {var} or tool.rextract.{name}"
        )
    candidate = value if os.sep in value else (shutil.which(value) or value)
    if not os.path.isfile(candidate):
        raise ToolNotFound(f"{name} {value!r} does not exist")
    if not os.access(candidate, os.X_OK):
        raise ToolNotFound(f"{name} {value!r} is not executable")
    return os.path.abspath(candidate)


@dataclass(frozen=True)
class ToolPaths:
    normalizer: str
    borrower: str
    repairer: str

    @classmethod
    def resolve(
        cls, config: RextractConfig, environ: Optional[Mapping[str, str]] = None
    ) -> "ToolPaths":
        """Locate and validate every tool; raise :class:`ToolNotFound` otherwise."""
        env = os.environ if environ is None else environ
        found = {}
        for name, var in TOOL_ENV_VARS.items():
            found[name] = _resolve_tool(name, env.get(var) or getattr(config, name))
        return cls(**found)


def find_manifest(path) -> Path:
    """Return the Cargo.toml of the nearest ancestor directory of *path*."""
    here = Path(path).resolve().parent
    for directory in [here, *here.parents]:
        manifest = directory / "Cargo.toml"
        if manifest.is_file():
            return manifest
    raise ManifestNotFound(f"no Cargo.toml above {path}")


def _text(stream) -> str:
    if stream is None:
        return ""
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return stream


@contextlib.contextmanager
def file_guard(path) -> Iterator[Path]:
    """Hold the one-extraction-per-file guard for *path* while the block runs.

    Raises :class:`ExtractionInProgress` if another extraction holds it.
    """
    target = Path(path).resolve()
    with _IN_FLIGHT_LOCK:
        if target in _IN_FLIGHT:
            raise ExtractionInProgress(
                f"an extraction is already running on {target}"
            )
        _IN_FLIGHT.add(target)
    try:
        yield target
    finally:
        with _IN_FLIGHT_LOCK:
            _IN_FLIGHT.discard(target)


def _kill_group(proc: subprocess.Popen) -> None:
    # The tool leads its own session, so this also reaches anything it forked.
    with contextlib.suppress(ProcessLookupError):
        os.killpg(proc.pid, signal.SIGKILL)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class PipelineCoordinator:
    """Run normalize -> borrow-infer -> lifetime-repair over one file.

    One coordinator handles one extraction.  Only one pipeline may be in
    flight per file across the process.  A caller that already holds
    :func:`file_guard` for the file passes it as *held*; ``run`` and
    ``retry_lifetime_repair`` then work under that guard instead of taking
    their own.
    """

    def __init__(
        self,
        tools: ToolPaths,
        config: Optional[RextractConfig] = None,
        backups: Optional[BackupManager] = None,
        held: Optional[Path] = None,
    ) -> None:
        self.tools = tools
        self.config = config or RextractConfig()
        self.backups = backups or BackupManager(self.config.backup_dir)
        self.held = Path(held).resolve() if held is not None else None
        self.state = PipelineState.IDLE
        self.failed_stage: Optional[Stage] = None
        self.results: List[StageResult] = []
        self.messages: List[str] = []
        self.restores = 0

    @classmethod
    def from_config(
        cls, config: RextractConfig, environ: Optional[Mapping[str, str]] = None
    ) -> "PipelineCoordinator":
        return cls(ToolPaths.resolve(config, environ), config)

    # -- commands -----------------------------------------------------------

    def command(
        self,
        stage: Stage,
        path: Path,
        enclosing_name: str,
        new_name: str,
        strategy: Optional[str] = None,
        manifest: Optional[Path] = None,
    ) -> List[str]:
        if stage is Stage.NORMALIZE:
            tool = self.tools.normalizer
        elif stage is Stage.BORROW_INFER:
            tool = self.tools.borrower
        else:
            return [
                self.tools.repairer,
                "cargo",
                str(path),
                str(manifest),
                new_name,
                strategy or self.config.lifetime_strategy,
            ]
        return [tool, "run", str(path), str(path), enclosing_name, new_name]

    # -- execution ----------------------------------------------------------

    def _run_tool(self, stage: Stage, cmd: List[str]) -> StageResult:
        timeout = self.config.stage_timeout or None
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except OSError as exc:
            return StageResult(stage, None, "", f"cannot launch {cmd[0]}: {exc}")
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_group(proc)
            stdout, stderr = proc.communicate()
            return StageResult(
                stage, None, _text(stdout), _text(stderr), timed_out=True
            )
        finally:
            # Nothing the tool started may outlive its stage.
            _kill_group(proc)
        return StageResult(stage, proc.returncode, stdout, stderr)

    def _fail(self, stage: Stage, result: StageResult) -> None:
        self.state = PipelineState.FAILED
        self.failed_stage = stage
        self.results.append(result)
        self.messages.append(result.describe())

    def _run_stage(self, stage: Stage, path: Path, cmd: List[str]) -> StageResult:
        self.state = _STAGE_STATE[stage]
        try:
            record = self.backups.snapshot(path)
        except BackupError as exc:
            result = StageResult(stage, None, "", str(exc))
            self._fail(stage, result)
            return result
        result = self._run_tool(stage, cmd)
        if result.succeeded:
            self.results.append(result)
            self.messages.append(result.describe())
            self.backups.discard(record)
            return result
        self.backups.restore(record)
        self.restores += 1
        self.backups.discard(record)
        self._fail(stage, result)
        return result

    def _lifetime_stage(self, path: Path, new_name: str, strategy: str) -> StageResult:
        stage = Stage.LIFETIME_REPAIR
        try:
            manifest = find_manifest(path)
        except ManifestNotFound as exc:
            self.state = _STAGE_STATE[stage]
            result = StageResult(stage, None, "", str(exc))
            self._fail(stage, result)
            return result
        cmd = self.command(stage, path, "", new_name, strategy, manifest)
        return self._run_stage(stage, path, cmd)

    def _result(self) -> PipelineResult:
        return PipelineResult(self.state, self.failed_stage, list(self.results))

    def _guard(self, target: Path):
        if self.held is not None and target == self.held:
            return contextlib.nullcontext(target)
        return file_guard(target)

    def run(
        self, path, text: str, enclosing_name: str, new_name: str
    ) -> PipelineResult:
        """Write *text* to *path* and run all three stages over it.

        Stops at the first failing stage, after restoring the file to its
        content from just before that stage.
        """
        if self.state is not PipelineState.IDLE:
            raise StageError(f"pipeline already ran (state {self.state.value})")
        target = Path(path).resolve()
        with self._guard(target):
            target.write_bytes(text.encode("utf-8"))
            for stage in (Stage.NORMALIZE, Stage.BORROW_INFER):
                cmd = self.command(stage, target, enclosing_name, new_name)
                if not self._run_stage(stage, target, cmd).succeeded:
                    return self._result()
            result = self._lifetime_stage(
                target, new_name, self.config.lifetime_strategy
            )
            if result.succeeded:
                self.state = PipelineState.DONE
            return self._result()

    def retry_lifetime_repair(
        self, path, new_name: str, strategy: Optional[str] = None
    ) -> PipelineResult:
        """Re-run only lifetime repair, by default with the escalation strategy."""
        if self.failed_stage is not Stage.LIFETIME_REPAIR:
            raise StageError("lifetime repair can only be retried after it failed")
        target = Path(path).resolve()
        with self._guard(target):
            self.failed_stage = None
            result = self._lifetime_stage(
                target, new_name, strategy or self.config.escalation_strategy
            )
            if result.succeeded:
                self.state = PipelineState.DONE
            return self._result()
