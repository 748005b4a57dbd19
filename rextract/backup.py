"""Per-stage file snapshots with verified restore."""

from __future__ import annotations

import hashlib
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from .errors import BackupError


@dataclass(frozen=True)
class BackupRecord:
    original_path: Path
    snapshot_path: Path


class BackupManager:
    """Snapshot a file before a mutating stage and restore it on failure.

    Holds at most one live snapshot per original path: a new snapshot of the
    same file overwrites the previous one.  Snapshots are process-local
    temporary files and are deleted by :meth:`discard`.
    """

    def __init__(self, directory: Optional[str] = None) -> None:
        self.directory = Path(directory) if directory else Path(tempfile.gettempdir())
        self._live: Dict[Path, BackupRecord] = {}

    def _snapshot_path(self, original: Path) -> Path:
        digest = hashlib.sha1(str(original).encode("utf-8")).hexdigest()[:12]
        return self.directory / f"{original.name}-{digest}-rextract.bk"

    def snapshot(self, path) -> BackupRecord:
        """Copy *path* aside; return only once the copy is complete."""
        original = Path(path).resolve()
        target = self._snapshot_path(original)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(original, target)
        except OSError as exc:
            raise BackupError(f"cannot snapshot {original}: {exc}") from exc
        record = BackupRecord(original, target)
        self._live[original] = record
        return record

    def restore(self, record: BackupRecord) -> None:
        """Overwrite the original with the snapshot and verify the bytes match."""
        try:
            expected = record.snapshot_path.read_bytes()
            with open(record.original_path, "wb") as f:
                f.write(expected)
                f.flush()
                os.fsync(f.fileno())
            actual = record.original_path.read_bytes()
        except OSError as exc:
            raise BackupError(
                f"cannot restore {record.original_path} from"
                f" {record.snapshot_path}: {exc}"
            ) from exc
        if actual != expected:
            raise BackupError(
                f"restored {record.original_path} does not match its snapshot"
            )

    def discard(self, record: BackupRecord) -> None:
        """Delete the snapshot; a no-op if it is already gone."""
        if self._live.get(record.original_path) == record:
            del self._live[record.original_path]
        try:
            record.snapshot_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise BackupError(f"cannot remove {record.snapshot_path}: {exc}") from exc

    def live(self, path) -> Optional[BackupRecord]:
        """Return the current snapshot of *path*, if any."""
        return self._live.get(Path(path).resolve())
