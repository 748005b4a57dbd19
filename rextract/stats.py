"""Cumulative statistics for a single rextract run."""

import difflib
from dataclasses import dataclass, field
from typing import List


@dataclass
class RunStats:
    """Holds cumulative counts for a single rextract run."""

    # Extraction outcomes
    extracted: int = 0
    accepted_partial: int = 0
    reverted: int = 0
    failed: int = 0
    cancelled: int = 0

    # Pipeline activity
    stages_run: int = 0
    stage_failures: int = 0
    restores: int = 0
    lifetime_retries: int = 0

    # LLM call counts
    llm_name_calls: int = 0

    # File and line tracking
    files_edited: List[str] = field(default_factory=list)
    lines_changed: int = 0

    def merge(self, other: "RunStats") -> None:
        """Add all counters from *other* into self (files_edited is not merged)."""
        self.extracted += other.extracted
        self.accepted_partial += other.accepted_partial
        self.reverted += other.reverted
        self.failed += other.failed
        self.cancelled += other.cancelled
        self.stages_run += other.stages_run
        self.stage_failures += other.stage_failures
        self.restores += other.restores
        self.lifetime_retries += other.lifetime_retries
        self.llm_name_calls += other.llm_name_calls

    @property
    def total_extractions(self) -> int:
        return (
            self.extracted
            + self.accepted_partial
            + self.reverted
            + self.failed
            + self.cancelled
        )

    def count_lines_changed(self, original: str, new: str) -> None:
        """Add the number of added/removed lines between *original* and *new*."""
        orig_lines = original.splitlines()
        new_lines = new.splitlines()
        diff = difflib.unified_diff(orig_lines, new_lines)
        for line in diff:
            if line.startswith(("+", "-")) and not line.startswith(("+++", "---")):
                self.lines_changed += 1

    def format_summary(self) -> List[str]:
        """Return a list of lines forming the human-readable run summary."""
        lines = ["--- rextract summary ---"]
        lines.append("extractions:")
        lines.append(f"  completed:           {self.extracted}")
        lines.append(f"  accepted partial:    {self.accepted_partial}")
        lines.append(f"  reverted:            {self.reverted}")
        lines.append(f"  failed:              {self.failed}")
        lines.append(f"  cancelled:           {self.cancelled}")
        lines.append(f"  total:               {self.total_extractions}")
        lines.append("pipeline:")
        lines.append(f"  stages run:          {self.stages_run}")
        lines.append(f"  stage failures:      {self.stage_failures}")
        lines.append(f"  restores:            {self.restores}")
        lines.append(f"  lifetime retries:    {self.lifetime_retries}")
        lines.append(f"LLM name calls: {self.llm_name_calls}")
        if self.files_edited:
            flist = ", ".join(self.files_edited)
            lines.append(f"files edited ({len(self.files_edited)}): {flist}")
        else:
            lines.append("files edited: none")
        lines.append(f"lines changed: {self.lines_changed}")
        return lines
