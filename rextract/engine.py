"""Run one extraction end to end: analyze, confirm, rewrite, repair."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional, Tuple

from .call_site import call_site_edit
from .config import RextractConfig, find_project_root, load_config
from .edits import EditTransaction
from .interaction import Confirmation, Interaction, SoftChoice
from .naming import suggest_name
from .pipeline import (
    PipelineCoordinator,
    PipelineResult,
    Stage,
    ToolPaths,
    file_guard,
)
from .reconciler import reconcile_parameters
from .selection import ExtractionConfig, build_config, validate_identifier
from .semantics import SemanticModel, mutating_method_calls
from .stats import RunStats
from .synthesizer import (
    ImportResolver,
    MappingImportResolver,
    import_edit,
    render_function,
    resolve_insertion,
    signature_types,
)


class Status(enum.Enum):
    SUCCESS = "success"
    # Lifetime repair failed and the borrow-inferred file was kept.
    ACCEPTED_PARTIAL = "accepted-partial"
    # A stage failed and the file was put back as it was before extraction.
    REVERTED = "reverted"
    # A stage failed and the file was left as it was before that stage.
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ExtractionOutcome:
    status: Status
    config: Optional[ExtractionConfig] = None
    messages: List[str] = field(default_factory=list)
    failed_stage: Optional[Stage] = None
    # Rewritten text before any external stage ran; set for dry runs.
    preview: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (Status.SUCCESS, Status.ACCEPTED_PARTIAL)


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------


def apply_confirmation(config: ExtractionConfig, confirmation: Confirmation) -> None:
    """Copy the user's answers onto *config*, validating every name."""
    config.name = validate_identifier(confirmation.name)
    config.visibility_is_public = confirmation.visibility_is_public
    if confirmation.parameter_names is not None:
        config.rename_parameters(confirmation.parameter_names)


def synthesize(
    config: ExtractionConfig, import_resolver: Optional[ImportResolver] = None
) -> Tuple[str, str]:
    """Return ``(new_source, function_text)`` for a confirmed extraction.

    Every edit is computed against ``config.source`` and committed in one
    transaction, so any error leaves nothing applied.
    """
    # Render with the inferred names; the reconciler applies user renames.
    inferred = replace(
        config,
        parameters=[replace(p, name=p.original_name) for p in config.parameters],
    )
    function_text = reconcile_parameters(render_function(inferred), config)

    txn = EditTransaction(config.source)
    txn.add(resolve_insertion(config, function_text))
    txn.add(call_site_edit(config))
    if import_resolver is not None:
        declarations = import_resolver.use_declarations(
            signature_types(config), config.source
        )
        edit = import_edit(config.source, declarations)
        if edit is not None:
            txn.add(edit)
    return txn.commit(), function_text


def write_mutability_dump(path: str, function_text: str, semantics=None) -> None:
    calls = mutating_method_calls(function_text, semantics)
    Path(path).write_text("".join(f"{call}\n" for call in calls), encoding="utf-8")


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


def _revert(path: Path, original: bytes) -> None:
    path.write_bytes(original)


def _count_stages(stats: RunStats, coordinator: PipelineCoordinator) -> None:
    stats.stages_run += len(coordinator.results)
    stats.stage_failures += sum(1 for r in coordinator.results if not r.succeeded)
    stats.restores += coordinator.restores


def _handle_soft_failure(
    result: PipelineResult,
    coordinator: PipelineCoordinator,
    interaction: Interaction,
    target: Path,
    new_name: str,
    stats: RunStats,
    messages: List[str],
) -> Tuple[Status, PipelineResult]:
    can_retry = True
    while not result.succeeded:
        failure = result.failure
        choice = interaction.on_soft_failure(failure, can_retry)
        if choice is SoftChoice.RETRY and can_retry:
            can_retry = False
            stats.lifetime_retries += 1
            messages.append(
                f"{target}: retrying lifetime repair with"
                f" {coordinator.config.escalation_strategy!r}"
            )
            result = coordinator.retry_lifetime_repair(target, new_name)
            continue
        if choice is SoftChoice.ABORT:
            return Status.REVERTED, result
        return Status.ACCEPTED_PARTIAL, result
    return Status.SUCCESS, result


def _run_pipeline(
    coordinator: PipelineCoordinator,
    ext: ExtractionConfig,
    new_source: str,
    original: bytes,
    target: Path,
    interaction: Interaction,
    stats: RunStats,
    messages: List[str],
) -> Tuple[Status, PipelineResult]:
    result = coordinator.run(target, new_source, ext.function.name, ext.name)
    if result.succeeded:
        return Status.SUCCESS, result
    failure = result.failure
    if failure.hard:
        if interaction.on_hard_failure(failure):
            _revert(target, original)
            return Status.REVERTED, result
        return Status.FAILED, result
    status, result = _handle_soft_failure(
        result, coordinator, interaction, target, ext.name, stats, messages
    )
    if status is Status.REVERTED:
        _revert(target, original)
    return status, result


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_extraction(
    path,
    start: int,
    end: int,
    interaction: Interaction,
    config: Optional[RextractConfig] = None,
    stats: Optional[RunStats] = None,
    semantics: Optional[SemanticModel] = None,
    import_resolver: Optional[ImportResolver] = None,
    tools: Optional[ToolPaths] = None,
    dry_run: bool = False,
) -> ExtractionOutcome:
    """Extract ``[start, end)`` (character offsets) of *path* into a new function.

    Selection and synthesis errors are raised before the file is touched.
    Stage failures are resolved through *interaction* and reported in the
    returned outcome.  The file's in-flight guard is held from the first
    read to the last revert or retry, so no other extraction can interleave.
    """
    target = Path(path)
    settings = config or load_config(find_project_root(target))
    stats = stats if stats is not None else RunStats()
    messages: List[str] = []

    with file_guard(target) as held:
        original = target.read_bytes()
        source = original.decode("utf-8")
        ext = build_config(
            source,
            start,
            end,
            path=str(target),
            semantics=semantics,
            default_name=settings.default_name,
        )
        if settings.suggest_names:
            stats.llm_name_calls += 1
            ext.name = suggest_name(ext, settings, messages)

        confirmation = interaction.confirm(ext)
        if confirmation is None:
            stats.cancelled += 1
            messages.append(f"{target}: extraction cancelled")
            return ExtractionOutcome(Status.CANCELLED, ext, messages)
        apply_confirmation(ext, confirmation)

        resolver = import_resolver or MappingImportResolver(settings.imports)
        new_source, function_text = synthesize(ext, resolver)
        if dry_run:
            messages.append(f"{target}: would extract {ext.signature}")
            return ExtractionOutcome(
                Status.SUCCESS, ext, messages, preview=new_source
            )

        coordinator = PipelineCoordinator(
            tools or ToolPaths.resolve(settings), settings, held=held
        )
        if settings.mutability_dump_path:
            write_mutability_dump(
                settings.mutability_dump_path, function_text, semantics
            )
        status, result = _run_pipeline(
            coordinator,
            ext,
            new_source,
            original,
            target,
            interaction,
            stats,
            messages,
        )
        final = target.read_bytes()
    messages.extend(coordinator.messages)
    _count_stages(stats, coordinator)

    if status is Status.SUCCESS:
        stats.extracted += 1
        messages.append(f"{target}: extracted {ext.signature}")
    elif status is Status.ACCEPTED_PARTIAL:
        stats.accepted_partial += 1
        messages.append(f"{target}: kept {ext.name!r} without lifetime repair")
    elif status is Status.REVERTED:
        stats.reverted += 1
        messages.append(f"{target}: reverted extraction of {ext.name!r}")
    else:
        stats.failed += 1
        messages.append(f"{target}: extraction of {ext.name!r} failed")
    if status in (Status.SUCCESS, Status.ACCEPTED_PARTIAL):
        stats.files_edited.append(str(target))
        # Stage output need not be UTF-8.
        stats.count_lines_changed(source, final.decode("utf-8", errors="replace"))
    return ExtractionOutcome(
        status,
        ext,
        messages,
        failed_stage=None if status is Status.SUCCESS else result.failed_stage,
    )
