"""Rextract-specific exceptions."""


class RextractError(Exception):
    """Base class for every error raised by rextract."""


# ---------------------------------------------------------------------------
# Selection errors: raised before anything is written
# ---------------------------------------------------------------------------


class SelectionError(RextractError):
    """The selection cannot be turned into an extraction."""


class NoEnclosingFunction(SelectionError):
    """The range is not fully contained in a single function body."""


class EmptySelection(SelectionError):
    """No syntax element lies within the range."""


class InvalidInsertionPoint(SelectionError):
    """No valid place exists to insert the new function."""


# ---------------------------------------------------------------------------
# Synthesis errors: the edit transaction is discarded in full
# ---------------------------------------------------------------------------


class SynthesisError(RextractError):
    """Raised while building the edit transaction; the file is unchanged."""


class InvalidIdentifier(SynthesisError):
    """A function or parameter name is not a valid Rust identifier."""


class RenameCollision(SynthesisError):
    """A renamed parameter clashes with a name already bound in the new function."""


class EditConflict(SynthesisError):
    """Two edits in one transaction overlap or fall outside the source."""


# ---------------------------------------------------------------------------
# Stage errors: raised around the external tool pipeline
# ---------------------------------------------------------------------------


class StageError(RextractError):
    """Raised by the pipeline coordinator or its backup manager."""


class BackupError(StageError):
    """A snapshot could not be taken or a restore did not reproduce it."""


class ToolNotFound(StageError):
    """A configured external tool is missing or not executable."""


class ManifestNotFound(StageError):
    """No Cargo.toml exists in any ancestor directory of the target file."""


class ExtractionInProgress(StageError):
    """A pipeline is already running for the same file."""


class RextractAPIError(RextractError):
    """Raised when an LLM API call fails.

    Name suggestion catches it and falls back to the configured default
    name; the CLI prints it when it escapes.
    """
