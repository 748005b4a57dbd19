"""Decisions the user makes during an extraction.

The engine never prompts directly: it asks an :class:`Interaction` passed
in by the caller.  The CLI and the tests use :class:`ScriptedInteraction`,
which answers from fixed values.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence

from .pipeline import StageFailure
from .selection import ExtractionConfig


class SoftChoice(enum.Enum):
    # Keep the borrow-inferred file as is.
    ACCEPT = "accept"
    # Re-run lifetime repair with the escalation strategy.
    RETRY = "retry"
    # Restore the file to its content from before the extraction.
    ABORT = "abort"


@dataclass(frozen=True)
class Confirmation:
    """The user's answer to the extraction dialog."""

    name: str
    visibility_is_public: bool = False
    # Final names for the selected non-self parameters, in order.  None
    # keeps the inferred names.
    parameter_names: Optional[Sequence[str]] = None


class Interaction(Protocol):
    def confirm(self, config: ExtractionConfig) -> Optional[Confirmation]:
        """Show the proposed extraction; return None to cancel."""

    def on_hard_failure(self, failure: StageFailure) -> bool:
        """Return True to revert the whole extraction."""

    def on_soft_failure(self, failure: StageFailure, can_retry: bool) -> SoftChoice:
        """Decide what to do after lifetime repair failed."""


class ScriptedInteraction:
    """Answer every question from values fixed at construction.

    ``soft_choices`` is consumed in order, one per soft failure; once it is
    exhausted the answer is ACCEPT.  Every question asked is recorded so
    tests can inspect the exchange.
    """

    def __init__(
        self,
        name: Optional[str] = None,
        public: bool = False,
        parameter_renames: Optional[dict] = None,
        revert_on_hard_failure: bool = True,
        soft_choices: Iterable[SoftChoice] = (SoftChoice.ACCEPT,),
        cancel: bool = False,
    ) -> None:
        self.name = name
        self.public = public
        self.parameter_renames = dict(parameter_renames or {})
        self.revert_on_hard_failure = revert_on_hard_failure
        self._soft_choices = list(soft_choices)
        self.cancel = cancel
        self.confirmed: List[ExtractionConfig] = []
        self.hard_failures: List[StageFailure] = []
        self.soft_failures: List[StageFailure] = []

    def confirm(self, config: ExtractionConfig) -> Optional[Confirmation]:
        self.confirmed.append(config)
        if self.cancel:
            return None
        names = None
        if self.parameter_renames:
            names = [
                self.parameter_renames.get(p.name, p.name)
                for p in config.selected_parameters
                if not p.is_self
            ]
        return Confirmation(
            name=self.name or config.name,
            visibility_is_public=self.public,
            parameter_names=names,
        )

    def on_hard_failure(self, failure: StageFailure) -> bool:
        self.hard_failures.append(failure)
        return self.revert_on_hard_failure

    def on_soft_failure(self, failure: StageFailure, can_retry: bool) -> SoftChoice:
        self.soft_failures.append(failure)
        choice = self._soft_choices.pop(0) if self._soft_choices else SoftChoice.ACCEPT
        if choice is SoftChoice.RETRY and not can_retry:
            return SoftChoice.ACCEPT
        return choice
