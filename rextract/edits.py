"""Atomic text edits over a single source string."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from .errors import EditConflict


@dataclass(frozen=True)
class Edit:
    start: int
    end: int
    text: str


class EditTransaction:
    """Collect edits against *source* and apply them all at once.

    Offsets always refer to the original source.  Nothing is applied until
    :meth:`commit`; a transaction that raises before or during commit leaves
    no trace.
    """

    def __init__(self, source: str) -> None:
        self._source = source
        self._edits: List[tuple] = []
        self._committed = False

    @property
    def edits(self) -> List[Edit]:
        return [edit for _seq, edit in self._edits]

    def replace(self, start: int, end: int, text: str) -> None:
        if self._committed:
            raise EditConflict("transaction already committed")
        if not 0 <= start <= end <= len(self._source):
            raise EditConflict(
                f"edit [{start}, {end}) outside source of length {len(self._source)}"
            )
        self._edits.append((len(self._edits), Edit(start, end, text)))

    def insert(self, offset: int, text: str) -> None:
        self.replace(offset, offset, text)

    def add(self, edit: Edit) -> None:
        self.replace(edit.start, edit.end, edit.text)

    def commit(self) -> str:
        """Validate and apply every edit bottom-up; return the new source."""
        if self._committed:
            raise EditConflict("transaction already committed")
        ordered = sorted(
            self._edits, key=lambda item: (item[1].start, item[1].end, item[0])
        )
        for (_a, first), (_b, second) in zip(ordered, ordered[1:]):
            if first.end > second.start:
                raise EditConflict(
                    f"overlapping edits [{first.start}, {first.end}) and"
                    f" [{second.start}, {second.end})"
                )
        result = self._source
        for _seq, edit in reversed(ordered):
            result = result[: edit.start] + edit.text + result[edit.end :]
        self._committed = True
        return result
