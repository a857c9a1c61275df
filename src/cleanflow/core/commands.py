"""Command pattern for undoable draft edits.

All changes to a session's draft buffer go through a Command so that the
undo/redo stack stays consistent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cleanflow.core.edit_session import DraftBuffer


class Command(ABC):
    """Abstract base for all undoable commands."""

    @abstractmethod
    def execute(self) -> None: ...

    @abstractmethod
    def undo(self) -> None: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    def absorb(self, other: "Command") -> bool:
        """Fold *other* (already executed) into this command. False if not possible."""
        return False

    def seal(self) -> None:
        """Stop this command from absorbing later ones."""

    @property
    def row_ids(self) -> frozenset[str]:
        """Rows whose drafts this command touches."""
        return frozenset()


class EditCellCommand(Command):
    """Set the draft value of one cell.

    The previous draft (or its absence) is captured when the command is built so
    that undo restores exactly what was there, not the loaded value.
    """

    def __init__(
        self,
        drafts: "DraftBuffer",
        row_id: str,
        column: str,
        new_value: Any,
        baseline_value: Any,
        typing: bool = False,
    ) -> None:
        self._drafts = drafts
        self._row_id = row_id
        self._column = column
        self._new_value = new_value
        self._baseline_value = baseline_value
        self._typing = typing
        self._had_draft, self._old_value = drafts.lookup(row_id, column)

    def execute(self) -> None:
        self._drafts.set(self._row_id, self._column, self._new_value, self._baseline_value)

    def undo(self) -> None:
        if self._had_draft:
            self._drafts.set(self._row_id, self._column, self._old_value, self._baseline_value)
        else:
            self._drafts.discard(self._row_id, self._column)

    def absorb(self, other: Command) -> bool:
        # Consecutive keystrokes in one active cell form a single undo step
        if not (self._typing and isinstance(other, EditCellCommand) and other._typing):
            return False
        if (other._row_id, other._column) != (self._row_id, self._column):
            return False
        self._new_value = other._new_value
        return True

    def seal(self) -> None:
        self._typing = False

    @property
    def row_id(self) -> str:
        return self._row_id

    @property
    def row_ids(self) -> frozenset[str]:
        return frozenset((self._row_id,))

    @property
    def column(self) -> str:
        return self._column

    @property
    def description(self) -> str:
        old = self._old_value if self._had_draft else self._baseline_value
        return f"Edit «{self._column}»[{self._row_id}]: {old!r} → {self._new_value!r}"


class RevertCellCommand(EditCellCommand):
    """Drop a cell's draft so it shows the loaded value again."""

    def __init__(
        self, drafts: "DraftBuffer", row_id: str, column: str, baseline_value: Any
    ) -> None:
        super().__init__(drafts, row_id, column, baseline_value, baseline_value)

    @property
    def description(self) -> str:
        return f"Revert «{self._column}»[{self._row_id}]"


class BulkEditCommand(Command):
    """Composite command wrapping several cell edits (e.g. accepted fix suggestions)."""

    def __init__(self, commands: list[EditCellCommand], label: str = "Bulk edit") -> None:
        self._commands = commands
        self._label = label

    def execute(self) -> None:
        for cmd in self._commands:
            cmd.execute()

    def undo(self) -> None:
        for cmd in reversed(self._commands):
            cmd.undo()

    def __len__(self) -> int:
        return len(self._commands)

    @property
    def row_ids(self) -> frozenset[str]:
        return frozenset(rid for cmd in self._commands for rid in cmd.row_ids)

    @property
    def description(self) -> str:
        return f"{self._label} ({len(self._commands)} cells)"
