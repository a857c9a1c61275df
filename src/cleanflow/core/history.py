"""EditHistory: bounded undo/redo stack for a quarantine editing session."""

from __future__ import annotations

from collections import deque

from cleanflow.core.commands import Command


class EditHistory:
    """Undo/redo stack; the oldest edits fall off once *max_depth* is reached."""

    def __init__(self, max_depth: int = 500) -> None:
        self._undo_stack: deque[Command] = deque(maxlen=max_depth)
        self._redo_stack: deque[Command] = deque(maxlen=max_depth)

    def push(self, cmd: Command) -> None:
        """Execute *cmd* and record it. Any redoable commands are discarded.

        When the most recent command can absorb *cmd* (keystrokes in the same
        active cell), the two share one undo step.
        """
        cmd.execute()
        self._redo_stack.clear()
        if self._undo_stack and self._undo_stack[-1].absorb(cmd):
            return
        self._undo_stack.append(cmd)

    def seal(self) -> None:
        """End the current typing run; the next edit starts a new undo step."""
        if self._undo_stack:
            self._undo_stack[-1].seal()

    def undo(self) -> Command | None:
        if not self._undo_stack:
            return None
        cmd = self._undo_stack.pop()
        cmd.seal()
        cmd.undo()
        self._redo_stack.append(cmd)
        self.seal()
        return cmd

    def redo(self) -> Command | None:
        if not self._redo_stack:
            return None
        cmd = self._redo_stack.pop()
        cmd.execute()
        self._undo_stack.append(cmd)
        return cmd

    @property
    def undo_count(self) -> int:
        return len(self._undo_stack)

    @property
    def redo_count(self) -> int:
        return len(self._redo_stack)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo_stack)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo_stack)

    @property
    def undo_description(self) -> str | None:
        return self._undo_stack[-1].description if self._undo_stack else None

    @property
    def redo_description(self) -> str | None:
        return self._redo_stack[-1].description if self._redo_stack else None

    def referenced_rows(self) -> set[str]:
        """Rows that an undo or redo could still change."""
        rows: set[str] = set()
        for cmd in (*self._undo_stack, *self._redo_stack):
            rows.update(cmd.row_ids)
        return rows

    def clear(self) -> None:
        self._undo_stack.clear()
        self._redo_stack.clear()
