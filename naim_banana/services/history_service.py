"""Linear undo/redo history of image states."""

from __future__ import annotations

import logging
from typing import Generic, List, Optional, Tuple, TypeVar

from naim_banana.services.errors import InvalidStateError, NoOpError

S = TypeVar("S")

logger = logging.getLogger(__name__)


class EditHistoryManager(Generic[S]):
    """Cursor-addressed version history with truncate-on-new-edit.

    Index 0 holds the unedited source image and every later index is one
    applied edit, so the cursor doubles as the edit count of the current
    image. Committing after an undo discards the redo branch for good.
    """

    def __init__(self) -> None:
        self._states: List[S] = []
        self._cursor = -1

    def __len__(self) -> int:
        return len(self._states)

    @property
    def cursor(self) -> int:
        return self._cursor

    def states(self) -> Tuple[S, ...]:
        """Return a snapshot of every stored state in order."""
        return tuple(self._states)

    def reset(self, initial_state: S) -> None:
        """Replace the whole history with a single base state."""
        self._states = [initial_state]
        self._cursor = 0
        logger.debug("History reset to a new base image")

    def commit(self, new_state: S) -> None:
        """Append an edit result, discarding any states ahead of the cursor."""
        if not self._states:
            raise InvalidStateError("没有可编辑的基础图像，请先上传图像。")

        dropped = len(self._states) - 1 - self._cursor
        if dropped:
            del self._states[self._cursor + 1 :]
            logger.debug("Discarded %d redo state(s) before commit", dropped)
        self._states.append(new_state)
        self._cursor = len(self._states) - 1

    def undo(self) -> S:
        """Step back one version."""
        if not self.can_undo():
            raise NoOpError("已经是最早的版本。")
        self._cursor -= 1
        return self._states[self._cursor]

    def redo(self) -> S:
        """Step forward one version."""
        if not self.can_redo():
            raise NoOpError("已经是最新的版本。")
        self._cursor += 1
        return self._states[self._cursor]

    def current(self) -> Optional[S]:
        if self._cursor < 0:
            return None
        return self._states[self._cursor]

    def edit_count(self) -> int:
        """Number of edits applied on top of the current base image.

        Equal to the cursor, so an empty history reports -1.
        """
        return self._cursor

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._states) - 1
