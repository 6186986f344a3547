"""Edit session combining the history, the quota and the image providers."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Protocol

from naim_banana.services.errors import (
    EditLimitExceeded,
    InvalidStateError,
    NoOpError,
    QuotaExceeded,
    SessionBusy,
)
from naim_banana.services.history_service import EditHistoryManager
from naim_banana.services.quota_service import QuotaTracker
from naim_banana.utils.image_utils import ImageState

MAX_EDITS = 10

logger = logging.getLogger(__name__)


class ImageEditor(Protocol):
    """Provider that applies an instruction to an image."""

    def edit(self, state: ImageState, instruction: str) -> ImageState:
        ...


class EditSession:
    """Sequence one user's edits and generations.

    Limits are checked before the provider is called and state is only
    updated after it returns, so a failed call leaves history and quota
    untouched. Provider errors propagate unchanged and are never retried.
    """

    def __init__(
        self,
        history: EditHistoryManager[ImageState],
        quota: QuotaTracker,
        editor: ImageEditor,
        max_edits: int = MAX_EDITS,
    ) -> None:
        self.history = history
        self.quota = quota
        self.editor = editor
        self.max_edits = max_edits
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def _occupied(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise SessionBusy("正在处理上一项请求，请稍候。")
        try:
            yield
        finally:
            self._lock.release()

    def generate(self, produce: Callable[[], ImageState]) -> ImageState:
        """Start a fresh history from a newly generated or uploaded image."""
        with self._occupied():
            if not self.quota.can_consume():
                raise QuotaExceeded("今日图像生成次数已用完。", self.quota.limit)
            state = produce()
            self.quota.consume()
            self.history.reset(state)
        logger.info("Started a new image (%s)", state.mime_type)
        return state

    def edit(self, instruction: str) -> ImageState:
        """Apply an instruction to the current image and commit the result."""
        with self._occupied():
            current = self.history.current()
            if current is None:
                raise InvalidStateError("没有可编辑的图像，请先上传图像。")
            if self.history.edit_count() >= self.max_edits:
                raise EditLimitExceeded(
                    f"当前图像已达到最多 {self.max_edits} 次编辑。", self.max_edits
                )
            result = self.editor.edit(current, instruction)
            self.history.commit(result)
        logger.info("Committed edit %d/%d", self.history.edit_count(), self.max_edits)
        return result

    def undo(self) -> Optional[ImageState]:
        return self._move(self.history.undo)

    def redo(self) -> Optional[ImageState]:
        return self._move(self.history.redo)

    def _move(self, step: Callable[[], ImageState]) -> Optional[ImageState]:
        with self._occupied():
            try:
                return step()
            except NoOpError as exc:
                logger.debug("Ignored history move: %s", exc)
                return self.history.current()

    @property
    def current(self) -> Optional[ImageState]:
        return self.history.current()

    def edit_count(self) -> int:
        return max(self.history.edit_count(), 0)

    def edits_remaining(self) -> int:
        return max(0, self.max_edits - self.edit_count())

    def generations_remaining(self) -> int:
        return self.quota.remaining()

    def can_edit(self) -> bool:
        return self.current is not None and self.edit_count() < self.max_edits

    def can_generate(self) -> bool:
        return self.quota.can_consume()

    def can_undo(self) -> bool:
        return self.history.can_undo()

    def can_redo(self) -> bool:
        return self.history.can_redo()
