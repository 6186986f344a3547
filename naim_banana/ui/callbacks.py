"""Callback implementations for the Gradio interface."""

from __future__ import annotations

import logging
from typing import Any, Callable, NamedTuple, Optional

from config.settings import AppConfig
from naim_banana.pipelines.text2img import Text2ImageService
from naim_banana.services.errors import EditBackendError, NaimBananaError
from naim_banana.services.session import EditSession
from naim_banana.services.storage_service import StorageService
from naim_banana.utils.image_utils import (
    ImageState,
    decode_image,
    detect_aspect_ratio,
    load_image_file,
    parse_output_size,
)

logger = logging.getLogger(__name__)


class Controls(NamedTuple):
    """Which buttons are clickable for the current session."""

    generate: bool
    edit: bool
    undo: bool
    redo: bool


def build_callbacks(
    config: AppConfig,
    new_session: Callable[[], EditSession],
    storage: Optional[StorageService] = None,
    text2img: Optional[Text2ImageService] = None,
) -> dict[str, Any]:
    """Return a dictionary of Gradio callback functions.

    Every callback takes the caller's session as its last argument and hands
    it back as the last result, so each browser tab keeps its own history.
    A missing session is created on first use with ``new_session``.
    """

    def _ensure(session: Optional[EditSession]) -> EditSession:
        return session if session is not None else new_session()

    def _counters(session: Optional[EditSession] = None) -> str:
        session = _ensure(session)
        return (
            f"编辑次数：{session.edit_count()} / {session.max_edits}　"
            f"今日生成：{session.generations_remaining()} / {session.quota.limit}"
        )

    def _controls(session: EditSession) -> Controls:
        return Controls(
            generate=session.can_generate(),
            edit=session.can_edit(),
            undo=session.can_undo(),
            redo=session.can_redo(),
        )

    def _view(session: EditSession, image: Optional[Any], status: str) -> tuple:
        return image, status, _counters(session), _controls(session), session

    def _preview(state: Optional[ImageState]) -> Optional[Any]:
        if state is None:
            return None
        return decode_image(state)

    def _failure(prefix: str, exc: Exception) -> str:
        if isinstance(exc, EditBackendError) or not isinstance(exc, NaimBananaError):
            logger.error("%s %s", prefix, exc)
            return f"{prefix}{exc}"
        return str(exc)

    def on_upload(file_path: Optional[str], session: Optional[EditSession] = None) -> tuple:
        session = _ensure(session)
        if not file_path:
            return _view(session, _preview(session.current), "请先选择要上传的图像。")
        try:
            state = session.generate(lambda: load_image_file(file_path))
        except Exception as exc:  # noqa: BLE001
            return _view(session, _preview(session.current), _failure("加载图像失败：", exc))

        image = decode_image(state)
        ratio = detect_aspect_ratio(*image.size)
        return _view(session, image, f"图像已加载（{ratio}），可以开始编辑。")

    def on_generate_text(
        prompt: str,
        seed: Any = None,
        output_size: Optional[str] = None,
        session: Optional[EditSession] = None,
    ) -> tuple:
        session = _ensure(session)
        if text2img is None:
            return _view(session, _preview(session.current), "未配置文生图服务。")
        if not (prompt or "").strip():
            return _view(session, _preview(session.current), "请输入提示词。")
        try:
            request = text2img.request_for(
                prompt.strip(), output_size or config.output_size, _normalize_seed(seed)
            )
            state = session.generate(text2img.producer(request))
        except Exception as exc:  # noqa: BLE001
            return _view(session, _preview(session.current), _failure("生成失败：", exc))
        return _view(session, decode_image(state), "生成成功，可以开始编辑。")

    def on_edit(instruction: str, session: Optional[EditSession] = None) -> tuple:
        session = _ensure(session)
        text = (instruction or "").strip()
        if not text:
            return (instruction, *_view(session, _preview(session.current), "请输入编辑指令。"))
        try:
            state = session.edit(text)
        except Exception as exc:  # noqa: BLE001
            return (instruction, *_view(session, _preview(session.current), _failure("编辑失败：", exc)))
        status = f"编辑成功，还可编辑 {session.edits_remaining()} 次。"
        return ("", *_view(session, decode_image(state), status))

    def on_undo(session: Optional[EditSession] = None) -> tuple:
        session = _ensure(session)
        try:
            state = session.undo()
        except NaimBananaError as exc:
            return _view(session, _preview(session.current), str(exc))
        return _view(session, _preview(state), "")

    def on_redo(session: Optional[EditSession] = None) -> tuple:
        session = _ensure(session)
        try:
            state = session.redo()
        except NaimBananaError as exc:
            return _view(session, _preview(session.current), str(exc))
        return _view(session, _preview(state), "")

    def on_save(session: Optional[EditSession] = None) -> tuple[Optional[str], str]:
        state = session.current if session is not None else None
        if state is None:
            return None, "没有可保存的图像。"
        if storage is None:
            return None, "未配置图像保存目录。"
        try:
            path = storage.save_image(state)
        except OSError as exc:
            logger.error("Failed to save image: %s", exc)
            return None, f"保存失败：{exc}"
        return str(path), f"已保存：{path}"

    def on_change_size(size: str) -> str:
        try:
            width, height = parse_output_size(size)
        except ValueError as exc:
            return str(exc)
        return f"文生图输出尺寸：{width}x{height}（编辑会保持原图尺寸）"

    return {
        "on_upload": on_upload,
        "on_generate_text": on_generate_text,
        "on_edit": on_edit,
        "on_undo": on_undo,
        "on_redo": on_redo,
        "on_save": on_save,
        "on_change_size": on_change_size,
        "counters": _counters,
    }


def _normalize_seed(seed: Any) -> Optional[int]:
    if seed in ("", None):
        return None
    try:
        return int(seed)
    except (TypeError, ValueError):
        return None
