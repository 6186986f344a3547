"""Gradio layout for the iterative image editor."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional

try:
    import gradio as gr
except ImportError:  # pragma: no cover
    gr = None  # type: ignore

from config.settings import AppConfig
from naim_banana.pipelines.remote_edit import create_editor
from naim_banana.pipelines.text2img import Text2ImageService
from naim_banana.services.history_service import EditHistoryManager
from naim_banana.services.quota_service import QuotaTracker
from naim_banana.services.session import EditSession
from naim_banana.services.storage_service import FileStorage, StorageService
from naim_banana.ui.callbacks import build_callbacks
from naim_banana.utils.image_utils import OUTPUT_SIZES


def build_session_factory(config: AppConfig, editor: Optional[Any] = None) -> Callable[[], EditSession]:
    """Return a factory for per-user sessions.

    The persisted quota and the edit backend are shared by every session;
    each session gets its own history.
    """
    quota = QuotaTracker(
        FileStorage(Path(config.data_dir)),
        limit=config.daily_generation_limit,
        window_duration_ms=config.quota_window_ms,
    )
    shared_editor = editor if editor is not None else create_editor(config)

    def new_session() -> EditSession:
        return EditSession(EditHistoryManager(), quota, shared_editor, max_edits=config.max_edits)

    return new_session


def _with_button_updates(fn: Callable[..., tuple]) -> Callable[..., tuple]:
    # callbacks report plain flags; Gradio wants one update per button
    def handler(*args: Any) -> tuple:
        *values, controls, session = fn(*args)
        updates = (gr.update(interactive=flag) for flag in controls)
        return (*values, *updates, session)

    return handler


def build_app(config: AppConfig) -> Any:
    """Compose and return the Gradio application."""
    if gr is None:
        raise RuntimeError("Gradio 未安装，请先执行依赖安装。")

    callbacks_map = build_callbacks(
        config,
        build_session_factory(config),
        storage=StorageService(Path(config.output_dir)),
        text2img=Text2ImageService(config),
    )

    with gr.Blocks(title="Naim Banana") as demo:
        gr.Markdown("## Naim Banana 图像编辑")
        session_state = gr.State(None)

        with gr.Row():
            with gr.Column(scale=1):
                with gr.Tab("上传图像"):
                    upload = gr.Image(
                        label="上传图像（PNG / JPEG / WEBP）",
                        type="filepath",
                        sources=["upload"],
                    )
                with gr.Tab("文生图"):
                    text_prompt = gr.Textbox(label="提示词", lines=3, placeholder="描述你想要生成的图像")
                    seed = gr.Number(label="随机种子（可选）", precision=0)
                    generate_btn = gr.Button("生成图像")

                instruction = gr.Textbox(
                    label="描述你想做的修改",
                    lines=4,
                    placeholder="例如：加一个复古滤镜，或把天空变成紫色",
                )
                with gr.Row():
                    undo_btn = gr.Button("撤销", interactive=False)
                    redo_btn = gr.Button("重做", interactive=False)
                    save_btn = gr.Button("保存")
                edit_btn = gr.Button("生成编辑", variant="primary", interactive=False)
                status = gr.Markdown("请上传一张图像。")
                counters = gr.Markdown(callbacks_map["counters"]())

                with gr.Accordion("设置", open=False):
                    output_size = gr.Radio(
                        label="输出尺寸（仅用于文生图）",
                        choices=list(OUTPUT_SIZES),
                        value=config.output_size,
                    )

            with gr.Column(scale=2):
                current_image = gr.Image(label="当前图像", type="pil", interactive=False)
                saved_file = gr.File(label="已保存的文件", visible=True)

        view = [current_image, status, counters, generate_btn, edit_btn, undo_btn, redo_btn, session_state]

        upload.upload(
            fn=_with_button_updates(callbacks_map["on_upload"]),
            inputs=[upload, session_state],
            outputs=view,
        )
        generate_btn.click(
            fn=_with_button_updates(callbacks_map["on_generate_text"]),
            inputs=[text_prompt, seed, output_size, session_state],
            outputs=view,
        )
        edit_btn.click(
            fn=_with_button_updates(callbacks_map["on_edit"]),
            inputs=[instruction, session_state],
            outputs=[instruction, *view],
        )
        undo_btn.click(
            fn=_with_button_updates(callbacks_map["on_undo"]),
            inputs=[session_state],
            outputs=view,
        )
        redo_btn.click(
            fn=_with_button_updates(callbacks_map["on_redo"]),
            inputs=[session_state],
            outputs=view,
        )
        save_btn.click(fn=callbacks_map["on_save"], inputs=[session_state], outputs=[saved_file, status])
        output_size.change(fn=callbacks_map["on_change_size"], inputs=[output_size], outputs=[status])

    return demo
