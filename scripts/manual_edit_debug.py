"""One-off script for debugging an upload followed by a chain of edits."""

import sys
from pathlib import Path

from config.settings import load_config
from naim_banana.services.storage_service import StorageService
from naim_banana.ui.callbacks import build_callbacks
from naim_banana.ui.layout import build_session_factory
from naim_banana.utils.logging import setup_logging


def main() -> None:
    # 1. 使用真实配置（读取 .env 中的 EDIT_BACKEND 与 API Key）
    config = load_config()
    setup_logging(config)
    callbacks = build_callbacks(
        config,
        build_session_factory(config),
        storage=StorageService(Path(config.output_dir)),
    )

    # 2. 上传初始图像；这一步会消耗一次生成配额
    init_image_path = Path(sys.argv[1] if len(sys.argv) > 1 else "tests/assets/debug_input.png")
    if not init_image_path.exists():
        raise FileNotFoundError(f"缺少初始图像: {init_image_path}")

    _, status, counters, _, session = callbacks["on_upload"](str(init_image_path))
    print("上传:", status, counters)
    if session.current is None:
        return

    # 3. 连续编辑、撤销后再编辑，观察重做分支被丢弃
    for instruction in ("add a retro filter", "make the sky purple"):
        _, _, status, counters, _, _ = callbacks["on_edit"](instruction, session)
        print(f"编辑 {instruction!r}:", status, counters)

    callbacks["on_undo"](session)
    _, _, status, counters, controls, _ = callbacks["on_edit"]("add falling snow", session)
    print("撤销后再编辑:", status, counters, "可重做:", controls.redo)

    path, status = callbacks["on_save"](session)
    print("保存:", status)


if __name__ == "__main__":
    main()
