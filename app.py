"""Application entry point for the Naim Banana image editor."""

from __future__ import annotations

from typing import Optional

from config.settings import load_config
from naim_banana.ui.layout import build_app
from naim_banana.utils.logging import setup_logging


def main(config_path: Optional[str] = None) -> None:
    """Load configuration and launch the Gradio interface."""
    config = load_config(config_path)
    logger = setup_logging(config)
    app = build_app(config)
    # one job per listener at a time; each tab guards its own history
    app.queue(default_concurrency_limit=1)
    logger.info("Launching UI (max %d edits, %d generation(s) per window)", config.max_edits, config.daily_generation_limit)
    app.launch(share=False, inbrowser=False)


if __name__ == "__main__":
    main()
