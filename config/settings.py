"""Configuration helpers for the Naim Banana image editor."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

EDIT_BACKENDS = ("auto", "mock", "gemini", "openai", "diffusers")


@dataclass(slots=True)
class AppConfig:
    """Centralized application configuration."""

    max_edits: int = 10
    daily_generation_limit: int = 1
    quota_window_ms: int = 24 * 60 * 60 * 1000
    data_dir: Path = Path("data")
    output_dir: Path = Path("outputs")
    log_dir: Path = Path("logs")
    model_dir: Path = Path("models")
    edit_backend: str = "auto"
    output_size: str = "1024x1024"
    text2img_model_id: str = "models/sdxl-turbo"
    img2img_model_id: str = "models/sdxl-turbo"
    use_fp16: bool = True
    enable_xformers: bool = True
    enable_vae_tiling: bool = True
    edit_strength: float = 0.6
    mock_edit_delay: float = 2.0
    gemini_key: Optional[str] = None
    openai_key: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


def _load_env_file(path: Path) -> None:
    """Populate environment variables from a simple KEY=VALUE .env file."""
    if not path.exists():
        return

    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ[key.strip()] = value.strip()


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return max(0.0, float(raw))
    except ValueError:
        return default


def _env_path(name: str, default: str) -> Path:
    return Path(os.getenv(name, default)).expanduser()


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Return an AppConfig instance with environment-aware settings."""
    env_path = Path(config_path) if config_path else Path(".env")
    _load_env_file(env_path)

    model_dir = _env_path("MODEL_DIR", "models").resolve()
    for env_name in ("HUGGINGFACE_HUB_CACHE", "DIFFUSERS_CACHE"):
        os.environ.setdefault(env_name, str(model_dir))

    default_model_path = str(model_dir / "sdxl-turbo")
    text2img_model_id = os.getenv("TEXT2IMG_MODEL_ID") or default_model_path
    img2img_model_id = os.getenv("IMG2IMG_MODEL_ID") or default_model_path

    edit_backend = (os.getenv("EDIT_BACKEND") or "auto").strip().lower()
    if edit_backend not in EDIT_BACKENDS:
        edit_backend = "auto"

    output_size = os.getenv("OUTPUT_SIZE") or "1024x1024"
    if output_size not in ("512x512", "1024x1024", "2048x2048"):
        output_size = "1024x1024"

    metadata: dict[str, Any] = {
        "text2img_model_id": text2img_model_id,
        "img2img_model_id": img2img_model_id,
    }
    for env_name, key in (
        ("GEMINI_MODEL", "gemini_model"),
        ("OPENAI_IMAGE_MODEL", "openai_image_model"),
        ("OPENAI_BASE_URL", "openai_base_url"),
    ):
        value = os.getenv(env_name)
        if value:
            metadata[key] = value

    gemini_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or os.getenv("API_KEY")
    return AppConfig(
        max_edits=_env_int("MAX_EDITS", 10, minimum=1),
        daily_generation_limit=_env_int("DAILY_GENERATION_LIMIT", 1),
        quota_window_ms=_env_int("QUOTA_WINDOW_MS", 24 * 60 * 60 * 1000, minimum=1),
        data_dir=_env_path("DATA_DIR", "data"),
        output_dir=_env_path("OUTPUT_DIR", "outputs"),
        log_dir=_env_path("LOG_DIR", "logs"),
        model_dir=model_dir,
        edit_backend=edit_backend,
        output_size=output_size,
        text2img_model_id=text2img_model_id,
        img2img_model_id=img2img_model_id,
        edit_strength=min(_env_float("EDIT_STRENGTH", 0.6), 1.0),
        mock_edit_delay=_env_float("MOCK_EDIT_DELAY", 2.0),
        gemini_key=gemini_key or None,
        openai_key=os.getenv("OPENAI_API_KEY") or None,
        metadata=metadata,
    )
