"""Hosted image-editing backends and backend selection."""

from __future__ import annotations

import importlib
import logging
import time
from typing import Any, Optional

from config.settings import AppConfig
from naim_banana.services.errors import EditBackendError
from naim_banana.utils.image_utils import ImageState

logger = logging.getLogger(__name__)

FAILED_MESSAGE = "AI 模型处理图像失败，请重试。"


class MockImageEditor:
    """Return the input unchanged after a short delay.

    Used when no provider key is configured so the UI stays usable offline.
    """

    def __init__(self, delay: float = 2.0) -> None:
        self.delay = delay

    def edit(self, state: ImageState, instruction: str) -> ImageState:
        logger.info("Mock edit for %r, returning the original image", instruction)
        if self.delay > 0:
            time.sleep(self.delay)
        return state


def _import_sdk(name: str) -> Any:
    try:
        return importlib.import_module(name)
    except ImportError as exc:
        raise EditBackendError(f"无法导入 {name}：{exc}") from exc


class GeminiImageEditor:
    """Edit images through Gemini's image-output model."""

    def __init__(self, api_key: Optional[str], model: str = "gemini-2.5-flash-image", client: Any = None) -> None:
        genai = _import_sdk("google.genai")
        self._types = _import_sdk("google.genai.types")
        if client is None:
            if not api_key:
                raise EditBackendError("未配置 Gemini API Key。")
            client = genai.Client(api_key=api_key)
        self.client = client
        self.model = model

    def edit(self, state: ImageState, instruction: str) -> ImageState:
        types = self._types
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=state.to_bytes(), mime_type=state.mime_type),
                    instruction,
                ],
                config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Gemini edit request failed: %s", exc)
            raise EditBackendError(FAILED_MESSAGE) from exc

        for candidate in getattr(response, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                if inline is not None and inline.data:
                    return ImageState.from_bytes(inline.data, inline.mime_type or state.mime_type)

        logger.error("Gemini response carried no image part")
        raise EditBackendError("Gemini 响应中没有图像数据。")


class OpenAIImageEditor:
    """Edit images through the OpenAI Images API."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-image-1",
        base_url: Optional[str] = None,
        client: Any = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise EditBackendError("未配置 OpenAI API Key。")
            openai_module = _import_sdk("openai")
            client_kwargs = {"api_key": api_key}
            if base_url:
                client_kwargs["base_url"] = base_url
            client = openai_module.OpenAI(**client_kwargs)
        self.client = client
        self.model = model

    def edit(self, state: ImageState, instruction: str) -> ImageState:
        upload = (f"image.{state.extension}", state.to_bytes(), state.mime_type)
        try:
            response = self.client.images.edit(model=self.model, image=upload, prompt=instruction)
        except Exception as exc:  # noqa: BLE001
            logger.error("OpenAI edit request failed: %s", exc)
            raise EditBackendError(FAILED_MESSAGE) from exc

        data = getattr(response, "data", None) or []
        payload = getattr(data[0], "b64_json", None) if data else None
        if not payload:
            raise EditBackendError("OpenAI 响应中没有图像数据。")
        return ImageState(data=payload, mime_type="image/png")


def resolve_backend(config: AppConfig) -> str:
    """Map ``auto`` to a concrete backend based on the configured keys."""
    if config.edit_backend != "auto":
        return config.edit_backend
    if config.gemini_key:
        return "gemini"
    if config.openai_key:
        return "openai"
    return "mock"


def create_editor(config: AppConfig) -> Any:
    """Instantiate the edit collaborator selected by the configuration."""
    backend = resolve_backend(config)
    logger.info("Using %s edit backend", backend)
    if backend == "gemini":
        return GeminiImageEditor(
            config.gemini_key,
            model=config.metadata.get("gemini_model", "gemini-2.5-flash-image"),
        )
    if backend == "openai":
        return OpenAIImageEditor(
            config.openai_key,
            model=config.metadata.get("openai_image_model", "gpt-image-1"),
            base_url=config.metadata.get("openai_base_url"),
        )
    if backend == "diffusers":
        from naim_banana.pipelines.img2img import Image2ImageEditor

        return Image2ImageEditor(config)
    if backend == "mock":
        return MockImageEditor(delay=config.mock_edit_delay)
    raise ValueError(f"未知的编辑后端：{backend}")
