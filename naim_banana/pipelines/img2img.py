"""Local image editing with an SDXL image-to-image pipeline."""

from __future__ import annotations

import logging
from typing import Optional

from diffusers import StableDiffusionXLImg2ImgPipeline
from PIL import Image

from config.settings import AppConfig
from naim_banana.pipelines.base import DiffusersService
from naim_banana.services.errors import EditBackendError
from naim_banana.utils.image_utils import ImageState, decode_image, encode_image

logger = logging.getLogger(__name__)


class Image2ImageEditor(DiffusersService):
    """Edit collaborator that uses the instruction as the img2img prompt.

    Results are resized back to the source dimensions and re-encoded with the
    source MIME type.
    """

    pipeline_cls = StableDiffusionXLImg2ImgPipeline
    model_key = "img2img_model_id"

    def __init__(self, config: AppConfig, steps: int = 4, seed: Optional[int] = None) -> None:
        super().__init__(config)
        self.steps = steps
        self.seed = seed

    def edit(self, state: ImageState, instruction: str) -> ImageState:
        if not instruction.strip():
            raise ValueError("编辑指令不能为空")
        source = decode_image(state).convert("RGB")
        pipeline = self.load_pipeline()

        kwargs = {
            "prompt": instruction,
            "image": source,
            "strength": self.config.edit_strength,
            "guidance_scale": 0.0,
            "num_inference_steps": self.steps,
        }
        generator = self._generator(self.seed)
        if generator is not None:
            kwargs["generator"] = generator

        try:
            result = pipeline(**kwargs)
        except RuntimeError as exc:
            logger.error("img2img pipeline failed: %s", exc)
            raise EditBackendError("本地模型处理图像失败，请重试。") from exc

        images = list(getattr(result, "images", []))
        if not images:
            raise EditBackendError("编辑失败：未获得任何输出图像。")

        edited: Image.Image = images[0]
        if edited.size != source.size:
            edited = edited.resize(source.size, Image.LANCZOS)
        return encode_image(edited, state.mime_type)
