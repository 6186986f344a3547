"""Text-to-image generation for starting a new image from a prompt."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from diffusers import StableDiffusionXLPipeline

from naim_banana.pipelines.base import DiffusersService
from naim_banana.services.errors import EditBackendError
from naim_banana.utils.image_utils import ImageState, encode_image, parse_output_size


@dataclass(slots=True)
class PromptRequest:
    """Request data for text-to-image generation."""

    prompt: str
    negative_prompt: Optional[str] = None
    guidance_scale: float = 0.0
    steps: int = 4
    seed: Optional[int] = None
    height: int = 1024
    width: int = 1024


@dataclass(slots=True)
class ImageResult:
    """Result payload produced by the text-to-image pipeline."""

    state: ImageState
    images: List[Any]
    prompt: str
    seed: Optional[int]


class Text2ImageService(DiffusersService):
    """Facade around a Stable Diffusion XL pipeline."""

    pipeline_cls = StableDiffusionXLPipeline
    model_key = "text2img_model_id"

    def request_for(self, prompt: str, output_size: Optional[str] = None, seed: Optional[int] = None) -> PromptRequest:
        """Build a request sized by the output-size setting."""
        width, height = parse_output_size(output_size or self.config.output_size)
        return PromptRequest(prompt=prompt, seed=seed, height=height, width=width)

    def generate(self, request: PromptRequest) -> ImageResult:
        """Generate an image from a text prompt."""
        if not request.prompt.strip():
            raise ValueError("提示词不能为空")
        pipeline = self.load_pipeline()

        result = pipeline(
            prompt=request.prompt,
            negative_prompt=request.negative_prompt,
            guidance_scale=request.guidance_scale,
            num_inference_steps=request.steps,
            generator=self._generator(request.seed),
            height=request.height,
            width=request.width,
        )

        images = list(getattr(result, "images", []))
        if not images:
            raise EditBackendError("生成失败：未收到任何图像输出。")

        return ImageResult(
            state=encode_image(images[0]),
            images=images,
            prompt=request.prompt,
            seed=request.seed,
        )

    def producer(self, request: PromptRequest) -> Callable[[], ImageState]:
        """Return a zero-argument generation callable for EditSession.generate."""
        return lambda: self.generate(request).state
