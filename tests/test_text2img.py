"""Text2ImageService 单元测试。"""

from types import SimpleNamespace

import pytest
import torch
from PIL import Image

from config.settings import AppConfig
from naim_banana.pipelines import text2img
from naim_banana.services.errors import EditBackendError
from naim_banana.utils.image_utils import decode_image


class DummyPipeline:
    """模拟 Diffusers 管线，捕获调用参数。"""

    latest: "DummyPipeline | None" = None
    output_images: list = []

    def __init__(self) -> None:
        self.model_id = ""
        self.kwargs = {}
        self.device = None
        self.xformers_enabled = False
        self.vae_tiling_enabled = False
        self.called_with = None

    @classmethod
    def from_pretrained(cls, model_id: str, **kwargs):
        instance = cls()
        instance.model_id = model_id
        instance.kwargs = kwargs
        cls.latest = instance
        return instance

    def to(self, device: str, **kwargs):
        self.device = device
        return self

    def enable_xformers_memory_efficient_attention(self):
        self.xformers_enabled = True

    def enable_vae_tiling(self):
        self.vae_tiling_enabled = True

    def __call__(self, **kwargs):
        self.called_with = kwargs
        return SimpleNamespace(images=list(self.output_images))


@pytest.fixture(autouse=True)
def force_cpu(monkeypatch):
    """强制使用 CPU，避免与真实 CUDA 环境耦合。"""
    monkeypatch.setattr(torch.cuda, "is_available", lambda: False)
    monkeypatch.setattr(text2img.Text2ImageService, "pipeline_cls", DummyPipeline)
    DummyPipeline.output_images = [Image.new("RGB", (64, 32), "green")]
    yield


def test_load_pipeline_uses_config(tmp_path):
    config = AppConfig(model_dir=tmp_path, enable_xformers=True, enable_vae_tiling=True)
    service = text2img.Text2ImageService(config)
    service.load_pipeline()

    pipeline = DummyPipeline.latest
    assert pipeline is not None
    assert pipeline.model_id == config.text2img_model_id
    assert pipeline.kwargs["torch_dtype"] == torch.float32  # CPU 环境应使用 float32
    assert pipeline.kwargs["cache_dir"] == str(tmp_path)
    assert pipeline.device == "cpu"
    assert pipeline.xformers_enabled and pipeline.vae_tiling_enabled
    assert service.load_pipeline() is pipeline


def test_generate_returns_encoded_state(tmp_path):
    config = AppConfig(model_dir=tmp_path, use_fp16=False)
    service = text2img.Text2ImageService(config)

    request = text2img.PromptRequest(prompt="test prompt", seed=123, steps=5)
    result = service.generate(request)

    pipeline = DummyPipeline.latest
    assert pipeline is not None
    assert result.state.mime_type == "image/png"
    assert decode_image(result.state).size == (64, 32)
    assert result.prompt == "test prompt"
    assert pipeline.called_with["num_inference_steps"] == 5
    assert pipeline.called_with["generator"] is not None


def test_request_for_uses_output_size_setting(tmp_path):
    service = text2img.Text2ImageService(AppConfig(model_dir=tmp_path, output_size="512x512"))

    assert (service.request_for("cat").width, service.request_for("cat").height) == (512, 512)
    request = service.request_for("cat", "2048x2048", seed=7)
    assert (request.width, request.height, request.seed) == (2048, 2048, 7)


def test_producer_defers_generation(tmp_path):
    service = text2img.Text2ImageService(AppConfig(model_dir=tmp_path))
    produce = service.producer(service.request_for("cat"))

    assert service._pipeline is None
    state = produce()

    assert DummyPipeline.latest.called_with["width"] == 1024
    assert decode_image(state).size == (64, 32)


def test_generate_without_images_raises(tmp_path):
    DummyPipeline.output_images = []
    service = text2img.Text2ImageService(AppConfig(model_dir=tmp_path))

    with pytest.raises(EditBackendError):
        service.generate(text2img.PromptRequest(prompt="cat"))

