"""Shared plumbing for the local diffusers pipelines."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import torch

from config.settings import AppConfig

logger = logging.getLogger(__name__)


class DiffusersService:
    """Lazy loader for a single diffusers pipeline class.

    Subclasses set ``pipeline_cls`` and ``model_key`` (the metadata key that
    names the model to load).
    """

    pipeline_cls: Any = None
    model_key = ""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self._pipeline: Any = None
        self._device: Optional[str] = None

    def _preferred_device(self) -> str:
        return "cuda" if torch.cuda.is_available() else "cpu"

    def _preferred_dtype(self, device: str) -> torch.dtype:
        if self.config.use_fp16 and device == "cuda":
            return torch.float16
        return torch.float32

    def _resolve_model_id(self) -> str:
        metadata_model_id = self.config.metadata.get(self.model_key)
        return metadata_model_id or getattr(self.config, self.model_key)

    def _pipeline_kwargs(self, dtype: torch.dtype) -> Dict[str, Any]:
        cache_dir = Path(self.config.model_dir)
        cache_dir.mkdir(parents=True, exist_ok=True)
        return {
            "torch_dtype": dtype,
            "cache_dir": str(cache_dir),
            "use_safetensors": True,
        }

    def load_pipeline(self) -> Any:
        """Load the pipeline on first use and return it."""
        if self._pipeline is not None:
            return self._pipeline

        device = self._preferred_device()
        dtype = self._preferred_dtype(device)
        model_id = self._resolve_model_id()
        logger.info("Loading %s from %s on %s", type(self).__name__, model_id, device)

        pipeline = self.pipeline_cls.from_pretrained(model_id, **self._pipeline_kwargs(dtype))
        pipeline.to(device)

        if self.config.enable_xformers:
            try:
                pipeline.enable_xformers_memory_efficient_attention()
            except Exception as exc:  # noqa: BLE001
                logger.debug("xformers unavailable: %s", exc)

        if self.config.enable_vae_tiling and hasattr(pipeline, "enable_vae_tiling"):
            pipeline.enable_vae_tiling()

        self._pipeline = pipeline
        self._device = device
        return pipeline

    def _generator(self, seed: Optional[int]) -> Optional[torch.Generator]:
        if seed is None:
            return None
        generator = torch.Generator(device=self._device or self._preferred_device())
        generator.manual_seed(seed)
        return generator

