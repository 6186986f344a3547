"""Utility helpers for image encoding and inspection."""

from __future__ import annotations

import base64
import binascii
import io
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

from PIL import Image, UnidentifiedImageError

DEFAULT_MIME_TYPE = "image/png"
ALLOWED_MIME_TYPES = ("image/png", "image/jpeg", "image/webp")
OUTPUT_SIZES = ("512x512", "1024x1024", "2048x2048")

_DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>[^;,]*)(?:;[^,]*)?;base64,(?P<data>.*)$", re.DOTALL)
_PIL_FORMATS = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/webp": "WEBP",
}


@dataclass(frozen=True, slots=True)
class ImageState:
    """One immutable version of the image being edited."""

    data: str
    mime_type: str = DEFAULT_MIME_TYPE

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    @property
    def extension(self) -> str:
        """File extension derived from the MIME subtype."""
        _, _, subtype = self.mime_type.partition("/")
        return subtype or "png"

    def to_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("图像数据不是合法的 base64 编码。") from exc

    @classmethod
    def from_bytes(cls, raw: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> "ImageState":
        return cls(data=base64.b64encode(raw).decode("ascii"), mime_type=mime_type)

    @classmethod
    def from_data_uri(cls, uri: str) -> "ImageState":
        """Parse a ``data:<mime>;base64,<payload>`` URI."""
        match = _DATA_URI_PATTERN.match(uri.strip())
        if match is None:
            raise ValueError("无法解析图像 data URI。")
        return cls(data=match.group("data"), mime_type=match.group("mime") or DEFAULT_MIME_TYPE)


def encode_image(image: Image.Image, mime_type: str = DEFAULT_MIME_TYPE) -> ImageState:
    """Serialize a PIL image into an ImageState."""
    fmt = _PIL_FORMATS.get(mime_type)
    if fmt is None:
        raise ValueError(f"不支持的图像类型：{mime_type}")
    if fmt == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return ImageState.from_bytes(buffer.getvalue(), mime_type)


def decode_image(state: ImageState) -> Image.Image:
    """Load an ImageState back into a PIL image."""
    try:
        image = Image.open(io.BytesIO(state.to_bytes()))
        image.load()
    except UnidentifiedImageError as exc:
        raise ValueError("无法识别的图像数据。") from exc
    return image


def load_image_file(path: Union[str, Path]) -> ImageState:
    """Read an uploaded image file, keeping its original encoding."""
    file_path = Path(path)
    raw = file_path.read_bytes()
    try:
        with Image.open(io.BytesIO(raw)) as probe:
            mime_type = Image.MIME.get(probe.format or "", "")
    except UnidentifiedImageError as exc:
        raise ValueError(f"无法识别的图像文件：{file_path.name}") from exc

    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValueError(f"不支持的图像类型：{mime_type or '未知'}，仅支持 PNG、JPEG、WEBP。")
    return ImageState.from_bytes(raw, mime_type)


def image_size(state: ImageState) -> Tuple[int, int]:
    with Image.open(io.BytesIO(state.to_bytes())) as image:
        return image.size


def detect_aspect_ratio(width: int, height: int) -> str:
    """Bucket an image into one of the display aspect ratios."""
    if width <= 0 or height <= 0:
        return "1:1"
    ratio = width / height
    if abs(ratio - 1) < 0.05:
        return "1:1"
    if ratio > 1:
        return "16:9"
    return "9:16"


def parse_output_size(value: str) -> Tuple[int, int]:
    """Turn a ``WIDTHxHEIGHT`` setting into a (width, height) tuple."""
    if value not in OUTPUT_SIZES:
        raise ValueError(f"不支持的输出尺寸：{value}")
    width, height = value.split("x", 1)
    return int(width), int(height)
