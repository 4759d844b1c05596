from __future__ import annotations

from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image

from .config import OcrConfig
from .errors import ConfigurationError

ImageLike = Union[str, Path, Image.Image, np.ndarray]


def force_image_size(img: Image.Image, w: int, h: int) -> Image.Image:
    """Letterbox onto a white canvas, keeping the aspect ratio."""
    if img.size == (w, h):
        return img
    src_w, src_h = img.size
    scale = min(w / max(1, src_w), h / max(1, src_h))
    new_w = max(1, int(round(src_w * scale)))
    new_h = max(1, int(round(src_h * scale)))
    resized = img.resize((new_w, new_h), resample=Image.BILINEAR)
    canvas = Image.new("RGB", (w, h), color=(255, 255, 255))
    x = (w - new_w) // 2
    y = (h - new_h) // 2
    canvas.paste(resized, (x, y))
    return canvas


def to_uint8(arr: np.ndarray) -> np.ndarray:
    """
    Pixel array -> uint8. Float arrays whose maximum is at most 1.0 are taken
    as `[0, 1]` intensities and scaled by 255; anything else must already lie
    in `[0, 255]`.
    """
    if arr.dtype == np.uint8:
        return arr
    if arr.dtype.kind not in "uif":
        raise ConfigurationError(f"unsupported image array dtype {arr.dtype}")
    if arr.size == 0:
        raise ConfigurationError("image array is empty")
    if arr.dtype.kind == "f":
        if not np.isfinite(arr).all():
            raise ConfigurationError("image array contains NaN or infinite values")
        if arr.max() <= 1.0:
            arr = arr * 255.0
        arr = np.rint(arr)
    lo, hi = arr.min(), arr.max()
    if lo < 0 or hi > 255:
        raise ConfigurationError(f"image values must be within [0, 255], got [{lo}, {hi}]")
    return arr.astype(np.uint8)


def load_image(image: ImageLike) -> Image.Image:
    if isinstance(image, Image.Image):
        return image.convert("RGB")
    if isinstance(image, np.ndarray):
        if image.ndim not in (2, 3):
            raise ConfigurationError(f"expected an HxW or HxWxC image array, got {image.shape}")
        return Image.fromarray(to_uint8(image)).convert("RGB")
    path = Path(image)
    if not path.exists():
        raise ConfigurationError(f"image not found: {path}")
    with Image.open(path) as img:
        return img.convert("RGB")


def preprocess_image(
    image: ImageLike, config: OcrConfig, keep_aspect: bool = False
) -> np.ndarray:
    """
    Image -> flat float32 encoder input of `image_size * image_size * 3`.

    Pixels are scaled as `(x / 255 - mean) / std`; layout is interleaved HWC
    unless `config.channels_first`.
    """
    size = config.image_size
    img = load_image(image)
    if keep_aspect:
        img = force_image_size(img, size, size)
    elif img.size != (size, size):
        img = img.resize((size, size), resample=Image.BILINEAR)
    arr = np.asarray(img, dtype=np.float32)
    arr = (arr / 255.0 - config.normalization_mean) / config.normalization_std
    if config.channels_first:
        arr = arr.transpose(2, 0, 1)
    return np.ascontiguousarray(arr, dtype=np.float32).reshape(-1)
