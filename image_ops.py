"""
图像通用操作：把本地图片文件转换为可以直接发给检测服务的字节。

提供：
- 任意输入到 PIL Image 的转换
- 图像与 bytes 的互转（统一为 RGB JPEG）
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Union

from PIL import Image, ImageFile, UnidentifiedImageError

ImageSource = Union[str, Path, bytes, Image.Image, ImageFile.ImageFile]


def load_image(source: ImageSource) -> Image.Image:
    if isinstance(source, Image.Image):
        return source.copy()
    if isinstance(source, bytes):
        with io.BytesIO(source) as buffer:
            with Image.open(buffer) as img:
                img.load()
                return img.copy()
    if isinstance(source, (str, Path)):
        with Image.open(source) as img:
            img.load()
            return img.copy()
    raise TypeError(f"Unsupported image source: {type(source)}")


def image_to_bytes(image: Image.Image, fmt: str = "JPEG") -> bytes:
    if fmt.upper() == "JPEG" and image.mode != "RGB":
        image = image.convert("RGB")
    with io.BytesIO() as buffer:
        image.save(buffer, format=fmt)
        return buffer.getvalue()


def read_image_file(path: Union[str, Path], fmt: str = "JPEG") -> bytes:
    """读取本地图片并重新编码；不是图片时抛出 ValueError。"""
    try:
        image = load_image(Path(path))
    except (UnidentifiedImageError, OSError) as exc:
        if isinstance(exc, FileNotFoundError):
            raise
        raise ValueError(f"not a readable image: {path}") from exc
    return image_to_bytes(image, fmt=fmt)
