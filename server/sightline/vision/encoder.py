"""图像编码 — 摄像头帧 → JPEG → base64 / data URL。"""

from __future__ import annotations

import base64
import logging
from typing import Union

import cv2
import numpy as np

from sightline.vision.errors import AnalysisError, ErrorKind

logger = logging.getLogger(__name__)

# 编码后字符串长度上限（含 data URL 前缀）
MAX_IMAGE_CHARS = 180_000

DEFAULT_JPEG_QUALITY = 80

_DATA_URL_PREFIX = "data:"

Frame = Union[np.ndarray, bytes, bytearray]


class EncodeError(Exception):
    """帧无法编码为 JPEG。"""


def encode_frame(
    frame: Frame,
    quality: int = DEFAULT_JPEG_QUALITY,
    *,
    data_url: bool = False,
) -> str:
    """将一帧编码为 base64 JPEG。

    ndarray 视为 OpenCV BGR 图像，用 cv2.imencode 压缩；bytes 视为已编码的
    图片数据，原样 base64。
    """
    if isinstance(frame, (bytes, bytearray)):
        if not frame:
            raise EncodeError("empty image blob")
        payload = bytes(frame)
    else:
        payload = _jpeg_bytes(frame, quality)

    encoded = base64.b64encode(payload).decode("ascii")
    return to_data_url(encoded) if data_url else encoded


def _jpeg_bytes(frame: np.ndarray, quality: int) -> bytes:
    if not isinstance(frame, np.ndarray) or frame.size == 0:
        raise EncodeError("empty frame")
    if frame.ndim not in (2, 3):
        raise EncodeError(f"unsupported frame shape {frame.shape}")

    try:
        ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    except cv2.error as e:
        raise EncodeError(str(e)) from e
    if not ok:
        raise EncodeError("cv2.imencode failed")
    return buffer.tobytes()


def to_data_url(image_b64: str, mime: str = "image/jpeg") -> str:
    return f"data:{mime};base64,{image_b64}"


def split_data_url(image: str) -> tuple[str | None, str]:
    """拆分 data URL，返回 (mime, base64)；纯 base64 时 mime 为 None。"""
    if not image.startswith(_DATA_URL_PREFIX):
        return None, image
    header, sep, data = image.partition(",")
    if not sep:
        return None, image
    mime = header[len(_DATA_URL_PREFIX):].split(";", 1)[0] or None
    return mime, data


def check_size(image: str, limit: int = MAX_IMAGE_CHARS) -> None:
    """超出长度上限直接拒绝，不发起网络请求。"""
    if len(image) > limit:
        logger.info("Rejecting image: %d chars > limit %d", len(image), limit)
        raise AnalysisError(ErrorKind.PAYLOAD_TOO_LARGE, f"{len(image)} chars")
