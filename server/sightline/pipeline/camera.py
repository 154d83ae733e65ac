"""帧来源 — OpenCV 摄像头 / 静态图片文件。"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class CameraUnavailable(Exception):
    """摄像头无法打开（无设备或无权限）。"""


class FrameSource(ABC):
    """帧来源协议。read() 返回 None 表示暂时没有可用帧。"""

    async def open(self) -> None:
        return None

    @abstractmethod
    async def read(self) -> np.ndarray | None:
        ...  # pragma: no cover

    async def close(self) -> None:
        return None


class CameraSource(FrameSource):
    """cv2.VideoCapture 封装，阻塞调用放到线程里执行。"""

    def __init__(self, index: int = 0) -> None:
        self.index = index
        self._capture: cv2.VideoCapture | None = None

    async def open(self) -> None:
        capture = await asyncio.to_thread(cv2.VideoCapture, self.index)
        if not capture.isOpened():
            capture.release()
            raise CameraUnavailable(f"Could not open camera {self.index}")
        self._capture = capture
        logger.info("Camera %d opened", self.index)

    async def read(self) -> np.ndarray | None:
        if self._capture is None:
            return None
        ok, frame = await asyncio.to_thread(self._capture.read)
        if not ok or frame is None or frame.size == 0:
            logger.debug("Camera %d returned no frame", self.index)
            return None
        return frame

    async def close(self) -> None:
        if self._capture is not None:
            await asyncio.to_thread(self._capture.release)
            self._capture = None
            logger.info("Camera %d released", self.index)


class ImageFileSource(FrameSource):
    """每次返回同一张图片，用于无摄像头环境调试。"""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._frame: np.ndarray | None = None

    async def open(self) -> None:
        frame = await asyncio.to_thread(cv2.imread, str(self.path))
        if frame is None:
            raise CameraUnavailable(f"Could not read image {self.path}")
        self._frame = frame

    async def read(self) -> np.ndarray | None:
        return self._frame
