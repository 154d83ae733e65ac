"""采集循环 — 定时抓帧 → 编码 → 分析 → 播报。

状态：IDLE（未激活）/ ACTIVE_WAITING（激活、空闲）/ ACTIVE_BUSY（激活、请求进行中）。
同一时刻最多一个分析请求；忙时到达的 tick 直接跳过。
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from sightline.vision.encoder import EncodeError, encode_frame
from sightline.vision.errors import ErrorKind, user_message

if TYPE_CHECKING:
    from sightline.pipeline.analyzer import Analyzer
    from sightline.pipeline.camera import FrameSource
    from sightline.pipeline.speech import SpeechOutput
    from sightline.pipeline.ticker import IntervalTicker, TickHandle

logger = logging.getLogger(__name__)

CAMERA_UNAVAILABLE = "Could not access camera. Please grant permission."
ACTIVATED_FEEDBACK = "Assistant activated. Analyzing your surroundings..."
ACTIVATED_SPEECH = "Assistant activated. I will help you navigate by describing your surroundings."
PAUSED_FEEDBACK = "Assistant paused. Tap to resume."
PAUSED_SPEECH = "Assistant paused."
ANALYSIS_FAILED = "Error analyzing the environment. Please try again."
WAITING_FEEDBACK = "Waiting to analyze environment..."


class LoopState(enum.Enum):
    IDLE = "idle"
    ACTIVE_WAITING = "active_waiting"
    ACTIVE_BUSY = "active_busy"


class CaptureLoop:
    """单个摄像头对应一个 CaptureLoop。"""

    def __init__(
        self,
        source: FrameSource,
        analyzer: Analyzer,
        speech: SpeechOutput,
        ticker: IntervalTicker,
        *,
        jpeg_quality: int = 80,
        on_feedback: Callable[[str], None] | None = None,
    ) -> None:
        self._source = source
        self._analyzer = analyzer
        self._speech = speech
        self._ticker = ticker
        self._jpeg_quality = jpeg_quality
        self._on_feedback = on_feedback

        self._active = False
        self._processing = False
        self._handle: TickHandle | None = None
        self.feedback: str = WAITING_FEEDBACK
        self.camera_ready = False

    @property
    def state(self) -> LoopState:
        if not self._active:
            return LoopState.IDLE
        if self._processing:
            return LoopState.ACTIVE_BUSY
        return LoopState.ACTIVE_WAITING

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_processing(self) -> bool:
        return self._processing

    async def start(self) -> None:
        """打开帧来源；失败只提示，不影响后续操作。"""
        try:
            await self._source.open()
        except Exception as e:
            logger.error("Error accessing camera: %s", e)
            self._set_feedback(CAMERA_UNAVAILABLE)
            return
        self.camera_ready = True
        logger.info("Camera activated")

    def toggle(self) -> LoopState:
        """切换激活状态并播报。"""
        if self._active:
            self.deactivate()
        else:
            self.activate()
        return self.state

    def activate(self) -> None:
        if self._active:
            return
        self._active = True
        self._handle = self._ticker.start(self.tick)
        self._set_feedback(ACTIVATED_FEEDBACK)
        self._speech.say(ACTIVATED_SPEECH)
        logger.info("Assistant activated")

    def deactivate(self) -> None:
        """停止后续 tick；已发出的请求不取消。"""
        if not self._active:
            return
        self._active = False
        self._cancel_ticks()
        self._set_feedback(PAUSED_FEEDBACK)
        self._speech.say(PAUSED_SPEECH)
        logger.info("Assistant paused")

    async def tick(self) -> bool:
        """处理一帧。未激活、忙或摄像头未就绪时返回 False。"""
        if not self._active or self._processing:
            return False

        self._processing = True
        try:
            frame = await self._source.read()
            if frame is None:
                return False

            try:
                image = encode_frame(frame, self._jpeg_quality)
            except EncodeError as e:
                logger.warning("Could not encode frame: %s", e)
                text = user_message(ErrorKind.CAPTURE_FAILED)
            else:
                outcome = await self._analyzer.analyze(image)
                text = outcome.text

            self._publish(text)
            return True
        except Exception:
            logger.exception("Error processing frame")
            self._publish(ANALYSIS_FAILED)
            return True
        finally:
            self._processing = False

    async def close(self) -> None:
        """卸载：取消定时、释放摄像头、停止语音。"""
        self._active = False
        self._cancel_ticks()
        self._ticker.shutdown()
        try:
            await self._source.close()
        finally:
            await self._speech.aclose()
        self.camera_ready = False

    def _cancel_ticks(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _publish(self, text: str) -> None:
        """结果/错误：更新显示并播报一次。"""
        self._set_feedback(text)
        self._speech.say(text)

    def _set_feedback(self, text: str) -> None:
        self.feedback = text
        if self._on_feedback is not None:
            self._on_feedback(text)
