"""语音播报 — Edge-TTS 合成 + miniaudio 本地播放，fire-and-forget 队列。"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import TYPE_CHECKING

import edge_tts
import miniaudio

if TYPE_CHECKING:
    from sightline.config import SpeechConfig

logger = logging.getLogger(__name__)

SAMPLE_RATE = 24000
NCHANNELS = 1


def prosody(rate: float = 1.0, pitch: float = 1.0, volume: float = 1.0) -> dict[str, str]:
    """倍率 → Edge-TTS 参数。1.0 为正常：rate/volume 为百分比偏移，pitch 为 Hz 偏移。"""
    return {
        "rate": f"{round((rate - 1.0) * 100):+d}%",
        "volume": f"{round((volume - 1.0) * 100):+d}%",
        "pitch": f"{round((pitch - 1.0) * 100):+d}Hz",
    }


class SpeechUnavailable(Exception):
    """本机没有可用的语音输出（例如无法打开声卡）。"""


class SpeechBackend(ABC):
    """语音后端协议。"""

    @abstractmethod
    async def speak(self, text: str) -> None:
        """播报一段文本，播完返回。"""
        ...  # pragma: no cover


class NullSpeechBackend(SpeechBackend):
    """无语音能力的平台：什么都不做。"""

    async def speak(self, text: str) -> None:
        return None


class EdgeSpeechBackend(SpeechBackend):
    """Edge-TTS 云端合成 MP3，解码为 PCM 后用本机声卡播放。"""

    def __init__(
        self,
        voice: str = "en-US-AriaNeural",
        rate: float = 1.0,
        pitch: float = 1.0,
        volume: float = 1.0,
    ) -> None:
        self.voice = voice
        self._prosody = prosody(rate, pitch, volume)

    async def synthesize(self, text: str) -> miniaudio.DecodedSoundFile | None:
        """合成整句并解码为 16bit PCM。"""
        communicate = edge_tts.Communicate(text, self.voice, **self._prosody)

        mp3_chunks: list[bytes] = []
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                mp3_chunks.append(chunk["data"])

        if not mp3_chunks:
            return None

        return miniaudio.decode(
            b"".join(mp3_chunks),
            output_format=miniaudio.SampleFormat.SIGNED16,
            nchannels=NCHANNELS,
            sample_rate=SAMPLE_RATE,
        )

    async def speak(self, text: str) -> None:
        if not text.strip():
            return

        decoded = await self.synthesize(text)
        if decoded is None or decoded.num_frames == 0:
            return

        try:
            device = miniaudio.PlaybackDevice(
                output_format=miniaudio.SampleFormat.SIGNED16,
                nchannels=decoded.nchannels,
                sample_rate=decoded.sample_rate,
            )
        except miniaudio.MiniaudioError as e:
            raise SpeechUnavailable(f"no playback device: {e}") from e
        try:
            stream = _pcm_stream(decoded.samples, decoded.nchannels)
            next(stream)  # 预激生成器
            device.start(stream)
            await asyncio.sleep(decoded.duration)
        finally:
            device.close()


def _pcm_stream(samples, nchannels: int) -> Iterator:
    """miniaudio 播放回调生成器：按请求的帧数切片输出。"""
    required_frames = yield b""
    offset = 0
    while offset < len(samples):
        count = required_frames * nchannels
        chunk = samples[offset : offset + count]
        offset += count
        required_frames = yield chunk
    while True:
        # 播放完毕后补静音，直到设备关闭
        required_frames = yield b"\x00" * (required_frames * nchannels * 2)


class SpeechOutput:
    """语音输出：按顺序排队播报，调用方不等待。

    单句合成/播放失败只丢弃该句；后端报告 SpeechUnavailable 时视为平台无语音
    能力，之后静默丢弃。
    """

    def __init__(self, backend: SpeechBackend) -> None:
        self._backend = backend
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._available = True

    @classmethod
    def from_config(cls, config: SpeechConfig) -> SpeechOutput:
        if config.backend == "none":
            return cls(NullSpeechBackend())
        return cls(EdgeSpeechBackend(config.voice, config.rate, config.pitch, config.volume))

    @property
    def available(self) -> bool:
        return self._available

    def say(self, text: str) -> None:
        """排队播报，立即返回。"""
        if not text or not text.strip() or not self._available:
            return
        self._queue.put_nowait(text.strip())
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())

    async def _drain(self) -> None:
        while not self._queue.empty():
            text = self._queue.get_nowait()
            try:
                await self._backend.speak(text)
            except asyncio.CancelledError:
                raise
            except SpeechUnavailable as e:
                logger.warning("Speech unavailable, disabling output: %s", e)
                self._available = False
                while not self._queue.empty():
                    self._queue.get_nowait()
                return
            except Exception as e:
                logger.warning("Dropping utterance %r: %s", text, e)

    async def wait_idle(self) -> None:
        """等待当前队列播完（测试和退出时使用）。"""
        if self._worker is not None and not self._worker.done():
            await self._worker

    async def aclose(self) -> None:
        """取消尚未播完的语音。"""
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        while not self._queue.empty():
            self._queue.get_nowait()
