"""共享 fixtures — 假帧来源、语音记录器、上游 mock transport、测试配置等。"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import numpy as np
import pytest

from sightline.config import Settings, load_settings
from sightline.pipeline.camera import FrameSource
from sightline.pipeline.speech import SpeechBackend, SpeechOutput
from sightline.vision.errors import AnalysisOutcome

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ────────────────────── Fakes ──────────────────────


class FakeFrameSource(FrameSource):
    """返回固定帧；可模拟打开失败 / 摄像头未就绪。"""

    def __init__(self, frame: np.ndarray | None = None, fail_open: bool = False) -> None:
        self.frame = frame if frame is not None else np.zeros((48, 64, 3), dtype=np.uint8)
        self.fail_open = fail_open
        self.opened = False
        self.closed = False
        self.reads = 0

    async def open(self) -> None:
        if self.fail_open:
            raise RuntimeError("permission denied")
        self.opened = True

    async def read(self) -> np.ndarray | None:
        self.reads += 1
        return self.frame

    async def close(self) -> None:
        self.closed = True


class RecordingSpeechBackend(SpeechBackend):
    """记录播报文本，不发声。"""

    def __init__(self) -> None:
        self.spoken: list[str] = []

    async def speak(self, text: str) -> None:
        self.spoken.append(text)


class FakeTicker:
    """不真正定时，仅记录 start/cancel，测试中手动调用 tick()。"""

    def __init__(self) -> None:
        self.callback: Callable | None = None
        self.started = 0
        self.handles: list[MagicMock] = []
        self.shut_down = False

    def start(self, callback):
        self.callback = callback
        self.started += 1
        handle = MagicMock()
        self.handles.append(handle)
        return handle

    def shutdown(self) -> None:
        self.shut_down = True


class UpstreamRecorder:
    """httpx.MockTransport 处理器：记录请求并按队列返回响应。"""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self._responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def last_json(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


def completion_response(content: str, status_code: int = 200) -> httpx.Response:
    """OpenAI 风格的非流式响应。"""
    return httpx.Response(
        status_code,
        json={"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]},
    )


def report_response(report: dict[str, Any]) -> httpx.Response:
    return completion_response(json.dumps(report))


# ────────────────────── Fixtures ──────────────────────


@pytest.fixture
def test_config() -> Settings:
    """加载测试专用配置。"""
    return load_settings(FIXTURES_DIR / "test_config.toml")


@pytest.fixture
def frame() -> np.ndarray:
    """64×48 的渐变测试帧（BGR）。"""
    gradient = np.linspace(0, 255, 64, dtype=np.uint8)
    return np.stack([np.tile(gradient, (48, 1))] * 3, axis=-1)


@pytest.fixture
def frame_source(frame) -> FakeFrameSource:
    return FakeFrameSource(frame)


@pytest.fixture
def speech_backend() -> RecordingSpeechBackend:
    return RecordingSpeechBackend()


@pytest.fixture
def speech(speech_backend) -> SpeechOutput:
    return SpeechOutput(speech_backend)


@pytest.fixture
def ticker() -> FakeTicker:
    return FakeTicker()


@pytest.fixture
def mock_analyzer() -> MagicMock:
    """Mock 分析器 — 返回固定指令。"""
    analyzer = MagicMock()
    analyzer.analyze = AsyncMock(return_value=AnalysisOutcome(text="continue straight."))
    return analyzer


@pytest.fixture
def safe_report() -> dict[str, Any]:
    return {
        "summary": "hallway",
        "safe_to_proceed": True,
        "navigation": {"safety_instructions": "continue straight"},
    }


@pytest.fixture
def danger_report() -> dict[str, Any]:
    return {
        "safe_to_proceed": False,
        "urgent_warnings": [{"description": "Step down ahead"}],
    }


async def drain_speech(speech: SpeechOutput) -> None:
    """等待排队中的语音全部"播完"。"""
    await asyncio.sleep(0)
    await speech.wait_idle()
