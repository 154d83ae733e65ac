"""测试 loop.py — 状态机、忙时跳过、错误恢复、卸载清理。"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import numpy as np
import pytest

from conftest import FakeFrameSource, drain_speech
from sightline.pipeline.loop import (
    ACTIVATED_FEEDBACK,
    ACTIVATED_SPEECH,
    ANALYSIS_FAILED,
    CAMERA_UNAVAILABLE,
    PAUSED_FEEDBACK,
    PAUSED_SPEECH,
    WAITING_FEEDBACK,
    CaptureLoop,
    LoopState,
)
from sightline.vision.errors import AnalysisOutcome, ErrorKind


@pytest.fixture
def feedback_log() -> list[str]:
    return []


@pytest.fixture
def loop(frame_source, mock_analyzer, speech, ticker, feedback_log) -> CaptureLoop:
    return CaptureLoop(
        frame_source,
        mock_analyzer,
        speech,
        ticker,
        on_feedback=feedback_log.append,
    )


class TestStateMachine:
    """激活 / 暂停切换。"""

    def test_initial_state(self, loop):
        assert loop.state is LoopState.IDLE
        assert loop.feedback == WAITING_FEEDBACK

    async def test_activate_announces_and_schedules(self, loop, ticker, speech_backend, speech):
        assert loop.toggle() is LoopState.ACTIVE_WAITING
        assert ticker.started == 1
        assert ticker.callback == loop.tick
        assert loop.feedback == ACTIVATED_FEEDBACK
        await drain_speech(speech)
        assert speech_backend.spoken == [ACTIVATED_SPEECH]

    async def test_deactivate_cancels_ticks(self, loop, ticker, speech_backend, speech):
        loop.toggle()
        assert loop.toggle() is LoopState.IDLE
        ticker.handles[0].cancel.assert_called_once()
        assert loop.feedback == PAUSED_FEEDBACK
        await drain_speech(speech)
        assert speech_backend.spoken == [ACTIVATED_SPEECH, PAUSED_SPEECH]

    async def test_activate_twice_is_noop(self, loop, ticker):
        loop.activate()
        loop.activate()
        assert ticker.started == 1

    async def test_start_opens_source(self, loop, frame_source):
        await loop.start()
        assert frame_source.opened
        assert loop.camera_ready

    async def test_start_camera_failure(self, mock_analyzer, speech, ticker):
        loop = CaptureLoop(FakeFrameSource(fail_open=True), mock_analyzer, speech, ticker)
        await loop.start()
        assert loop.camera_ready is False
        assert loop.feedback == CAMERA_UNAVAILABLE
        # 仍可激活，不崩溃
        loop.activate()
        assert loop.state is LoopState.ACTIVE_WAITING


class TestTick:
    """单步处理。"""

    async def test_idle_tick_does_nothing(self, loop, mock_analyzer):
        assert await loop.tick() is False
        mock_analyzer.analyze.assert_not_called()

    async def test_tick_analyzes_and_speaks(self, loop, mock_analyzer, speech_backend, speech):
        loop.activate()
        assert await loop.tick() is True

        image = mock_analyzer.analyze.call_args.args[0]
        assert isinstance(image, str) and image.startswith("/9j/")  # base64 JPEG
        assert loop.feedback == "continue straight."
        assert loop.state is LoopState.ACTIVE_WAITING

        await drain_speech(speech)
        assert speech_backend.spoken == [ACTIVATED_SPEECH, "continue straight."]

    async def test_result_spoken_once_per_cycle(self, loop, speech_backend, speech):
        loop.activate()
        await loop.tick()
        await loop.tick()
        await drain_speech(speech)
        assert speech_backend.spoken.count("continue straight.") == 2

    async def test_camera_not_ready_skips(self, mock_analyzer, speech, ticker):
        source = FakeFrameSource()
        source.frame = None
        loop = CaptureLoop(source, mock_analyzer, speech, ticker)
        loop.activate()
        assert await loop.tick() is False
        mock_analyzer.analyze.assert_not_called()
        assert loop.state is LoopState.ACTIVE_WAITING

    async def test_encode_failure(self, mock_analyzer, speech, ticker, speech_backend):
        source = FakeFrameSource(np.zeros((1, 1, 1, 1), dtype=np.uint8))
        loop = CaptureLoop(source, mock_analyzer, speech, ticker)
        loop.activate()
        assert await loop.tick() is True
        assert loop.feedback == "Could not capture image from camera."
        mock_analyzer.analyze.assert_not_called()
        assert loop.is_active

    async def test_analysis_error_keeps_loop_alive(self, loop, mock_analyzer):
        mock_analyzer.analyze = AsyncMock(
            return_value=AnalysisOutcome(
                text="Network failure, please check your connection", error=ErrorKind.NETWORK
            )
        )
        loop.activate()
        await loop.tick()
        assert "network failure" in loop.feedback.lower()
        assert loop.state is LoopState.ACTIVE_WAITING

        # 下一次 tick 独立重试
        mock_analyzer.analyze = AsyncMock(return_value=AnalysisOutcome(text="all clear."))
        await loop.tick()
        assert loop.feedback == "all clear."

    async def test_unexpected_exception_recovers(self, loop, mock_analyzer):
        mock_analyzer.analyze = AsyncMock(side_effect=RuntimeError("boom"))
        loop.activate()
        assert await loop.tick() is True
        assert loop.feedback == ANALYSIS_FAILED
        assert loop.state is LoopState.ACTIVE_WAITING


class TestBusyGuard:
    """同一时刻最多一个请求。"""

    async def test_concurrent_tick_skipped(self, loop, mock_analyzer, frame_source):
        release = asyncio.Event()
        entered = asyncio.Event()

        async def slow_analyze(image):
            entered.set()
            await release.wait()
            return AnalysisOutcome(text="done.")

        mock_analyzer.analyze = AsyncMock(side_effect=slow_analyze)
        loop.activate()

        first = asyncio.create_task(loop.tick())
        await entered.wait()
        assert loop.state is LoopState.ACTIVE_BUSY

        assert await loop.tick() is False
        assert frame_source.reads == 1

        release.set()
        assert await first is True
        assert mock_analyzer.analyze.await_count == 1
        assert loop.state is LoopState.ACTIVE_WAITING

    async def test_deactivate_while_busy_keeps_request(self, loop, mock_analyzer, feedback_log):
        release = asyncio.Event()
        entered = asyncio.Event()

        async def slow_analyze(image):
            entered.set()
            await release.wait()
            return AnalysisOutcome(text="late result.")

        mock_analyzer.analyze = AsyncMock(side_effect=slow_analyze)
        loop.activate()
        task = asyncio.create_task(loop.tick())
        await entered.wait()

        loop.deactivate()
        assert loop.state is LoopState.IDLE
        assert loop.is_processing

        release.set()
        await task
        # 已发出的请求照常完成并显示
        assert feedback_log[-1] == "late result."
        assert loop.state is LoopState.IDLE
        assert await loop.tick() is False


class TestClose:
    """卸载清理。"""

    async def test_close_releases_everything(self, loop, frame_source, ticker):
        await loop.start()
        loop.activate()
        await loop.close()
        assert frame_source.closed
        assert ticker.shut_down
        ticker.handles[0].cancel.assert_called_once()
        assert loop.state is LoopState.IDLE
