"""命令行入口 — serve：启动 HTTP 服务；assist：运行摄像头采集循环。"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import threading
from pathlib import Path

from sightline.app import LOG_FORMAT, create_app
from sightline.config import Settings, load_settings
from sightline.pipeline.analyzer import RelayAnalyzer
from sightline.pipeline.camera import CameraSource, FrameSource, ImageFileSource
from sightline.pipeline.loop import CaptureLoop
from sightline.pipeline.speech import SpeechOutput
from sightline.pipeline.ticker import IntervalTicker
from sightline.vision.client import VisionClient

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sightline",
        description="Camera-to-speech navigation assistant for visually impaired users",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=Path, default=None, help="TOML config file")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP analysis API")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)

    assist = sub.add_parser("assist", help="Run the camera capture loop")
    assist.add_argument("--interval", type=float, default=None, help="Seconds between captures")
    assist.add_argument("--camera", type=int, default=None, help="Camera index")
    assist.add_argument("--image", type=Path, default=None, help="Analyze a still image instead of a camera")
    assist.add_argument("--relay", type=str, default=None, help="Send frames to a running server at this URL")
    assist.add_argument("--no-speech", action="store_true", help="Print feedback only")
    assist.add_argument("--paused", action="store_true", help="Start idle; press Enter to activate")
    return parser


def _load(args: argparse.Namespace) -> Settings:
    return load_settings(args.config) if args.config else load_settings()


def _apply_assist_overrides(settings: Settings, args: argparse.Namespace) -> None:
    if args.interval is not None:
        settings.capture.interval_seconds = args.interval
    if args.camera is not None:
        settings.capture.camera_index = args.camera
    if args.relay is not None:
        settings.capture.analyzer = "relay"
        settings.capture.relay_url = args.relay
    if args.no_speech:
        settings.speech.backend = "none"


def run_server(settings: Settings, args: argparse.Namespace) -> None:
    import uvicorn

    host = args.host or settings.server.host
    port = args.port or settings.server.port
    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.server.log_level.lower())


def _watch_stdin(event_loop: asyncio.AbstractEventLoop, toggles: asyncio.Queue) -> None:
    """后台线程读 stdin，每个回车投递一次切换；daemon 线程不阻塞退出。"""

    def _reader() -> None:
        for _ in sys.stdin:
            event_loop.call_soon_threadsafe(toggles.put_nowait, None)

    threading.Thread(target=_reader, name="stdin-toggle", daemon=True).start()


async def run_assistant(settings: Settings, image: Path | None = None, paused: bool = False) -> None:
    """运行采集循环直到 Ctrl+C；回车切换激活/暂停。"""
    source: FrameSource
    if image is not None:
        source = ImageFileSource(image)
    else:
        source = CameraSource(settings.capture.camera_index)

    vision: VisionClient | None = None
    relay: RelayAnalyzer | None = None
    if settings.capture.analyzer == "relay":
        relay = RelayAnalyzer(
            settings.capture.relay_url,
            settings.capture.relay_path,
            timeout=settings.vision.timeout,
            max_image_chars=settings.vision.max_image_chars,
        )
        analyzer = relay
    else:
        vision = VisionClient(settings.vision)
        await vision.start()
        analyzer = vision

    loop = CaptureLoop(
        source,
        analyzer,
        SpeechOutput.from_config(settings.speech),
        IntervalTicker(settings.capture.interval_seconds),
        jpeg_quality=settings.capture.jpeg_quality,
        on_feedback=lambda text: print(f"> {text}", flush=True),
    )

    await loop.start()
    if not paused:
        loop.activate()

    toggles: asyncio.Queue[None] = asyncio.Queue()
    _watch_stdin(asyncio.get_running_loop(), toggles)

    try:
        while True:
            await toggles.get()
            loop.toggle()
    finally:
        await loop.close()
        if vision is not None:
            await vision.close()
        if relay is not None:
            await relay.close()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = _load(args)

    if args.command == "serve":
        run_server(settings, args)
        return

    logging.basicConfig(level=getattr(logging, settings.server.log_level), format=LOG_FORMAT)
    _apply_assist_overrides(settings, args)
    try:
        asyncio.run(run_assistant(settings, args.image, args.paused))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down")


if __name__ == "__main__":
    main()
