"""FastAPI 应用工厂 + lifespan。"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sightline.api.protocol import (
    AnalyzeRequest,
    DescriptionResponse,
    ErrorResponse,
    HealthResponse,
    InstructionResponse,
)
from sightline.config import Settings, load_settings
from sightline.vision.client import VisionClient
from sightline.vision.errors import INPUT_ERRORS, AnalysisOutcome, ErrorKind, user_message

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """启动/关闭生命周期管理。"""
    settings: Settings = app.state.settings

    # 1. 日志
    logging.basicConfig(level=getattr(logging, settings.server.log_level), format=LOG_FORMAT)

    # 2. 视觉模型客户端
    vision = VisionClient(settings.vision)
    await vision.start()
    app.state.vision = vision

    yield

    await vision.close()


def _error_response(outcome: AnalysisOutcome) -> JSONResponse:
    status = 400 if outcome.error in INPUT_ERRORS else 500
    body = ErrorResponse(error=outcome.text, kind=outcome.error.value)
    return JSONResponse(body.model_dump(), status_code=status)


def create_app(settings: Settings | None = None) -> FastAPI:
    """创建 FastAPI 应用。"""
    if settings is None:
        settings = load_settings()

    app = FastAPI(title="Sightline Server", lifespan=lifespan)
    app.state.settings = settings

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        logger.warning("Rejected request body: %s", exc.errors())
        body = ErrorResponse(
            error=user_message(ErrorKind.MISSING_INPUT), kind=ErrorKind.MISSING_INPUT.value
        )
        return JSONResponse(body.model_dump(), status_code=400)

    @app.post("/api/analyze", response_model=InstructionResponse)
    async def analyze(body: AnalyzeRequest, request: Request):
        """结构化导航报告 → 单句指令。"""
        vision: VisionClient = request.app.state.vision
        outcome = await vision.analyze(body.image or "", mode="report")
        if not outcome.ok:
            return _error_response(outcome)
        return InstructionResponse(result=outcome.text)

    @app.post("/analyze", response_model=DescriptionResponse)
    async def describe(body: AnalyzeRequest, request: Request):
        """自由文本环境描述。"""
        vision: VisionClient = request.app.state.vision
        outcome = await vision.analyze(body.image or "", mode="describe")
        if not outcome.ok:
            return _error_response(outcome)
        return DescriptionResponse(description=outcome.text)

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        vision = getattr(request.app.state, "vision", None)
        return HealthResponse(vision_configured=vision.is_configured if vision else False)

    return app
