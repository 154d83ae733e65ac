"""HTTP 接口消息定义 — Pydantic 模型。"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class AnalyzeRequest(BaseModel):
    image: Optional[str] = None  # base64 或 data URL


class InstructionResponse(BaseModel):
    result: str


class DescriptionResponse(BaseModel):
    description: str


class ErrorResponse(BaseModel):
    error: str
    kind: str


class HealthResponse(BaseModel):
    status: str = "ok"
    vision_configured: bool
