"""分析器 — 采集循环调用的统一接口。

本地模式直接使用 VisionClient；中继模式把图片 POST 给本服务的 /api/analyze。
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from sightline.vision.encoder import check_size
from sightline.vision.errors import (
    AnalysisError,
    AnalysisOutcome,
    ErrorKind,
    user_message,
)

logger = logging.getLogger(__name__)


class Analyzer(Protocol):
    async def analyze(self, image: str) -> AnalysisOutcome: ...


class RelayAnalyzer:
    """通过本地 HTTP 接口分析图片，响应 {result} / {description} / {error}。"""

    def __init__(
        self,
        base_url: str,
        path: str = "/api/analyze",
        timeout: float = 60.0,
        max_image_chars: int = 180_000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.path = path
        self.max_image_chars = max_image_chars
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout), transport=transport
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def analyze(self, image: str) -> AnalysisOutcome:
        try:
            if not image:
                raise AnalysisError(ErrorKind.MISSING_INPUT)
            check_size(image, self.max_image_chars)
        except AnalysisError as e:
            return AnalysisOutcome.failure(e)

        try:
            resp = await self._client.post(self.path, json={"image": image})
        except httpx.TransportError as e:
            logger.warning("Relay %s unreachable: %s", self.base_url, e)
            return AnalysisOutcome(text=user_message(ErrorKind.NETWORK), error=ErrorKind.NETWORK)

        try:
            data = resp.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            logger.warning("Relay returned non-JSON body (HTTP %d)", resp.status_code)
            return AnalysisOutcome(
                text=user_message(ErrorKind.MALFORMED_RESPONSE),
                error=ErrorKind.MALFORMED_RESPONSE,
            )

        if resp.is_success:
            text = data.get("result") or data.get("description")
            if isinstance(text, str) and text.strip():
                return AnalysisOutcome(text=text.strip())
            return AnalysisOutcome(
                text=user_message(ErrorKind.MALFORMED_RESPONSE),
                error=ErrorKind.MALFORMED_RESPONSE,
            )

        # 服务端已把错误转成可播报文本
        error_text = data.get("error")
        kind = _relay_error_kind(resp.status_code, data.get("kind"))
        if isinstance(error_text, str) and error_text:
            return AnalysisOutcome(text=error_text, error=kind)
        return AnalysisOutcome(text=user_message(kind, resp.reason_phrase), error=kind)


def _relay_error_kind(status_code: int, kind: object) -> ErrorKind:
    if isinstance(kind, str):
        try:
            return ErrorKind(kind)
        except ValueError:
            pass
    if status_code == 400:
        return ErrorKind.MISSING_INPUT
    return ErrorKind.UPSTREAM_ERROR
