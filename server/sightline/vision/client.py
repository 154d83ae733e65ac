"""视觉模型客户端 — OpenAI 兼容 chat/completions 接口（默认 NVIDIA NIM）。"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

import httpx

from sightline.vision.encoder import check_size, split_data_url, to_data_url
from sightline.vision.errors import (
    AnalysisError,
    AnalysisOutcome,
    ErrorKind,
    kind_for_status,
    user_message,
)
from sightline.vision.prompts import PROMPTS
from sightline.vision.report import (
    AnalysisResult,
    parse_plain_text,
    parse_report,
    to_instruction,
)

if TYPE_CHECKING:
    from sightline.config import VisionConfig

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/chat/completions"

# SSE 流式响应
_SSE_PREFIX = "data:"
STREAM_DONE = "[DONE]"


async def iter_stream_deltas(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """逐行解析 SSE，产出 choices[0].delta.content，遇到 [DONE] 结束。

    无法解析的数据块记录后跳过。
    """
    async for raw in lines:
        line = raw.strip()
        if not line.startswith(_SSE_PREFIX):
            continue
        data = line[len(_SSE_PREFIX):].strip()
        if data == STREAM_DONE:
            return
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Skipping unparsable stream chunk: %s", data[:100])
            continue
        delta = _first_choice(chunk).get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        if isinstance(content, str) and content:
            yield content


def _first_choice(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return {}
    return choices[0]


def _message_content(data: Any) -> str:
    """取 choices[0].message.content，兼容 content 为分段列表的情况。"""
    message = _first_choice(data).get("message")
    if not isinstance(message, dict):
        raise AnalysisError(ErrorKind.MALFORMED_RESPONSE, "response has no choices[0].message")

    content = message.get("content")
    if isinstance(content, list):
        content = "".join(
            part.get("text", "") for part in content if isinstance(part, dict)
        )
    if not isinstance(content, str) or not content.strip():
        raise AnalysisError(ErrorKind.MALFORMED_RESPONSE, "empty message content")
    return content


def _upstream_detail(response: httpx.Response) -> str:
    """提取上游错误信息（error.message / detail / 原始文本）。"""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("detail"):
            return str(body["detail"])
    return response.reason_phrase


class VisionClient:
    """多模态 chat completion 客户端，analyze() 永不向外抛出。"""

    def __init__(
        self,
        config: VisionConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout),
            transport=self._transport,
        )
        if not self.is_configured:
            logger.warning("No vision API key configured; requests will fail authentication")

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    def build_payload(self, image_b64: str, mode: str = "report") -> dict[str, Any]:
        """组装请求体：一条 user 消息，文本提示 + 图片。"""
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": PROMPTS[mode]},
                        {"type": "image_url", "image_url": {"url": to_data_url(image_b64)}},
                    ],
                }
            ],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "top_p": self.config.top_p,
        }
        if self.config.stream:
            payload["stream"] = True
        return payload

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if self.config.stream else "application/json",
        }

    async def analyze(self, image: str, mode: str | None = None) -> AnalysisOutcome:
        """分析一张图片，返回播报文本或错误提示。"""
        try:
            result = await self.analyze_result(image, mode or self.config.mode)
        except AnalysisError as e:
            logger.warning("Image analysis failed (%s): %s", e.kind.value, e.detail)
            return AnalysisOutcome.failure(e)
        except Exception:
            logger.exception("Unexpected image analysis failure")
            return AnalysisOutcome(
                text=user_message(ErrorKind.MALFORMED_RESPONSE),
                error=ErrorKind.MALFORMED_RESPONSE,
            )
        return AnalysisOutcome(text=to_instruction(result), result=result)

    async def analyze_result(self, image: str, mode: str = "report") -> AnalysisResult:
        """分析链路本体，失败时抛出 AnalysisError。"""
        if mode not in PROMPTS:
            raise ValueError(f"Unknown analysis mode: {mode}")
        if not image:
            raise AnalysisError(ErrorKind.MISSING_INPUT)

        # 先做本地检查，超限不发请求
        check_size(image, self.config.max_image_chars)
        _, image_b64 = split_data_url(image)
        if not image_b64:
            raise AnalysisError(ErrorKind.MISSING_INPUT, "data URL without payload")

        if not self.is_configured:
            raise AnalysisError(ErrorKind.UPSTREAM_AUTH, "no API key configured")

        logger.info(
            "Sending image to %s (%d chars, mode=%s, stream=%s)",
            self.config.model, len(image_b64), mode, self.config.stream,
        )
        content = await self._complete(self.build_payload(image_b64, mode))

        if mode == "report":
            return parse_report(content)
        return parse_plain_text(content)

    async def _complete(self, payload: dict[str, Any]) -> str:
        if self._client is None:
            await self.start()

        try:
            if self.config.stream:
                return await self._complete_stream(payload)
            return await self._complete_json(payload)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise AnalysisError(kind_for_status(status), _upstream_detail(e.response)) from e
        except httpx.TransportError as e:
            raise AnalysisError(ErrorKind.NETWORK, str(e) or type(e).__name__) from e

    async def _complete_json(self, payload: dict[str, Any]) -> str:
        resp = await self._client.post(COMPLETIONS_PATH, json=payload, headers=self._headers())
        resp.raise_for_status()
        try:
            data = resp.json()
        except ValueError as e:
            raise AnalysisError(ErrorKind.MALFORMED_RESPONSE, "response is not JSON") from e
        return _message_content(data)

    async def _complete_stream(self, payload: dict[str, Any]) -> str:
        """流式请求：每次请求独立拼接 delta，直到 [DONE] 或流结束。"""
        async with self._client.stream(
            "POST", COMPLETIONS_PATH, json=payload, headers=self._headers()
        ) as resp:
            if resp.is_error:
                await resp.aread()
            resp.raise_for_status()
            parts = [delta async for delta in iter_stream_deltas(resp.aiter_lines())]

        text = "".join(parts)
        if not text.strip():
            raise AnalysisError(ErrorKind.MALFORMED_RESPONSE, "stream produced no content")
        return text
