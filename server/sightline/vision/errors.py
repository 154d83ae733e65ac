"""图像分析错误类型 — 所有失败在 VisionClient 边界转成可播报的文本。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sightline.vision.report import AnalysisResult


class ErrorKind(str, Enum):
    MISSING_INPUT = "missing_input"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    UPSTREAM_AUTH = "upstream_auth"
    UPSTREAM_BAD_REQUEST = "upstream_bad_request"
    UPSTREAM_FORBIDDEN = "upstream_forbidden"
    UPSTREAM_NOT_FOUND = "upstream_not_found"
    UPSTREAM_SERVER = "upstream_server"
    UPSTREAM_ERROR = "upstream_error"
    NETWORK = "network"
    MALFORMED_RESPONSE = "malformed_response"
    CAPTURE_FAILED = "capture_failed"


_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.MISSING_INPUT: "No image data provided",
    ErrorKind.PAYLOAD_TOO_LARGE: "Image is too large, please use a smaller image",
    ErrorKind.UPSTREAM_AUTH: "API authentication failed, please check the API key",
    ErrorKind.UPSTREAM_BAD_REQUEST: "API request was malformed, please check the request parameters",
    ErrorKind.UPSTREAM_FORBIDDEN: "API access denied, please check the API key permissions",
    ErrorKind.UPSTREAM_NOT_FOUND: "API endpoint not found, please check the API URL",
    ErrorKind.UPSTREAM_SERVER: "API server error, please try again later",
    ErrorKind.UPSTREAM_ERROR: "API call failed: {detail}",
    ErrorKind.NETWORK: "Network failure, please check your connection",
    ErrorKind.MALFORMED_RESPONSE: "Could not interpret the image analysis result",
    ErrorKind.CAPTURE_FAILED: "Could not capture image from camera.",
}

# 上游 HTTP 状态码 → 错误类型；5xx 单独判断
_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.UPSTREAM_BAD_REQUEST,
    401: ErrorKind.UPSTREAM_AUTH,
    403: ErrorKind.UPSTREAM_FORBIDDEN,
    404: ErrorKind.UPSTREAM_NOT_FOUND,
}

# 本地输入错误，HTTP 层返回 400，其余返回 500
INPUT_ERRORS = frozenset({ErrorKind.MISSING_INPUT, ErrorKind.PAYLOAD_TOO_LARGE})


def user_message(kind: ErrorKind, detail: str = "") -> str:
    """错误类型对应的用户提示语。"""
    return _MESSAGES[kind].format(detail=detail or "unknown error")


def kind_for_status(status_code: int) -> ErrorKind:
    """按上游状态码归类。"""
    if status_code >= 500:
        return ErrorKind.UPSTREAM_SERVER
    return _STATUS_KINDS.get(status_code, ErrorKind.UPSTREAM_ERROR)


class AnalysisError(Exception):
    """分析链路内部异常，只在 VisionClient 内部抛出和捕获。"""

    def __init__(self, kind: ErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)

    @property
    def message(self) -> str:
        return user_message(self.kind, self.detail)


@dataclass
class AnalysisOutcome:
    """一次分析的结果：成功时 text 为播报文本，失败时为错误提示。"""

    text: str
    error: ErrorKind | None = None
    result: AnalysisResult | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, exc: AnalysisError) -> AnalysisOutcome:
        return cls(text=exc.message, error=exc.kind)
