"""分析结果 — 纯文本描述 / 结构化导航报告，以及报告 → 单句指令的归约。"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, ValidationError

from sightline.vision.errors import AnalysisError, ErrorKind

UNSAFE_FALLBACK = "Warning: Path ahead is not safe, please proceed with caution."
CLEAR_PATH = "Path ahead is clear and level, safe to proceed."

_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```$", re.DOTALL)
# 末尾的长度单位（"3m"、"about 3 meters"），"km" 等不匹配
_TRAILING_METERS = re.compile(r"(?:(?<=\d)|\s)\s*(?:m|meters?|metres?)\.?$", re.IGNORECASE)

Distance = Union[str, float, None]


# ────────────────────── 报告 schema ──────────────────────


class _ReportPart(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _null_as_empty(value: Any) -> Any:
    # 模型常用 null 表示"无"，按空列表处理
    return [] if value is None else value


_NULL_AS_EMPTY = BeforeValidator(_null_as_empty)


class UrgentWarning(_ReportPart):
    type: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None


class Obstacle(_ReportPart):
    type: Optional[str] = None
    position: Optional[str] = None
    distance: Distance = None
    size: Optional[str] = None
    description: Optional[str] = None


class ElevationChange(_ReportPart):
    type: Optional[str] = None
    details: Optional[str] = None


class GroundConditions(_ReportPart):
    is_level: Optional[bool] = None
    surface_type: Optional[str] = None
    hazards: Annotated[list[Any], _NULL_AS_EMPTY] = []
    elevation_changes: Optional[ElevationChange] = None


class Sign(_ReportPart):
    type: Optional[str] = None
    content: Optional[str] = None
    location: Optional[str] = None


class Navigation(_ReportPart):
    recommended_direction: Optional[str] = None
    safety_instructions: Optional[str] = None
    distance_to_next_decision: Distance = None


class Assistance(_ReportPart):
    available: Optional[bool] = None
    type: Optional[str] = None
    location: Optional[str] = None
    distance: Distance = None


class NavigationReport(_ReportPart):
    """模型返回的结构化导航报告。字段缺省表示"不适用"。"""

    summary: Optional[str] = None
    safe_to_proceed: Optional[bool] = None
    urgent_warnings: Annotated[list[UrgentWarning], _NULL_AS_EMPTY] = []
    obstacles: Annotated[list[Obstacle], _NULL_AS_EMPTY] = []
    ground_conditions: Optional[GroundConditions] = None
    signs: Annotated[list[Sign], _NULL_AS_EMPTY] = []
    navigation: Optional[Navigation] = None
    assistance: Optional[Assistance] = None


# ────────────────────── 结果变体 ──────────────────────


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class StructuredReport:
    report: NavigationReport


AnalysisResult = Union[PlainText, StructuredReport]


def parse_report(content: str) -> StructuredReport:
    """解析模型输出的 JSON 报告，允许外层 Markdown 代码块。"""
    text = content.strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise AnalysisError(ErrorKind.MALFORMED_RESPONSE, f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise AnalysisError(ErrorKind.MALFORMED_RESPONSE, "report is not a JSON object")

    try:
        return StructuredReport(NavigationReport.model_validate(data))
    except ValidationError as e:
        raise AnalysisError(ErrorKind.MALFORMED_RESPONSE, f"schema mismatch: {e.error_count()} errors") from e


def parse_plain_text(content: str) -> PlainText:
    text = content.strip()
    if not text:
        raise AnalysisError(ErrorKind.MALFORMED_RESPONSE, "empty description")
    return PlainText(text)


# ────────────────────── 指令归约 ──────────────────────


def to_instruction(result: AnalysisResult) -> str:
    """将分析结果归约为一句播报文本。"""
    if isinstance(result, StructuredReport):
        return reduce_report(result.report)
    return result.text.strip()


def reduce_report(report: NavigationReport) -> str:
    """结构化报告 → 单句指令。

    安全优先：safe_to_proceed 不为 true 时只播报第一条紧急警告；否则依次拼接
    障碍物、高差、导航建议。相同输入总是得到相同输出。
    """
    if report.safe_to_proceed is not True:
        if report.urgent_warnings and report.urgent_warnings[0].description:
            return f"Warning: {report.urgent_warnings[0].description.strip()}"
        return UNSAFE_FALLBACK

    details: list[str] = []

    if report.obstacles:
        details.append(_describe_obstacle(report.obstacles[0]))

    ground = report.ground_conditions
    if ground is not None and ground.is_level is not True:
        elevation = ground.elevation_changes
        if elevation is not None and elevation.type:
            details.append(f"{elevation.type} ahead")

    if report.navigation is not None and report.navigation.safety_instructions:
        details.append(report.navigation.safety_instructions)

    details = [d.strip().rstrip(".").strip() for d in details]
    details = [d for d in details if d]
    if not details:
        return CLEAR_PATH
    return ", ".join(details) + "."


def _describe_obstacle(obstacle: Obstacle) -> str:
    parts = [f"{obstacle.type or 'obstacle'} detected"]
    distance = _format_distance(obstacle.distance)
    if distance:
        parts.append(f"{distance} meters")
    if obstacle.position:
        parts.append(obstacle.position)
    return " ".join(parts)


def _format_distance(value: Distance) -> str:
    """统一距离格式：2.0 → "2"，"3 meters" → "3"，"about 3 m" → "about 3"。"""
    if value is None:
        return ""
    if isinstance(value, (int, float)):
        return f"{value:g}"
    return _TRAILING_METERS.sub("", value.strip()).strip()
