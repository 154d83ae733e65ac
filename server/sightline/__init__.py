"""Sightline — 摄像头画面 → 视觉模型 → 语音播报的导航辅助工具。"""

__version__ = "0.1.0"
