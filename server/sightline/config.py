"""配置管理 — Pydantic Settings 从 TOML 加载。"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

_DEFAULT_TOML = Path(__file__).resolve().parent.parent / "config" / "default.toml"

# 未显式配置时依次尝试的 API key 环境变量
_API_KEY_FALLBACK_ENV = ("NVIDIA_API_KEY", "NIM_API_KEY")


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class VisionConfig(BaseModel):
    base_url: str = "https://integrate.api.nvidia.com/v1"
    model: str = "meta/llama-3.2-90b-vision-instruct"
    api_key: str = ""
    mode: Literal["report", "describe"] = "report"
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, gt=0)
    top_p: float = Field(default=1.0, gt=0.0, le=1.0)
    stream: bool = False
    timeout: float = Field(default=60.0, gt=0)
    max_image_chars: int = Field(default=180_000, gt=0)


class CaptureConfig(BaseModel):
    interval_seconds: float = Field(default=2.0, gt=0)
    camera_index: int = 0
    jpeg_quality: int = Field(default=80, ge=1, le=100)
    analyzer: Literal["local", "relay"] = "local"
    relay_url: str = "http://127.0.0.1:8000"
    relay_path: str = "/api/analyze"


class SpeechConfig(BaseModel):
    backend: Literal["edge", "none"] = "edge"
    voice: str = "en-US-AriaNeural"
    rate: float = Field(default=1.0, gt=0)
    pitch: float = Field(default=1.0, gt=0)
    volume: float = Field(default=1.0, ge=0, le=1.0)


class Settings(BaseSettings):
    server: ServerConfig = ServerConfig()
    vision: VisionConfig = VisionConfig()
    capture: CaptureConfig = CaptureConfig()
    speech: SpeechConfig = SpeechConfig()

    model_config = {"env_prefix": "SIGHTLINE_", "env_nested_delimiter": "__"}

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # 环境变量优先于 TOML（TOML 内容以 init 参数传入）
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @model_validator(mode="after")
    def _resolve_api_key(self) -> Settings:
        """API key 只在启动时解析一次；缺失不报错，首次调用时按认证失败处理。"""
        if not self.vision.api_key:
            for env_key in _API_KEY_FALLBACK_ENV:
                value = os.environ.get(env_key)
                if value:
                    self.vision.api_key = value
                    break
        return self


def load_settings(toml_path: Path = _DEFAULT_TOML) -> Settings:
    """从 TOML 文件加载配置，环境变量可覆盖。"""
    import sys

    if sys.version_info >= (3, 11):
        import tomllib
    else:
        import tomli as tomllib

    if toml_path.exists():
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)
        return Settings(**data)
    return Settings()
