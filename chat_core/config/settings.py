"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class ChatSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 本地模型服务 ----
    ollama_base_url: str = Field(
        default="http://127.0.0.1:11434",
        description="本地模型服务（Ollama）的基础 URL",
    )
    ollama_model: str = Field(default="llama3.2", description="本地模型名称")
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    context_window: int = Field(default=4096, ge=256, description="上下文窗口大小（num_ctx），即 input quota")

    # ---- 采样参数：模型未声明时使用 ----
    default_top_k: int = Field(default=40, ge=1, description="默认 topK")
    max_top_k: int = Field(default=128, ge=1, description="topK 上限")
    default_temperature: float = Field(default=0.8, ge=0.0, description="默认温度")
    max_temperature: float = Field(default=2.0, ge=0.0, description="温度上限")
    system_prompt: Optional[str] = Field(default=None, description="新会话的系统提示词（可选）")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 会话行为 ----
    usage_warning_ratio: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="token 用量超过 quota 的该比例时提示用户",
    )
    usage_advisory_mode: Literal["every_turn", "once_per_session"] = Field(
        default="every_turn",
        description="用量提示频率：每轮都提示，或每个会话只提示一次",
    )
    title_max_chars: int = Field(default=30, ge=1, description="标题回退截断长度")
    enable_summarizer: bool = Field(default=True, description="是否使用模型生成会话标题")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("ollama_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("ollama_base_url must be an http(s) URL")
        return v.rstrip("/")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = ChatSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = ChatSettings
