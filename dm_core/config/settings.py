"""配置管理模块。

支持从 .env、config.yaml 以及环境变量（前缀 DM_）加载配置。
所有时间类配置以毫秒为单位，与前端/服务端约定保持一致。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("DM_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
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


class Settings(BaseSettings):
    """dm_core 全局配置。"""

    # ---- Provider ----
    provider: str = Field(default="grok", description="Provider 名称，例如 grok、openai")
    base_url: Optional[str] = Field(
        default=None,
        description="Provider API 基础URL，为空时使用 registry 中的默认值",
    )
    api_key: Optional[str] = Field(default=None, description="Provider API 密钥")
    model: Optional[str] = Field(default=None, description="模型名，为空时使用 registry 默认模型")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1, description="单次回复最大 token 数")
    cost_per_token: float = Field(default=0.00001, ge=0.0, description="用于费用估算的单价")

    # ---- 请求管线 ----
    timeout_ms: int = Field(default=30000, ge=1, description="单次尝试超时（毫秒）")
    max_retries: int = Field(default=3, ge=0, le=10)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=10000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter_ratio: float = Field(default=0.1, ge=0.0, le=1.0, description="抖动占指数退避的比例上限")
    cache_enabled: bool = Field(default=True)
    connection_test_ttl_ms: int = Field(default=30000, ge=0)
    usage_stats_ttl_ms: int = Field(default=60000, ge=0)

    # ---- 会话 ----
    max_context_tokens: int = Field(default=4000, ge=1, description="默认上下文 token 预算")
    max_history_messages: int = Field(default=50, ge=1, description="会话最多保留的消息数")
    enable_persistence: bool = Field(default=False)
    storage_root: str = Field(default=".storage", description="存储根目录")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_prefix="DM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError(f"Unsupported log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_delays(self) -> "Settings":
        if self.base_delay_ms > self.max_delay_ms:
            raise ValueError("base_delay_ms must not exceed max_delay_ms")
        return self

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


settings = Settings()
