"""LLM Provider 集成层。

- base: Provider 抽象接口。
- registry: Provider 基础 URL 与默认模型。
- completions_client: OpenAI 兼容 completions 接口实现。
"""

from typing import Optional

from dm_core.config.settings import Settings, settings as default_settings
from dm_core.providers.base import ProviderClient
from dm_core.providers.completions_client import CompletionsClient
from dm_core.providers.registry import get_provider_config


def create_provider(name: Optional[str] = None, settings: Optional[Settings] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    cfg = settings or default_settings
    provider_cfg = get_provider_config(name or cfg.provider)
    # base_url/model 覆盖只对配置中选定的 provider 生效
    overrides = provider_cfg.name == cfg.provider.lower()
    return CompletionsClient(
        provider_cfg,
        api_key=cfg.api_key,
        base_url=cfg.base_url if overrides else None,
        model=cfg.model if overrides else None,
        timeout=cfg.timeout_ms / 1000.0,
        cost_per_token=cfg.cost_per_token,
    )


__all__ = ["CompletionsClient", "ProviderClient", "create_provider", "get_provider_config"]
