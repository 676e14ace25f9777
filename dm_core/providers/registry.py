"""Provider 配置。

集中维护各 OpenAI 兼容 Provider 的基础 URL 与默认模型，
上层只需给出 provider 名称，具体模型可由配置覆盖。"""

from dataclasses import dataclass
from typing import Mapping


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    default_model: str
    max_tokens: int
    default_temperature: float


GROK_CONFIG = ProviderConfig(
    name="grok",
    base_url="https://api.x.ai/v1",
    default_model="grok-beta",
    max_tokens=1000,
    default_temperature=0.7,
)

OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    default_model="gpt-4",
    max_tokens=1000,
    default_temperature=0.8,
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "grok": GROK_CONFIG,
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
