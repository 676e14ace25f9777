"""统一的对话与结果数据模型。

- ChatMessage / ChatRequest / ChatResult: 与 OpenAI 兼容的 completions 接口之间交换的结构。
- ModelList: GET /models 的解析结果。
- PlayerIntent / DMResponse / UsageStats: 面向游戏调用方的结构。

Provider 适配层负责 JSON ⇄ 这些模型之间的转换，上层只依赖这里的类型。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


# 对话角色（与 OpenAI / xAI 的 role 字段对应）
Role = Literal["system", "user", "assistant"]
ROLES = ("system", "user", "assistant")


@dataclass
class ChatMessage:
    role: Role
    content: str

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatRequest:
    """一次完整的 completions 请求。可选字段为 None 时不写入 payload。"""

    model: str
    messages: List[ChatMessage]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_payload() for m in self.messages],
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        if self.top_p is not None:
            payload["top_p"] = self.top_p
        return payload


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息。"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatChoice:
    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次 completions 调用的最终结果。

    - id: Provider 返回的 completion id。
    - choices: 候选回答，通常只使用 index=0。
    - usage: token 使用统计。
    - raw: 原始响应 JSON，用于调试。
    """

    id: str
    model: str
    choices: List[ChatChoice]
    usage: ChatUsage = field(default_factory=ChatUsage)
    raw: Optional[dict] = None

    @property
    def content(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].message.content


@dataclass
class ModelInfo:
    id: str
    owned_by: Optional[str] = None


@dataclass
class ModelList:
    data: List[ModelInfo]

    @property
    def ids(self) -> List[str]:
        return [m.id for m in self.data]


@dataclass
class PlayerIntent:
    """玩家一次行动的结构化描述。"""

    action: str
    target: Optional[str] = None
    method: Optional[str] = None
    character_name: Optional[str] = None

    def describe(self) -> str:
        parts = []
        if self.character_name:
            parts.append(f"{self.character_name}:")
        parts.append(self.action)
        if self.target:
            parts.append(self.target)
        if self.method:
            parts.append(f"({self.method})")
        return " ".join(parts)


@dataclass
class DMResponse:
    """AI DM 的叙事回复。

    error 不为空时表示这是降级后的兜底回复，调用方可据此在界面上给出提示。
    """

    narrative: str
    game_effects: List[Dict[str, Any]] = field(default_factory=list)
    dashboard_updates: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    usage: Optional[ChatUsage] = None

    @property
    def is_fallback(self) -> bool:
        return self.error is not None


@dataclass
class UsageStats:
    requests_today: int
    tokens_used: int
    cost_estimate: float
