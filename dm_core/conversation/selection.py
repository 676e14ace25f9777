"""上下文选择与历史裁剪，均为纯函数，不修改入参。"""

from __future__ import annotations

from typing import List, Sequence, Tuple

from dm_core.conversation.tokens import TokenEstimator, default_estimator
from dm_core.domain.conversation import ConversationMessage


def message_tokens(message: ConversationMessage, estimator: TokenEstimator = default_estimator) -> int:
    if message.tokens is not None:
        return message.tokens
    return estimator.estimate(message.content)


def select_context(
    messages: Sequence[ConversationMessage],
    max_tokens: int,
    estimator: TokenEstimator = default_estimator,
) -> Tuple[List[ConversationMessage], int]:
    """在 max_tokens 预算内选出上下文消息。

    1. system 消息按原顺序贪心纳入；单条超出剩余预算的整条跳过，绝不截断。
    2. 其余消息从新到旧贪心纳入，遇到第一条放不下的即停止，不向前回填。
    3. 返回 system 消息（原顺序）+ 纳入的非 system 消息（按时间升序）以及 token 总和。
    """

    selected_system: List[ConversationMessage] = []
    selected_other: List[ConversationMessage] = []
    used = 0

    for msg in messages:
        if msg.role != "system":
            continue
        cost = message_tokens(msg, estimator)
        if used + cost <= max_tokens:
            selected_system.append(msg)
            used += cost

    for msg in reversed(messages):
        if msg.role == "system":
            continue
        cost = message_tokens(msg, estimator)
        if used + cost > max_tokens:
            break
        selected_other.append(msg)
        used += cost

    # sorted 是稳定排序；reverse 后再排序保证同一时间戳的消息保持插入顺序
    selected_other.reverse()
    selected_other.sort(key=lambda m: m.timestamp)
    return selected_system + selected_other, used


def trim_history(
    messages: Sequence[ConversationMessage],
    max_messages: int,
) -> List[ConversationMessage]:
    """历史超过 max_messages 时裁剪。

    system 消息全部保留（即使其数量本身已超过上限）；非 system 消息只保留最近的
    max(0, max_messages - system 数量) 条。
    """

    if len(messages) <= max_messages:
        return list(messages)
    system = [m for m in messages if m.role == "system"]
    keep = max(0, max_messages - len(system))
    others = [m for m in messages if m.role != "system"]
    others = others[len(others) - keep:] if keep else []
    others.sort(key=lambda m: m.timestamp)
    return system + others
