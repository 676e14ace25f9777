"""Provider 不可用时的剧情内兜底回复。

调用方看到的是一段“世界内”的叙述而不是原始错误，
error 字段保留分类信息，界面可据此提示玩家稍后重试。
"""

from typing import Optional

from dm_core.domain.exceptions import ServiceError, ServiceErrorKind
from dm_core.domain.models import DMResponse

FALLBACK_NARRATIVE = (
    "The mystical connection to the realm wavers. The Dungeon Master's voice fades into "
    "the mist for a moment, and the world holds its breath."
)

_HINTS = {
    ServiceErrorKind.TIMEOUT: "The threads of fate are slow to answer. Try your action again.",
    ServiceErrorKind.NETWORK_ERROR: "Distant winds carry away the words. Try your action again.",
    ServiceErrorKind.RATE_LIMIT: "The oracle is overwhelmed by many voices. Wait a moment before acting.",
    ServiceErrorKind.AUTHENTICATION: "The gates of the realm refuse your seal. The Dungeon Master must check their credentials.",
    ServiceErrorKind.API_ERROR: "Something stirs in the weave of magic. Try a different approach.",
}


def fallback_dm_response(error: Optional[ServiceError] = None) -> DMResponse:
    if error is None:
        return DMResponse(narrative=FALLBACK_NARRATIVE, error={"code": "UNKNOWN", "retryable": True})
    return DMResponse(
        narrative=f"{FALLBACK_NARRATIVE} {_HINTS[error.kind]}",
        error=error.to_dict(),
    )
