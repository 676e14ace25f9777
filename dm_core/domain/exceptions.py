"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

与 Provider 通信相关的失败统一收敛为 ServiceError：它是一个封闭的
“标签变体”，由 ServiceErrorKind 区分五种情况，是否可重试完全由
kind（以及 API_ERROR 的状态码）推导，不依赖子类判断。
"""

from enum import Enum
from typing import Any, Dict, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 request_id、session_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ServiceErrorKind(str, Enum):
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    AUTHENTICATION = "AUTHENTICATION"
    API_ERROR = "API_ERROR"


def is_retryable(kind: ServiceErrorKind, status_code: Optional[int] = None) -> bool:
    """按 kind 穷举计算可重试性，新增 kind 时这里会直接报错。"""

    if kind is ServiceErrorKind.AUTHENTICATION:
        return False
    if kind in (ServiceErrorKind.RATE_LIMIT, ServiceErrorKind.NETWORK_ERROR, ServiceErrorKind.TIMEOUT):
        return True
    if kind is ServiceErrorKind.API_ERROR:
        return status_code is not None and status_code >= 500
    raise ValueError(f"Unhandled service error kind: {kind!r}")


class ServiceError(BusinessError):
    """Provider 调用失败的分类结果。

    Attributes:
        kind: 错误类别。
        retryable: 是否值得重试（由 kind 推导，只读）。
        status_code: HTTP 状态码（若有）。
        retry_after: RATE_LIMIT 时服务端建议的等待秒数（若有）。
        cancelled: TIMEOUT 是否由主动取消（而非计时器）触发。
    """

    def __init__(
        self,
        kind: ServiceErrorKind,
        message: str,
        *,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        cancelled: bool = False,
        **extra,
    ):
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after
        self.cancelled = cancelled
        super().__init__(
            code=kind.value,
            message=message,
            http_status=status_code or 502,
            **extra,
        )

    @property
    def retryable(self) -> bool:
        return is_retryable(self.kind, self.status_code)

    @classmethod
    def timeout(cls, message: str = "Request timed out", *, cancelled: bool = False, **extra) -> "ServiceError":
        return cls(ServiceErrorKind.TIMEOUT, message, cancelled=cancelled, **extra)

    @classmethod
    def network(cls, message: str = "Network error occurred", *, status_code: Optional[int] = None, **extra) -> "ServiceError":
        return cls(ServiceErrorKind.NETWORK_ERROR, message, status_code=status_code, **extra)

    @classmethod
    def rate_limit(
        cls,
        message: str = "Rate limit exceeded",
        *,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = 429,
        **extra,
    ) -> "ServiceError":
        return cls(ServiceErrorKind.RATE_LIMIT, message, retry_after=retry_after, status_code=status_code, **extra)

    @classmethod
    def authentication(
        cls,
        message: str = "Authentication failed",
        *,
        status_code: Optional[int] = None,
        **extra,
    ) -> "ServiceError":
        return cls(ServiceErrorKind.AUTHENTICATION, message, status_code=status_code, **extra)

    @classmethod
    def api_error(cls, message: str, *, status_code: Optional[int] = None, **extra) -> "ServiceError":
        return cls(ServiceErrorKind.API_ERROR, message, status_code=status_code, **extra)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "status_code": self.status_code,
            "retry_after": self.retry_after,
            "cancelled": self.cancelled,
        }

    def __repr__(self) -> str:
        return f"ServiceError(kind={self.kind.value}, status_code={self.status_code}, message={self.message!r})"


class NoActiveSessionError(BusinessError):
    """在调用 initialize_session() 之前操作会话。属于调用方用法错误，不重试。"""

    def __init__(self, message: str = "No active conversation session. Call initialize_session() first."):
        super().__init__(code="NO_ACTIVE_SESSION", message=message, http_status=409)


class PersistenceError(BusinessError):
    """持久化未启用或存储读写失败。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""
