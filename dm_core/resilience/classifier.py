"""把传输层/HTTP 结果映射到 ServiceError 分类。

规则：
- 401/403 -> AUTHENTICATION（不可重试）
- 429 -> RATE_LIMIT（可重试，可能带 Retry-After）
- 500/502/503/504 -> NETWORK_ERROR（可重试）
- 其他状态码 -> API_ERROR（>=500 才可重试）
- 超时 / 取消 -> TIMEOUT（可重试）
- 其他网络异常 -> NETWORK_ERROR
错误体中的 type/code 若明确指向鉴权或限流，则优先于状态码。
"""

import asyncio
from typing import Any, Mapping, Optional

import httpx

from dm_core.domain.exceptions import ServiceError


_GATEWAY_STATUSES = {500, 502, 503, 504}
_AUTH_MARKERS = {"authentication_error", "invalid_api_key"}
_RATE_LIMIT_MARKERS = {"rate_limit_error", "rate_limit_exceeded"}


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """解析 Retry-After 头（仅支持秒数形式）。"""

    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def _error_detail(body: Any) -> Mapping[str, Any]:
    if isinstance(body, Mapping):
        err = body.get("error")
        if isinstance(err, Mapping):
            return err
    return {}


def classify_status(
    status_code: int,
    body: Any = None,
    *,
    retry_after: Optional[str] = None,
    context: str = "",
) -> ServiceError:
    """根据 HTTP 状态码与错误体构造 ServiceError。"""

    detail = _error_detail(body)
    message = str(detail.get("message") or f"HTTP {status_code}")
    markers = {str(detail.get("type") or ""), str(detail.get("code") or "")}
    extra = {"context": context} if context else {}

    if markers & _AUTH_MARKERS or status_code in (401, 403):
        return ServiceError.authentication(message, status_code=status_code, **extra)
    if markers & _RATE_LIMIT_MARKERS or status_code == 429:
        return ServiceError.rate_limit(
            message,
            retry_after=parse_retry_after(retry_after),
            status_code=status_code,
            **extra,
        )
    if status_code in _GATEWAY_STATUSES:
        return ServiceError.network(message, status_code=status_code, **extra)
    return ServiceError.api_error(message, status_code=status_code, **extra)


def classify_error(error: BaseException, context: str = "") -> ServiceError:
    """把任意异常归类为 ServiceError；已分类的错误原样返回。"""

    if isinstance(error, ServiceError):
        return error
    extra = {"context": context} if context else {}
    if isinstance(error, httpx.TimeoutException):
        return ServiceError.timeout(str(error) or "Request timed out", **extra)
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ServiceError.timeout(str(error) or "Request timed out", **extra)
    if isinstance(error, asyncio.CancelledError):
        return ServiceError.timeout("Request cancelled", cancelled=True, **extra)
    if isinstance(error, httpx.HTTPStatusError):
        resp = error.response
        try:
            body = resp.json()
        except ValueError:
            body = None
        return classify_status(
            resp.status_code,
            body,
            retry_after=resp.headers.get("retry-after"),
            context=context,
        )
    if isinstance(error, httpx.RequestError):
        return ServiceError.network(str(error) or error.__class__.__name__, **extra)
    return ServiceError.api_error(str(error) or error.__class__.__name__, **extra)
