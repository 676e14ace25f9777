from __future__ import annotations

import math
from typing import Protocol


class TokenEstimator(Protocol):
    def estimate(self, text: str) -> int:
        ...


class CharRatioEstimator:
    """按字符数估算 token：ceil(len(text) / chars_per_token)。

    真实分词与模型相关，这里只给出近似值；需要精确计数时注入其他实现。
    """

    def __init__(self, chars_per_token: int = 4):
        if chars_per_token < 1:
            raise ValueError("chars_per_token must be >= 1")
        self.chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)


default_estimator = CharRatioEstimator()
