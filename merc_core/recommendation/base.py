"""推荐引擎抽象接口。

编排器只依赖此协议。实现者只允许抛出 AssistantError 的子类：

- UnavailableError: 后端不可达（用户重新发送即可重试）。
- MalformedResponseError: 后端有响应但无法使用。
- CancelledError: cancel_token 在调用期间被取消。
"""

from typing import Optional, Protocol, Sequence

from merc_core.domain.models import CancelToken, Message, RecommendationResult


class RecommendationEngine(Protocol):
    name: str

    def recommend(
        self,
        context: Sequence[Message],
        cancel_token: Optional[CancelToken] = None,
    ) -> RecommendationResult:
        ...
