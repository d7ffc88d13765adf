"""Provider 抽象接口。

LlmRecommendationEngine 不直接依赖具体厂商的 HTTP 接口，而是依赖此协议，
这样可以在不改推荐逻辑的前提下接入更多厂商。
"""

from typing import Protocol
from merc_core.domain.models import ChatRequest, ChatResult


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    - name: Provider 名称，用于日志/统计。
    - chat(req): 执行一次非流式对话调用，返回统一的 ChatResult。
    """

    name: str

    def chat(self, req: ChatRequest) -> ChatResult:
        ...
