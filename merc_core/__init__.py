"""merc_core 顶层包。

购物助手 Cora 的核心实现：消息存储、商品目录、购物车、推荐引擎
以及把它们串起来的助手编排器，展示层只需订阅编排器的状态快照。
"""

from merc_core.agents.assistant import AssistantOrchestrator, SendResult

__all__ = ["AssistantOrchestrator", "SendResult"]
