"""助手核心的数据模型。

本模块定义了编排器、推荐引擎、购物车与 Provider 之间共享的标准数据结构：

- Message / Role: 一条对话轮次（只有 user/assistant 两种角色）。
- Product / CartEntry: 商品目录与购物车条目。
- ConversationState / ConversationSnapshot: 编排器持有的可观察状态及其只读快照。
- RecommendationResult / CancelToken: 推荐引擎的输入输出。
- ChatMessage / ChatRequest / ChatResult: 发给底层 LLM Provider 的统一结构。
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple
from uuid import uuid4

from merc_core.domain.exceptions import CancelledError, ValidationError


class Role(str, Enum):
    """对话角色，序列化时直接使用其字符串值。"""

    USER = "user"
    ASSISTANT = "assistant"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """一条对话消息，创建后不可修改。"""

    id: str
    role: Role
    text: str
    created_at: datetime

    @classmethod
    def create(cls, role: Role, text: str) -> "Message":
        return cls(id=f"m-{uuid4().hex}", role=role, text=text, created_at=_utcnow())


@dataclass(frozen=True)
class Product:
    """只读商品数据。

    - price_cents: 以货币最小单位计的价格，必须是非负整数。
    - image_ref: 前端用于加载图片的引用（资源名或 URL）。
    - tags / description: 仅用于检索排序，不直接展示。
    """

    id: str
    name: str
    image_ref: str
    price_cents: int
    tags: Tuple[str, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.price_cents, bool) or not isinstance(self.price_cents, int):
            raise ValidationError(
                code="INVALID_PRICE",
                message=f"price_cents must be an integer, got {self.price_cents!r}",
                product_id=self.id,
            )
        if self.price_cents < 0:
            raise ValidationError(
                code="INVALID_PRICE",
                message=f"price_cents must be non-negative, got {self.price_cents}",
                product_id=self.id,
            )
        if not self.id:
            raise ValidationError(code="INVALID_PRODUCT", message="product id must not be empty")
        # 允许传入 list，统一存为 tuple 以保持不可变
        object.__setattr__(self, "tags", tuple(self.tags))


@dataclass
class CartEntry:
    """购物车条目，仅由 CartMutator 修改。"""

    product_id: str
    quantity: int = 1

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise ValidationError(
                code="INVALID_QUANTITY",
                message=f"quantity must be >= 1, got {self.quantity}",
                product_id=self.product_id,
            )


@dataclass(frozen=True)
class ConversationSnapshot:
    """ConversationState 的只读快照，交给展示层渲染。"""

    messages: Tuple[Message, ...]
    suggested_products: Tuple[Product, ...]
    is_processing: bool
    error_message: Optional[str]


@dataclass
class ConversationState:
    """编排器持有的可观察状态（唯一写者为 AssistantOrchestrator）。

    有序消息序列保存在编排器的 MessageStore 中，快照时一并读出。
    """

    suggested_products: List[Product] = field(default_factory=list)
    is_processing: bool = False
    error_message: Optional[str] = None


@dataclass(frozen=True)
class RecommendationResult:
    """推荐引擎的一次结果：回复文本 + 有序商品列表。"""

    reply_text: str
    products: Tuple[Product, ...] = ()


class CancelToken:
    """协作式取消句柄，由编排器创建并传入 recommend。"""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError()


# ---- Provider 层使用的统一对话结构 ----

ChatRole = Literal["system", "user", "assistant"]


@dataclass
class ChatMessage:
    """发给 Provider 的一条消息。"""

    role: ChatRole
    content: str


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    Provider 适配层负责把本结构转换成各家 API 的 JSON 请求体。
    """

    provider: str  # 逻辑 Provider 名，如 "glm"
    model: str  # 逻辑模型名，如 "merc-recommend"（再由 registry 映射为真实模型名）
    messages: List[ChatMessage]
    temperature: float = 0.3
    top_p: float = 0.95
    max_tokens: Optional[int] = None
    # 要求模型只输出 JSON 对象
    json_mode: bool = False


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次对话调用的最终结果，raw 保留原始响应 JSON 便于调试。"""

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[Dict[str, Any]] = None
