"""助手编排器。

AssistantOrchestrator 是 ConversationState 的唯一写者：接收用户输入，
调用推荐引擎，追加消息并维护处理中/错误状态，再把只读快照推送给订阅者。

一个编排周期：
1. 输入 strip 后为空，或已有周期在进行中 -> 直接拒绝，不产生任何副作用。
2. 追加用户消息，is_processing=True，清空上一次错误与推荐列表。
3. 以完整上下文调用 RecommendationEngine.recommend（唯一的挂起点）。
4. 成功：追加助手消息，整体替换 suggested_products。
   失败：只写入 error_message，对话保持不变。
   消息写入失败同样走失败路径，已写入的消息不会重复追加。
5. finally 中无论如何都清除 is_processing。
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional
from uuid import uuid4

from merc_core.cart.mutator import CartMutator
from merc_core.config.settings import settings
from merc_core.domain.exceptions import AssistantError, BusinessError, UnavailableError
from merc_core.domain.models import (
    CancelToken,
    CartEntry,
    ConversationSnapshot,
    ConversationState,
    Message,
    RecommendationResult,
    Role,
)
from merc_core.domain.stores import MessageStore
from merc_core.infrastructure.logging.logger import logger
from merc_core.infrastructure.storage.memory_store import InMemoryMessageStore
from merc_core.recommendation.base import RecommendationEngine


SendStatus = Literal["sent", "failed", "rejected"]
Observer = Callable[[ConversationSnapshot], None]


@dataclass(frozen=True)
class SendResult:
    """send() 的返回值。

    status:
        - "sent": 追加了用户消息与助手消息。
        - "failed": 只追加了用户消息，error 为具体的 AssistantError；
          若是消息写入失败，error 为存储层的 BusinessError。
        - "rejected": 输入为空或已有周期在进行中，没有任何状态变化。
    """

    status: SendStatus
    error: Optional[BusinessError] = None
    user_message: Optional[Message] = None
    assistant_message: Optional[Message] = None

    @property
    def ok(self) -> bool:
        return self.status == "sent"


class AssistantOrchestrator:
    def __init__(
        self,
        engine: RecommendationEngine,
        cart: CartMutator,
        store: Optional[MessageStore] = None,
        max_context_messages: Optional[int] = None,
    ):
        self._engine = engine
        self._cart = cart
        self._store = store if store is not None else InMemoryMessageStore()
        self._max_context = max_context_messages or getattr(settings, "max_context_messages", 20)
        self._state = ConversationState()
        # 单槽在途保护：拿不到锁就拒绝，不排队
        self._in_flight = threading.Lock()
        self._cancel_token: Optional[CancelToken] = None
        self._observers: List[Observer] = []
        self._observers_lock = threading.Lock()

    # ---- 对展示层公开的状态 ----

    @property
    def state(self) -> ConversationSnapshot:
        return self.snapshot()

    def snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            messages=tuple(self._store.list_messages()),
            suggested_products=tuple(self._state.suggested_products),
            is_processing=self._state.is_processing,
            error_message=self._state.error_message,
        )

    @property
    def cart(self) -> CartMutator:
        return self._cart

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """注册状态观察者，返回取消订阅函数。"""
        with self._observers_lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._observers_lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    # ---- 编排 ----

    def send(self, input_text: str) -> SendResult:
        text = (input_text or "").strip()
        if not text:
            return SendResult(status="rejected")
        if not self._in_flight.acquire(blocking=False):
            logger.log(logging.INFO, "Rejected send while processing", extra={"extra": {"engine": self._engine.name}})
            return SendResult(status="rejected")

        start_time = time.time()
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}", "engine": self._engine.name}
        token = CancelToken()
        self._cancel_token = token
        try:
            user_msg = Message.create(Role.USER, text)
            try:
                self._store.append(user_msg)
            except BusinessError as e:
                return self._fail(e, None, log_ctx)
            self._state.is_processing = True
            self._state.error_message = None
            self._state.suggested_products = []
            self._log(logging.INFO, "Stored user message", log_ctx, message_id=user_msg.id)
            self._notify()

            context = self._build_context()
            self._log(logging.INFO, "Calling recommendation engine", log_ctx, message_count=len(context))
            try:
                result = self._engine.recommend(context, cancel_token=token)
                # 引擎可能忽略 token，这里再确认一次
                token.raise_if_cancelled()
            except AssistantError as e:
                return self._fail(e, user_msg, log_ctx)
            except Exception as e:
                logger.exception("Recommendation engine crashed", extra={"extra": dict(log_ctx)})
                return self._fail(UnavailableError(detail=str(e)), user_msg, log_ctx)

            try:
                assistant_msg = self._apply_result(result, log_ctx)
            except BusinessError as e:
                return self._fail(e, user_msg, log_ctx)
            return SendResult(status="sent", user_message=user_msg, assistant_message=assistant_msg)
        finally:
            self._state.is_processing = False
            self._cancel_token = None
            self._in_flight.release()
            self._log(
                logging.INFO,
                "Completed assistant step",
                log_ctx,
                elapsed_seconds=round(time.time() - start_time, 2),
            )
            self._notify()

    def send_in_background(
        self,
        input_text: str,
        on_done: Optional[Callable[[SendResult], None]] = None,
    ) -> threading.Thread:
        """在后台线程执行 send，避免阻塞 UI 线程。"""

        def worker() -> None:
            result = self.send(input_text)
            if on_done is not None:
                on_done(result)

        thread = threading.Thread(target=worker, daemon=True)
        thread.start()
        return thread

    def cancel(self) -> bool:
        """取消进行中的周期；没有在途周期时返回 False。"""
        token = self._cancel_token
        if token is None:
            return False
        token.cancel()
        return True

    # ---- 购物车 ----

    def add_to_cart(self, product_id: str) -> CartEntry:
        """把商品加入购物车；失败（未知商品、写入失败）会写入 error_message 并继续抛出。"""
        try:
            entry = self._cart.add_to_cart(product_id)
        except BusinessError as e:
            self._state.error_message = self._user_message(e)
            logger.log(
                logging.WARNING,
                "Add to cart failed",
                extra={"extra": {"product_id": product_id, "code": e.code}},
            )
            self._notify()
            raise
        if self._state.error_message is not None:
            self._state.error_message = None
            self._notify()
        return entry

    def clear_error(self) -> None:
        if self._state.error_message is not None:
            self._state.error_message = None
            self._notify()

    # ---- 内部方法 ----

    def _build_context(self) -> List[Message]:
        messages = self._store.list_messages()
        if len(messages) > self._max_context:
            messages = messages[-self._max_context:]
        return messages

    def _apply_result(self, result: RecommendationResult, log_ctx: Dict[str, Any]) -> Message:
        assistant_msg = Message.create(Role.ASSISTANT, result.reply_text)
        self._store.append(assistant_msg)
        self._state.suggested_products = list(result.products)
        self._log(
            logging.INFO,
            "Stored assistant message",
            log_ctx,
            message_id=assistant_msg.id,
            product_count=len(result.products),
        )
        return assistant_msg

    def _fail(self, error: BusinessError, user_msg: Optional[Message], log_ctx: Dict[str, Any]) -> SendResult:
        self._state.error_message = self._user_message(error)
        self._log(
            logging.WARNING,
            "Recommendation failed",
            log_ctx,
            code=error.code,
            detail=error.extra.get("detail", error.message),
        )
        return SendResult(status="failed", error=error, user_message=user_msg)

    @staticmethod
    def _user_message(error: BusinessError) -> str:
        # 存储等非助手错误的 message 面向开发者，不直接展示给用户
        if isinstance(error, AssistantError):
            return error.message
        return AssistantError.default_message

    def _notify(self) -> None:
        with self._observers_lock:
            observers = list(self._observers)
        if not observers:
            return
        snap = self.snapshot()
        for observer in observers:
            try:
                observer(snap)
            except Exception:
                logger.exception("State observer raised")

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
