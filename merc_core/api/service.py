"""对外 API 服务模块。

提供简化的函数接口供上层应用调用，返回值均为可直接序列化的 dict。
"""

from pathlib import Path
from typing import Any, Dict, Optional

from merc_core.agents.assistant import AssistantOrchestrator, SendResult
from merc_core.cart.mutator import CartMutator
from merc_core.config.settings import settings
from merc_core.domain.exceptions import BusinessError
from merc_core.domain.models import ConversationSnapshot, Message, Product
from merc_core.infrastructure.logging.logger import logger
from merc_core.infrastructure.storage.catalog_loader import load_catalog
from merc_core.infrastructure.storage.json_store import JsonCartStore, JsonMessageStore
from merc_core.recommendation import create_engine


_assistant: Optional[AssistantOrchestrator] = None


def get_default_assistant() -> AssistantOrchestrator:
    """获取默认的助手编排器实例（单例）。"""
    global _assistant
    if _assistant is None:
        catalog = load_catalog(settings.catalog_path)
        store = None
        cart_store = None
        if settings.persist_conversation:
            root = Path(settings.storage_root)
            store = JsonMessageStore(root=root)
            cart_store = JsonCartStore(root=root)
        _assistant = AssistantOrchestrator(
            engine=create_engine(catalog),
            cart=CartMutator(catalog, store=cart_store),
            store=store,
        )
        logger.info(
            "Assistant initialised",
            extra={"extra": {
                "backend": settings.recommendation_backend,
                "products": len(catalog),
                "persist": settings.persist_conversation,
            }},
        )
    return _assistant


def send_message(user_input: str) -> Dict[str, Any]:
    """发送一条用户输入并返回本轮结果与最新状态。

    Returns:
        包含 status、error（可选）以及 state 的字典
    """
    assistant = get_default_assistant()
    result: SendResult = assistant.send(user_input)
    payload: Dict[str, Any] = {
        "status": result.status,
        "error": None,
        "state": _snapshot_to_dict(assistant.snapshot()),
    }
    if result.error is not None:
        payload["error"] = {"code": result.error.code, "message": payload["state"]["error_message"]}
    return payload


def add_to_cart(product_id: str) -> Dict[str, Any]:
    """把商品加入购物车。

    Returns:
        {"ok": True, "entry": {...}, "cart": {...}} 或 {"ok": False, "error": {...}}
    """
    assistant = get_default_assistant()
    try:
        entry = assistant.add_to_cart(product_id)
    except BusinessError as e:
        return {"ok": False, "error": {"code": e.code, "message": assistant.snapshot().error_message}}
    return {
        "ok": True,
        "entry": {"product_id": entry.product_id, "quantity": entry.quantity},
        "cart": get_cart(),
    }


def get_state() -> Dict[str, Any]:
    return _snapshot_to_dict(get_default_assistant().snapshot())


def get_cart() -> Dict[str, Any]:
    cart = get_default_assistant().cart
    return {
        "entries": [{"product_id": e.product_id, "quantity": e.quantity} for e in cart.entries()],
        "total_cents": cart.total_cents(),
    }


def _snapshot_to_dict(snap: ConversationSnapshot) -> Dict[str, Any]:
    return {
        "messages": [_message_to_dict(m) for m in snap.messages],
        "suggested_products": [_product_to_dict(p) for p in snap.suggested_products],
        "is_processing": snap.is_processing,
        "error_message": snap.error_message,
    }


def _message_to_dict(m: Message) -> Dict[str, Any]:
    return {
        "id": m.id,
        "role": m.role.value,
        "text": m.text,
        "created_at": m.created_at.isoformat(),
    }


def _product_to_dict(p: Product) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "image_ref": p.image_ref,
        "price_cents": p.price_cents,
    }
