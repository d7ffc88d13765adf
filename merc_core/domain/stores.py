from typing import Dict, List, Optional, Protocol

from .models import Message, Product


class MessageStore(Protocol):
    """只追加的消息序列，不提供删除或重排接口。"""

    def append(self, message: Message) -> None:
        ...

    def list_messages(self) -> List[Message]:
        ...

    def count(self) -> int:
        ...


class ProductCatalog(Protocol):
    def get(self, product_id: str) -> Optional[Product]:
        ...

    def contains(self, product_id: str) -> bool:
        ...

    def list_products(self) -> List[Product]:
        ...


class CartStore(Protocol):
    """购物车持久化：product_id -> quantity，按插入顺序。"""

    def load(self) -> Dict[str, int]:
        ...

    def save(self, quantities: Dict[str, int]) -> None:
        ...
