"""进程内实现：消息序列与商品目录。"""

from typing import Dict, Iterable, List, Optional

from merc_core.domain.exceptions import ValidationError
from merc_core.domain.models import Message, Product
from merc_core.domain.stores import MessageStore, ProductCatalog


class InMemoryMessageStore(MessageStore):
    def __init__(self, messages: Optional[Iterable[Message]] = None):
        self._messages: List[Message] = list(messages or [])

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def list_messages(self) -> List[Message]:
        return list(self._messages)

    def count(self) -> int:
        return len(self._messages)


class InMemoryCatalog(ProductCatalog):
    """按插入顺序保存商品；排序的稳定性依赖于这个顺序。"""

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {}
        for p in products:
            if p.id in self._products:
                raise ValidationError(code="DUPLICATE_PRODUCT", message=f"duplicate product id {p.id!r}")
            self._products[p.id] = p

    def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def contains(self, product_id: str) -> bool:
        return product_id in self._products

    def list_products(self) -> List[Product]:
        return list(self._products.values())

    def __len__(self) -> int:
        return len(self._products)
