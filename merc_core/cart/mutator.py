"""购物车修改器。

购物车条目只能通过本模块修改：同一商品重复加入时数量 +1，
不会产生两个条目；目录中不存在的商品直接拒绝，购物车保持不变。
"""

import logging
from typing import Dict, List, Optional

from merc_core.domain.exceptions import UnknownProductError
from merc_core.domain.models import CartEntry
from merc_core.domain.stores import CartStore, ProductCatalog
from merc_core.infrastructure.logging.logger import logger


class CartMutator:
    def __init__(self, catalog: ProductCatalog, store: Optional[CartStore] = None):
        self._catalog = catalog
        self._store = store
        self._entries: Dict[str, CartEntry] = {}
        if store is not None:
            for pid, qty in store.load().items():
                if not catalog.contains(pid):
                    logger.warning(
                        "Dropping persisted cart entry for unknown product",
                        extra={"extra": {"product_id": pid}},
                    )
                    continue
                self._entries[pid] = CartEntry(product_id=pid, quantity=qty)

    def add_to_cart(self, product_id: str) -> CartEntry:
        """加入一件商品并返回该商品当前的条目。

        Raises:
            UnknownProductError: 目录中没有该商品。
        """
        if not self._catalog.contains(product_id):
            raise UnknownProductError(product_id=product_id)
        quantities = self._quantities()
        quantities[product_id] = quantities.get(product_id, 0) + 1
        # 先持久化，成功后才修改内存，保证两边一致
        self._persist(quantities)
        entry = self._entries.get(product_id)
        if entry is None:
            entry = CartEntry(product_id=product_id, quantity=1)
            self._entries[product_id] = entry
        else:
            entry.quantity = quantities[product_id]
        logger.log(
            logging.INFO,
            "Added product to cart",
            extra={"extra": {"product_id": product_id, "quantity": entry.quantity}},
        )
        return CartEntry(product_id=entry.product_id, quantity=entry.quantity)

    def entries(self) -> List[CartEntry]:
        """按首次加入顺序返回条目副本。"""
        return [CartEntry(product_id=e.product_id, quantity=e.quantity) for e in self._entries.values()]

    def quantity_of(self, product_id: str) -> int:
        entry = self._entries.get(product_id)
        return entry.quantity if entry else 0

    def total_cents(self) -> int:
        total = 0
        for entry in self._entries.values():
            product = self._catalog.get(entry.product_id)
            if product is not None:
                total += product.price_cents * entry.quantity
        return total

    def clear(self) -> None:
        self._persist({})
        self._entries.clear()

    def _quantities(self) -> Dict[str, int]:
        return {pid: e.quantity for pid, e in self._entries.items()}

    def _persist(self, quantities: Dict[str, int]) -> None:
        if self._store is not None:
            self._store.save(quantities)
