"""
Order triggers that run server-side after an order document is created.
The sync layer only observes their effects through the next orders snapshot.
"""

import logging
from typing import Any, Dict

from .backend import ORDERS_PATH, PRODUCTS_PATH, SERVER_TIMESTAMP, DocumentStore, Increment

logger = logging.getLogger(__name__)


async def process_order(store: DocumentStore, order_id: str, data: Dict[str, Any]) -> None:
    """pending -> processing с серверной меткой времени"""
    logger.info("New order received: %s (total %s)", order_id, data.get("total"))
    await store.update(
        ORDERS_PATH,
        order_id,
        {"status": "processing", "processedAt": SERVER_TIMESTAMP, "updatedAt": SERVER_TIMESTAMP},
    )


async def update_inventory(store: DocumentStore, order_id: str, data: Dict[str, Any]) -> None:
    """Списывает количество каждой позиции со счётчика inventory товара"""
    for item in data.get("items", []):
        product_id = item.get("productId")
        product = await store.get(PRODUCTS_PATH, product_id)
        # товары без учёта остатков пропускаются
        if product is None or "inventory" not in product.data:
            continue
        await store.update(
            PRODUCTS_PATH, product_id, {"inventory": Increment(-int(item.get("quantity", 0)))}
        )


def install_order_triggers(store) -> None:
    """Регистрирует оба триггера как on_create-хуки коллекции orders"""
    store.on_create(ORDERS_PATH, process_order)
    store.on_create(ORDERS_PATH, update_inventory)
