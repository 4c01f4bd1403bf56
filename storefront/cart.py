import asyncio
import logging
from typing import Callable, Optional, Tuple

from .backend import DocumentStore, Increment, cart_path
from .domain import CollectionQuery, Identity, Product
from .errors import Unauthenticated, remote_call
from .transforms import cart_doc_for

logger = logging.getLogger(__name__)


class CartReconciler:
    """
    Переводит действия с корзиной в записи в users/{uid}/cart.

    Локальное зеркало здесь не меняется: результат придёт следующим снимком.
    Повторное добавление увеличивает quantity атомарно на стороне бэкенда.
    Два одновременных первых добавления одного товара оба создают документ
    с quantity=1 (побеждает последняя запись) - известное ограничение.
    """

    def __init__(
        self,
        store: DocumentStore,
        current_identity: Callable[[], Optional[Identity]],
        timeout: float = 10.0,
    ):
        self._store = store
        self._current_identity = current_identity
        self._timeout = timeout

    def _path(self) -> str:
        identity = self._current_identity()
        if identity is None:
            raise Unauthenticated("Please sign in to add items to your cart.")
        return cart_path(identity.uid)

    async def add_to_cart(self, product: Product) -> None:
        path = self._path()
        existing = await remote_call(self._store.get(path, product.id), self._timeout)
        if existing is not None:
            await remote_call(
                self._store.update(path, product.id, {"quantity": Increment(1)}),
                self._timeout,
            )
        else:
            await remote_call(self._store.set(path, product.id, cart_doc_for(product)), self._timeout)
        logger.debug("add_to_cart %s -> %s", product.id, path)

    async def update_quantity(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            await self.remove_from_cart(product_id)
            return
        path = self._path()
        await remote_call(
            self._store.update(path, product_id, {"quantity": int(quantity)}),
            self._timeout,
        )

    async def remove_from_cart(self, product_id: str) -> None:
        path = self._path()
        await remote_call(self._store.delete(path, product_id), self._timeout)

    async def clear_cart(self) -> Tuple[str, ...]:
        """
        Удаляет все позиции корзины параллельно.
        Возвращает id позиций, удалить которые не удалось; пустой кортеж
        ещё не значит пустую корзину - это подтвердит только следующий снимок.
        """
        path = self._path()
        docs = await remote_call(self._store.list(CollectionQuery(path)), self._timeout)
        results = await asyncio.gather(
            *(remote_call(self._store.delete(path, d.id), self._timeout) for d in docs),
            return_exceptions=True,
        )
        failed = tuple(d.id for d, r in zip(docs, results) if isinstance(r, Exception))
        if failed:
            logger.warning("clear_cart: %d of %d deletes failed in %s", len(failed), len(docs), path)
        return failed
