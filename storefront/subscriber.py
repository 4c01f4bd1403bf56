import logging
from typing import Callable, Optional, Tuple

from .backend import DocumentStore, Unsubscribe
from .domain import CollectionQuery, Document

logger = logging.getLogger(__name__)


class Subscription:
    """
    Дескриптор живой выборки.
    cancel() освобождает подписку на бэкенде; повторный вызов ничего не делает.
    После cancel() колбэки больше не вызываются, даже если снимок уже в пути.
    """

    def __init__(self, query: CollectionQuery):
        self.query = query
        self._unsubscribe: Optional[Unsubscribe] = None
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def _attach(self, unsubscribe: Unsubscribe) -> None:
        self._unsubscribe = unsubscribe

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        logger.debug("Subscription to %s cancelled", self.query.path)


class CollectionSubscriber:
    """Открывает живые выборки и доставляет полные снимки коллекций"""

    def __init__(self, store: DocumentStore):
        self._store = store

    def subscribe(
        self,
        query: CollectionQuery,
        on_snapshot: Callable[[Tuple[Document, ...]], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Subscription:
        subscription = Subscription(query)

        def deliver(docs: Tuple[Document, ...]) -> None:
            if subscription.active:
                on_snapshot(docs)

        def fail(exc: Exception) -> None:
            if not subscription.active:
                return
            # локальное зеркало не трогаем: лучше старые данные, чем пустые
            logger.warning("Listen on %s failed: %s", query.path, exc)
            if on_error is not None:
                on_error(exc)

        subscription._attach(self._store.watch(query, deliver, fail))
        logger.debug("Subscribed to %s (where=%s, order_by=%s)", query.path, query.where, query.order_by)
        return subscription


class StreamSlot:
    """Хранит не более одной активной подписки на логический поток"""

    def __init__(self, name: str):
        self.name = name
        self._current: Optional[Subscription] = None

    @property
    def current(self) -> Optional[Subscription]:
        return self._current

    def replace(self, open_subscription: Callable[[], Subscription]) -> Subscription:
        """Сначала полностью закрывает текущую подписку, затем открывает новую"""
        self.cancel()
        self._current = open_subscription()
        return self._current

    def cancel(self) -> None:
        current, self._current = self._current, None
        if current is not None:
            current.cancel()
