"""
Contracts of the hosted backend consumed by the sync layer.

DocumentStore: CRUD + live queries against slash-separated collection paths
("products", "users/<uid>/cart", "orders").
AuthProvider: password / federated sign-in and a session-change stream.

Both are implemented by storefront.memory (tests, demo) and
storefront.firebase (Firestore + Identity Toolkit).
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .domain import CollectionQuery, Document, Identity


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Резолвится бэкендом во время записи
SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Атомарное приращение числового поля на стороне бэкенда"""

    amount: int


SnapshotCallback = Callable[[Tuple[Document, ...]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class WriteBatch:
    """Набор записей, применяемых атомарно в commit()"""

    def create(self, path: str, data: Dict[str, Any]) -> str:
        raise NotImplementedError

    def delete(self, path: str, doc_id: str) -> None:
        raise NotImplementedError

    async def commit(self) -> None:
        raise NotImplementedError


class DocumentStore:
    supports_batch = False

    async def get(self, path: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    async def add(self, path: str, data: Dict[str, Any]) -> str:
        """Создаёт документ с id, назначенным бэкендом"""
        raise NotImplementedError

    async def set(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def update(self, path: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Частичное обновление. Отсутствующий документ -> RemoteRejected"""
        raise NotImplementedError

    async def delete(self, path: str, doc_id: str) -> None:
        """Удаление отсутствующего документа не является ошибкой"""
        raise NotImplementedError

    async def list(self, query: CollectionQuery) -> Tuple[Document, ...]:
        raise NotImplementedError

    def watch(
        self,
        query: CollectionQuery,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """
        Открывает живую выборку. on_snapshot получает полный список документов
        при каждом изменении, вызовы происходят в цикле событий.
        """
        raise NotImplementedError

    def batch(self) -> WriteBatch:
        raise NotImplementedError


SessionCallback = Callable[[Optional[Identity]], None]


class AuthProvider:
    async def sign_in(self, email: str, password: str) -> Identity:
        raise NotImplementedError

    async def register(self, email: str, password: str) -> Identity:
        raise NotImplementedError

    async def sign_out(self) -> None:
        raise NotImplementedError

    async def sign_in_with_provider(self, provider_id: str, credential: str) -> Identity:
        raise NotImplementedError

    def on_session_change(self, callback: SessionCallback) -> Unsubscribe:
        """callback вызывается сразу с текущей сессией и далее при каждой смене"""
        raise NotImplementedError


def cart_path(uid: str) -> str:
    return f"users/{uid}/cart"


PRODUCTS_PATH = "products"
ORDERS_PATH = "orders"
