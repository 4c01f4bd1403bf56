import asyncio
import logging
from typing import Awaitable, Optional

from .backend import ORDERS_PATH, AuthProvider, cart_path
from .domain import CollectionQuery, Identity
from .errors import StoreError, remote_call
from .frp import (
    CART_SNAPSHOT,
    ORDERS_SNAPSHOT,
    SESSION_CHANGED,
    SESSION_REJECTED,
    SUBSCRIPTION_ERROR,
    StateContainer,
)
from .ftypes import Either, Maybe
from .subscriber import CollectionSubscriber, StreamSlot
from .transforms import cart_item_from_doc, order_from_doc

logger = logging.getLogger(__name__)


def orders_query(uid: str) -> CollectionQuery:
    return CollectionQuery(ORDERS_PATH, where=("userId", uid), order_by=("createdAt", "desc"))


class SessionTracker:
    """
    Следит за сессией провайдера аутентификации.

    На каждую смену личности: закрывает подписки корзины и заказов,
    очищает зеркала (SESSION_CHANGED), затем открывает подписки для нового uid.
    E-mail вне разрешённого домена сессию не устанавливает: выполняется
    принудительный выход и запоминается сообщение об отказе.
    """

    def __init__(
        self,
        auth: AuthProvider,
        subscriber: CollectionSubscriber,
        state: StateContainer,
        allowed_suffix: str,
        timeout: float = 10.0,
    ):
        self._auth = auth
        self._subscriber = subscriber
        self._state = state
        self._suffix = allowed_suffix.lower()
        self._timeout = timeout
        self._auth_unsubscribe = None
        self._cart_slot = StreamSlot("cart")
        self._orders_slot = StreamSlot("orders")
        self._tasks = set()

    # ---------- текущая личность ----------

    @property
    def identity(self) -> Optional[Identity]:
        return self._state.state["identity"]

    def current(self) -> Maybe[Identity]:
        return Maybe.from_optional(self.identity)

    @property
    def rejection_message(self) -> str:
        return f"Only {self._suffix} email addresses can sign in to this store."

    def is_allowed(self, email: str) -> bool:
        return email.strip().lower().endswith(self._suffix)

    # ---------- жизненный цикл ----------

    def start(self) -> None:
        """Подписка на сессию открывается ровно один раз"""
        if self._auth_unsubscribe is not None:
            return
        self._auth_unsubscribe = self._auth.on_session_change(self._on_auth_change)

    def stop(self) -> None:
        unsubscribe, self._auth_unsubscribe = self._auth_unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        self._teardown()

    def _teardown(self) -> None:
        self._cart_slot.cancel()
        self._orders_slot.cancel()

    def _on_auth_change(self, identity: Optional[Identity]) -> None:
        if identity is not None and not self.is_allowed(identity.email):
            logger.info("Rejected session for %s", identity.email)
            self._teardown()
            self._state.dispatch(SESSION_REJECTED, {"message": self.rejection_message})
            self._spawn(self._sign_out_quietly())
            return

        if identity == self.identity:
            return

        self._teardown()
        self._state.dispatch(SESSION_CHANGED, {"identity": identity})
        if identity is not None:
            self._open_streams(identity)

    def _open_streams(self, identity: Identity) -> None:
        uid = identity.uid

        def on_cart(docs) -> None:
            items = tuple(map(cart_item_from_doc, docs))
            self._state.dispatch(CART_SNAPSHOT, {"uid": uid, "items": items})

        def on_orders(docs) -> None:
            orders = tuple(map(order_from_doc, docs))
            self._state.dispatch(ORDERS_SNAPSHOT, {"uid": uid, "items": orders})

        self._cart_slot.replace(
            lambda: self._subscriber.subscribe(
                CollectionQuery(cart_path(uid)), on_cart, self._stream_error("cart")
            )
        )
        self._orders_slot.replace(
            lambda: self._subscriber.subscribe(
                orders_query(uid), on_orders, self._stream_error("orders")
            )
        )

    def _stream_error(self, stream: str):
        def on_error(exc: Exception) -> None:
            self._state.dispatch(SUBSCRIPTION_ERROR, {"stream": stream, "message": str(exc)})

        return on_error

    def _spawn(self, coro: Awaitable) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _sign_out_quietly(self) -> None:
        try:
            await remote_call(self._auth.sign_out(), self._timeout)
        except StoreError as exc:
            logger.warning("Forced sign-out failed: %s", exc)

    # ---------- операции аутентификации ----------

    async def _authenticate(self, call: Awaitable[Identity]) -> Either[str, Identity]:
        try:
            identity = await remote_call(call, self._timeout)
        except StoreError as exc:
            return Either.left(exc.message)
        if not self.is_allowed(identity.email):
            await self._sign_out_quietly()
            return Either.left(self.rejection_message)
        return Either.right(identity)

    async def sign_in(self, email: str, password: str) -> Either[str, Identity]:
        if not email or not password:
            return Either.left("Please enter both email and password.")
        return await self._authenticate(self._auth.sign_in(email, password))

    async def register(self, email: str, password: str) -> Either[str, Identity]:
        if not email or not password:
            return Either.left("Please enter both email and password.")
        if not self.is_allowed(email):
            return Either.left(self.rejection_message)
        return await self._authenticate(self._auth.register(email, password))

    async def sign_in_with_provider(self, provider_id: str, credential: str) -> Either[str, Identity]:
        return await self._authenticate(self._auth.sign_in_with_provider(provider_id, credential))

    async def sign_out(self) -> Either[str, None]:
        try:
            await remote_call(self._auth.sign_out(), self._timeout)
        except StoreError as exc:
            return Either.left(exc.message)
        return Either.right(None)
