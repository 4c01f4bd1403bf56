import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Tuple

from .backend import ORDERS_PATH, DocumentStore, cart_path
from .cart import CartReconciler
from .domain import CartItem, Identity, PaymentInfo, ShippingInfo
from .errors import InvalidInput, StoreError, remote_call
from .ftypes import Either
from .transforms import cart_total, order_to_doc, redact_payment, validate_shipping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutFailure:
    stage: str  # "precondition" | "validation" | "order"
    message: str


@dataclass(frozen=True)
class CheckoutReceipt:
    order_id: str
    total: float
    items: Tuple[CartItem, ...]
    cart_cleared: bool


class OrderCommitter:
    """
    Оформление заказа: снимок корзины -> документ заказа -> очистка корзины.

    Корзина очищается только после успешной записи заказа. Если запись
    прошла, а очистка нет, заказ остаётся, а cart_cleared=False.
    В атомарном режиме заказ и удаление позиций снимка пишутся одним batch.
    """

    def __init__(
        self,
        store: DocumentStore,
        cart: CartReconciler,
        current_identity: Callable[[], Optional[Identity]],
        timeout: float = 10.0,
        atomic: bool = False,
    ):
        self._store = store
        self._cart = cart
        self._current_identity = current_identity
        self._timeout = timeout
        self._atomic = atomic

    @property
    def atomic(self) -> bool:
        return self._atomic and self._store.supports_batch

    async def checkout(
        self,
        items: Iterable[CartItem],
        shipping: ShippingInfo,
        payment: PaymentInfo,
    ) -> Either[CheckoutFailure, CheckoutReceipt]:
        # снимок берётся в момент вызова, дальнейшие изменения корзины не влияют
        items = tuple(items)
        identity = self._current_identity()
        if identity is None:
            return Either.left(CheckoutFailure("precondition", "Please sign in to check out."))
        if not items:
            return Either.left(CheckoutFailure("precondition", "Your cart is empty."))

        try:
            validate_shipping(shipping)
            payment_record = redact_payment(payment)
        except InvalidInput as exc:
            return Either.left(CheckoutFailure("validation", exc.message))

        total = cart_total(items)
        doc = order_to_doc(identity.uid, items, total, shipping, payment_record)

        if self.atomic:
            return await self._commit_batch(identity, items, total, doc)

        try:
            order_id = await remote_call(self._store.add(ORDERS_PATH, doc), self._timeout)
        except StoreError as exc:
            logger.warning("Order write failed for %s: %s", identity.uid, exc)
            return Either.left(CheckoutFailure("order", exc.message))

        cart_cleared = await self._clear_cart(order_id)
        return Either.right(CheckoutReceipt(order_id, total, items, cart_cleared))

    async def _clear_cart(self, order_id: str) -> bool:
        try:
            failed = await self._cart.clear_cart()
        except StoreError as exc:
            logger.warning("Order %s written but cart was not cleared: %s", order_id, exc)
            return False
        if failed:
            logger.warning("Order %s written but %d cart items remain", order_id, len(failed))
        return not failed

    async def _commit_batch(self, identity: Identity, items, total: float, doc: dict):
        batch = self._store.batch()
        order_id = batch.create(ORDERS_PATH, doc)
        path = cart_path(identity.uid)
        for item in items:
            batch.delete(path, item.id)
        try:
            await remote_call(batch.commit(), self._timeout)
        except StoreError as exc:
            logger.warning("Atomic checkout failed for %s: %s", identity.uid, exc)
            return Either.left(CheckoutFailure("order", exc.message))
        return Either.right(CheckoutReceipt(order_id, total, items, True))
