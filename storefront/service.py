import logging
import os
from typing import Awaitable, Callable, Tuple, TypeVar

from .admin import AdminGate, ProductCatalog
from .backend import PRODUCTS_PATH, SERVER_TIMESTAMP, AuthProvider, DocumentStore
from .cart import CartReconciler
from .checkout import CheckoutReceipt, OrderCommitter
from .config import Settings
from .domain import CartItem, CollectionQuery, Identity, Order, Product
from .errors import StoreError, Unauthenticated, remote_call
from .frp import PRODUCTS_SNAPSHOT, SUBSCRIPTION_ERROR, StateContainer
from .ftypes import Either
from .session import SessionTracker
from .subscriber import CollectionSubscriber, StreamSlot
from .transforms import cart_count, cart_total, load_seed, product_from_doc, product_to_doc
from .view_state import LocalViewState

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRODUCTS_QUERY = CollectionQuery(PRODUCTS_PATH, order_by=("createdAt", "desc"))


class Storefront:
    """
    Фасад одной клиентской сессии витрины.
    Связывает контейнер состояния, подписки, корзину, оформление заказа
    и админ-панель. Действия интерфейса возвращают Either[str, value].
    """

    def __init__(self, store: DocumentStore, auth: AuthProvider, settings: Settings = None):
        self.settings = settings or Settings()
        timeout = self.settings.mutation_timeout
        self.state = StateContainer()
        self.view = LocalViewState()
        self._subscriber = CollectionSubscriber(store)
        self._products = StreamSlot("products")
        self.session = SessionTracker(
            auth, self._subscriber, self.state, self.settings.allowed_email_suffix, timeout
        )
        self.cart_reconciler = CartReconciler(store, lambda: self.session.identity, timeout)
        self.committer = OrderCommitter(
            store,
            self.cart_reconciler,
            lambda: self.session.identity,
            timeout,
            atomic=self.settings.checkout_atomic,
        )
        self.admin = AdminGate(self.state)
        self.catalog = ProductCatalog(store, self.admin, timeout)

    # ---------- жизненный цикл ----------

    def start(self) -> None:
        def on_products(docs) -> None:
            self.state.dispatch(PRODUCTS_SNAPSHOT, {"products": tuple(map(product_from_doc, docs))})

        def on_error(exc: Exception) -> None:
            self.state.dispatch(SUBSCRIPTION_ERROR, {"stream": "products", "message": str(exc)})

        self._products.replace(lambda: self._subscriber.subscribe(PRODUCTS_QUERY, on_products, on_error))
        self.session.start()

    def stop(self) -> None:
        self.session.stop()
        self._products.cancel()

    # ---------- чтение зеркал ----------

    @property
    def identity(self) -> Identity:
        return self.state.state["identity"]

    @property
    def products(self) -> Tuple[Product, ...]:
        return self.state.state["products"]

    @property
    def cart(self) -> Tuple[CartItem, ...]:
        return self.state.state["cart"]

    @property
    def orders(self) -> Tuple[Order, ...]:
        return self.state.state["orders"]

    @property
    def is_admin(self) -> bool:
        return self.state.state["is_admin"]

    @property
    def cart_total(self) -> float:
        return cart_total(self.cart)

    @property
    def cart_count(self) -> int:
        return cart_count(self.cart)

    @property
    def session_message(self):
        return self.state.state["session_message"]

    @property
    def errors(self) -> dict:
        return self.state.state["errors"]

    # ---------- корзина ----------

    async def _attempt(self, call: Awaitable[T]) -> Either[str, T]:
        try:
            return Either.right(await call)
        except StoreError as exc:
            return Either.left(exc.message)

    async def add_to_cart(self, product: Product) -> Either[str, str]:
        try:
            await self.cart_reconciler.add_to_cart(product)
        except Unauthenticated as exc:
            self.view.prompt_sign_in(exc.message)
            return Either.left(exc.message)
        except StoreError as exc:
            return Either.left(exc.message)
        return Either.right(product.id)

    async def update_quantity(self, product_id: str, quantity: int) -> Either[str, None]:
        return await self._attempt(self.cart_reconciler.update_quantity(product_id, quantity))

    async def remove_from_cart(self, product_id: str) -> Either[str, None]:
        return await self._attempt(self.cart_reconciler.remove_from_cart(product_id))

    async def checkout(self) -> Either[str, CheckoutReceipt]:
        email = self.session.current().map(lambda i: i.email).get_or_else("")
        shipping = self.view.shipping_info(email)
        result = await self.committer.checkout(self.cart, shipping, self.view.payment_info())
        if result.is_right:
            receipt = result.value
            self.view.reset_checkout_forms()
            self.view.back_to_store()
            self.view.flash = (
                f"Order placed! Total ${receipt.total:.2f}"
                if receipt.cart_cleared
                else "Order placed, but some cart items could not be removed."
            )
        return result.map_left(lambda failure: failure.message)

    # ---------- сессия ----------

    def _after_login(self, result: Either[str, Identity]) -> Either[str, Identity]:
        if result.is_right:
            self.view.close_user_login()
        else:
            self.view.user_login_error = result.value
        return result

    async def sign_in(self, email: str, password: str) -> Either[str, Identity]:
        return self._after_login(await self.session.sign_in(email, password))

    async def register(self, email: str, password: str) -> Either[str, Identity]:
        return self._after_login(await self.session.register(email, password))

    async def sign_in_with_provider(self, provider_id: str, credential: str) -> Either[str, Identity]:
        return self._after_login(await self.session.sign_in_with_provider(provider_id, credential))

    async def sign_out(self) -> Either[str, None]:
        result = await self.session.sign_out()
        if result.is_right:
            self.view.reset_after_logout()
        return result

    # ---------- админ ----------

    def admin_login(self, admin_id: str, password: str) -> Either[str, bool]:
        if self.admin.login(admin_id, password):
            self.view.close_admin_login()
            return Either.right(True)
        self.view.admin_login_error = "Invalid credentials. Please try again."
        return Either.left(self.view.admin_login_error)

    def admin_logout(self) -> None:
        self.admin.logout()
        self.view.show_admin_panel = False

    async def add_product(self, name: str, price: float, description: str = "", image_url: str = "") -> Either[str, str]:
        result = await self._attempt(self.catalog.create(name, price, description, image_url))
        if result.is_right:
            self.view.reset_new_product()
        return result

    async def edit_product(self, product: Product) -> Either[str, None]:
        result = await self._attempt(self.catalog.update(product))
        if result.is_right:
            self.view.editing_product = None
        return result

    async def delete_product(self, product_id: str) -> Either[str, None]:
        return await self._attempt(self.catalog.delete(product_id))


# ============ Сборка ============


def build_backend(settings: Settings) -> Tuple[DocumentStore, Callable[[], AuthProvider]]:
    """
    Общее для процесса хранилище и фабрика провайдеров аутентификации:
    у каждой клиентской сессии свой провайдер и своя личность.
    """
    if settings.backend == "firebase":
        from .firebase import FirebaseAuthProvider, FirestoreDocumentStore, init_firebase_app

        app = init_firebase_app(settings.firebase_credentials)
        return FirestoreDocumentStore(app), lambda: FirebaseAuthProvider(settings.firebase_web_api_key)

    from .memory import InMemoryBackend
    from .triggers import install_order_triggers

    backend = InMemoryBackend()
    install_order_triggers(backend.store)
    return backend.store, backend.new_auth


async def seed_if_empty(store: DocumentStore, seed_path: str, timeout: float = 10.0) -> int:
    """Заполняет пустой каталог товарами из seed.json"""
    existing = await remote_call(store.list(PRODUCTS_QUERY), timeout)
    if existing or not os.path.exists(seed_path):
        return 0
    products = load_seed(seed_path)
    for product in products:
        doc = {**product_to_doc(product), "createdAt": SERVER_TIMESTAMP}
        await remote_call(store.set(PRODUCTS_PATH, product.id, doc), timeout)
    logger.info("Seeded %d products from %s", len(products), seed_path)
    return len(products)
