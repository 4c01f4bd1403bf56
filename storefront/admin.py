import logging
from dataclasses import replace

from .backend import PRODUCTS_PATH, SERVER_TIMESTAMP, DocumentStore
from .domain import Product
from .errors import AdminRequired, remote_call
from .frp import ADMIN_CHANGED, StateContainer
from .transforms import placeholder_image, product_to_doc, validate_product_fields

logger = logging.getLogger(__name__)

# Статическая пара логин/пароль. Это НЕ граница безопасности: флаг только
# открывает интерфейс управления товарами.
ADMIN_ID = "Shivam"
ADMIN_PASSWORD = "Saturnalia@2025"


def check_admin(admin_id: str, password: str) -> bool:
    return admin_id == ADMIN_ID and password == ADMIN_PASSWORD


class AdminGate:
    def __init__(self, state: StateContainer):
        self._state = state

    @property
    def is_admin(self) -> bool:
        return self._state.state["is_admin"]

    def login(self, admin_id: str, password: str) -> bool:
        ok = check_admin(admin_id, password)
        if ok:
            self._state.dispatch(ADMIN_CHANGED, {"is_admin": True})
        return ok

    def logout(self) -> None:
        self._state.dispatch(ADMIN_CHANGED, {"is_admin": False})

    def require(self) -> None:
        if not self.is_admin:
            raise AdminRequired()


class ProductCatalog:
    """Изменения глобальной коллекции products, доступны только админу"""

    def __init__(self, store: DocumentStore, gate: AdminGate, timeout: float = 10.0):
        self._store = store
        self._gate = gate
        self._timeout = timeout

    async def create(self, name: str, price: float, description: str = "", image_url: str = "") -> str:
        self._gate.require()
        validate_product_fields(name, price)
        product = Product(
            id="",
            name=name.strip(),
            price=round(float(price), 2),
            image_url=image_url or placeholder_image(name.strip()),
            description=description,
        )
        doc = {**product_to_doc(product), "createdAt": SERVER_TIMESTAMP}
        product_id = await remote_call(self._store.add(PRODUCTS_PATH, doc), self._timeout)
        logger.info("Product %s created", product_id)
        return product_id

    async def update(self, product: Product) -> None:
        self._gate.require()
        validate_product_fields(product.name, product.price)
        product = replace(
            product,
            name=product.name.strip(),
            price=round(float(product.price), 2),
            image_url=product.image_url or placeholder_image(product.name.strip()),
        )
        await remote_call(
            self._store.update(PRODUCTS_PATH, product.id, product_to_doc(product)),
            self._timeout,
        )

    async def delete(self, product_id: str) -> None:
        self._gate.require()
        await remote_call(self._store.delete(PRODUCTS_PATH, product_id), self._timeout)
        logger.info("Product %s deleted", product_id)
