import sys
import os

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import pytest

from storefront.config import Settings
from storefront.domain import Product
from storefront.memory import InMemoryBackend
from storefront.service import Storefront

PASSWORD = "secret123"

P = Product(id="p1", name="Saturn Mug", price=10.0, image_url="/mug.jpg", description="Mug")
Q = Product(id="p2", name="Ring Hoodie", price=49.99, image_url="/hoodie.jpg", description="Hoodie")


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def settings():
    return Settings(allowed_email_suffix="@inst.edu", mutation_timeout=1.0)


@pytest.fixture
def shop(backend, settings):
    return Storefront(backend.store, backend.auth, settings)


def valid_shipping() -> dict:
    return {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "",
        "phone": "",
        "address": "1 Ring Road",
        "city": "Rome",
        "state": "",
        "zip_code": "00100",
        "country": "IT",
    }


def valid_payment() -> dict:
    return {
        "card_number": "4242 4242 4242 4242",
        "expiry": "12/29",
        "cvv": "123",
        "cardholder_name": "Ada Lovelace",
    }


async def put_product(backend, product: Product, **extra) -> None:
    from storefront.backend import SERVER_TIMESTAMP
    from storefront.transforms import product_to_doc

    doc = {**product_to_doc(product), "createdAt": SERVER_TIMESTAMP, **extra}
    await backend.store.set("products", product.id, doc)


async def start_signed_in(shop, backend, email: str = "u@inst.edu"):
    """Запускает витрину и регистрирует пользователя; возвращает Identity"""
    shop.start()
    result = await shop.register(email, PASSWORD)
    await backend.settle()
    assert result.is_right, result
    return result.value
