import json
from datetime import datetime
from functools import reduce
from typing import Any, Dict, Iterable, Optional, Tuple
from urllib.parse import quote

from .backend import SERVER_TIMESTAMP
from .domain import (
    ORDER_STATUSES,
    CartItem,
    Document,
    Order,
    PaymentInfo,
    PaymentRecord,
    Product,
    ShippingInfo,
)
from .errors import InvalidInput
from .ftypes import Maybe


def load_seed(path: str) -> Tuple[Product, ...]:
    """Загружает seed.json и возвращает кортеж товаров каталога"""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    def _to_product(p: dict) -> Product:
        return Product(
            id=str(p["id"]),
            name=p["name"],
            price=round(float(p["price"]), 2),
            image_url=p.get("imageUrl", ""),
            description=p.get("description", ""),
            inventory=p.get("inventory"),
        )

    return tuple(map(_to_product, data.get("products", [])))


# ============ Документы -> доменные объекты ============


def _timestamp(value: Any) -> Optional[datetime]:
    return value if isinstance(value, datetime) else None


def product_from_doc(doc: Document) -> Product:
    data = doc.data
    return Product(
        id=doc.id,
        name=str(data.get("name", "")),
        price=float(data.get("price", 0)),
        image_url=str(data.get("imageUrl") or ""),
        description=str(data.get("description") or ""),
        inventory=data.get("inventory"),
    )


def cart_item_from_doc(doc: Document) -> CartItem:
    data = doc.data
    return CartItem(
        id=doc.id,
        name=str(data.get("name", "")),
        price=float(data.get("price", 0)),
        image_url=str(data.get("imageUrl") or ""),
        quantity=int(data.get("quantity", 0)),
    )


def _status(value: Any) -> str:
    return value if value in ORDER_STATUSES else "pending"


def _item_from_dict(data: dict) -> CartItem:
    return CartItem(
        id=str(data.get("productId", "")),
        name=str(data.get("name", "")),
        price=float(data.get("price", 0)),
        image_url=str(data.get("imageUrl") or ""),
        quantity=int(data.get("quantity", 0)),
    )


def order_from_doc(doc: Document) -> Order:
    data = doc.data
    shipping = data.get("shipping") or {}
    payment = data.get("payment") or {}
    return Order(
        id=doc.id,
        user_id=str(data.get("userId", "")),
        items=tuple(map(_item_from_dict, data.get("items", []))),
        total=float(data.get("total", 0)),
        status=_status(data.get("status")),
        shipping=ShippingInfo(
            first_name=shipping.get("firstName", ""),
            last_name=shipping.get("lastName", ""),
            email=shipping.get("email", ""),
            address=shipping.get("address", ""),
            city=shipping.get("city", ""),
            zip_code=shipping.get("zipCode", ""),
            country=shipping.get("country", ""),
            phone=shipping.get("phone", ""),
            state=shipping.get("state", ""),
        ),
        payment=PaymentRecord(
            card_last4=payment.get("cardLast4", ""),
            cardholder_name=payment.get("cardholderName", ""),
        ),
        created_at=_timestamp(data.get("createdAt")),
        updated_at=_timestamp(data.get("updatedAt")),
    )


# ============ Доменные объекты -> документы ============


def product_to_doc(product: Product) -> Dict[str, Any]:
    doc = {
        "name": product.name,
        "price": product.price,
        "imageUrl": product.image_url,
        "description": product.description,
        "updatedAt": SERVER_TIMESTAMP,
    }
    if product.inventory is not None:
        doc["inventory"] = product.inventory
    return doc


def cart_doc_for(product: Product) -> Dict[str, Any]:
    """Новая позиция корзины: поля товара копируются на момент добавления"""
    return {
        "productId": product.id,
        "name": product.name,
        "price": product.price,
        "imageUrl": product.image_url,
        "quantity": 1,
        "addedAt": SERVER_TIMESTAMP,
    }


def order_item_to_dict(item: CartItem) -> Dict[str, Any]:
    return {
        "productId": item.id,
        "name": item.name,
        "price": item.price,
        "imageUrl": item.image_url,
        "quantity": item.quantity,
    }


def shipping_to_dict(shipping: ShippingInfo) -> Dict[str, str]:
    return {
        "firstName": shipping.first_name,
        "lastName": shipping.last_name,
        "email": shipping.email,
        "phone": shipping.phone,
        "address": shipping.address,
        "city": shipping.city,
        "state": shipping.state,
        "zipCode": shipping.zip_code,
        "country": shipping.country,
    }


def order_to_doc(
    user_id: str,
    items: Tuple[CartItem, ...],
    total: float,
    shipping: ShippingInfo,
    payment: PaymentRecord,
) -> Dict[str, Any]:
    return {
        "userId": user_id,
        "items": [order_item_to_dict(i) for i in items],
        "total": total,
        "status": "pending",
        "shipping": shipping_to_dict(shipping),
        "payment": {
            "cardLast4": payment.card_last4,
            "cardholderName": payment.cardholder_name,
        },
        "createdAt": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }


# ============ Агрегации ============


def cart_total(items: Iterable[CartItem]) -> float:
    """Сумма price * quantity через reduce, округлённая до центов"""
    return round(reduce(lambda acc, i: acc + i.price * i.quantity, items, 0.0), 2)


def cart_count(items: Iterable[CartItem]) -> int:
    return reduce(lambda acc, i: acc + i.quantity, items, 0)


def find_product(products: Tuple[Product, ...], pid: str) -> Maybe[Product]:
    found = next((p for p in products if p.id == pid), None)
    return Maybe.from_optional(found)


def find_cart_item(items: Tuple[CartItem, ...], pid: str) -> Maybe[CartItem]:
    found = next((i for i in items if i.id == pid), None)
    return Maybe.from_optional(found)


def placeholder_image(name: str) -> str:
    return f"/placeholder.svg?height=300&width=300&query={quote(name)}"


# ============ Проверка форм ============


_REQUIRED_SHIPPING = (
    ("first_name", "First name"),
    ("last_name", "Last name"),
    ("email", "Email"),
    ("address", "Address"),
    ("city", "City"),
    ("zip_code", "ZIP code"),
    ("country", "Country"),
)


def validate_shipping(shipping: ShippingInfo) -> ShippingInfo:
    missing = [
        label
        for attr, label in _REQUIRED_SHIPPING
        if not str(getattr(shipping, attr)).strip()
    ]
    if missing:
        raise InvalidInput(f"Missing shipping fields: {', '.join(missing)}")
    return shipping


def redact_payment(payment: PaymentInfo) -> PaymentRecord:
    """
    Проверяет данные карты и оставляет только последние 4 цифры и имя владельца.
    Номер, срок и CVV дальше этой функции не уходят.
    """
    digits = "".join(ch for ch in payment.card_number if ch.isdigit())
    if len(digits) < 12 or len(digits) > 19:
        raise InvalidInput("Card number must have 12 to 19 digits")
    if not payment.cardholder_name.strip():
        raise InvalidInput("Cardholder name is required")
    return PaymentRecord(card_last4=digits[-4:], cardholder_name=payment.cardholder_name.strip())


def validate_product_fields(name: str, price: float) -> None:
    if not name or not name.strip():
        raise InvalidInput("Product name is required")
    if price is None or price <= 0:
        raise InvalidInput("Price must be greater than zero")
