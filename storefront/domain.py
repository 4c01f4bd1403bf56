from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


ORDER_STATUSES = ("pending", "processing", "shipped", "delivered")


@dataclass(frozen=True)
class Identity:
    uid: str
    email: str


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: float
    image_url: str = ""
    description: str = ""
    inventory: Optional[int] = None


@dataclass(frozen=True)
class CartItem:
    id: str  # product id
    name: str
    price: float
    image_url: str
    quantity: int


@dataclass(frozen=True)
class ShippingInfo:
    first_name: str
    last_name: str
    email: str
    address: str
    city: str
    zip_code: str
    country: str
    phone: str = ""
    state: str = ""


@dataclass(frozen=True)
class PaymentInfo:
    """Данные карты из формы. Никогда не сохраняются целиком."""

    card_number: str
    expiry: str
    cvv: str
    cardholder_name: str


@dataclass(frozen=True)
class PaymentRecord:
    card_last4: str
    cardholder_name: str


@dataclass(frozen=True)
class Order:
    id: str
    user_id: str
    items: Tuple[CartItem, ...]
    total: float
    status: str
    shipping: ShippingInfo
    payment: PaymentRecord
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class CollectionQuery:
    """
    Описание живой выборки: путь коллекции,
    необязательный фильтр равенства (field, value)
    и необязательная сортировка (field, "asc" | "desc")
    """

    path: str
    where: Optional[Tuple[str, Any]] = None
    order_by: Optional[Tuple[str, str]] = None


@dataclass(frozen=True)
class Document:
    id: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class Event:
    id: str
    ts: str
    name: str
    payload: Dict
