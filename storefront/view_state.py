from dataclasses import dataclass, field
from typing import Dict, Optional

from .domain import PaymentInfo, Product, ShippingInfo


def _empty_shipping() -> Dict[str, str]:
    return {
        "first_name": "",
        "last_name": "",
        "email": "",
        "phone": "",
        "address": "",
        "city": "",
        "state": "",
        "zip_code": "",
        "country": "",
    }


def _empty_payment() -> Dict[str, str]:
    return {"card_number": "", "expiry": "", "cvv": "", "cardholder_name": ""}


def _empty_product() -> Dict:
    return {"name": "", "price": 0.0, "description": "", "image_url": ""}


def _empty_credentials() -> Dict[str, str]:
    return {"email": "", "password": ""}


def _empty_admin_credentials() -> Dict[str, str]:
    return {"id": "", "password": ""}


@dataclass
class LocalViewState:
    """Эфемерное состояние интерфейса. Не сохраняется и не синхронизируется"""

    current_page: str = "store"  # "store" | "checkout"
    active_tab: str = "cart"  # "cart" | "orders" | "account"
    show_admin_panel: bool = False
    show_admin_login: bool = False
    show_user_login: bool = False
    is_registering: bool = False
    editing_product: Optional[Product] = None
    new_product: Dict = field(default_factory=_empty_product)
    shipping: Dict[str, str] = field(default_factory=_empty_shipping)
    payment: Dict[str, str] = field(default_factory=_empty_payment)
    user_credentials: Dict[str, str] = field(default_factory=_empty_credentials)
    admin_credentials: Dict[str, str] = field(default_factory=_empty_admin_credentials)
    user_login_error: str = ""
    admin_login_error: str = ""
    flash: str = ""

    def prompt_sign_in(self, message: str = "") -> None:
        self.show_user_login = True
        self.user_login_error = message

    def close_user_login(self) -> None:
        self.show_user_login = False
        self.user_credentials = _empty_credentials()
        self.user_login_error = ""

    def close_admin_login(self) -> None:
        self.show_admin_login = False
        self.admin_credentials = _empty_admin_credentials()
        self.admin_login_error = ""

    def toggle_admin_panel(self) -> None:
        self.show_admin_panel = not self.show_admin_panel

    def open_checkout(self) -> None:
        self.current_page = "checkout"

    def back_to_store(self) -> None:
        self.current_page = "store"

    def reset_checkout_forms(self) -> None:
        self.shipping = _empty_shipping()
        self.payment = _empty_payment()

    def reset_new_product(self) -> None:
        self.new_product = _empty_product()

    def reset_after_logout(self) -> None:
        self.active_tab = "cart"
        self.current_page = "store"
        self.reset_checkout_forms()

    def shipping_info(self, default_email: str = "") -> ShippingInfo:
        data = dict(self.shipping)
        if not data["email"].strip():
            data["email"] = default_email
        return ShippingInfo(**data)

    def payment_info(self) -> PaymentInfo:
        return PaymentInfo(**self.payment)
