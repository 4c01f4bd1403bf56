import asyncio
import pytest
from dataclasses import replace

from conftest import P, Q, put_product, start_signed_in, valid_payment, valid_shipping
from storefront.backend import ORDERS_PATH, PRODUCTS_PATH, cart_path
from storefront.checkout import OrderCommitter
from storefront.config import Settings
from storefront.domain import CartItem, Identity, PaymentInfo, ShippingInfo
from storefront.service import Storefront
from storefront.triggers import install_order_triggers


def fill_forms(shop):
    shop.view.shipping.update(valid_shipping())
    shop.view.payment.update(valid_payment())


async def cart_with_two_items(shop, backend):
    identity = await start_signed_in(shop, backend)
    await shop.add_to_cart(P)
    await shop.add_to_cart(P)
    await shop.add_to_cart(Q)
    await backend.settle()
    return identity


@pytest.mark.asyncio
async def test_checkout_writes_order_and_clears_cart(shop, backend):
    """Заказ на 2xP + Q: документ pending, корзина пуста, заказ в истории"""
    identity = await cart_with_two_items(shop, backend)
    fill_forms(shop)
    shop.view.open_checkout()

    result = await shop.checkout()
    await backend.settle()

    assert result.is_right
    receipt = result.value
    assert receipt.total == 69.99
    assert receipt.cart_cleared

    stored = backend.store.peek(ORDERS_PATH)[receipt.order_id]
    assert stored["userId"] == identity.uid
    assert stored["status"] == "pending"
    assert stored["shipping"]["email"] == "u@inst.edu"
    assert [(i["productId"], i["quantity"]) for i in stored["items"]] == [("p1", 2), ("p2", 1)]

    assert shop.cart == ()
    assert [o.id for o in shop.orders] == [receipt.order_id]
    assert shop.orders[0].total == 69.99
    assert shop.view.current_page == "store"
    assert shop.view.flash == "Order placed! Total $69.99"
    assert shop.view.shipping["first_name"] == ""


@pytest.mark.asyncio
async def test_only_card_tail_is_stored(shop, backend):
    await cart_with_two_items(shop, backend)
    fill_forms(shop)

    result = await shop.checkout()

    payment = backend.store.peek(ORDERS_PATH)[result.value.order_id]["payment"]
    assert payment == {"cardLast4": "4242", "cardholderName": "Ada Lovelace"}


@pytest.mark.asyncio
async def test_order_contains_cart_snapshot_at_call_time(shop, backend):
    """Товар, добавленный во время оформления, в заказ не попадает"""
    await start_signed_in(shop, backend)
    await shop.add_to_cart(P)
    await backend.settle()
    fill_forms(shop)

    task = asyncio.ensure_future(shop.checkout())
    await asyncio.sleep(0)
    await shop.add_to_cart(Q)
    result = await task
    await backend.settle()

    stored = backend.store.peek(ORDERS_PATH)[result.value.order_id]
    assert [i["productId"] for i in stored["items"]] == ["p1"]
    assert stored["total"] == 10.0


@pytest.mark.asyncio
async def test_atomic_checkout_keeps_items_added_mid_checkout(backend):
    shop = Storefront(backend.store, backend.auth, Settings(checkout_atomic=True, mutation_timeout=1.0))
    identity = await start_signed_in(shop, backend)
    await shop.add_to_cart(P)
    await backend.settle()
    fill_forms(shop)

    task = asyncio.ensure_future(shop.checkout())
    await asyncio.sleep(0)
    await shop.add_to_cart(Q)
    result = await task
    await backend.settle()

    assert shop.committer.atomic
    assert result.value.cart_cleared
    assert list(backend.store.peek(cart_path(identity.uid))) == ["p2"]
    assert [i.id for i in shop.cart] == ["p2"]
    assert ("commit", "batch", None) in backend.store.operations


@pytest.mark.asyncio
async def test_atomic_checkout_failure_writes_nothing(backend):
    shop = Storefront(backend.store, backend.auth, Settings(checkout_atomic=True, mutation_timeout=1.0))
    await cart_with_two_items(shop, backend)
    fill_forms(shop)
    backend.store.fail_next("commit", "batch")

    result = await shop.checkout()
    await backend.settle()

    assert result.is_left
    assert backend.store.peek(ORDERS_PATH) == {}
    assert shop.cart_count == 3


@pytest.mark.asyncio
async def test_failed_order_write_keeps_cart(shop, backend):
    identity = await cart_with_two_items(shop, backend)
    fill_forms(shop)
    backend.store.fail_next("add", ORDERS_PATH)

    result = await shop.checkout()
    await backend.settle()

    assert result.is_left
    assert backend.store.peek(ORDERS_PATH) == {}
    assert len(backend.store.peek(cart_path(identity.uid))) == 2
    assert not any(op == "delete" for op, _, _ in backend.store.operations)
    assert shop.view.payment["cardholder_name"] == "Ada Lovelace"


@pytest.mark.asyncio
async def test_failed_cart_clear_still_reports_order(shop, backend):
    identity = await cart_with_two_items(shop, backend)
    fill_forms(shop)
    backend.store.fail_next("list", cart_path(identity.uid))

    result = await shop.checkout()
    await backend.settle()

    assert result.is_right
    assert not result.value.cart_cleared
    assert len(backend.store.peek(ORDERS_PATH)) == 1
    assert shop.cart_count == 3
    assert "could not be removed" in shop.view.flash


@pytest.mark.asyncio
async def test_checkout_preconditions(shop, backend):
    shop.start()
    await backend.settle()
    fill_forms(shop)

    signed_out = await shop.checkout()
    assert signed_out.is_left
    assert signed_out.value == "Please sign in to check out."

    await shop.register("u@inst.edu", "secret123")
    await backend.settle()
    empty = await shop.checkout()
    assert empty.value == "Your cart is empty."


@pytest.mark.asyncio
async def test_validation_failure_has_no_remote_effect(backend):
    item = CartItem(id="p1", name="Mug", price=10.0, image_url="", quantity=1)
    committer = OrderCommitter(backend.store, None, lambda: Identity("u1", "u@inst.edu"))
    shipping = ShippingInfo(**{**valid_shipping(), "email": "u@inst.edu", "city": " "})
    payment = PaymentInfo(**valid_payment())

    bad_address = await committer.checkout((item,), shipping, payment)
    bad_card = await committer.checkout(
        (item,),
        ShippingInfo(**{**valid_shipping(), "email": "u@inst.edu"}),
        PaymentInfo(**{**valid_payment(), "card_number": "1234"}),
    )

    assert bad_address.value.stage == "validation"
    assert "City" in bad_address.value.message
    assert bad_card.value.stage == "validation"
    assert backend.store.operations == []


@pytest.mark.asyncio
async def test_order_triggers_process_and_update_inventory(shop, backend):
    install_order_triggers(backend.store)
    await put_product(backend, P, inventory=10)
    await put_product(backend, Q)
    await cart_with_two_items(shop, backend)
    fill_forms(shop)

    result = await shop.checkout()
    await backend.settle()

    order = backend.store.peek(ORDERS_PATH)[result.value.order_id]
    assert order["status"] == "processing"
    assert "processedAt" in order
    assert shop.orders[0].status == "processing"

    products = backend.store.peek(PRODUCTS_PATH)
    assert products["p1"]["inventory"] == 8
    assert "inventory" not in products["p2"]


@pytest.mark.asyncio
async def test_orders_stream_only_shows_own_orders(shop, backend):
    await cart_with_two_items(shop, backend)
    fill_forms(shop)
    await backend.store.add(ORDERS_PATH, {"userId": "someone-else", "items": [], "total": 1.0})

    await shop.checkout()
    await backend.settle()

    assert len(shop.orders) == 1
    assert all(o.user_id == shop.identity.uid for o in shop.orders)


@pytest.mark.asyncio
async def test_past_order_keeps_price_after_product_edit(shop, backend):
    """Заказ 2xP(10): итого 20, последующая правка цены его не меняет"""
    await put_product(backend, P)
    await start_signed_in(shop, backend)
    await shop.add_to_cart(P)
    await shop.add_to_cart(P)
    await backend.settle()
    fill_forms(shop)

    result = await shop.checkout()
    shop.admin_login("Shivam", "Saturnalia@2025")
    await shop.edit_product(replace(P, price=12.5))
    await backend.settle()

    order = shop.orders[0]
    assert result.value.total == 20.0
    assert order.status == "pending"
    assert [(i.id, i.quantity, i.price) for i in order.items] == [("p1", 2, 10.0)]
    assert order.total == 20.0
    assert shop.products[0].price == 12.5
    assert shop.cart == ()
