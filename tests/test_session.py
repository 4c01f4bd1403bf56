import pytest

from conftest import P, PASSWORD, start_signed_in
from storefront.backend import cart_path
from storefront.frp import CART_SNAPSHOT, SESSION_CHANGED, SESSION_REJECTED
from storefront.service import Storefront

REJECTED = "Only @inst.edu email addresses can sign in to this store."


@pytest.mark.asyncio
async def test_switching_users_never_shows_previous_cart(shop, backend):
    """Зеркало корзины не содержит позиций прошлой личности"""
    seen = []
    shop.state.listen(lambda event, state: seen.append((event.name, state["identity"], state["cart"])))

    alice = await start_signed_in(shop, backend, "alice@inst.edu")
    await shop.add_to_cart(P)
    await backend.settle()
    assert shop.cart_count == 1

    await shop.sign_out()
    await backend.settle()
    bob = (await shop.register("bob@inst.edu", PASSWORD)).value
    await backend.settle()

    assert shop.identity == bob
    assert shop.cart == ()
    for _, identity, cart in seen:
        if identity != alice:
            assert cart == ()
    assert [name for name, _, _ in seen].count(SESSION_CHANGED) == 3


@pytest.mark.asyncio
async def test_sign_out_closes_user_streams(shop, backend):
    await start_signed_in(shop, backend)
    assert backend.store.watcher_count == 3  # products, cart, orders

    result = await shop.sign_out()
    await backend.settle()

    assert result.is_right
    assert shop.identity is None
    assert shop.cart == () and shop.orders == ()
    assert backend.store.watcher_count == 1


@pytest.mark.asyncio
async def test_existing_outside_domain_session_is_rejected(shop, backend):
    """Уже открытая сессия с чужим доменом: выход и сообщение"""
    await backend.auth.register("someone@gmail.com", PASSWORD)
    await backend.settle()

    shop.start()
    await backend.settle()

    assert shop.identity is None
    assert shop.session_message == REJECTED
    assert backend.auth.current is None
    assert backend.store.watcher_count == 1


@pytest.mark.asyncio
async def test_sign_in_outside_domain_is_refused(shop, backend):
    await backend.auth.register("someone@gmail.com", PASSWORD)
    await backend.auth.sign_out()
    shop.start()
    await backend.settle()
    events = []
    shop.state.listen(lambda event, state: events.append(event.name))

    result = await shop.sign_in("someone@gmail.com", PASSWORD)
    await backend.settle()

    assert result.is_left
    assert result.value == REJECTED
    assert shop.view.user_login_error == REJECTED
    assert shop.identity is None
    assert backend.auth.current is None
    assert CART_SNAPSHOT not in events
    assert SESSION_REJECTED in events


@pytest.mark.asyncio
async def test_register_outside_domain_never_creates_account(shop, backend):
    shop.start()
    await backend.settle()

    result = await shop.register("someone@gmail.com", PASSWORD)

    assert result.value == REJECTED
    assert backend.store.peek("users") == {}


@pytest.mark.asyncio
async def test_provider_sign_in_checks_domain(shop, backend):
    shop.start()
    await backend.settle()

    denied = await shop.sign_in_with_provider("google.com", "someone@gmail.com")
    await backend.settle()
    allowed = await shop.sign_in_with_provider("google.com", "student@inst.edu")
    await backend.settle()

    assert denied.value == REJECTED
    assert allowed.is_right
    assert shop.identity.email == "student@inst.edu"


@pytest.mark.asyncio
async def test_auth_errors_are_user_messages(shop, backend):
    shop.start()
    await backend.settle()

    empty = await shop.sign_in("", "")
    wrong = await shop.sign_in("nobody@inst.edu", "whatever")
    short = await shop.register("new@inst.edu", "123")

    assert empty.value == "Please enter both email and password."
    assert wrong.value == "Invalid email or password."
    assert short.value == "Password should be at least 6 characters."
    assert shop.view.user_login_error == short.value


@pytest.mark.asyncio
async def test_successful_sign_in_closes_login_form(shop, backend):
    await start_signed_in(shop, backend)
    await shop.sign_out()
    await backend.settle()
    shop.view.prompt_sign_in("Please sign in to add items to your cart.")

    result = await shop.sign_in("u@inst.edu", PASSWORD)
    await backend.settle()

    assert result.is_right
    assert not shop.view.show_user_login
    assert shop.view.user_login_error == ""


@pytest.mark.asyncio
async def test_start_is_idempotent(shop, backend):
    shop.start()
    shop.start()
    await backend.settle()

    assert backend.auth.listener_count == 1
    assert backend.store.watcher_count == 1


@pytest.mark.asyncio
async def test_stop_releases_everything(shop, backend):
    await start_signed_in(shop, backend)

    shop.stop()

    assert backend.auth.listener_count == 0
    assert backend.store.watcher_count == 0


@pytest.mark.asyncio
async def test_expired_session_clears_mirrors(shop, backend):
    identity = await start_signed_in(shop, backend)
    await shop.add_to_cart(P)
    await backend.settle()

    backend.auth.expire_session()
    await backend.settle()

    assert shop.identity is None
    assert shop.cart == ()
    # удалённая корзина остаётся на месте
    assert list(backend.store.peek(cart_path(identity.uid))) == ["p1"]


@pytest.mark.asyncio
async def test_cart_survives_sign_in_again(shop, backend):
    await start_signed_in(shop, backend)
    await shop.add_to_cart(P)
    await shop.sign_out()
    await backend.settle()

    await shop.sign_in("u@inst.edu", PASSWORD)
    await backend.settle()

    assert [(i.id, i.quantity) for i in shop.cart] == [("p1", 1)]


@pytest.mark.asyncio
async def test_each_client_session_has_its_own_identity(shop, backend, settings):
    """Вход в одной вкладке не открывает корзину другой"""
    other = Storefront(backend.store, backend.new_auth(), settings)
    other.start()
    await start_signed_in(shop, backend, "alice@inst.edu")
    await shop.add_to_cart(P)
    await backend.settle()

    assert other.identity is None
    assert other.cart == ()
    assert (await other.add_to_cart(P)).is_left

    bob = await other.register("bob@inst.edu", PASSWORD)
    await backend.settle()
    assert other.identity == bob.value
    assert other.cart == ()
    assert shop.cart_count == 1

    # учётные записи общие: alice может войти и во второй вкладке
    await other.sign_out()
    assert (await other.sign_in("alice@inst.edu", PASSWORD)).is_right
    await backend.settle()
    assert other.cart_count == 1
