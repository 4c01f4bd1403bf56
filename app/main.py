import sys
import os
import asyncio
import threading
import time
import streamlit as st

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from storefront.config import load_settings, configure_logging
from storefront.domain import Product
from storefront.service import Storefront, build_backend, seed_if_empty
from storefront.transforms import find_cart_item, find_product


# ============ Рантайм: цикл событий в отдельном потоке ============
# Цикл и хранилище общие для процесса, витрина своя у каждой вкладки.
@st.cache_resource
def get_runtime():
    settings = load_settings()
    configure_logging(settings)

    loop = asyncio.new_event_loop()
    threading.Thread(target=loop.run_forever, name="storefront-loop", daemon=True).start()

    store, new_auth = build_backend(settings)
    asyncio.run_coroutine_threadsafe(
        seed_if_empty(store, settings.seed_path, settings.mutation_timeout), loop
    ).result()
    return loop, store, new_auth, settings


loop, store, new_auth, settings = get_runtime()


def run(coro):
    """Выполняет корутину в цикле витрины и ждёт результат"""
    return asyncio.run_coroutine_threadsafe(coro, loop).result()


if "shop" not in st.session_state:
    shop = Storefront(store, new_auth(), settings)

    async def boot():
        shop.start()

    run(boot())
    st.session_state.shop = shop

shop = st.session_state.shop
view = shop.view


def act(coro, success: str = ""):
    """Действие пользователя: ошибка показывается, снимки успевают прийти"""
    result = run(coro)
    if result.is_left:
        st.session_state.flash_error = result.value
    elif success:
        view.flash = success
    time.sleep(0.2)
    st.rerun()


def format_price(value: float) -> str:
    return f"${value:.2f}"


st.set_page_config(page_title="Saturnalia Store", page_icon="🪐", layout="wide")


# ============ SIDEBAR - аккаунт и админ ============
with st.sidebar:
    st.header("🪐 Saturnalia Store")
    identity = shop.identity

    if identity is None:
        st.write("Hello, Guest!")
        st.info("Sign in to save your cart and track orders!")
        if st.button("👤 Login", key="open_login"):
            view.show_user_login = True
    else:
        st.write(f"Hello, {identity.email}!")
        if st.button("Logout", key="logout"):
            act(shop.sign_out())

    if shop.session_message:
        st.error(shop.session_message)

    if view.show_user_login and identity is None:
        with st.form("user_login"):
            title = "Register" if view.is_registering else "Sign In"
            st.subheader(title)
            creds = view.user_credentials
            creds["email"] = st.text_input("Email", creds["email"])
            creds["password"] = st.text_input("Password", creds["password"], type="password")
            if st.form_submit_button(title):
                action = shop.register if view.is_registering else shop.sign_in
                act(action(creds["email"], creds["password"]))
        if view.user_login_error:
            st.error(view.user_login_error)
        label = "Have an account? Sign in" if view.is_registering else "No account? Register"
        if st.button(label, key="toggle_register"):
            view.is_registering = not view.is_registering
            st.rerun()

    st.divider()

    if not shop.is_admin:
        if st.button("🔒 Admin", key="open_admin"):
            view.show_admin_login = True
        if view.show_admin_login:
            with st.form("admin_login"):
                admin = view.admin_credentials
                admin["id"] = st.text_input("Admin ID", admin["id"])
                admin["password"] = st.text_input("Admin password", admin["password"], type="password")
                if st.form_submit_button("Login as admin"):
                    shop.admin_login(admin["id"], admin["password"])
                    st.rerun()
            if view.admin_login_error:
                st.error(view.admin_login_error)
    else:
        if st.button("Admin Logout", key="admin_logout"):
            shop.admin_logout()
            st.rerun()
        if st.button("Toggle admin panel", key="toggle_panel"):
            view.toggle_admin_panel()
            st.rerun()

    for stream, message in shop.errors.items():
        st.warning(f"⚠️ {stream}: {message}")

if view.flash:
    st.success(view.flash)
    view.flash = ""
if st.session_state.get("flash_error"):
    st.error(st.session_state.pop("flash_error"))


# ============ PAGE: CHECKOUT ============
if view.current_page == "checkout":
    if st.button("← Back to Store", key="back"):
        view.back_to_store()
        st.rerun()
    st.header("Checkout")

    st.subheader("Order Summary")
    for item in shop.cart:
        cols = st.columns([5, 2])
        cols[0].write(f"**{item.name}** × {item.quantity}")
        cols[1].write(format_price(item.price * item.quantity))
    st.markdown(f"### Total: {format_price(shop.cart_total)}")

    with st.form("checkout"):
        st.subheader("Shipping Information")
        c1, c2 = st.columns(2)
        view.shipping["first_name"] = c1.text_input("First Name", view.shipping["first_name"])
        view.shipping["last_name"] = c2.text_input("Last Name", view.shipping["last_name"])
        view.shipping["email"] = st.text_input(
            "Email", view.shipping["email"] or (shop.identity.email if shop.identity else "")
        )
        view.shipping["phone"] = st.text_input("Phone", view.shipping["phone"])
        view.shipping["address"] = st.text_input("Address", view.shipping["address"])
        c3, c4, c5, c6 = st.columns(4)
        view.shipping["city"] = c3.text_input("City", view.shipping["city"])
        view.shipping["state"] = c4.text_input("State", view.shipping["state"])
        view.shipping["zip_code"] = c5.text_input("ZIP Code", view.shipping["zip_code"])
        view.shipping["country"] = c6.text_input("Country", view.shipping["country"])

        st.subheader("Payment Information")
        view.payment["card_number"] = st.text_input("Card Number", view.payment["card_number"])
        p1, p2 = st.columns(2)
        view.payment["expiry"] = p1.text_input("MM/YY", view.payment["expiry"])
        view.payment["cvv"] = p2.text_input("CVV", view.payment["cvv"], type="password")
        view.payment["cardholder_name"] = st.text_input("Cardholder Name", view.payment["cardholder_name"])

        if st.form_submit_button(f"Complete Order - {format_price(shop.cart_total)}", type="primary"):
            act(shop.checkout())


# ============ PAGE: STORE ============
else:
    left, right = st.columns([1, 2])

    with left:
        tabs = {"cart": f"🛒 Cart ({shop.cart_count})", "orders": "📦 Orders", "account": "👤 Account"}
        view.active_tab = st.radio(
            "Section",
            list(tabs),
            index=list(tabs).index(view.active_tab),
            format_func=tabs.get,
            horizontal=True,
            label_visibility="collapsed",
        )

        if view.active_tab == "cart":
            if not shop.cart:
                st.info("Your cart is empty." if shop.identity else "Sign in to use your cart.")
            for item in shop.cart:
                cols = st.columns([4, 1, 1, 1])
                cols[0].write(f"**{item.name}**  \n{format_price(item.price)} × {item.quantity}")
                if cols[1].button("➖", key=f"dec_{item.id}"):
                    act(shop.update_quantity(item.id, item.quantity - 1))
                if cols[2].button("➕", key=f"inc_{item.id}"):
                    act(shop.update_quantity(item.id, item.quantity + 1))
                if cols[3].button("🗑️", key=f"rm_{item.id}"):
                    act(shop.remove_from_cart(item.id))
            if shop.cart:
                st.markdown(f"**Total: {format_price(shop.cart_total)}**")
                if st.button("Proceed to Checkout", type="primary", key="to_checkout"):
                    view.open_checkout()
                    st.rerun()

        elif view.active_tab == "orders":
            if not shop.orders:
                st.info("No orders yet!" if shop.identity else "Please sign in to view orders.")
            for order in shop.orders:
                created = order.created_at.strftime("%Y-%m-%d %H:%M") if order.created_at else "…"
                st.write(f"**#{order.id[:8]}** · {created} · {order.status} · {format_price(order.total)}")
                st.caption(", ".join(f"{i.name} × {i.quantity}" for i in order.items))

        else:
            if shop.identity:
                st.write(f"Email: {shop.identity.email}")
                st.write(f"Orders placed: {len(shop.orders)}")
            else:
                st.info("Not signed in.")

    with right:
        if shop.is_admin and view.show_admin_panel:
            with st.expander("🛠️ Admin panel: add product", expanded=True):
                with st.form("new_product"):
                    name = st.text_input("Name", view.new_product["name"])
                    price = st.number_input("Price", min_value=0.0, value=float(view.new_product["price"]), step=0.5)
                    description = st.text_area("Description", view.new_product["description"])
                    image_url = st.text_input("Image URL", view.new_product["image_url"])
                    if st.form_submit_button("Add Product"):
                        act(shop.add_product(name, price, description, image_url), "Product added")

        if view.editing_product is not None and find_product(shop.products, view.editing_product.id).is_none():
            # товар удалили, пока открыта форма
            view.editing_product = None

        if view.editing_product is not None:
            editing = view.editing_product
            with st.form("edit_product"):
                st.subheader(f"Edit {editing.name}")
                name = st.text_input("Name", editing.name)
                price = st.number_input("Price", min_value=0.0, value=float(editing.price), step=0.5)
                description = st.text_area("Description", editing.description)
                image_url = st.text_input("Image URL", editing.image_url)
                if st.form_submit_button("Save"):
                    updated = Product(editing.id, name, price, image_url, description, editing.inventory)
                    act(shop.edit_product(updated), "Product updated")

        st.header("Products")
        if not shop.products:
            st.info("Loading products…")
        grid = st.columns(3)
        for idx, product in enumerate(shop.products):
            with grid[idx % 3]:
                st.markdown(f"**{product.name}**")
                st.caption(product.description)
                st.write(format_price(product.price))
                in_cart = find_cart_item(shop.cart, product.id).map(lambda i: i.quantity).get_or_else(0)
                if in_cart:
                    st.caption(f"In cart: {in_cart}")
                if st.button("Add to Cart", key=f"add_{product.id}"):
                    act(shop.add_to_cart(product), f"{product.name} added to cart")
                if shop.is_admin and view.show_admin_panel:
                    if st.button("✏️ Edit", key=f"edit_{product.id}"):
                        view.editing_product = product
                        st.rerun()
                    if st.button("🗑️ Delete", key=f"del_{product.id}"):
                        act(shop.delete_product(product.id), "Product deleted")

    if st.button("🔄 Refresh", key="refresh"):
        st.rerun()
