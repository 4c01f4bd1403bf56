from functools import reduce

from storefront.domain import CartItem, Identity
from storefront.frp import (
    CART_SNAPSHOT,
    ORDERS_SNAPSHOT,
    SESSION_CHANGED,
    SESSION_REJECTED,
    SUBSCRIPTION_ERROR,
    EventBus,
    StateContainer,
    create_event,
    create_store_event_bus,
    initial_state,
)

U1 = Identity(uid="u1", email="a@inst.edu")
ITEM = CartItem(id="p1", name="Mug", price=10.0, image_url="", quantity=2)


def test_eventbus_immutability():
    """EventBus должен быть иммутабельным"""
    bus1 = EventBus()
    bus2 = bus1.subscribe("TEST", lambda e, s: s)

    assert bus1.subscribers == ()
    assert len(bus2.subscribers) == 1
    assert bus1 is not bus2


def test_session_change_clears_cart_and_orders():
    bus = create_store_event_bus()
    state = {**initial_state(), "identity": U1, "cart": (ITEM,), "orders": ("o",)}

    new_state = bus.publish(create_event(SESSION_CHANGED, {"identity": None}), state)

    assert new_state["identity"] is None
    assert new_state["cart"] == ()
    assert new_state["orders"] == ()
    assert state["cart"] == (ITEM,)  # исходное состояние не изменилось


def test_cart_snapshot_replaces_mirror_wholesale():
    bus = create_store_event_bus()
    state = {**initial_state(), "identity": U1, "cart": (ITEM,)}
    other = CartItem(id="p2", name="Pin", price=5.0, image_url="", quantity=1)

    new_state = bus.publish(create_event(CART_SNAPSHOT, {"uid": "u1", "items": (other,)}), state)

    assert new_state["cart"] == (other,)


def test_snapshot_of_other_identity_is_ignored():
    """Запоздавший снимок прошлой сессии не попадает в зеркало"""
    bus = create_store_event_bus()
    state = {**initial_state(), "identity": None}

    cart_state = bus.publish(create_event(CART_SNAPSHOT, {"uid": "u1", "items": (ITEM,)}), state)
    orders_state = bus.publish(create_event(ORDERS_SNAPSHOT, {"uid": "u1", "items": ("o",)}), state)

    assert cart_state["cart"] == ()
    assert orders_state["orders"] == ()


def test_subscription_error_keeps_mirror():
    bus = create_store_event_bus()
    state = {**initial_state(), "identity": U1, "cart": (ITEM,)}

    new_state = bus.publish(
        create_event(SUBSCRIPTION_ERROR, {"stream": "cart", "message": "permission denied"}), state
    )

    assert new_state["cart"] == (ITEM,)
    assert new_state["errors"] == {"cart": "permission denied"}


def test_session_rejected_records_message():
    bus = create_store_event_bus()
    new_state = bus.publish(
        create_event(SESSION_REJECTED, {"message": "Only @inst.edu"}), initial_state()
    )

    assert new_state["identity"] is None
    assert new_state["session_message"] == "Only @inst.edu"


def test_session_rejected_drops_user_stream_errors():
    bus = create_store_event_bus()
    state = {
        **initial_state(),
        "identity": U1,
        "errors": {"cart": "permission denied", "orders": "permission denied", "products": "offline"},
    }

    new_state = bus.publish(create_event(SESSION_REJECTED, {"message": "Only @inst.edu"}), state)

    assert new_state["errors"] == {"products": "offline"}


def test_event_sequence():
    """Последовательность событий должна корректно применяться"""
    bus = create_store_event_bus()
    events = (
        create_event(SESSION_CHANGED, {"identity": U1}),
        create_event(CART_SNAPSHOT, {"uid": "u1", "items": (ITEM,)}),
        create_event(SESSION_CHANGED, {"identity": None}),
        create_event(CART_SNAPSHOT, {"uid": "u1", "items": (ITEM,)}),
    )

    final_state = reduce(lambda state, event: bus.publish(event, state), events, initial_state())

    assert final_state["cart"] == ()
    assert final_state["last_event"] == SESSION_CHANGED


def test_state_container_notifies_listeners():
    container = StateContainer()
    seen = []
    unlisten = container.listen(lambda event, state: seen.append((event.name, state["identity"])))

    container.dispatch(SESSION_CHANGED, {"identity": U1})
    unlisten()
    container.dispatch(SESSION_CHANGED, {"identity": None})

    assert seen == [(SESSION_CHANGED, U1)]
    assert container.state["identity"] is None
