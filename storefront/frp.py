from dataclasses import dataclass
from functools import reduce
from itertools import count
from typing import Callable, Dict, Tuple
from .domain import Event
import uuid
from datetime import datetime


SESSION_CHANGED = "SESSION_CHANGED"
SESSION_REJECTED = "SESSION_REJECTED"
PRODUCTS_SNAPSHOT = "PRODUCTS_SNAPSHOT"
CART_SNAPSHOT = "CART_SNAPSHOT"
ORDERS_SNAPSHOT = "ORDERS_SNAPSHOT"
ADMIN_CHANGED = "ADMIN_CHANGED"
SUBSCRIPTION_ERROR = "SUBSCRIPTION_ERROR"


@dataclass(frozen=True)
class EventBus:
    """
    Иммутабельная шина событий состояния приложения
    Подписчики - чистые функции: (Event, State) -> State
    """

    subscribers: Tuple[Tuple[str, Callable], ...] = ()

    def subscribe(
        self, event_name: str, handler: Callable[[Event, dict], dict]
    ) -> "EventBus":
        """Возвращает новую шину с добавленным подписчиком"""
        new_subscriber = (event_name, handler)
        return EventBus(subscribers=self.subscribers + (new_subscriber,))

    def publish(self, event: Event, state: dict) -> dict:
        """
        Публикует событие, применяя все подписчики по очереди
        Возвращает новое состояние
        """
        matching_handlers = tuple(
            handler for name, handler in self.subscribers if name == event.name
        )

        def apply_handler(current_state: dict, handler: Callable) -> dict:
            return handler(event, current_state)

        return reduce(apply_handler, matching_handlers, state)


def create_event(name: str, payload: dict) -> Event:
    """Создаёт событие с автоматической меткой времени"""
    return Event(
        id=str(uuid.uuid4()),
        ts=datetime.now().isoformat(),
        name=name,
        payload=payload,
    )


# ============ Обработчики: по одному входу на каждую часть состояния ============


def _current_uid(state: dict):
    identity = state.get("identity")
    return identity.uid if identity is not None else None


def handle_session_changed(event: Event, state: dict) -> dict:
    """
    Смена сессии. Зеркала корзины и заказов очищаются всегда,
    данные новой сессии приходят только со следующими снимками
    """
    errors = {k: v for k, v in state.get("errors", {}).items() if k == "products"}
    return {
        **state,
        "identity": event.payload.get("identity"),
        "cart": (),
        "orders": (),
        "session_message": None,
        "errors": errors,
        "last_event": event.name,
    }


def handle_session_rejected(event: Event, state: dict) -> dict:
    """Сессия с недопустимым e-mail не устанавливается"""
    errors = {k: v for k, v in state.get("errors", {}).items() if k == "products"}
    return {
        **state,
        "identity": None,
        "cart": (),
        "orders": (),
        "session_message": event.payload.get("message"),
        "errors": errors,
        "last_event": event.name,
    }


def handle_products_snapshot(event: Event, state: dict) -> dict:
    errors = {k: v for k, v in state.get("errors", {}).items() if k != "products"}
    return {
        **state,
        "products": tuple(event.payload.get("products", ())),
        "errors": errors,
        "last_event": event.name,
    }


def _owned_snapshot(key: str):
    """Снимок корзины/заказов принимается только для текущей сессии"""

    def handler(event: Event, state: dict) -> dict:
        if event.payload.get("uid") != _current_uid(state):
            return state
        errors = {k: v for k, v in state.get("errors", {}).items() if k != key}
        return {
            **state,
            key: tuple(event.payload.get("items", ())),
            "errors": errors,
            "last_event": event.name,
        }

    return handler


handle_cart_snapshot = _owned_snapshot("cart")
handle_orders_snapshot = _owned_snapshot("orders")


def handle_admin_changed(event: Event, state: dict) -> dict:
    return {
        **state,
        "is_admin": bool(event.payload.get("is_admin")),
        "last_event": event.name,
    }


def handle_subscription_error(event: Event, state: dict) -> dict:
    """Ошибка потока запоминается, зеркало остаётся прежним"""
    stream = event.payload.get("stream")
    return {
        **state,
        "errors": {**state.get("errors", {}), stream: event.payload.get("message")},
        "last_event": event.name,
    }


# ============ Вспомогательные функции ============


def create_store_event_bus() -> EventBus:
    """Шина с обработчиками всех частей состояния витрины"""
    bus = EventBus()
    bus = bus.subscribe(SESSION_CHANGED, handle_session_changed)
    bus = bus.subscribe(SESSION_REJECTED, handle_session_rejected)
    bus = bus.subscribe(PRODUCTS_SNAPSHOT, handle_products_snapshot)
    bus = bus.subscribe(CART_SNAPSHOT, handle_cart_snapshot)
    bus = bus.subscribe(ORDERS_SNAPSHOT, handle_orders_snapshot)
    bus = bus.subscribe(ADMIN_CHANGED, handle_admin_changed)
    bus = bus.subscribe(SUBSCRIPTION_ERROR, handle_subscription_error)
    return bus


def initial_state() -> dict:
    """Начальное состояние: никого нет, зеркала пусты"""
    return {
        "identity": None,
        "products": (),
        "cart": (),
        "orders": (),
        "is_admin": False,
        "session_message": None,
        "errors": {},
        "last_event": None,
    }


class StateContainer:
    """
    Владелец текущего состояния. Единственная точка изменения - dispatch().
    Слушатели получают (event, new_state) после каждого события.
    """

    def __init__(self, bus: EventBus = None, state: dict = None):
        self._bus = bus or create_store_event_bus()
        self._state = state if state is not None else initial_state()
        self._listeners: Dict[int, Callable[[Event, dict], None]] = {}
        self._ids = count(1)

    @property
    def state(self) -> dict:
        return self._state

    def dispatch(self, name: str, payload: dict) -> dict:
        event = create_event(name, payload)
        self._state = self._bus.publish(event, self._state)
        for listener in list(self._listeners.values()):
            listener(event, self._state)
        return self._state

    def listen(self, listener: Callable[[Event, dict], None]) -> Callable[[], None]:
        listener_id = next(self._ids)
        self._listeners[listener_id] = listener

        def unlisten() -> None:
            self._listeners.pop(listener_id, None)

        return unlisten
