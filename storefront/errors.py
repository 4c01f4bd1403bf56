import asyncio
from typing import Awaitable, TypeVar

T = TypeVar("T")


class StoreError(Exception):
    """Базовая ошибка слоя синхронизации. message показывается пользователю."""

    message = "Something went wrong. Please try again."

    def __init__(self, message: str = ""):
        super().__init__(message or self.message)
        if message:
            self.message = message


class Unauthenticated(StoreError):
    message = "Please sign in to continue."


class RemoteRejected(StoreError):
    """Бэкенд отказал: права доступа, валидация, отсутствующий документ"""

    message = "The request was rejected by the server."


class Transient(StoreError):
    """Сеть или таймаут. Повтор возможен, но автоматически не выполняется"""

    message = "Network problem. Please try again."


class InvalidInput(StoreError):
    message = "Please check the highlighted fields."


class AdminRequired(StoreError):
    message = "Admin access required."


async def remote_call(awaitable: Awaitable[T], timeout: float) -> T:
    """Ожидает удалённую операцию не дольше timeout секунд"""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise Transient(f"Remote call timed out after {timeout:g}s") from exc
