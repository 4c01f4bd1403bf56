"""
In-memory backend with the same observable contract as the hosted one:
live queries deliver full snapshots as event-loop callbacks, writes are
applied one document at a time, server timestamps and increments are
resolved on write. Used by the test-suite and the demo page.

Failure injection: fail_next() makes the next matching operation raise,
hang_next() makes it never complete, break_watch() errors live queries.
"""

import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import count
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .backend import (
    SERVER_TIMESTAMP,
    AuthProvider,
    DocumentStore,
    ErrorCallback,
    Increment,
    SessionCallback,
    SnapshotCallback,
    Unsubscribe,
    WriteBatch,
)
from .domain import CollectionQuery, Document, Identity
from .errors import RemoteRejected, Transient

logger = logging.getLogger(__name__)

CreateHook = Callable[["InMemoryDocumentStore", str, Dict[str, Any]], Awaitable[None]]

_HANG = object()


class Scheduler:
    """Очередь отложенных колбэков и фоновых задач общая для store и auth"""

    def __init__(self):
        self._pending = 0
        self._tasks = set()

    def call_soon(self, fn: Callable, *args) -> None:
        self._pending += 1
        asyncio.get_running_loop().call_soon(self._run, fn, args)

    def _run(self, fn: Callable, args: tuple) -> None:
        try:
            fn(*args)
        finally:
            self._pending -= 1

    def spawn(self, coro: Awaitable) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def idle(self) -> bool:
        # прочие задачи цикла (например, фоновый выход из сессии) тоже считаются
        others = asyncio.all_tasks() - {asyncio.current_task()}
        return self._pending == 0 and not self._tasks and not others

    async def settle(self, max_rounds: int = 1000) -> None:
        """Ждёт, пока будут доставлены все снимки и завершены фоновые задачи"""
        for _ in range(max_rounds):
            await asyncio.sleep(0)
            if self.idle:
                return


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _resolve(data: Dict[str, Any], existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    existing = existing or {}
    resolved = {}
    for key, value in data.items():
        if value is SERVER_TIMESTAMP:
            resolved[key] = _now()
        elif isinstance(value, Increment):
            resolved[key] = existing.get(key, 0) + value.amount
        else:
            resolved[key] = copy.deepcopy(value)
    return resolved


def _sort_key(field: str):
    def key(doc: Document):
        value = doc.data.get(field)
        return (value is not None, value)

    return key


@dataclass
class _Watcher:
    query: CollectionQuery
    on_snapshot: SnapshotCallback
    on_error: ErrorCallback


class InMemoryWriteBatch(WriteBatch):
    def __init__(self, store: "InMemoryDocumentStore"):
        self._store = store
        self._ops: List[Tuple[str, str, str, Optional[Dict[str, Any]]]] = []

    def create(self, path: str, data: Dict[str, Any]) -> str:
        doc_id = self._store.new_id()
        self._ops.append(("create", path, doc_id, data))
        return doc_id

    def delete(self, path: str, doc_id: str) -> None:
        self._ops.append(("delete", path, doc_id, None))

    async def commit(self) -> None:
        await self._store._enter("commit", "batch")
        self._store._apply_batch(self._ops)


class InMemoryDocumentStore(DocumentStore):
    supports_batch = True

    def __init__(self, scheduler: Optional[Scheduler] = None):
        self.scheduler = scheduler or Scheduler()
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._watchers: Dict[int, _Watcher] = {}
        self._watch_ids = count(1)
        self._failures: Dict[Tuple[str, str, Optional[str]], List[Any]] = {}
        self._hooks: Dict[str, List[CreateHook]] = {}
        # (op, path, doc_id) каждой выполненной операции
        self.operations: List[Tuple[str, str, Optional[str]]] = []

    # ---------- инъекция сбоев ----------

    def fail_next(
        self,
        op: str,
        path: str,
        doc_id: Optional[str] = None,
        exc: Optional[Exception] = None,
    ) -> None:
        """Следующая операция op над path (и doc_id, если задан) завершится ошибкой"""
        error = exc or RemoteRejected(f"{op} rejected for {path}")
        self._failures.setdefault((op, path, doc_id), []).append(error)

    def hang_next(self, op: str, path: str, doc_id: Optional[str] = None) -> None:
        self._failures.setdefault((op, path, doc_id), []).append(_HANG)

    def break_watch(self, path: str, exc: Optional[Exception] = None) -> None:
        error = exc or Transient(f"Listen stream for {path} failed")
        for watcher in list(self._watchers.values()):
            if watcher.query.path == path:
                self.scheduler.call_soon(watcher.on_error, error)

    def on_create(self, path: str, hook: CreateHook) -> None:
        """Аналог onCreate-триггера: hook(store, doc_id, data) после создания документа"""
        self._hooks.setdefault(path, []).append(hook)

    def _take_failure(self, op: str, path: str, doc_id: Optional[str]):
        for key in ((op, path, doc_id), (op, path, None)):
            queued = self._failures.get(key)
            if queued:
                return queued.pop(0)
        return None

    async def _enter(self, op: str, path: str, doc_id: Optional[str] = None) -> None:
        await asyncio.sleep(0)
        failure = self._take_failure(op, path, doc_id)
        if failure is _HANG:
            await asyncio.Event().wait()
        if failure is not None:
            raise failure
        self.operations.append((op, path, doc_id))

    # ---------- чтение ----------

    def new_id(self) -> str:
        return uuid.uuid4().hex[:20]

    def _docs(self, path: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(path, {})

    def _materialize(self, query: CollectionQuery) -> Tuple[Document, ...]:
        docs = [
            Document(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in self._docs(query.path).items()
        ]
        if query.where is not None:
            field, value = query.where
            docs = [d for d in docs if d.data.get(field) == value]
        if query.order_by is not None:
            field, direction = query.order_by
            docs.sort(key=_sort_key(field), reverse=direction == "desc")
        return tuple(docs)

    async def get(self, path: str, doc_id: str) -> Optional[Document]:
        await self._enter("get", path, doc_id)
        data = self._docs(path).get(doc_id)
        return Document(id=doc_id, data=copy.deepcopy(data)) if data is not None else None

    async def list(self, query: CollectionQuery) -> Tuple[Document, ...]:
        await self._enter("list", query.path)
        return self._materialize(query)

    def peek(self, path: str) -> Dict[str, Dict[str, Any]]:
        """Текущее содержимое коллекции без имитации сети"""
        return copy.deepcopy(self._docs(path))

    # ---------- запись ----------

    async def add(self, path: str, data: Dict[str, Any]) -> str:
        doc_id = self.new_id()
        await self._enter("add", path, doc_id)
        self._write(path, doc_id, _resolve(data))
        self._fire_hooks(path, doc_id)
        return doc_id

    async def set(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        await self._enter("set", path, doc_id)
        existed = doc_id in self._docs(path)
        self._write(path, doc_id, _resolve(data))
        if not existed:
            self._fire_hooks(path, doc_id)

    async def update(self, path: str, doc_id: str, fields: Dict[str, Any]) -> None:
        await self._enter("update", path, doc_id)
        existing = self._docs(path).get(doc_id)
        if existing is None:
            raise RemoteRejected(f"No document to update: {path}/{doc_id}")
        self._write(path, doc_id, {**existing, **_resolve(fields, existing)})

    async def delete(self, path: str, doc_id: str) -> None:
        await self._enter("delete", path, doc_id)
        if self._docs(path).pop(doc_id, None) is not None:
            self._notify(path)

    def batch(self) -> WriteBatch:
        return InMemoryWriteBatch(self)

    def _apply_batch(self, ops) -> None:
        touched = []
        created = []
        for op, path, doc_id, data in ops:
            if op == "create":
                self._docs(path)[doc_id] = _resolve(data)
                created.append((path, doc_id))
            else:
                self._docs(path).pop(doc_id, None)
            self.operations.append((op, path, doc_id))
            if path not in touched:
                touched.append(path)
        for path in touched:
            self._notify(path)
        for path, doc_id in created:
            self._fire_hooks(path, doc_id)

    def _write(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._docs(path)[doc_id] = data
        self._notify(path)

    def _fire_hooks(self, path: str, doc_id: str) -> None:
        for hook in self._hooks.get(path, ()):
            data = copy.deepcopy(self._docs(path)[doc_id])
            self.scheduler.spawn(self._run_hook(hook, path, doc_id, data))

    async def _run_hook(self, hook: CreateHook, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        try:
            await hook(self, doc_id, data)
        except Exception:
            logger.exception("Trigger on %s/%s failed", path, doc_id)

    # ---------- живые выборки ----------

    def watch(
        self,
        query: CollectionQuery,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        watch_id = next(self._watch_ids)
        self._watchers[watch_id] = _Watcher(query, on_snapshot, on_error)
        self.scheduler.call_soon(on_snapshot, self._materialize(query))

        def unsubscribe() -> None:
            self._watchers.pop(watch_id, None)

        return unsubscribe

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    def _notify(self, path: str) -> None:
        for watcher in list(self._watchers.values()):
            if watcher.query.path == path:
                # снимок фиксируется в момент записи, доставка - позже
                self.scheduler.call_soon(watcher.on_snapshot, self._materialize(watcher.query))


class InMemoryAuthProvider(AuthProvider):
    """
    Сессия одного клиента. Учётные записи (accounts) могут разделяться
    несколькими провайдерами, как у настоящего сервиса аутентификации.
    """

    def __init__(
        self,
        store: InMemoryDocumentStore,
        scheduler: Optional[Scheduler] = None,
        accounts: Optional[Dict[str, Tuple[str, Optional[str]]]] = None,
    ):
        self._store = store
        self._scheduler = scheduler or store.scheduler
        self._accounts = accounts if accounts is not None else {}
        self._current: Optional[Identity] = None
        self._listeners: Dict[int, SessionCallback] = {}
        self._listener_ids = count(1)

    @property
    def current(self) -> Optional[Identity]:
        return self._current

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _set_session(self, identity: Optional[Identity]) -> None:
        self._current = identity
        for callback in list(self._listeners.values()):
            self._scheduler.call_soon(callback, identity)

    async def register(self, email: str, password: str) -> Identity:
        await asyncio.sleep(0)
        key = email.strip().lower()
        if key in self._accounts:
            raise RemoteRejected("The email address is already in use.")
        if len(password) < 6:
            raise RemoteRejected("Password should be at least 6 characters.")
        uid = uuid.uuid4().hex[:28]
        self._accounts[key] = (uid, password)
        await self._store.add(
            "users",
            {"uid": uid, "email": key, "createdAt": SERVER_TIMESTAMP, "isAdmin": False},
        )
        identity = Identity(uid=uid, email=key)
        self._set_session(identity)
        return identity

    async def sign_in(self, email: str, password: str) -> Identity:
        await asyncio.sleep(0)
        key = email.strip().lower()
        account = self._accounts.get(key)
        if account is None or account[1] is None or account[1] != password:
            raise RemoteRejected("Invalid email or password.")
        identity = Identity(uid=account[0], email=key)
        self._set_session(identity)
        return identity

    async def sign_in_with_provider(self, provider_id: str, credential: str) -> Identity:
        """credential здесь - e-mail аккаунта у внешнего провайдера"""
        await asyncio.sleep(0)
        key = credential.strip().lower()
        if "@" not in key:
            raise RemoteRejected(f"Invalid {provider_id} credential.")
        if key not in self._accounts:
            self._accounts[key] = (uuid.uuid4().hex[:28], None)
        identity = Identity(uid=self._accounts[key][0], email=key)
        self._set_session(identity)
        return identity

    async def sign_out(self) -> None:
        await asyncio.sleep(0)
        if self._current is not None:
            self._set_session(None)

    def expire_session(self) -> None:
        """Имитация истечения токена"""
        self._set_session(None)

    def on_session_change(self, callback: SessionCallback) -> Unsubscribe:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = callback
        self._scheduler.call_soon(callback, self._current)

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe


class InMemoryBackend:
    def __init__(self):
        self.scheduler = Scheduler()
        self.store = InMemoryDocumentStore(self.scheduler)
        self._accounts: Dict[str, Tuple[str, Optional[str]]] = {}
        self.auth = self.new_auth()

    def new_auth(self) -> InMemoryAuthProvider:
        """Отдельная клиентская сессия над общими учётными записями"""
        return InMemoryAuthProvider(self.store, self.scheduler, self._accounts)

    async def settle(self) -> None:
        await self.scheduler.settle()
