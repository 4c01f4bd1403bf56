"""
Firebase-backed implementations of DocumentStore and AuthProvider.

Documents go through the firebase-admin Firestore client; its blocking calls
run in worker threads and listener callbacks are handed back to the event
loop. Password and federated sign-in use the Identity Toolkit REST API, the
same endpoints the web SDK calls.
"""

import asyncio
import logging
from itertools import count
from typing import Any, Dict, Optional, Tuple

import firebase_admin
import requests
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as google_auth_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

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
from .errors import RemoteRejected, StoreError, Transient

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1/accounts:{method}?key={key}"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token?key={key}"
REQUEST_TIMEOUT = 10


def init_firebase_app(credentials_path: Optional[str]):
    """Инициализирует приложение firebase-admin один раз на процесс"""
    try:
        return firebase_admin.get_app()
    except ValueError:
        cred = credentials.Certificate(credentials_path) if credentials_path else None
        return firebase_admin.initialize_app(cred)


def _to_firestore(data: Dict[str, Any]) -> Dict[str, Any]:
    converted = {}
    for key, value in data.items():
        if value is SERVER_TIMESTAMP:
            converted[key] = firestore.SERVER_TIMESTAMP
        elif isinstance(value, Increment):
            converted[key] = firestore.Increment(value.amount)
        else:
            converted[key] = value
    return converted


def _to_document(snapshot) -> Document:
    return Document(id=snapshot.id, data=snapshot.to_dict() or {})


_REJECTED = (
    google_exceptions.PermissionDenied,
    google_exceptions.NotFound,
    google_exceptions.InvalidArgument,
    google_exceptions.FailedPrecondition,
    google_exceptions.AlreadyExists,
    google_exceptions.Unauthenticated,
)
_TRANSIENT = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.Aborted,
    google_exceptions.InternalServerError,
    google_exceptions.ResourceExhausted,
    google_exceptions.TooManyRequests,
    google_exceptions.Cancelled,
    google_exceptions.Unknown,
    google_exceptions.RetryError,
    google_auth_exceptions.TransportError,
)


def _translate(exc: Exception, default=RemoteRejected) -> StoreError:
    """Ошибка клиента Google -> ошибка слоя синхронизации"""
    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, _TRANSIENT):
        return Transient(str(exc))
    if isinstance(exc, _REJECTED):
        return RemoteRejected(str(exc))
    return default(str(exc))


async def _in_thread(fn, *args):
    try:
        return await asyncio.to_thread(fn, *args)
    except (google_exceptions.GoogleAPIError, google_auth_exceptions.GoogleAuthError) as exc:
        raise _translate(exc) from exc


class FirestoreWriteBatch(WriteBatch):
    def __init__(self, db):
        self._db = db
        self._batch = db.batch()

    def create(self, path: str, data: Dict[str, Any]) -> str:
        ref = self._db.collection(path).document()
        self._batch.set(ref, _to_firestore(data))
        return ref.id

    def delete(self, path: str, doc_id: str) -> None:
        self._batch.delete(self._db.collection(path).document(doc_id))

    async def commit(self) -> None:
        await _in_thread(self._batch.commit)


class FirestoreDocumentStore(DocumentStore):
    supports_batch = True

    def __init__(self, app=None, db=None):
        self._db = db if db is not None else firestore.client(app)

    def _query(self, query: CollectionQuery):
        q = self._db.collection(query.path)
        if query.where is not None:
            field, value = query.where
            q = q.where(filter=FieldFilter(field, "==", value))
        if query.order_by is not None:
            field, direction = query.order_by
            q = q.order_by(
                field,
                direction=firestore.Query.DESCENDING if direction == "desc" else firestore.Query.ASCENDING,
            )
        return q

    async def get(self, path: str, doc_id: str) -> Optional[Document]:
        snapshot = await _in_thread(self._db.collection(path).document(doc_id).get)
        return _to_document(snapshot) if snapshot.exists else None

    async def add(self, path: str, data: Dict[str, Any]) -> str:
        _, ref = await _in_thread(self._db.collection(path).add, _to_firestore(data))
        return ref.id

    async def set(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        await _in_thread(self._db.collection(path).document(doc_id).set, _to_firestore(data))

    async def update(self, path: str, doc_id: str, fields: Dict[str, Any]) -> None:
        await _in_thread(self._db.collection(path).document(doc_id).update, _to_firestore(fields))

    async def delete(self, path: str, doc_id: str) -> None:
        await _in_thread(self._db.collection(path).document(doc_id).delete)

    async def list(self, query: CollectionQuery) -> Tuple[Document, ...]:
        def fetch():
            return tuple(_to_document(s) for s in self._query(query).stream())

        return await _in_thread(fetch)

    def watch(
        self,
        query: CollectionQuery,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        loop = asyncio.get_running_loop()

        # вызывается в потоке слушателя Firestore
        def callback(snapshots, changes, read_time) -> None:
            try:
                docs = tuple(_to_document(s) for s in snapshots)
            except Exception as exc:
                loop.call_soon_threadsafe(on_error, exc)
                return
            loop.call_soon_threadsafe(on_snapshot, docs)

        watch = self._query(query).on_snapshot(callback)
        closed_by_us = False
        close = watch.close

        # Watch при обрыве RPC вызывает close(reason=...) из своего потока
        def close_and_report(reason=None) -> None:
            close(reason=reason)
            if reason is not None and not closed_by_us:
                error = reason if isinstance(reason, Exception) else Exception(str(reason))
                loop.call_soon_threadsafe(on_error, _translate(error, default=Transient))

        watch.close = close_and_report

        def unsubscribe() -> None:
            nonlocal closed_by_us
            closed_by_us = True
            watch.unsubscribe()

        return unsubscribe

    def batch(self) -> WriteBatch:
        return FirestoreWriteBatch(self._db)


_FRIENDLY_AUTH_ERRORS = {
    "EMAIL_NOT_FOUND": "Invalid email or password.",
    "INVALID_PASSWORD": "Invalid email or password.",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password.",
    "USER_DISABLED": "Your account has been disabled. Please contact support.",
    "EMAIL_EXISTS": "The email address is already in use.",
    "WEAK_PASSWORD": "Password should be at least 6 characters.",
    "INVALID_IDP_RESPONSE": "Sign-in with the external provider failed.",
}


class FirebaseAuthProvider(AuthProvider):
    """
    Сессия хранится в памяти процесса: idToken, refreshToken и срок действия.
    По истечении срока токен обновляется; если обновить не удалось,
    слушатели получают None.
    """

    def __init__(self, api_key: Optional[str]):
        if not api_key:
            raise ValueError("FIREBASE_WEB_API_KEY is required for the firebase backend")
        self._api_key = api_key
        self._current: Optional[Identity] = None
        self._refresh_token: Optional[str] = None
        self._id_token: Optional[str] = None
        self._expiry_handle = None
        self._tasks = set()
        self._listeners: Dict[int, SessionCallback] = {}
        self._listener_ids = count(1)

    @property
    def id_token(self) -> Optional[str]:
        return self._id_token

    def _post(self, url: str, **kwargs) -> dict:
        try:
            resp = requests.post(url, timeout=REQUEST_TIMEOUT, **kwargs)
            data = resp.json()
        except requests.exceptions.RequestException as exc:
            raise Transient("Authentication service is unreachable. Please try again shortly.") from exc

        if resp.status_code == 200:
            return data
        if resp.status_code >= 500:
            raise Transient("Authentication service is unavailable. Please try again shortly.")
        code = str(data.get("error", {}).get("message", ""))
        # WEAK_PASSWORD приходит как "WEAK_PASSWORD : Password should be ..."
        code = code.split(" ")[0]
        raise RemoteRejected(_FRIENDLY_AUTH_ERRORS.get(code, "Unable to sign in."))

    async def _identity_call(self, method: str, payload: dict) -> Identity:
        url = IDENTITY_TOOLKIT_URL.format(method=method, key=self._api_key)
        data = await asyncio.to_thread(self._post, url, json={**payload, "returnSecureToken": True})
        identity = Identity(uid=data["localId"], email=str(data.get("email", "")).lower())
        self._start_session(identity, data)
        return identity

    async def sign_in(self, email: str, password: str) -> Identity:
        return await self._identity_call("signInWithPassword", {"email": email, "password": password})

    async def register(self, email: str, password: str) -> Identity:
        return await self._identity_call("signUp", {"email": email, "password": password})

    async def sign_in_with_provider(self, provider_id: str, credential: str) -> Identity:
        """credential - id_token, выданный внешним провайдером (например, google.com)"""
        return await self._identity_call(
            "signInWithIdp",
            {
                "postBody": f"id_token={credential}&providerId={provider_id}",
                "requestUri": "http://localhost",
                "returnIdpCredential": True,
            },
        )

    async def sign_out(self) -> None:
        self._end_session()

    def on_session_change(self, callback: SessionCallback) -> Unsubscribe:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = callback
        asyncio.get_running_loop().call_soon(callback, self._current)

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    # ---------- сессия ----------

    def _notify(self) -> None:
        loop = asyncio.get_running_loop()
        for callback in list(self._listeners.values()):
            loop.call_soon(callback, self._current)

    def _start_session(self, identity: Identity, data: dict) -> None:
        self._id_token = data.get("idToken")
        self._refresh_token = data.get("refreshToken")
        self._schedule_expiry(int(data.get("expiresIn", 3600)))
        if identity != self._current:
            self._current = identity
            self._notify()

    def _end_session(self) -> None:
        if self._expiry_handle is not None:
            self._expiry_handle.cancel()
            self._expiry_handle = None
        self._id_token = self._refresh_token = None
        if self._current is not None:
            self._current = None
            self._notify()

    def _schedule_expiry(self, seconds: int) -> None:
        if self._expiry_handle is not None:
            self._expiry_handle.cancel()
        loop = asyncio.get_running_loop()
        self._expiry_handle = loop.call_later(max(seconds - 60, 1), self._spawn_refresh)

    def _spawn_refresh(self) -> None:
        task = asyncio.ensure_future(self._refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh(self) -> None:
        if self._current is None:
            return
        url = SECURE_TOKEN_URL.format(key=self._api_key)
        try:
            data = await asyncio.to_thread(
                self._post,
                url,
                data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
            )
        except (RemoteRejected, Transient) as exc:
            logger.info("Session refresh failed, signing out: %s", exc)
            self._end_session()
            return
        # сессию могли закрыть, пока шёл запрос
        if self._current is None:
            return
        self._id_token = data.get("id_token")
        self._refresh_token = data.get("refresh_token", self._refresh_token)
        self._schedule_expiry(int(data.get("expires_in", 3600)))
