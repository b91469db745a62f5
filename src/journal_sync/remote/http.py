"""
http.py - HTTP client for the remote document store.

Uses the REST API served by journal_sync.server (FastAPI) for document
access and its WebSocket endpoint for collection subscriptions.

Endpoints expected on the server:
- GET    /health
- GET    /v1/projects/{project}/collections/{c}/documents
- GET    /v1/projects/{project}/collections/{c}/documents/{id}
- PUT    /v1/projects/{project}/collections/{c}/documents/{id}
- DELETE /v1/projects/{project}/collections/{c}/documents/{id}
- WS     /v1/projects/{project}/collections/{c}/listen
"""

import asyncio
import json
import logging
from typing import Any

import httpx
import websockets
from websockets.asyncio.client import connect as ws_connect

from journal_sync.errors import RemoteError, RemoteUnavailableError
from journal_sync.remote.base import (
    ChangeCallback,
    ChangeType,
    DocumentChange,
    DocumentPage,
    RemoteDocument,
    RemoteDocumentStore,
    Subscription,
)

logger = logging.getLogger(__name__)


class _WebSocketSubscription(Subscription):
    """
    Listens on one collection in a background task.

    Reconnects after the connection drops. The server sends a full
    snapshot flagged as initial on every connect; only the first one is
    passed on as initial. Later ones are delivered as ordinary changes
    so writes made while disconnected are not lost.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str],
        collection: str,
        callback: ChangeCallback,
        reconnect_interval: float,
    ):
        self._url = url
        self._headers = headers
        self._collection = collection
        self._callback = callback
        self._reconnect_interval = reconnect_interval
        self._task: asyncio.Task | None = None
        self._seen_initial = False

    def start(self) -> None:
        self._task = asyncio.create_task(self._listen_forever())

    async def close(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _listen_forever(self) -> None:
        while True:
            try:
                async with ws_connect(self._url, additional_headers=self._headers) as ws:
                    logger.info(f"Listening on {self._collection}")
                    async for message in ws:
                        await self._handle_message(message)
            except asyncio.CancelledError:
                raise
            except websockets.exceptions.ConnectionClosed:
                logger.info(f"Listener for {self._collection} closed")
            except (OSError, websockets.exceptions.WebSocketException) as e:
                logger.warning(f"Listener for {self._collection} failed: {e}")
            await asyncio.sleep(self._reconnect_interval)

    async def _handle_message(self, raw: str | bytes) -> None:
        try:
            msg = json.loads(raw)
            if not isinstance(msg, dict):
                raise ValueError(f"expected an object, got {type(msg).__name__}")
            changes = self._parse_changes(msg)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed message on {self._collection}: {e}")
            return
        if changes is None:
            return

        initial = bool(msg.get("initial")) and not self._seen_initial
        if msg.get("initial"):
            self._seen_initial = True
        try:
            await self._callback(changes, initial)
        except Exception as e:
            logger.error(f"Subscriber for {self._collection} failed: {e}")

    @staticmethod
    def _parse_changes(msg: dict[str, Any]) -> list[DocumentChange] | None:
        if msg.get("type") != "snapshot":
            if msg.get("type") == "error":
                logger.error(f"Remote error: {msg.get('message')}")
            return None

        return [
            DocumentChange(
                type=ChangeType(change["type"]),
                id=change["id"],
                data=change.get("data"),
            )
            for change in msg.get("changes", [])
        ]


class HTTPDocumentStore(RemoteDocumentStore):
    """
    REST client for a remote document store project.

    Transport errors (connect, timeout) raise RemoteUnavailableError;
    error statuses raise RemoteError.
    """

    def __init__(
        self,
        base_url: str,
        project_id: str = "default",
        auth_token: str | None = None,
        timeout: float = 30.0,
        reconnect_interval: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._project_id = project_id
        self._auth_token = auth_token
        self._reconnect_interval = reconnect_interval
        self._headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else {}
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=timeout,
            transport=transport,
        )
        self._subscriptions: list[_WebSocketSubscription] = []

    @property
    def name(self) -> str:
        return "HTTP"

    def _collection_path(self, collection: str) -> str:
        return f"/v1/projects/{self._project_id}/collections/{collection}"

    async def ping(self) -> bool:
        try:
            response = await self._client.get("/health")
            response.raise_for_status()
            return response.json().get("status") == "ok"
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Ping failed: {e}")
            return False

    async def close(self) -> None:
        for subscription in self._subscriptions:
            await subscription.close()
        self._subscriptions.clear()
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        collection: str,
        doc_id: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise RemoteUnavailableError(
                f"{method} {path} failed: {e}",
                collection=collection,
                document_id=doc_id,
            ) from e

        if response.status_code == 404 and method in ("GET", "DELETE") and doc_id:
            return response
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteError(
                f"{method} {path} rejected",
                collection=collection,
                document_id=doc_id,
                status_code=response.status_code,
            ) from e
        return response

    async def list_documents(
        self,
        collection: str,
        updated_after: str | None = None,
        page_size: int = 500,
        page_token: str | None = None,
    ) -> DocumentPage:
        params: dict[str, Any] = {"page_size": page_size}
        if updated_after is not None:
            params["updated_after"] = updated_after
        if page_token is not None:
            params["page_token"] = page_token

        response = await self._request(
            "GET", f"{self._collection_path(collection)}/documents", collection, params=params
        )
        data = response.json()
        return DocumentPage(
            documents=[
                RemoteDocument(id=doc["id"], data=doc["data"]) for doc in data.get("documents", [])
            ],
            next_page_token=data.get("next_page_token"),
            total=data.get("total", 0),
        )

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        response = await self._request(
            "GET", f"{self._collection_path(collection)}/documents/{doc_id}", collection, doc_id
        )
        if response.status_code == 404:
            return None
        return response.json()["data"]

    async def set_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        await self._request(
            "PUT",
            f"{self._collection_path(collection)}/documents/{doc_id}",
            collection,
            doc_id,
            json={"data": data},
        )

    async def delete_document(self, collection: str, doc_id: str) -> None:
        await self._request(
            "DELETE", f"{self._collection_path(collection)}/documents/{doc_id}", collection, doc_id
        )

    async def subscribe(self, collection: str, callback: ChangeCallback) -> Subscription:
        ws_base = self._base_url.replace("https://", "wss://").replace("http://", "ws://")
        subscription = _WebSocketSubscription(
            url=f"{ws_base}{self._collection_path(collection)}/listen",
            headers=self._headers,
            collection=collection,
            callback=callback,
            reconnect_interval=self._reconnect_interval,
        )
        subscription.start()
        self._subscriptions.append(subscription)
        return subscription
