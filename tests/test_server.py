"""
test_server.py - Tests for the document store server and its HTTP client.
"""

import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from journal_sync.errors import RemoteError, RemoteUnavailableError
from journal_sync.models import create_entry
from journal_sync.remote.http import HTTPDocumentStore, _WebSocketSubscription
from journal_sync.remote.memory import InMemoryDocumentStore
from journal_sync.server import create_app
from journal_sync.sync.engine import SyncEngine

BASE = "/v1/projects/default/collections"


def doc(title: str, updated_at: str) -> dict:
    return {"title": title, "createdAt": updated_at, "updatedAt": updated_at, "deletedAt": None}


class TestServerEndpoints:
    def setup_method(self):
        self.documents = InMemoryDocumentStore()
        self.app = create_app(self.documents)

    def test_health(self):
        with TestClient(self.app) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_put_get_delete(self):
        with TestClient(self.app) as client:
            response = client.put(f"{BASE}/records_meta/a", json={"data": doc("a", "2024-01-01T00:00:00.000Z")})
            assert response.status_code == 200

            response = client.get(f"{BASE}/records_meta/a")
            assert response.json() == {"id": "a", "data": doc("a", "2024-01-01T00:00:00.000Z")}

            assert client.delete(f"{BASE}/records_meta/a").status_code == 200
            assert client.get(f"{BASE}/records_meta/a").status_code == 404

    def test_projects_are_isolated(self):
        other = "/v1/projects/other/collections"
        with TestClient(self.app) as client:
            client.put(f"{BASE}/records_meta/a", json={"data": doc("a", "2024-01-01T00:00:00.000Z")})
            client.put(f"{other}/records_meta/b", json={"data": doc("b", "2024-01-01T00:00:00.000Z")})

            assert client.get(f"{other}/records_meta/a").status_code == 404
            listed = client.get(f"{other}/records_meta/documents").json()
            assert [d["id"] for d in listed["documents"]] == ["b"]

        assert self.documents.document_ids("records_meta") == ["a"]

    def test_put_requires_updated_at(self):
        with TestClient(self.app) as client:
            response = client.put(f"{BASE}/records_meta/a", json={"data": {"title": "x"}})
        assert response.status_code == 400

    def test_list_filters_and_pages(self):
        with TestClient(self.app) as client:
            client.put(f"{BASE}/records_meta/a", json={"data": doc("a", "2024-01-01T00:00:00.000Z")})
            client.put(f"{BASE}/records_meta/b", json={"data": doc("b", "2024-02-01T00:00:00.000Z")})
            client.put(f"{BASE}/records_meta/c", json={"data": doc("c", "2024-03-01T00:00:00.000Z")})

            newer = client.get(
                f"{BASE}/records_meta/documents",
                params={"updated_after": "2024-01-15T00:00:00.000Z"},
            ).json()
            assert [d["id"] for d in newer["documents"]] == ["b", "c"]
            assert newer["total"] == 2

            first = client.get(f"{BASE}/records_meta/documents", params={"page_size": 2}).json()
            assert [d["id"] for d in first["documents"]] == ["a", "b"]
            second = client.get(
                f"{BASE}/records_meta/documents",
                params={"page_size": 2, "page_token": first["next_page_token"]},
            ).json()
            assert [d["id"] for d in second["documents"]] == ["c"]
            assert second["next_page_token"] is None

    def test_list_rejects_bad_parameters(self):
        with TestClient(self.app) as client:
            assert client.get(
                f"{BASE}/records_meta/documents", params={"updated_after": "yesterday"}
            ).status_code == 400
            assert client.get(
                f"{BASE}/records_meta/documents", params={"page_token": "abc"}
            ).status_code == 400
            assert client.get(
                f"{BASE}/records_meta/documents", params={"page_size": 0}
            ).status_code == 422

    def test_listen_streams_initial_snapshot_then_changes(self):
        with TestClient(self.app) as client:
            client.put(f"{BASE}/records_meta/a", json={"data": doc("a", "2024-01-01T00:00:00.000Z")})

            with client.websocket_connect(f"{BASE}/records_meta/listen") as ws:
                initial = ws.receive_json()
                assert initial["initial"] is True
                assert [c["id"] for c in initial["changes"]] == ["a"]

                client.put(f"{BASE}/records_meta/b", json={"data": doc("b", "2024-02-01T00:00:00.000Z")})
                update = ws.receive_json()
                assert update["initial"] is False
                assert update["changes"] == [
                    {"type": "added", "id": "b", "data": doc("b", "2024-02-01T00:00:00.000Z")}
                ]


class TestServerAuth:
    def setup_method(self):
        self.app = create_app(InMemoryDocumentStore(), auth_token="s3cret")

    def test_missing_token_is_rejected(self):
        with TestClient(self.app) as client:
            assert client.get(f"{BASE}/records_meta/a").status_code == 401
            assert client.get("/health").status_code == 200

    def test_valid_token_is_accepted(self):
        with TestClient(self.app) as client:
            response = client.get(
                f"{BASE}/records_meta/a", headers={"Authorization": "Bearer s3cret"}
            )
        assert response.status_code == 404

    def test_listen_without_token_is_closed(self):
        with TestClient(self.app) as client:
            with pytest.raises(WebSocketDisconnect):
                with client.websocket_connect(f"{BASE}/records_meta/listen") as ws:
                    ws.receive_json()


class TestHTTPDocumentStore:
    def setup_method(self):
        self.documents = InMemoryDocumentStore()
        self.app = create_app(self.documents, auth_token="s3cret")

    def _client(self, token="s3cret") -> HTTPDocumentStore:
        return HTTPDocumentStore(
            "http://testserver",
            auth_token=token,
            transport=httpx.ASGITransport(app=self.app),
        )

    def test_document_round_trip(self):
        async def scenario():
            remote = self._client()
            assert await remote.ping() is True
            await remote.set_document("records_meta", "a", doc("a", "2024-01-01T00:00:00.000Z"))
            fetched = await remote.get_document("records_meta", "a")
            missing = await remote.get_document("records_meta", "zzz")
            page = await remote.list_documents("records_meta")
            await remote.delete_document("records_meta", "a")
            await remote.close()
            return fetched, missing, page

        fetched, missing, page = asyncio.run(scenario())

        assert fetched["title"] == "a"
        assert missing is None
        assert [d.id for d in page.documents] == ["a"]
        assert self.documents.document_ids("records_meta") == []

    def test_rejected_request_raises_remote_error(self):
        async def scenario():
            remote = self._client(token="wrong")
            try:
                await remote.get_document("records_meta", "a")
            finally:
                await remote.close()

        with pytest.raises(RemoteError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.status_code == 401
        assert not isinstance(exc_info.value, RemoteUnavailableError)

    def test_transport_failure_means_unavailable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario():
            remote = HTTPDocumentStore("http://testserver", transport=httpx.MockTransport(refuse))
            try:
                assert await remote.ping() is False
                await remote.list_documents("records_meta")
            finally:
                await remote.close()

        with pytest.raises(RemoteUnavailableError):
            asyncio.run(scenario())

    def test_engine_syncs_over_http(self, store):
        entry = create_entry(title="ağ üzerinden", body="<p>selam</p>")
        store.entries.save_record(entry)

        async def scenario():
            remote = self._client()
            engine = SyncEngine(store, remote)
            ok = await engine.sync_once()
            await remote.close()
            return ok

        assert asyncio.run(scenario()) is True
        assert store.entries.get_metadata(entry.id).is_synced is True
        assert self.documents.document_ids("records") == [entry.id]
        assert self.documents.document_ids("records_meta") == [entry.id]


def snapshot(initial: bool, *changes) -> str:
    return json.dumps({"type": "snapshot", "initial": initial, "changes": list(changes)})


class TestWebSocketSubscription:
    def _subscription(self, callback) -> _WebSocketSubscription:
        return _WebSocketSubscription(
            url="ws://testserver/unused",
            headers={},
            collection="records_meta",
            callback=callback,
            reconnect_interval=0,
        )

    def test_malformed_messages_are_skipped(self):
        received = []

        async def record(changes, initial):
            received.append(([c.id for c in changes], initial))

        subscription = self._subscription(record)

        async def scenario():
            await subscription._handle_message(snapshot(False, {"type": "bogus", "id": "x"}))
            await subscription._handle_message(snapshot(False, {"type": "added"}))
            await subscription._handle_message("not json")
            await subscription._handle_message("[1, 2]")
            await subscription._handle_message(snapshot(False, {"type": "added", "id": "ok", "data": {}}))

        asyncio.run(scenario())

        assert received == [(["ok"], False)]

    def test_only_first_snapshot_is_initial(self):
        received = []

        async def record(changes, initial):
            received.append(([c.id for c in changes], initial))

        subscription = self._subscription(record)

        async def scenario():
            await subscription._handle_message(snapshot(True, {"type": "added", "id": "a", "data": {}}))
            await subscription._handle_message(snapshot(False, {"type": "modified", "id": "a", "data": {}}))
            # Reconnect: the server sends its full state again
            await subscription._handle_message(snapshot(True, {"type": "added", "id": "b", "data": {}}))

        asyncio.run(scenario())

        assert received == [(["a"], True), (["a"], False), (["b"], False)]

    def test_snapshot_after_reconnect_reaches_the_store(self, store):
        engine = SyncEngine(store, InMemoryDocumentStore())
        subscription = self._subscription(engine._make_change_handler(engine.targets[0]))
        ts = "2024-01-01T00:00:00.000Z"

        async def scenario():
            await subscription._handle_message(
                snapshot(True, {"type": "added", "id": "a", "data": doc("a", ts)})
            )
            assert store.entries.get_metadata("a") is None
            await subscription._handle_message(snapshot(
                True,
                {"type": "added", "id": "a", "data": doc("a", ts)},
                {"type": "added", "id": "missed", "data": doc("missed", ts)},
            ))

        asyncio.run(scenario())

        assert {m.id for m in store.entries.get_all_metadata()} == {"a", "missed"}
