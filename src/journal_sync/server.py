"""
server.py - Reference remote document store server.

Serves the document-store protocol spoken by HTTPDocumentStore,
backed by one InMemoryDocumentStore per project:
- REST endpoints for paged queries and single-document access
- WebSocket endpoint for live collection snapshots

Bearer token auth is enforced when a token is configured.
"""

import logging
import os
from typing import Any, Dict, List

from fastapi import (
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from journal_sync import __version__
from journal_sync.config import ENV_SERVER_TOKEN, REMOTE_PAGE_SIZE
from journal_sync.errors import ValidationError
from journal_sync.remote.base import DocumentChange, Subscription
from journal_sync.remote.memory import InMemoryDocumentStore
from journal_sync.utils.timestamps import parse_iso

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000
DEFAULT_PROJECT = "default"


class DocumentBody(BaseModel):
    data: Dict[str, Any]


class ConnectionManager:
    """Tracks open listen connections per project/collection channel."""

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, channel: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.setdefault(channel, []).append(websocket)
        logger.info(f"Listener connected: {channel}")

    def disconnect(self, channel: str, websocket: WebSocket) -> None:
        connections = self.active_connections.get(channel, [])
        if websocket in connections:
            connections.remove(websocket)
            logger.info(f"Listener disconnected: {channel}")

    def count(self) -> int:
        return sum(len(c) for c in self.active_connections.values())


def serialize_change(change: DocumentChange) -> dict:
    return {"type": change.type.value, "id": change.id, "data": change.data}


def create_app(
    documents: InMemoryDocumentStore | None = None,
    auth_token: str | None = None,
) -> FastAPI:
    """
    Build the server application.

    Args:
        documents: Backing store of the "default" project (a fresh
            in-memory store if omitted); other projects get their own
            store on first use
        auth_token: Required bearer token, or None to disable auth
    """
    projects: Dict[str, InMemoryDocumentStore] = {
        DEFAULT_PROJECT: documents if documents is not None else InMemoryDocumentStore(),
    }
    ws_manager = ConnectionManager()
    app = FastAPI(title="Journal Sync Document Store", version=__version__)
    app.state.projects = projects

    def project_store(project: str) -> InMemoryDocumentStore:
        if project not in projects:
            logger.info(f"Creating document store for project {project}")
            projects[project] = InMemoryDocumentStore()
        return projects[project]

    def _token_valid(authorization: str | None) -> bool:
        if auth_token is None:
            return True
        return authorization == f"Bearer {auth_token}"

    async def verify_token(authorization: str | None = Header(default=None)) -> None:
        if not _token_valid(authorization):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing bearer token",
            )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": "journal-sync", "listeners": ws_manager.count()}

    @app.get(
        "/v1/projects/{project}/collections/{collection}/documents",
        dependencies=[Depends(verify_token)],
    )
    async def list_documents(
        project: str,
        collection: str,
        updated_after: str | None = None,
        page_size: int = Query(REMOTE_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        page_token: str | None = None,
    ):
        if updated_after is not None:
            try:
                parse_iso(updated_after)
            except ValidationError as e:
                raise HTTPException(status_code=400, detail=str(e))
        if page_token is not None and not page_token.isdigit():
            raise HTTPException(status_code=400, detail="Invalid page token")

        page = await project_store(project).list_documents(
            collection,
            updated_after=updated_after,
            page_size=page_size,
            page_token=page_token,
        )
        return {
            "documents": [{"id": doc.id, "data": doc.data} for doc in page.documents],
            "next_page_token": page.next_page_token,
            "total": page.total,
        }

    @app.get(
        "/v1/projects/{project}/collections/{collection}/documents/{doc_id}",
        dependencies=[Depends(verify_token)],
    )
    async def get_document(project: str, collection: str, doc_id: str):
        data = await project_store(project).get_document(collection, doc_id)
        if data is None:
            raise HTTPException(status_code=404, detail="Document not found")
        return {"id": doc_id, "data": data}

    @app.put(
        "/v1/projects/{project}/collections/{collection}/documents/{doc_id}",
        dependencies=[Depends(verify_token)],
    )
    async def set_document(project: str, collection: str, doc_id: str, body: DocumentBody):
        if not body.data.get("updatedAt"):
            raise HTTPException(status_code=400, detail="Document requires updatedAt")
        await project_store(project).set_document(collection, doc_id, body.data)
        return {"id": doc_id, "data": body.data}

    @app.delete(
        "/v1/projects/{project}/collections/{collection}/documents/{doc_id}",
        dependencies=[Depends(verify_token)],
    )
    async def delete_document(project: str, collection: str, doc_id: str):
        await project_store(project).delete_document(collection, doc_id)
        return {"id": doc_id, "deleted": True}

    @app.websocket("/v1/projects/{project}/collections/{collection}/listen")
    async def listen(websocket: WebSocket, project: str, collection: str):
        """
        Stream collection changes.

        The first message is the current state flagged as initial;
        every later message carries the changes of one write.
        """
        if not _token_valid(websocket.headers.get("authorization")):
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        channel = f"{project}/{collection}"
        await ws_manager.connect(channel, websocket)

        async def forward(changes: list[DocumentChange], initial: bool) -> None:
            await websocket.send_json({
                "type": "snapshot",
                "initial": initial,
                "changes": [serialize_change(c) for c in changes],
            })

        subscription: Subscription | None = None
        try:
            subscription = await project_store(project).subscribe(collection, forward)
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            if subscription is not None:
                await subscription.close()
            ws_manager.disconnect(channel, websocket)

    return app


app = create_app(auth_token=os.environ.get(ENV_SERVER_TOKEN) or None)
