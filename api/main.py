"""
FastAPI main application hosting the FindBook offline worker.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import Body, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from api.config import config as api_config
from api.models import (
    CachesResponse, ClientResponse, EnqueueRequest, ErrorResponse,
    HealthResponse, NotificationClickRequest, PreloadRequest
)
from utilities.config import config
from worker.lifecycle import LifecycleError
from worker.models import FetchRequest, SyncItemType, utcnow
from worker.network import NetworkError
from worker.registration import Client, WorkerState
from worker.service_worker import ServiceWorker, create_worker

# Setup logging
logger = structlog.get_logger(__name__)

# Global worker instance
worker: Optional[ServiceWorker] = None

# Headers describing the upstream transfer, not the body we send back
HOP_HEADERS = {"content-encoding", "content-length", "transfer-encoding", "connection"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting FindBook offline worker")

    global worker
    try:
        if worker is None:
            worker = await create_worker(config)
        await worker.install()
        await worker.activate()
        worker.start_reporting()
    except Exception as e:
        logger.error("Failed to start worker", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down FindBook offline worker")
    if worker:
        await worker.close()


# Create FastAPI application
app = FastAPI(
    title=api_config.api_title,
    description="""
    HTTP host for the FindBook offline caching and background-sync worker.

    ## Features

    * **Fetch**: Requests are classified and answered by Cache-First,
      Stale-While-Revalidate or Network-First
    * **Lifecycle**: Install, activate and cache maintenance
    * **Background Sync**: Queue offline mutations and replay them
    * **Notifications**: Push delivery, clicks and closes
    * **Pages**: WebSocket connections receiving worker messages
    """,
    version=api_config.api_version,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=api_config.cors_origins,
    allow_credentials=api_config.cors_allow_credentials,
    allow_methods=api_config.cors_allow_methods,
    allow_headers=api_config.cors_allow_headers,
)


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.detail,
            status_code=exc.status_code
        ).model_dump(),
        headers=exc.headers
    )


@app.exception_handler(NetworkError)
async def network_exception_handler(request, exc: NetworkError):
    """Network failures without a cached fallback surface as bad gateway."""
    logger.warning("Network failure without fallback", url=exc.url, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=ErrorResponse(
            error="Network request failed",
            detail=str(exc),
            status_code=status.HTTP_502_BAD_GATEWAY
        ).model_dump()
    )


@app.exception_handler(LifecycleError)
async def lifecycle_exception_handler(request, exc: LifecycleError):
    """Handle lifecycle phases requested out of order."""
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=ErrorResponse(
            error="Lifecycle conflict",
            detail=str(exc),
            status_code=status.HTTP_409_CONFLICT
        ).model_dump()
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            detail=str(exc) if api_config.debug else None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        ).model_dump()
    )


def get_worker() -> ServiceWorker:
    """Return the running worker or fail with 503."""
    if worker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Worker not available"
        )
    return worker


def parse_item_type(item_type: str) -> SyncItemType:
    try:
        return SyncItemType(item_type)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown sync item type '{item_type}'"
        )


def client_response(client: Client) -> ClientResponse:
    return ClientResponse(id=client.id, url=client.url, focused=client.focused, controlled=client.controlled)


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    if worker is None:
        return HealthResponse(
            status="unhealthy",
            timestamp=utcnow(),
            version=config.cache_version,
            worker_state="unavailable"
        )

    state = worker.registration.state
    return HealthResponse(
        status="healthy" if state == WorkerState.ACTIVATED else "degraded",
        timestamp=utcnow(),
        version=config.cache_version,
        worker_state=state.value,
        clients=len(worker.clients.match_all())
    )


# Fetch endpoint
@app.get("/fetch", tags=["Fetch"])
async def fetch(url: str, request: Request):
    """
    Answer a GET request the way the worker would.

    - **url**: Absolute URL or a path relative to the configured origin
    """
    sw = get_worker()
    headers = {}
    if "accept" in request.headers:
        headers["accept"] = request.headers["accept"]

    intercepted = FetchRequest(url=sw.config.resolve_url(url), headers=headers)
    response = await sw.handle_fetch(intercepted)
    if response is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request is not intercepted by the worker"
        )

    return Response(
        content=response.body,
        status_code=response.status,
        headers={k: v for k, v in response.headers.items() if k not in HOP_HEADERS}
    )


# Lifecycle endpoints
@app.post("/lifecycle/install", tags=["Lifecycle"])
async def install():
    """Run the install phase again (precache static assets)."""
    sw = get_worker()
    await sw.install()
    return {"state": sw.registration.state.value}


@app.post("/lifecycle/activate", tags=["Lifecycle"])
async def activate():
    """Run the activate phase (delete superseded partitions, claim pages)."""
    sw = get_worker()
    deleted = await sw.activate()
    return {"state": sw.registration.state.value, "deleted": deleted}


# Cache endpoints
@app.get("/caches", response_model=CachesResponse, tags=["Caches"])
async def get_caches():
    """List cache partitions with entry counts and body sizes."""
    sw = get_worker()
    return CachesResponse(
        partitions=await sw.storage.estimate(),
        expected=sw.config.partition_names()
    )


@app.delete("/caches", tags=["Caches"])
async def clear_caches():
    """Delete every application cache partition."""
    sw = get_worker()
    return {"deleted": await sw.lifecycle.clear_caches()}


@app.post("/caches/preload", tags=["Caches"])
async def preload(body: PreloadRequest):
    """Fetch critical resources into the preload partition."""
    sw = get_worker()
    return {"stored": await sw.lifecycle.preload(body.urls)}


# Background sync endpoints
@app.post("/queue/{item_type}", status_code=status.HTTP_201_CREATED, tags=["Background Sync"])
async def enqueue(item_type: str, body: EnqueueRequest):
    """
    Queue a mutation made while offline.

    - **item_type**: book, favorite or preference
    """
    sw = get_worker()
    item = await sw.sync_queue.enqueue(parse_item_type(item_type), body.payload)
    return item.model_dump(mode="json")


@app.get("/queue/{item_type}", tags=["Background Sync"])
async def get_queue(item_type: str):
    """List pending items of one type, oldest first."""
    sw = get_worker()
    items = await sw.sync_queue.pending(parse_item_type(item_type))
    return [item.model_dump(mode="json") for item in items]


@app.post("/sync/{tag}", tags=["Background Sync"])
async def sync(tag: str):
    """Fire a sync event for the tag."""
    sw = get_worker()
    results = await sw.handle_sync(tag)
    return [result.model_dump(mode="json") for result in results]


# Notification endpoints
@app.post("/push", tags=["Notifications"])
async def push(request: Request):
    """Deliver a push message; the body is the JSON payload and may be empty."""
    sw = get_worker()
    data = await request.body()
    try:
        notification = await sw.handle_push(data)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid push payload: {str(e)}"
        )
    return {"notification": notification.model_dump(mode="json") if notification else None}


@app.get("/notifications", tags=["Notifications"])
async def get_notifications(tag: Optional[str] = None):
    """List notifications currently shown."""
    sw = get_worker()
    notifications = await sw.registration.get_notifications(tag)
    return [n.model_dump(mode="json") for n in notifications]


@app.post("/notifications/{tag}/click", tags=["Notifications"])
async def click_notification(tag: str, body: Optional[NotificationClickRequest] = None):
    """Click a notification or one of its action buttons."""
    sw = get_worker()
    action = body.action if body else ""
    client = await sw.handle_notification_click(tag, action)
    return {"client": client_response(client).model_dump() if client else None}


@app.post("/notifications/{tag}/close", tags=["Notifications"])
async def close_notification(tag: str):
    """Dismiss a notification without interaction."""
    sw = get_worker()
    await sw.handle_notification_close(tag)
    return {"closed": tag}


# Metrics endpoint
@app.get("/metrics", tags=["Metrics"])
async def get_metrics():
    """Current performance counters."""
    sw = get_worker()
    return sw.metrics.snapshot().model_dump(by_alias=True)


# Page endpoints
@app.get("/clients", response_model=List[ClientResponse], tags=["Pages"])
async def get_clients():
    """List connected pages."""
    sw = get_worker()
    return [client_response(c) for c in sw.clients.match_all()]


@app.post("/clients/{client_id}/messages", tags=["Pages"])
async def post_message(client_id: str, message: Dict[str, Any] = Body(...)):
    """Post a message from a page to the worker."""
    sw = get_worker()
    if sw.clients.get(client_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Client '{client_id}' not connected"
        )
    return {"result": await sw.handle_message(client_id, message)}


async def forward_messages(websocket: WebSocket, client: Client) -> None:
    while True:
        message = await client.inbox.get()
        await websocket.send_json(message.model_dump(mode="json"))


@app.websocket("/clients")
async def client_connection(websocket: WebSocket, url: str = "/"):
    """
    A page connection.

    The page receives every message the worker posts to it and may send
    messages (SKIP_WAITING, GET_METRICS, ...) as JSON.
    """
    sw = get_worker()
    await websocket.accept()
    client = sw.clients.connect(url)
    client.controlled = sw.registration.state == WorkerState.ACTIVATED
    await websocket.send_json({"type": "CONNECTED", "data": {"clientId": client.id}})

    sender = asyncio.create_task(forward_messages(websocket, client))
    try:
        while True:
            message = await websocket.receive_json()
            await sw.handle_message(client.id, message)
    except WebSocketDisconnect:
        logger.debug("Page disconnected", client_id=client.id)
    finally:
        sender.cancel()
        sw.clients.disconnect(client.id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=api_config.debug,
        log_level=api_config.log_level.lower()
    )
