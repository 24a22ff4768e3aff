"""
main.py – FastAPI application entry point.

Endpoints
---------
GET    /         – service banner
GET    /health   – liveness / readiness probe with version and cache stats
POST   /tasks    – run one tagged analysis request, return its TaskResponse
DELETE /cache    – drop cached results (all, or one ``operation``)

Production concerns addressed
------------------------------
- Structured logging (INFO level, JSON-friendly format)
- Request-ID header injected into every response for traceability
- Analyses run on the single background worker, never on the event loop
- lifespan context manager starts and stops the worker
- CORS locked to env-configurable origins
"""
from __future__ import annotations

import logging
import os
import uuid

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .models import Operation, TaskRequest, TaskStatus
from .worker import ForensicsWorker

__version__ = "1.2.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s │ %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
log = logging.getLogger(__name__)

worker = ForensicsWorker()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Flowtrace forensics engine v%s starting up", __version__)
    worker.start()
    yield
    worker.stop()
    log.info("Flowtrace forensics engine shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
ALLOWED_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

app = FastAPI(
    title="Flowtrace Forensics Engine",
    description="Trace fund flows and detect laundering patterns through graph analysis",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request-ID middleware
# ---------------------------------------------------------------------------
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/", include_in_schema=False)
def root():
    return {"status": "ok", "service": "Flowtrace Forensics Engine", "version": __version__}


@app.get("/health")
def health():
    """Liveness / readiness probe."""
    return {
        "status": "healthy" if worker.is_ready() else "starting",
        "version": __version__,
        "worker_ready": worker.is_ready(),
        "pending_tasks": worker.pending,
        "cache": worker.engine.cache.stats(),
    }


@app.post("/tasks")
async def run_task(task: TaskRequest, request: Request):
    """
    Run one analysis.

    Body: ``{"operation": "...", "payload": {...}, "requestId"?: "...", "force"?: false}``
    Payload keys may be camelCase or snake_case.
    """
    if task.request_id is None:
        task = task.model_copy(update={"request_id": request.state.request_id})

    response = await worker.execute(task)
    body = response.model_dump(mode="json", by_alias=True)

    if response.status == TaskStatus.NOT_READY:
        return JSONResponse(status_code=503, content=body)
    if response.status == TaskStatus.ERROR:
        return JSONResponse(status_code=422, content=body)

    log.info(
        "Task %s (%s) answered%s",
        response.request_id,
        response.operation.value,
        " from cache" if response.cached else "",
    )
    return JSONResponse(content=body)


@app.delete("/cache")
def invalidate_cache(operation: Optional[Operation] = None):
    """Drop cached results for one operation, or all of them."""
    if not worker.is_ready():
        raise HTTPException(status_code=503, detail="Worker not ready.")
    removed = worker.engine.cache.invalidate(operation.value if operation else None)
    return {"removed": removed, "cache": worker.engine.cache.stats()}
