"""
worker.py – Single background worker that services task requests in order.

One daemon thread drains a FIFO ``queue.Queue``; every request gets a
``concurrent.futures.Future`` that resolves to its ``TaskResponse``.  Async
callers await it through ``asyncio.wrap_future`` so the event loop never
blocks on an analysis.  Validation and the cache lookup happen once, at
submit time: hits and malformed payloads resolve without queueing, and
queued items carry the parsed request to the worker.

Before ``start()`` (and after ``stop()``) every request resolves immediately
with ``status = not_ready``; callers are expected to retry.
"""
from __future__ import annotations

import asyncio
import logging
import queue
import threading
import uuid
from concurrent.futures import Future
from typing import Dict, Optional

from .engine import ForensicsEngine, ParsedRequest
from .models import TaskRequest, TaskResponse, TaskStatus

log = logging.getLogger(__name__)

_STOP = object()


class ForensicsWorker:
    def __init__(self, engine: Optional[ForensicsEngine] = None) -> None:
        self.engine = engine or ForensicsEngine()
        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._pending: Dict[str, Future] = {}
        self._pending_lock = threading.Lock()
        self._state_lock = threading.Lock()

    # ── Lifecycle ─────────────────────────────────────────────────────────────
    def start(self) -> None:
        with self._state_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._loop, name="forensics-worker", daemon=True)
            self._thread.start()
            self._ready.set()
        log.info("Forensics worker started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        # Under the lock no submit can slip a request in behind _STOP.
        with self._state_lock:
            if self._thread is None:
                return
            self._ready.clear()
            self._queue.put(_STOP)
            thread, self._thread = self._thread, None
        thread.join(timeout)
        self._drain()
        log.info("Forensics worker stopped")

    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def pending(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    # ── Submission ────────────────────────────────────────────────────────────
    def submit(self, request: TaskRequest) -> "Future[TaskResponse]":
        if request.request_id is None:
            request = request.model_copy(update={"request_id": uuid.uuid4().hex})

        future: Future = Future()
        if not self.is_ready():
            future.set_result(self._not_ready(request))
            return future

        parsed, response = self.engine.prepare(request)
        if response is not None:
            future.set_result(response)
            return future

        with self._state_lock:
            if not self._ready.is_set():
                future.set_result(self._not_ready(request))
                return future
            with self._pending_lock:
                self._pending[request.request_id] = future
            self._queue.put((request, parsed, future))
        return future

    async def execute(self, request: TaskRequest) -> TaskResponse:
        return await asyncio.wrap_future(self.submit(request))

    # ── Worker loop ───────────────────────────────────────────────────────────
    def _loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                self._drain()
                break
            self._process(*item)

    @staticmethod
    def _not_ready(request: TaskRequest) -> TaskResponse:
        return TaskResponse(
            request_id=request.request_id,
            operation=request.operation,
            status=TaskStatus.NOT_READY,
        )

    def _resolved(self, request: TaskRequest) -> None:
        with self._pending_lock:
            self._pending.pop(request.request_id, None)

    def _process(self, request: TaskRequest, parsed: ParsedRequest, future: Future) -> None:
        try:
            response = self.engine.handle(request, parsed)
        except Exception as exc:
            log.exception("Task %s (%s) failed", request.request_id, request.operation.value)
            self._resolved(request)
            future.set_exception(exc)
        else:
            self._resolved(request)
            future.set_result(response)

    def _drain(self) -> None:
        """Answer anything still queued at shutdown as not-ready."""
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is _STOP:
                continue
            request, _, future = item
            self._resolved(request)
            future.set_result(self._not_ready(request))
