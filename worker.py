"""
Background detection context.

WorkerThread owns a request queue and one DetectionWorker. Every request it
receives produces exactly one response through post_message:

    request  = {"id", "kind": "detect-array" | "detect-raster", ...payload}
    response = {"id", "ok": True, "match": Match | None, "scale_to_full": float}
             | {"id", "ok": False, "error": str}

DetectionClient is the caller side: it keeps one PendingRequest per id, resolves
it at most once, and fails it on timeout or worker crash.
"""

import enum
import queue
import threading
import time
import uuid
from concurrent.futures import Future
from typing import Any, Callable, Dict, NamedTuple, Optional

import numpy as np

from detector import Match, WatermarkDetector
from errors import (RequestTimeoutError, SearchCancelled, UnsupportedEnvironmentError,
                    WorkerCrashedError, WorkerError, WorkerUnavailableError)
from imaging import MAX_WORKING_WIDTH, RASTER_AVAILABLE, Template, load_rgba

DEFAULT_TIMEOUT = 30.0

KIND_ARRAY = "detect-array"
KIND_RASTER = "detect-raster"


class DetectionResult(NamedTuple):
    match: Optional[Match]
    scale_to_full: float


class DetectionWorker:
    """Handles requests one at a time on whichever thread calls handle()."""

    def __init__(self, post_message: Callable[[Dict[str, Any]], None],
                 detector_factory: Callable[[], WatermarkDetector] = WatermarkDetector,
                 raster_enabled: bool = RASTER_AVAILABLE):
        self.post_message = post_message
        self.detector_factory = detector_factory
        self.raster_enabled = raster_enabled
        self._cancelled = set()
        self._lock = threading.Lock()

    def cancel(self, request_id: str):
        """Abort the search for request_id at its next yield point."""
        with self._lock:
            self._cancelled.add(request_id)

    def handle(self, msg: Dict[str, Any]):
        request_id = msg.get("id") if isinstance(msg, dict) else None
        if not request_id:
            print(f"[WORKER] Ignoring message without id: {type(msg).__name__}")
            return

        kind = msg.get("kind")
        print(f"[WORKER] Request {request_id} ({kind})")
        start_time = time.time()

        try:
            if kind == KIND_ARRAY:
                result = self._detect_array(msg)
            elif kind == KIND_RASTER:
                result = self._detect_raster(msg)
            else:
                raise ValueError(f"Unknown request kind: {kind!r}")
            response = {"id": request_id, "ok": True,
                        "match": result.match, "scale_to_full": result.scale_to_full}
        except Exception as e:
            print(f"[WORKER] Request {request_id} failed: {e}")
            response = {"id": request_id, "ok": False, "error": str(e) or type(e).__name__}
        finally:
            with self._lock:
                self._cancelled.discard(request_id)

        print(f"[WORKER] Request {request_id} done in {time.time() - start_time:.2f}s")
        self.post_message(response)

    def _yield_point(self, request_id: str) -> Callable:
        def on_progress(progress):
            if request_id in self._cancelled:
                raise SearchCancelled(f"Request {request_id} cancelled")
            # kasih giliran ke thread lain
            time.sleep(0)
        return on_progress

    def _detect_array(self, msg: Dict[str, Any]) -> DetectionResult:
        template = Template.from_gray(msg["template"], msg["template_width"], msg["template_height"])
        detector = self.detector_factory()
        match = detector.find(msg["source"], msg["source_width"], msg["source_height"],
                              template, self._yield_point(msg["id"]))
        return DetectionResult(match, float(msg.get("scale_to_full", 1.0)))

    def _detect_raster(self, msg: Dict[str, Any]) -> DetectionResult:
        if not self.raster_enabled:
            raise UnsupportedEnvironmentError("Rasterization not supported in this worker")

        rgba = load_rgba(msg["image"])
        template = Template.from_image(msg["template"])
        detector = self.detector_factory()
        match, scale_to_full = detector.find_in_rgba(rgba, template,
                                                     msg.get("max_width", MAX_WORKING_WIDTH),
                                                     self._yield_point(msg["id"]))
        return DetectionResult(match, scale_to_full)


class WorkerThread(threading.Thread):
    def __init__(self, post_message: Callable[[Dict[str, Any]], None],
                 on_error: Optional[Callable[[BaseException], None]] = None, **worker_kwargs):
        super().__init__(name="watermark-worker", daemon=True)
        self.inbox: "queue.Queue[Optional[Dict[str, Any]]]" = queue.Queue()
        self.worker = DetectionWorker(post_message, **worker_kwargs)
        self.on_error = on_error

    def post(self, msg: Dict[str, Any]):
        self.inbox.put(msg)

    def cancel(self, request_id: str):
        self.worker.cancel(request_id)

    def terminate(self):
        self.inbox.put(None)

    def run(self):
        try:
            while True:
                msg = self.inbox.get()
                if msg is None:
                    break
                self.worker.handle(msg)
        except Exception as e:
            print(f"[WORKER] Crashed: {e}")
            if self.on_error:
                self.on_error(e)


class RequestState(enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


class PendingRequest:
    """One in-flight request. Leaves PENDING exactly once."""

    def __init__(self, request_id: str, kind: str, timer: threading.Timer):
        self.request_id = request_id
        self.kind = kind
        self.timer = timer
        self.future: Future = Future()
        self.state = RequestState.PENDING

    def _finish(self, state: RequestState):
        if self.state is not RequestState.PENDING:
            raise RuntimeError(f"Request {self.request_id} already {self.state.value}")
        self.state = state
        self.timer.cancel()

    def resolve(self, result: DetectionResult):
        self._finish(RequestState.RESOLVED)
        self.future.set_result(result)

    def reject(self, error: BaseException):
        self._finish(RequestState.REJECTED)
        self.future.set_exception(error)

    def time_out(self):
        self._finish(RequestState.TIMED_OUT)
        self.future.set_exception(RequestTimeoutError(f"Worker timeout ({self.request_id})"))


class DetectionClient:
    """Caller side of the worker boundary."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT,
                 thread_factory: Optional[Callable[..., WorkerThread]] = None, **worker_kwargs):
        self.timeout = timeout
        self.thread_factory = thread_factory or WorkerThread
        self.worker_kwargs = worker_kwargs
        self.thread: Optional[WorkerThread] = None
        self.pending: Dict[str, PendingRequest] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "DetectionClient":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def start(self):
        if self.thread is not None:
            return
        try:
            self.thread = self.thread_factory(self.handle_response, on_error=self.handle_crash,
                                              **self.worker_kwargs)
            self.thread.start()
        except Exception as e:
            print(f"[CLIENT] Failed to create worker: {e}")
            self.thread = None

    def close(self):
        thread, self.thread = self.thread, None
        if thread is not None:
            thread.terminate()
            thread.join(timeout=1.0)
        self._fail_all(WorkerUnavailableError, "Worker closed")

    def detect_array(self, source: np.ndarray, source_width: int, source_height: int,
                     template: np.ndarray, template_width: int, template_height: int,
                     scale_to_full: float = 1.0, request_id: Optional[str] = None) -> Future:
        """
        Array-only detection. The buffers are handed over without copying;
        do not touch them after this call.
        """
        payload = {
            "source": np.asarray(source, dtype=np.float32),
            "source_width": int(source_width),
            "source_height": int(source_height),
            "template": np.asarray(template, dtype=np.float32),
            "template_width": int(template_width),
            "template_height": int(template_height),
            "scale_to_full": float(scale_to_full),
        }
        return self.request(KIND_ARRAY, payload, request_id)

    def detect_raster(self, image, template, max_width: int = MAX_WORKING_WIDTH,
                      request_id: Optional[str] = None) -> Future:
        payload = {"image": image, "template": template, "max_width": int(max_width)}
        return self.request(KIND_RASTER, payload, request_id)

    def request(self, kind: str, payload: Dict[str, Any], request_id: Optional[str] = None) -> Future:
        thread = self.thread
        if thread is None or not thread.is_alive():
            future: Future = Future()
            future.set_exception(WorkerUnavailableError("Worker unavailable"))
            return future

        request_id = request_id or uuid.uuid4().hex
        timer = threading.Timer(self.timeout, self._on_timeout, args=(request_id,))
        timer.daemon = True
        entry = PendingRequest(request_id, kind, timer)

        with self._lock:
            if request_id in self.pending:
                raise ValueError(f"Request id already pending: {request_id}")
            self.pending[request_id] = entry
            timer.start()

        thread.post(dict(payload, id=request_id, kind=kind))
        return entry.future

    def handle_response(self, response: Dict[str, Any]):
        """Inbound message from the worker."""
        request_id = response.get("id") if isinstance(response, dict) else None
        if not request_id:
            return

        with self._lock:
            entry = self.pending.pop(request_id, None)
        if entry is None:
            print(f"[CLIENT] Dropping late response for {request_id}")
            return

        if response.get("ok"):
            entry.resolve(DetectionResult(response.get("match"),
                                          float(response.get("scale_to_full", 1.0))))
        else:
            entry.reject(WorkerError(response.get("error") or "Worker error"))

    def handle_crash(self, error: BaseException):
        self._fail_all(WorkerCrashedError, f"Worker crashed: {error}")

    def _on_timeout(self, request_id: str):
        with self._lock:
            entry = self.pending.pop(request_id, None)
        if entry is None:
            return

        print(f"[CLIENT] Request {request_id} timed out after {self.timeout:.1f}s")
        thread = self.thread
        if thread is not None:
            thread.cancel(request_id)
        entry.time_out()

    def _fail_all(self, error_cls: type, message: str):
        with self._lock:
            entries = list(self.pending.values())
            self.pending.clear()
        for entry in entries:
            entry.reject(error_cls(message))
