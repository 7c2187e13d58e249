import threading
import unittest

import numpy as np

from detector import Match
from errors import (RequestTimeoutError, WorkerCrashedError, WorkerError,
                    WorkerUnavailableError)
from synthetic import TPL_H, TPL_W, make_template, paste_gray
from worker import (KIND_ARRAY, KIND_RASTER, DetectionClient, DetectionResult,
                    DetectionWorker, PendingRequest, RequestState, WorkerThread)

SRC_W, SRC_H = 240, 160


def array_request(request_id="r1"):
    template = make_template()
    return {
        "id": request_id,
        "kind": KIND_ARRAY,
        "source": paste_gray(SRC_W, SRC_H, 255, template.gray, TPL_W, TPL_H, 40, 26),
        "source_width": SRC_W,
        "source_height": SRC_H,
        "template": template.gray.copy(),
        "template_width": TPL_W,
        "template_height": TPL_H,
        "scale_to_full": 2.0,
    }


class SilentThread:
    """Stand-in worker thread that accepts requests and never answers."""

    def __init__(self, post_message, on_error=None, **kwargs):
        self.post_message = post_message
        self.on_error = on_error
        self.posted = []
        self.cancelled = []
        self.alive = False

    def start(self):
        self.alive = True

    def is_alive(self):
        return self.alive

    def post(self, msg):
        self.posted.append(msg)

    def cancel(self, request_id):
        self.cancelled.append(request_id)

    def terminate(self):
        self.alive = False

    def join(self, timeout=None):
        pass


class TestDetectionWorker(unittest.TestCase):
    def setUp(self):
        self.responses = []
        self.worker = DetectionWorker(self.responses.append)

    def test_array_request(self):
        self.worker.handle(array_request())

        self.assertEqual(len(self.responses), 1)
        response = self.responses[0]
        self.assertEqual(response["id"], "r1")
        self.assertTrue(response["ok"])
        self.assertEqual((response["match"].x, response["match"].y), (40, 26))
        self.assertEqual(response["scale_to_full"], 2.0)

    def test_no_match_is_ok_response(self):
        msg = array_request()
        msg["source"] = np.full(SRC_W * SRC_H, 255, dtype=np.float32)
        self.worker.handle(msg)
        self.assertTrue(self.responses[0]["ok"])
        self.assertIsNone(self.responses[0]["match"])

    def test_message_without_id_is_ignored(self):
        msg = array_request()
        del msg["id"]
        self.worker.handle(msg)
        self.worker.handle("not a request")
        self.assertEqual(self.responses, [])

    def test_unknown_kind(self):
        self.worker.handle({"id": "r9", "kind": "explode"})
        self.assertEqual(len(self.responses), 1)
        self.assertFalse(self.responses[0]["ok"])
        self.assertIn("Unknown request kind", self.responses[0]["error"])

    def test_bad_payload_becomes_error_response(self):
        msg = array_request()
        msg["source_width"] = 7
        self.worker.handle(msg)
        self.assertFalse(self.responses[0]["ok"])

    def test_raster_disabled(self):
        worker = DetectionWorker(self.responses.append, raster_enabled=False)
        worker.handle({"id": "r2", "kind": KIND_RASTER, "image": "x.png", "template": "t.png"})
        self.assertFalse(self.responses[0]["ok"])
        self.assertIn("Rasterization", self.responses[0]["error"])

    def test_cancel_aborts_search(self):
        self.worker.cancel("r3")
        self.worker.handle(array_request("r3"))
        self.assertFalse(self.responses[0]["ok"])
        self.assertIn("cancelled", self.responses[0]["error"])

        # cancel flag is consumed by the request it was meant for
        self.worker.handle(array_request("r3"))
        self.assertTrue(self.responses[1]["ok"])


class TestWorkerThread(unittest.TestCase):
    def test_round_trip(self):
        responses = []
        done = threading.Event()

        def post(response):
            responses.append(response)
            done.set()

        thread = WorkerThread(post)
        thread.start()
        thread.post(array_request())
        self.assertTrue(done.wait(60))
        thread.terminate()
        thread.join(5)

        self.assertFalse(thread.is_alive())
        self.assertTrue(responses[0]["ok"])

    def test_crash_reports_error(self):
        errors = []

        def post(response):
            raise RuntimeError("boom")

        thread = WorkerThread(post, on_error=errors.append)
        thread.start()
        thread.post({"id": "x", "kind": "nope"})
        thread.join(5)

        self.assertFalse(thread.is_alive())
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], RuntimeError)


class TestDetectionClient(unittest.TestCase):
    def make_client(self, **kwargs):
        client = DetectionClient(thread_factory=SilentThread, **kwargs)
        client.start()
        self.addCleanup(client.close)
        return client

    def send(self, client, request_id="abc"):
        msg = array_request(request_id)
        return client.detect_array(msg["source"], SRC_W, SRC_H, msg["template"],
                                   TPL_W, TPL_H, request_id=request_id)

    def test_end_to_end(self):
        with DetectionClient() as client:
            future = self.send(client)
            result = future.result(timeout=60)
            self.assertIsInstance(result, DetectionResult)
            self.assertEqual((result.match.x, result.match.y), (40, 26))
            self.assertEqual(result.scale_to_full, 1.0)
            self.assertNotIn("abc", client.pending)

    def test_request_is_posted_with_id_and_kind(self):
        client = self.make_client()
        self.send(client, "p1")
        posted = client.thread.posted[0]
        self.assertEqual((posted["id"], posted["kind"]), ("p1", KIND_ARRAY))
        self.assertIn("p1", client.pending)

    def test_timeout(self):
        client = self.make_client(timeout=0.05)
        thread = client.thread
        future = self.send(client)

        with self.assertRaises(RequestTimeoutError):
            future.result(timeout=5)
        self.assertNotIn("abc", client.pending)
        self.assertEqual(thread.cancelled, ["abc"])

        # late response is dropped without touching the failed future
        client.handle_response({"id": "abc", "ok": True, "match": None, "scale_to_full": 1.0})
        self.assertIsInstance(future.exception(), RequestTimeoutError)

    def test_timeout_is_also_builtin_timeout(self):
        self.assertTrue(issubclass(RequestTimeoutError, TimeoutError))

    def test_crash_fails_pending(self):
        client = self.make_client()
        first = self.send(client, "a")
        second = self.send(client, "b")
        client.handle_crash(RuntimeError("boom"))

        for future in (first, second):
            self.assertIsInstance(future.exception(timeout=1), WorkerCrashedError)
        self.assertEqual(client.pending, {})

    def test_unstarted_client_rejects(self):
        future = self.send(DetectionClient())
        self.assertIsInstance(future.exception(timeout=1), WorkerUnavailableError)

    def test_error_response(self):
        client = self.make_client()
        future = self.send(client, "e1")
        client.handle_response({"id": "e1", "ok": False, "error": "bad input"})

        error = future.exception(timeout=1)
        self.assertIsInstance(error, WorkerError)
        self.assertIn("bad input", str(error))

    def test_ok_response_resolves(self):
        client = self.make_client()
        future = self.send(client, "m1")
        match = Match(1, 2, 3, 4, 0.9)
        client.handle_response({"id": "m1", "ok": True, "match": match, "scale_to_full": 2.5})
        self.assertEqual(future.result(timeout=1), DetectionResult(match, 2.5))

    def test_duplicate_id(self):
        client = self.make_client()
        self.send(client, "dup")
        with self.assertRaises(ValueError):
            self.send(client, "dup")

    def test_close_fails_pending(self):
        client = self.make_client()
        future = self.send(client, "c1")
        client.close()
        self.assertIsInstance(future.exception(timeout=1), WorkerUnavailableError)
        self.assertIsInstance(self.send(client, "c2").exception(timeout=1), WorkerUnavailableError)


class TestPendingRequest(unittest.TestCase):
    def test_finishes_once(self):
        entry = PendingRequest("x", KIND_ARRAY, threading.Timer(10, lambda: None))
        entry.resolve(DetectionResult(None, 1.0))
        self.assertEqual(entry.state, RequestState.RESOLVED)

        with self.assertRaises(RuntimeError):
            entry.reject(WorkerError("late"))
        with self.assertRaises(RuntimeError):
            entry.time_out()
        self.assertIsNone(entry.future.result().match)


if __name__ == '__main__':
    unittest.main()
