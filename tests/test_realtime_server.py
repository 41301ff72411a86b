from __future__ import annotations

import asyncio
import json
import unittest

from fastapi import Request
from fastapi.responses import StreamingResponse
from fastapi.testclient import TestClient

from livestate.backends import MemoryBackend
from livestate.config import LiveStateSettings
from livestate.errors import BackendUnavailableError
from livestate.server import create_app


class _UnavailableBackend(MemoryBackend):
    async def get(self, key: str):
        raise BackendUnavailableError("down")

    async def ping(self) -> bool:
        return False


def _settings() -> LiveStateSettings:
    return LiveStateSettings(backend="memory", keepalive_interval=30.0)


class TestActionEndpoint(unittest.TestCase):
    def setUp(self) -> None:
        self.app = create_app(settings=_settings(), backend=MemoryBackend())
        self.client = TestClient(self.app)
        self.client.__enter__()

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)

    def test_end_to_end_actions(self) -> None:
        for _ in range(3):
            response = self.client.post("/api/realtime", json={"action": "increment"})
            self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["counter"]["count"], 3)

        response = self.client.post("/api/realtime", json={"action": "vote", "optionId": "2"})
        votes = response.json()["votes"]
        self.assertEqual([option["votes"] for option in votes], [0, 1, 0])

        response = self.client.post(
            "/api/realtime",
            json={"action": "chat", "username": "Alice", "message": "hi"},
        )
        messages = response.json()["chatMessages"]
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0]["username"], "Alice")
        self.assertEqual(messages[0]["message"], "hi")
        self.assertEqual(sorted(messages[0].keys()), ["id", "message", "timestamp", "username"])

    def test_decrement_and_reset(self) -> None:
        self.client.post("/api/realtime", json={"action": "decrement"})
        response = self.client.post("/api/realtime", json={"action": "decrement"})
        self.assertEqual(response.json()["counter"]["count"], -2)

        response = self.client.post("/api/realtime", json={"action": "reset"})
        counter = response.json()["counter"]
        self.assertEqual(counter["count"], 0)
        self.assertGreater(counter["lastUpdated"], 0)

    def test_incomplete_actions_are_noops(self) -> None:
        baseline = self.client.get("/api/realtime/snapshot").json()
        for body in (
            {"action": "vote"},
            {"action": "vote", "optionId": ""},
            {"action": "vote", "optionId": "99"},
            {"action": "chat", "username": "Alice"},
            {"action": "chat", "message": "hi"},
            {"action": "explode"},
            {},
        ):
            response = self.client.post("/api/realtime", json=body)
            self.assertEqual(response.status_code, 200, body)
            self.assertEqual(response.json(), baseline)

    def test_unparsable_body_is_client_error(self) -> None:
        before = self.client.get("/api/realtime/snapshot").json()
        for raw in (b"{not json", b"", b"null"):
            response = self.client.post(
                "/api/realtime",
                content=raw,
                headers={"Content-Type": "application/json"},
            )
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json(), {"error": "Invalid request"})
        self.assertEqual(self.client.get("/api/realtime/snapshot").json(), before)

    def test_non_object_json_is_noop(self) -> None:
        baseline = self.client.get("/api/realtime/snapshot").json()
        for raw in (b"[1, 2]", b'"increment"', b"5"):
            response = self.client.post(
                "/api/realtime",
                content=raw,
                headers={"Content-Type": "application/json"},
            )
            self.assertEqual(response.status_code, 200, raw)
            self.assertEqual(response.json(), baseline)

    def test_health_reports_backend(self) -> None:
        payload = self.client.get("/api/health").json()
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["backend"], "ok")
        self.assertEqual(payload["subscribers"], 0)


class TestBackendFailures(unittest.TestCase):
    def test_unreachable_backend_is_service_unavailable(self) -> None:
        app = create_app(settings=_settings(), backend=_UnavailableBackend())
        with TestClient(app) as client:
            response = client.post("/api/realtime", json={"action": "increment"})
            self.assertEqual(response.status_code, 503)
            self.assertEqual(response.json(), {"error": "Backing store unavailable"})

            health = client.get("/api/health").json()
            self.assertEqual(health["backend"], "unavailable")


class TestStreamRoute(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        settings = LiveStateSettings(backend="memory", keepalive_interval=0.05)
        self.app = create_app(settings=settings, backend=MemoryBackend())
        self.disconnected = False

    def _stream_endpoint(self):
        routes = [
            route
            for route in self.app.routes
            if getattr(route, "path", "") == "/api/realtime" and "GET" in getattr(route, "methods", set())
        ]
        self.assertEqual(len(routes), 1)
        return routes[0].endpoint

    def _request(self) -> Request:
        async def receive() -> dict:
            if self.disconnected:
                return {"type": "http.disconnect"}
            return {"type": "http.request", "body": b"", "more_body": True}

        scope = {
            "type": "http",
            "method": "GET",
            "path": "/api/realtime",
            "headers": [],
            "query_string": b"",
            "app": self.app,
        }
        return Request(scope, receive)

    async def test_stream_headers_and_first_frame(self) -> None:
        response = await self._stream_endpoint()(self._request())

        self.assertIsInstance(response, StreamingResponse)
        self.assertTrue(response.headers["content-type"].startswith("text/event-stream"))
        self.assertEqual(response.headers["cache-control"], "no-cache")
        self.assertEqual(response.headers["connection"], "keep-alive")

        body = response.body_iterator
        try:
            first = await asyncio.wait_for(body.__anext__(), timeout=1.0)
            self.assertTrue(first.startswith("data: {"))
            self.assertTrue(first.endswith("\n\n"))
            payload = json.loads(first[len("data: ") : -2])
            self.assertEqual(payload["counter"], {"count": 0, "lastUpdated": 0})
            self.assertEqual(self.app.state.notifier.listener_count, 1)

            await self.app.state.dispatcher.dispatch({"action": "increment"})
            update = await asyncio.wait_for(body.__anext__(), timeout=1.0)
            self.assertEqual(json.loads(update[len("data: ") : -2])["counter"]["count"], 1)
        finally:
            await body.aclose()
        self.assertEqual(self.app.state.notifier.listener_count, 0)

    async def test_client_disconnect_ends_stream(self) -> None:
        response = await self._stream_endpoint()(self._request())
        body = response.body_iterator
        await asyncio.wait_for(body.__anext__(), timeout=1.0)

        self.disconnected = True
        with self.assertRaises(StopAsyncIteration):
            await asyncio.wait_for(body.__anext__(), timeout=1.0)
        self.assertEqual(self.app.state.notifier.listener_count, 0)


if __name__ == "__main__":
    unittest.main()
