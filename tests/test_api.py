import asyncio
import json
import os
import socket
import tempfile
import unittest

from fastapi import FastAPI, WebSocketDisconnect
from fastapi.testclient import TestClient

from lanchat import logs
from lanchat.api.routes import init_routes, router
from lanchat.api.websocket import EventStream
from lanchat.events import ChatReceived, EventBus, PeerVerified
from lanchat.main import create_app
from lanchat.node import LanChatNode


class FakeWebSocket:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail
        self.gone = asyncio.Event()

    async def accept(self):
        pass

    async def receive_text(self) -> str:
        await self.gone.wait()
        raise WebSocketDisconnect()

    async def send_text(self, text: str):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(text)


class RoutesTests(unittest.TestCase):
    def setUp(self):
        # Node services are not started: the routes only touch the registry
        # and the sender, and sends go to a closed port.
        self.node = LanChatNode("alice", "hunter2", peer_port=1, connect_timeout=0.5)
        self.node.registry.upsert("127.0.0.1", "bob")
        self.node.registry.set_secure("127.0.0.1", True)
        init_routes(self.node)
        app = FastAPI()
        app.include_router(router)
        self.client = TestClient(app)

    def tearDown(self):
        logs.set_debug(False)

    def test_list_peers(self):
        response = self.client.get("/api/peers")
        self.assertEqual(response.status_code, 200)
        peers = response.json()["peers"]
        self.assertEqual(len(peers), 1)
        self.assertEqual(peers[0]["display_name"], "bob")
        self.assertEqual(peers[0]["address"], "127.0.0.1")
        self.assertTrue(peers[0]["secure"])

    def test_unknown_peer(self):
        response = self.client.post("/api/peers/10.9.9.9/chat", json={"text": "hi"})
        self.assertEqual(response.status_code, 404)
        response = self.client.post("/api/peers/10.9.9.9/file", json={"path": __file__})
        self.assertEqual(response.status_code, 404)

    def test_chat_failure_is_reported(self):
        response = self.client.post("/api/peers/127.0.0.1/chat", json={"text": "hi"})
        self.assertEqual(response.status_code, 502)
        self.assertTrue(response.json()["detail"].startswith("Chat error:"))

    def test_empty_chat_rejected(self):
        response = self.client.post("/api/peers/127.0.0.1/chat", json={"text": "  "})
        self.assertEqual(response.status_code, 400)

    def test_missing_file_rejected(self):
        response = self.client.post(
            "/api/peers/127.0.0.1/file", json={"path": "/nonexistent/file.txt"}
        )
        self.assertEqual(response.status_code, 400)

    def test_file_failure_is_reported(self):
        response = self.client.post("/api/peers/127.0.0.1/file", json={"path": __file__})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["status"].startswith("File error:"))
        self.assertTrue(body["encrypted"])

    def test_settings(self):
        settings = self.client.get("/api/settings").json()
        self.assertEqual(settings, {"name": "alice", "encryption": True, "debug": False})

        cwd = os.getcwd()
        with tempfile.TemporaryDirectory() as tmp:
            os.chdir(tmp)
            try:
                self.client.put("/api/settings", json={"debug": True})
                self.assertTrue(self.client.get("/api/settings").json()["debug"])
                self.assertTrue(os.path.exists(os.path.join(tmp, "debug.log")))
                self.client.put("/api/settings", json={"debug": False})
                self.assertFalse(self.client.get("/api/settings").json()["debug"])
            finally:
                os.chdir(cwd)


class AppTests(unittest.TestCase):
    def test_send_errors_reach_websocket_clients(self):
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.bind(("127.0.0.1", 0))
            udp_port = s.getsockname()[1]
        node = LanChatNode(
            "alice", udp_port=udp_port, tcp_port=0, host="127.0.0.1",
            broadcast_addresses=["127.0.0.1"], peer_port=1, connect_timeout=0.5,
        )
        node.registry.upsert("127.0.0.1", "bob")

        with TestClient(create_app(node)) as client:
            with client.websocket_connect("/ws") as ws:
                self.assertEqual(client.get("/api/settings").json()["name"], "alice")
                response = client.post("/api/peers/127.0.0.1/chat", json={"text": "hi"})
                self.assertEqual(response.status_code, 502)

                message = ws.receive_json()
                self.assertEqual(message["event"], "transfer_status")
                self.assertTrue(message["data"]["message"].startswith("Chat error:"))


class EventStreamTests(unittest.IsolatedAsyncioTestCase):
    async def test_pump_forwards_events_and_drops_dead_sockets(self):
        stream = EventStream()
        alive, dead = FakeWebSocket(), FakeWebSocket(fail=True)
        sessions = [asyncio.create_task(stream.serve(ws)) for ws in (alive, dead)]
        await asyncio.sleep(0)
        self.assertEqual(stream.clients, 2)

        bus = EventBus()
        bus.publish(PeerVerified(address="10.0.0.2", secure=True))
        bus.publish(ChatReceived(address="10.0.0.2", sender="bob", text="hi"))

        pump = asyncio.create_task(stream.pump(bus))
        try:
            for _ in range(50):
                if len(alive.sent) == 2:
                    break
                await asyncio.sleep(0.01)
        finally:
            pump.cancel()

        messages = [json.loads(m) for m in alive.sent]
        self.assertEqual(messages[0], {"event": "peer_verified", "data": {"address": "10.0.0.2", "secure": True}})
        self.assertEqual(messages[1]["event"], "chat_received")
        self.assertEqual(messages[1]["data"]["text"], "hi")
        self.assertEqual(stream.clients, 1)

        alive.gone.set()
        await asyncio.wait_for(sessions[0], timeout=1)
        self.assertEqual(stream.clients, 0)
        sessions[1].cancel()


if __name__ == "__main__":
    unittest.main()
