import asyncio
import socket
import unittest

from lanchat.discovery.registry import PeerRegistry
from lanchat.events import EventBus, TransferStatus
from lanchat.node import LanChatNode
from lanchat.supervisor import supervise_bind
from lanchat.transfer.server import ConnectionDispatcher


class SuperviseBindTests(unittest.IsolatedAsyncioTestCase):
    async def test_retries_until_bound(self):
        bus = EventBus()
        attempts = []

        async def bind():
            attempts.append(1)
            if len(attempts) < 3:
                raise OSError("Address already in use")
            return "bound"

        result = await supervise_bind("TCP", bind, bus, retries=3, delay=0.01)
        self.assertEqual(result, "bound")
        self.assertEqual(len(attempts), 3)

        messages = [bus.get_nowait().message for _ in range(2)]
        self.assertEqual(messages, ["TCP listen error: Address already in use"] * 2)
        self.assertTrue(bus.empty())

    async def test_gives_up_and_reports(self):
        bus = EventBus()

        async def bind():
            raise OSError("Permission denied")

        result = await supervise_bind("UDP", bind, bus, retries=2, delay=0.01)
        self.assertIsNone(result)

        events = []
        while not bus.empty():
            events.append(bus.get_nowait())
        self.assertTrue(all(isinstance(e, TransferStatus) for e in events))
        self.assertEqual(len(events), 4)
        self.assertEqual(events[-1].message, "UDP listener stopped")

    async def test_dispatcher_port_in_use(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen()
            port = busy.getsockname()[1]

            bus = EventBus()
            dispatcher = ConnectionDispatcher(PeerRegistry(), bus, host="127.0.0.1", port=port)
            # Default retry delays are seconds long; fail fast here
            dispatcher.bind_retries = 0
            await asyncio.wait_for(dispatcher.start(), timeout=30)

        self.assertFalse(dispatcher.listening)
        self.assertTrue(bus.get_nowait().message.startswith("TCP listen error:"))

    async def test_discovery_starts_while_tcp_bind_is_retrying(self):
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.bind(("127.0.0.1", 0))
            udp_port = s.getsockname()[1]

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen()
            node = LanChatNode(
                "alice", udp_port=udp_port, tcp_port=busy.getsockname()[1],
                host="127.0.0.1", broadcast_addresses=["127.0.0.1"],
            )
            node.dispatcher.bind_delay = 30

            start = asyncio.create_task(node.start())
            try:
                for _ in range(100):
                    if node.discovery.listening:
                        break
                    await asyncio.sleep(0.01)
                self.assertTrue(node.discovery.listening)
                self.assertFalse(start.done())
                self.assertFalse(node.dispatcher.listening)
            finally:
                start.cancel()
                await asyncio.gather(start, return_exceptions=True)
                await node.stop()


if __name__ == "__main__":
    unittest.main()
