"""
Push feed client against a local websockets server.
"""

import asyncio

from websockets.asyncio.server import serve

from redalert.push_client import PushFeedClient


class TestPushFeedClient:

    def test_messages_enqueued_and_reconnects(self):
        events = []

        async def handler(ws):
            await ws.send('{"areas": "Tel Aviv", "alert_type": 1}')
            await ws.send(b'{"alert_type": 255}')
            await ws.close()

        async def scenario():
            queue = asyncio.Queue()
            async with serve(handler, "127.0.0.1", 0) as server:
                port = server.sockets[0].getsockname()[1]
                client = PushFeedClient(
                    f"ws://127.0.0.1:{port}",
                    queue,
                    reconnect_interval=0.05,
                    on_connected=lambda: events.append("up"),
                    on_disconnected=lambda: events.append("down"),
                )
                task = asyncio.create_task(client.run_forever())
                try:
                    got = [await asyncio.wait_for(queue.get(), timeout=5) for _ in range(4)]
                finally:
                    task.cancel()
                    await asyncio.gather(task, return_exceptions=True)
            return got

        got = asyncio.run(scenario())
        assert got[:2] == ['{"areas": "Tel Aviv", "alert_type": 1}', '{"alert_type": 255}']
        assert got[2] == got[0]
        assert events[:3] == ["up", "down", "up"]

    def test_failed_connect_does_not_report_disconnect(self):
        events = []

        async def scenario():
            async with serve(lambda ws: ws.close(), "127.0.0.1", 0) as server:
                port = server.sockets[0].getsockname()[1]
            # server is closed now; every attempt is refused
            client = PushFeedClient(
                f"ws://127.0.0.1:{port}",
                asyncio.Queue(),
                reconnect_interval=0.02,
                on_connected=lambda: events.append("up"),
                on_disconnected=lambda: events.append("down"),
            )
            task = asyncio.create_task(client.run_forever())
            await asyncio.sleep(0.2)
            assert not task.done()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        asyncio.run(scenario())
        assert events == []
