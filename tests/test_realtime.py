import asyncio

from romoderate.services.realtime import BroadcastHub


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.accepted = False
        self.closed = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        if self.fail and self.accepted and self.sent:
            raise RuntimeError("socket gone")
        self.sent.append(text)

    async def close(self):
        self.closed = True


def test_broadcast_reaches_live_sockets_and_drops_dead_ones():
    async def scenario():
        hub = BroadcastHub()
        live, dead = FakeSocket(), FakeSocket(fail=True)
        await hub.connect(live)
        await hub.connect(dead)
        remaining = await hub.broadcast("ban_created", {"id": "b1"})
        return hub, live, dead, remaining

    hub, live, dead, remaining = asyncio.run(scenario())
    assert remaining == 1
    assert dead.closed is True
    assert dead not in hub.sockets
    assert '"type": "connected"' in live.sent[0]
    assert '"type": "ban_created"' in live.sent[1]
    assert '"id": "b1"' in live.sent[1]


def test_websocket_welcome_message(client):
    with client.websocket_connect("/ws") as ws:
        welcome = ws.receive_json()
    assert welcome["type"] == "connected"
    assert welcome["timestamp"]


class SlowSocket(FakeSocket):
    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def send_text(self, text):
        if self.sent:
            await self.release.wait()
        self.sent.append(text)


def test_slow_socket_does_not_block_connects_or_other_sockets():
    async def scenario():
        hub = BroadcastHub()
        slow, fast = SlowSocket(), FakeSocket()
        await hub.connect(slow)
        await hub.connect(fast)
        pending = asyncio.create_task(hub.broadcast("ticket_created", {"id": "t1"}))
        await asyncio.sleep(0)
        late = FakeSocket()
        await asyncio.wait_for(hub.connect(late), timeout=1)
        for _ in range(5):
            await asyncio.sleep(0)
        fast_got_event = len(fast.sent) == 2
        slow.release.set()
        remaining = await pending
        return hub, late, fast_got_event, remaining

    hub, late, fast_got_event, remaining = asyncio.run(scenario())
    assert fast_got_event is True
    assert late in hub.sockets
    assert remaining == 3
