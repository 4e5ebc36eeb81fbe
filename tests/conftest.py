"""Pytest configuration and a fake rosbridge transport."""

import asyncio
import json
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from robot_panel.bridge import BridgeConnection
from robot_panel.channels import ChannelRegistry
from robot_panel.dispatcher import CommandDispatcher
from robot_panel.result_log import ResultLogger


class FakeTransport:
    """
    Stands in for a websocket to rosbridge.

    Records every frame sent and, when auto_respond is set, answers
    call_service frames with a service_response.
    """

    def __init__(self, auto_respond=True, result=True, values=None):
        self.auto_respond = auto_respond
        self.result = result
        self.values = values if values is not None else {"success": True}
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send(self, raw):
        frame = json.loads(raw)
        self.sent.append(frame)
        if self.auto_respond and frame.get("op") == "call_service":
            self.push({
                "op": "service_response",
                "id": frame["id"],
                "service": frame["service"],
                "values": self.values,
                "result": self.result,
            })

    def push(self, frame):
        self._incoming.put_nowait(json.dumps(frame))

    def drop(self):
        """Simulate the bridge closing the socket."""
        self._incoming.put_nowait(None)

    async def close(self):
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def frames(self, op, name=None):
        return [
            f for f in self.sent
            if f.get("op") == op and name in (None, f.get("topic"), f.get("service"))
        ]


class Toasts(list):
    def __bool__(self):
        # Always truthy so `notify or log_notifier` keeps this collector
        # even while it is still empty.
        return True

    def __call__(self, message, level="info"):
        self.append((message, level))

    def messages(self, level=None):
        return [m for m, lvl in self if level is None or lvl == level]


class Harness:
    """Bridge + registry + dispatcher wired to a fake transport."""

    def __init__(self, transport=None, fail_handshake=None):
        self.transport = transport or FakeTransport()
        self.fail_handshake = fail_handshake
        self.urls = []
        self.toasts = Toasts()
        self.result_log = ResultLogger()
        self.registry = ChannelRegistry(on_script_result=self.result_log.on_result)
        self.bridge = BridgeConnection(
            self.registry,
            notify=self.toasts,
            connector=self.connector,
        )
        self.dispatcher = CommandDispatcher(
            self.bridge,
            self.result_log,
            notify=self.toasts,
            script_cooldown=0.05,
        )

    async def connector(self, url):
        self.urls.append(url)
        if self.fail_handshake is not None:
            raise self.fail_handshake
        return self.transport

    async def settle(self):
        """Let queued frames and responses flow."""
        for _ in range(5):
            await asyncio.sleep(0)
        await self.bridge.drain()
        for _ in range(5):
            await asyncio.sleep(0)


@pytest.fixture
def harness_factory():
    return Harness


@pytest.fixture
def fake_transport_factory():
    return FakeTransport
