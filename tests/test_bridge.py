"""Tests for the bridge connection state machine and channel binding."""

import asyncio

import pytest

from robot_panel.bridge import ConnectionState
from robot_panel.errors import InputError, NotConnected, RequestError, TransportError


def run(coro):
    return asyncio.run(coro)


class TestConnect:
    def test_connect_binds_four_channels(self, harness_factory):
        async def scenario():
            h = harness_factory()
            state = await h.bridge.connect("localhost:9090")
            await h.settle()
            return h, state

        h, state = run(scenario())
        assert state is ConnectionState.CONNECTED
        assert h.urls == ["ws://localhost:9090"]
        channels = h.bridge.channels
        assert channels is not None
        assert all(handle.bound for handle in channels.handles())
        assert channels.move_joint.name == "/dsr01/motion/move_joint"
        assert [f["topic"] for f in h.transport.frames("advertise")] == [
            "/dsr01/gripper/position_cmd",
            "/execute_script",
        ]
        assert [f["topic"] for f in h.transport.frames("subscribe")] == ["/script_result"]
        assert ("Connected to rosbridge", "success") in h.toasts

    def test_empty_endpoint_rejected_without_side_effect(self, harness_factory):
        async def scenario():
            h = harness_factory()
            with pytest.raises(InputError):
                await h.bridge.connect("   ")
            return h

        h = run(scenario())
        assert h.urls == []
        assert h.bridge.state is ConnectionState.DISCONNECTED
        assert h.toasts.messages("error") == ["Please enter rosbridge URL"]

    def test_connect_while_connected_rejected(self, harness_factory):
        async def scenario():
            h = harness_factory()
            await h.bridge.connect("localhost:9090")
            with pytest.raises(InputError):
                await h.bridge.connect("localhost:9090")
            return h

        h = run(scenario())
        assert h.urls == ["ws://localhost:9090"]
        assert h.bridge.state is ConnectionState.CONNECTED

    def test_handshake_failure_is_transport_error(self, harness_factory):
        async def scenario():
            h = harness_factory(fail_handshake=ConnectionRefusedError("refused"))
            with pytest.raises(TransportError):
                await h.bridge.connect("localhost:9090")
            return h

        h = run(scenario())
        assert h.bridge.state is ConnectionState.DISCONNECTED
        assert h.bridge.channels is None
        assert h.toasts.messages("error") == ["Connection error"]

    def test_retry_after_failure(self, harness_factory):
        async def scenario():
            h = harness_factory(fail_handshake=OSError("unreachable"))
            with pytest.raises(TransportError):
                await h.bridge.connect("localhost:9090")
            h.fail_handshake = None
            return h, await h.bridge.connect("localhost:9090")

        h, state = run(scenario())
        assert state is ConnectionState.CONNECTED
        assert len(h.urls) == 2

    def test_state_listener_sees_transitions(self, harness_factory):
        async def scenario():
            h = harness_factory()
            seen = []
            h.bridge.add_state_listener(seen.append)
            await h.bridge.connect("localhost:9090")
            await h.bridge.disconnect()
            return seen

        assert run(scenario()) == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        ]

    def test_channels_bound_when_connected_listener_fires(self, harness_factory):
        async def scenario():
            h = harness_factory()
            observed = []
            h.bridge.add_state_listener(
                lambda state: observed.append((state, h.bridge.channels is not None))
            )
            await h.bridge.connect("localhost:9090")
            await h.bridge.disconnect()
            return observed

        assert run(scenario()) == [
            (ConnectionState.CONNECTING, False),
            (ConnectionState.CONNECTED, True),
            (ConnectionState.DISCONNECTED, False),
        ]


class TestDisconnect:
    def test_disconnect_is_idempotent(self, harness_factory):
        async def scenario():
            h = harness_factory()
            await h.bridge.disconnect()
            await h.bridge.connect("localhost:9090")
            channels = h.bridge.channels
            await h.bridge.disconnect()
            await h.bridge.disconnect()
            return h, channels

        h, channels = run(scenario())
        assert h.bridge.state is ConnectionState.DISCONNECTED
        assert h.bridge.channels is None
        assert not any(handle.bound for handle in channels.handles())
        assert h.transport.closed
        # User-initiated: no failure toast
        assert "Connection closed" not in h.toasts.messages()

    def test_disconnect_during_handshake(self, harness_factory):
        async def scenario():
            h = harness_factory()
            release = asyncio.Event()

            async def slow_connector(url):
                await release.wait()
                return h.transport

            h.bridge._connector = slow_connector
            connect_task = asyncio.create_task(h.bridge.connect("localhost:9090"))
            await asyncio.sleep(0)
            assert h.bridge.state is ConnectionState.CONNECTING
            await h.bridge.disconnect()
            return h, await connect_task

        h, state = run(scenario())
        assert state is ConnectionState.DISCONNECTED
        assert h.bridge.channels is None

    def test_reconnect_right_after_disconnect_during_handshake(self, harness_factory):
        async def scenario():
            h = harness_factory()
            release = asyncio.Event()

            async def slow_connector(url):
                await release.wait()
                return h.transport

            h.bridge._connector = slow_connector
            first = asyncio.create_task(h.bridge.connect("localhost:9090"))
            await asyncio.sleep(0)
            await h.bridge.disconnect()
            second = asyncio.create_task(h.bridge.connect("localhost:9090"))
            await asyncio.sleep(0.05)
            assert h.bridge.state is ConnectionState.CONNECTING
            release.set()
            first_state = await first
            second_state = await second
            await h.settle()
            return h, first_state, second_state

        h, first_state, second_state = run(scenario())
        assert first_state is not ConnectionState.CONNECTED
        assert second_state is ConnectionState.CONNECTED
        assert h.bridge.state is ConnectionState.CONNECTED
        handles = h.bridge.channels.handles()
        assert len(handles) == 4
        assert all(handle.bound for handle in handles)
        assert not h.transport.closed
        assert ("Connected to rosbridge", "success") in h.toasts

    def test_disconnect_cancels_newer_handshake(self, harness_factory):
        async def scenario():
            h = harness_factory()
            release = asyncio.Event()

            async def slow_connector(url):
                await release.wait()
                return h.transport

            h.bridge._connector = slow_connector
            first = asyncio.create_task(h.bridge.connect("localhost:9090"))
            await asyncio.sleep(0)
            await h.bridge.disconnect()
            second = asyncio.create_task(h.bridge.connect("localhost:9090"))
            await asyncio.sleep(0.05)
            await h.bridge.disconnect()
            await first
            return h, await second

        h, state = run(scenario())
        assert state is ConnectionState.DISCONNECTED
        assert h.bridge.channels is None

    def test_remote_close_notifies_and_releases(self, harness_factory):
        async def scenario():
            h = harness_factory()
            await h.bridge.connect("localhost:9090")
            channels = h.bridge.channels
            h.transport.drop()
            await h.settle()
            return h, channels

        h, channels = run(scenario())
        assert h.bridge.state is ConnectionState.DISCONNECTED
        assert h.bridge.channels is None
        assert not channels.gripper.bound
        assert ("Connection closed", "error") in h.toasts
        with pytest.raises(NotConnected):
            channels.gripper.publish({"data": 1})

    def test_send_requires_connection(self, harness_factory):
        async def scenario():
            h = harness_factory()
            with pytest.raises(NotConnected):
                h.bridge.send({"op": "publish", "topic": "/x", "msg": {}})

        run(scenario())


class TestServiceCorrelation:
    def test_response_resolves_matching_call(self, harness_factory, fake_transport_factory):
        async def scenario():
            h = harness_factory(transport=fake_transport_factory(values={"success": True}))
            await h.bridge.connect("localhost:9090")
            return await h.bridge.channels.move_joint.call({"pos": [0] * 6, "vel": 1.0, "acc": 1.0})

        assert run(scenario()) == {"success": True}

    def test_failed_response_raises_request_error(self, harness_factory, fake_transport_factory):
        async def scenario():
            h = harness_factory(transport=fake_transport_factory(result=False, values="bad"))
            await h.bridge.connect("localhost:9090")
            with pytest.raises(RequestError):
                await h.bridge.channels.move_joint.call({})
            return h

        h = run(scenario())
        assert h.bridge.state is ConnectionState.CONNECTED

    def test_disconnect_fails_pending_call_and_late_response_is_inert(
        self, harness_factory, fake_transport_factory
    ):
        async def scenario():
            transport = fake_transport_factory(auto_respond=False)
            h = harness_factory(transport=transport)
            await h.bridge.connect("localhost:9090")
            call = asyncio.create_task(h.bridge.channels.move_joint.call({}))
            await h.settle()
            call_id = transport.frames("call_service")[0]["id"]

            await h.bridge.disconnect()
            with pytest.raises(RequestError):
                await call

            # A response arriving after reconnect for the old call changes nothing
            transport.closed = False
            transport._incoming = asyncio.Queue()
            await h.bridge.connect("localhost:9090")
            transport.push({"op": "service_response", "id": call_id, "values": {}, "result": True})
            await h.settle()
            return h

        h = run(scenario())
        assert h.bridge.state is ConnectionState.CONNECTED
        assert h.bridge.get_stats()["pending_calls"] == 0

    def test_invalid_frames_are_ignored(self, harness_factory):
        async def scenario():
            h = harness_factory()
            await h.bridge.connect("localhost:9090")
            h.transport._incoming.put_nowait("not json")
            h.transport.push({"op": "status", "level": "error", "msg": "boom"})
            h.transport.push({"op": "publish", "topic": "/other", "msg": {"data": "x"}})
            await h.settle()
            return h

        h = run(scenario())
        assert h.bridge.state is ConnectionState.CONNECTED
