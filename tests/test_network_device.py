"""Tests for the AsyncSSH network device adapter."""

import asyncio

import asyncssh
import pytest

from lab_shells.adapters.network_device import DeviceAuthClient, NetworkDeviceSshAdapter
from lab_shells.errors import AdapterRuntimeError, ConnectError, ConnectReason
from lab_shells.events import EventType
from lab_shells.handshake import HandshakeRequest
from lab_shells.record import CloseReason
from lab_shells.relay import error_notice
from lab_shells.session import TerminalSession
from tests.mocks.session_mock import MockTransport, handshake, wait_until


def device_request(columns=80, rows=24):
    return HandshakeRequest(
        target_kind="eos",
        target_name="leaf1",
        target_address="10.0.0.5",
        username="lab",
        columns=columns,
        rows=rows,
    )


class FakeStdout:
    def __init__(self):
        self.chunks = asyncio.Queue()

    async def read(self, n):
        item = await self.chunks.get()
        if isinstance(item, BaseException):
            raise item
        return item


class FakeStdin:
    def __init__(self):
        self.data = []

    def write(self, data):
        self.data.append(data)

    async def drain(self):
        pass


class FakeProcess:
    def __init__(self):
        self.stdout = FakeStdout()
        self.stdin = FakeStdin()
        self.sizes = []
        self.closed = False

    def change_terminal_size(self, width, height):
        self.sizes.append((width, height))

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


class FakeConnection:
    def __init__(self, process, hang=False):
        self.process = process
        self.hang = hang
        self.process_kwargs = None
        self.closed = False

    async def create_process(self, **kwargs):
        self.process_kwargs = kwargs
        if self.hang:
            await asyncio.sleep(10)
        return self.process

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


@pytest.fixture
def fake_ssh(monkeypatch):
    """Replace asyncssh.connect with an in-memory connection."""
    state = {"calls": [], "conn": None, "raise": None, "hang": False, "hang_process": False}

    async def connect(host, **kwargs):
        state["calls"].append((host, kwargs))
        if state["hang"]:
            await asyncio.sleep(10)
        if state["raise"] is not None:
            raise state["raise"]
        kwargs["client_factory"]()
        state["conn"] = FakeConnection(FakeProcess(), hang=state["hang_process"])
        return state["conn"]

    monkeypatch.setattr(asyncssh, "connect", connect)
    return state


class TestDeviceAuthClient:
    def test_password_offered_once(self):
        client = DeviceAuthClient("10.0.0.5", "admin")

        assert client.password_auth_requested() == "admin"
        assert client.password_auth_requested() is None
        assert client.password_attempts == 1

    def test_every_prompt_answered(self):
        client = DeviceAuthClient("10.0.0.5", "admin")
        prompts = [("Password: ", False), ("Verification: ", False)]

        assert client.kbdint_auth_requested() == ""
        assert client.kbdint_challenge_received("", "", "", prompts) == ["admin", "admin"]
        assert client.kbdint_challenge_received("", "", "", []) == []
        assert client.kbdint_rounds == 2


class TestConnect:
    """Connection setup and failure classification."""

    @pytest.mark.asyncio
    async def test_connect_parameters(self, fake_ssh, config):
        adapter = NetworkDeviceSshAdapter("10.0.0.5", config)

        await adapter.start(device_request(columns=120, rows=40))

        host, kwargs = fake_ssh["calls"][0]
        assert host == "10.0.0.5"
        assert kwargs["port"] == 22
        assert kwargs["username"] == "admin"
        assert kwargs["known_hosts"] is None
        assert kwargs["preferred_auth"] == "password,keyboard-interactive"
        assert isinstance(adapter.client, DeviceAuthClient)
        assert fake_ssh["conn"].process_kwargs == {
            "term_type": "xterm-256color",
            "term_size": (120, 40),
            "encoding": None,
            "stderr": asyncssh.STDOUT,
        }
        await adapter.stop()

    @pytest.mark.asyncio
    async def test_timeout(self, fake_ssh, config):
        fake_ssh["hang"] = True
        adapter = NetworkDeviceSshAdapter("10.0.0.5", config.replace(connect_timeout=0.05))

        with pytest.raises(ConnectError) as exc:
            await adapter.start(device_request())

        assert exc.value.reason is ConnectReason.TIMEOUT
        assert exc.value.message == "Connection timeout"

    @pytest.mark.asyncio
    async def test_timeout_opening_shell_closes_connection(self, fake_ssh, config):
        fake_ssh["hang_process"] = True
        adapter = NetworkDeviceSshAdapter("10.0.0.5", config.replace(connect_timeout=0.05))

        with pytest.raises(ConnectError) as exc:
            await adapter.start(device_request())

        assert exc.value.reason is ConnectReason.TIMEOUT
        assert fake_ssh["conn"].closed

    @pytest.mark.parametrize(
        "error, reason",
        [
            (asyncssh.PermissionDenied("Permission denied"), ConnectReason.AUTH_FAILED),
            (ConnectionRefusedError(111, "Connection refused"), ConnectReason.REFUSED),
            (OSError("No route to host"), ConnectReason.UNKNOWN),
            (asyncssh.ConnectionLost("Connection lost"), ConnectReason.UNKNOWN),
        ],
    )
    @pytest.mark.asyncio
    async def test_failure_reasons(self, fake_ssh, config, error, reason):
        fake_ssh["raise"] = error
        adapter = NetworkDeviceSshAdapter("10.0.0.5", config)

        with pytest.raises(ConnectError) as exc:
            await adapter.start(device_request())

        assert exc.value.reason is reason

    @pytest.mark.asyncio
    async def test_auth_failure_message(self, fake_ssh, config):
        fake_ssh["raise"] = asyncssh.PermissionDenied("Permission denied")
        adapter = NetworkDeviceSshAdapter("10.0.0.5", config)

        with pytest.raises(ConnectError) as exc:
            await adapter.start(device_request())

        assert exc.value.message == "Authentication failed: Permission denied"


class TestShellChannel:
    """Data flow on an established shell channel."""

    @pytest.mark.asyncio
    async def test_relay_and_exit(self, fake_ssh, config):
        adapter = NetworkDeviceSshAdapter("10.0.0.5", config)
        output, exits = [], []
        adapter.on_data(output.append)
        adapter.on_exit(exits.append)
        await adapter.start(device_request())
        process = fake_ssh["conn"].process

        process.stdout.chunks.put_nowait(b"leaf1>")
        await wait_until(lambda: output)
        await adapter.write(b"show version\r")
        await adapter.resize(100, 30)

        assert output == [b"leaf1>"]
        assert process.stdin.data == [b"show version\r"]
        assert process.sizes == [(100, 30)]

        process.stdout.chunks.put_nowait(b"")
        await wait_until(lambda: exits)
        assert exits[0].exit_code is None
        assert exits[0].signal is None
        assert adapter.dead

    @pytest.mark.asyncio
    async def test_channel_failure(self, fake_ssh, config):
        adapter = NetworkDeviceSshAdapter("10.0.0.5", config)
        errors = []
        adapter.on_error(errors.append)
        await adapter.start(device_request())

        fake_ssh["conn"].process.stdout.chunks.put_nowait(asyncssh.ConnectionLost("reset by peer"))
        await wait_until(lambda: errors)

        assert isinstance(errors[0], AdapterRuntimeError)
        assert "reset by peer" in str(errors[0])

    @pytest.mark.asyncio
    async def test_stop_releases_connection(self, fake_ssh, config):
        adapter = NetworkDeviceSshAdapter("10.0.0.5", config)
        exits = []
        adapter.on_exit(exits.append)
        await adapter.start(device_request())
        conn = fake_ssh["conn"]

        assert await adapter.stop() is True

        assert conn.closed
        assert conn.process.closed
        assert exits == []
        info = adapter.describe()
        assert info["password_attempts"] == 0
        assert info["username"] == "admin"


@pytest.mark.asyncio
async def test_session_times_out_without_activating(fake_ssh, config, event_bus):
    fake_ssh["hang"] = True
    transport = MockTransport(handshake("eos", None, "10.0.0.5"))
    session = TerminalSession(transport, config.replace(connect_timeout=0.05), event_bus=event_bus)
    events = event_bus.subscribe()

    await session.run()

    seen = []
    while not events.empty():
        seen.append(events.get_nowait().type)
    assert EventType.SESSION_ACTIVE not in seen
    assert session.close_reason is CloseReason.CONNECT_FAILED
    assert transport.sent == [error_notice("Connection timeout")]
    assert transport.close_codes == [1011]


@pytest.mark.asyncio
async def test_session_over_device_shell(fake_ssh, config, event_bus):
    transport = MockTransport(handshake("eos", "leaf1", "10.0.0.5"))
    session = TerminalSession(transport, config, event_bus=event_bus)
    task = asyncio.create_task(session.run())
    await wait_until(lambda: fake_ssh["conn"] is not None and session.state.value == "active")
    process = fake_ssh["conn"].process

    process.stdout.chunks.put_nowait(b"leaf1#")
    await wait_until(lambda: transport.sent)
    transport.push("show ip route\r")
    await wait_until(lambda: process.stdin.data)
    process.stdout.chunks.put_nowait(b"")
    await task

    assert transport.sent[0] == "leaf1#"
    assert process.stdin.data == [b"show ip route\r"]
    assert session.close_reason is CloseReason.ADAPTER_EXIT
    assert fake_ssh["conn"].closed
