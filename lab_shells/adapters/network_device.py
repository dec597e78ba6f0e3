"""Direct SSH sessions to network devices using AsyncSSH.

Lab network OSes differ in what they accept: some only advertise password,
others only keyboard-interactive with one or more prompts. The client below
offers the fixed lab credential through both.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import asyncssh

from ..errors import AdapterRuntimeError, ConnectError, ConnectReason
from ..handshake import HandshakeRequest, TargetKind
from .base import BackendAdapter, ExitInfo

logger = logging.getLogger(__name__)

PREFERRED_AUTH: Tuple[str, ...] = ("password", "keyboard-interactive")


class DeviceAuthClient(asyncssh.SSHClient):
    """Answers password and keyboard-interactive auth with one credential."""

    def __init__(self, target: str, password: str) -> None:
        self._target = target
        self._password = password
        self.password_attempts = 0
        self.kbdint_rounds = 0

    def connection_made(self, conn: asyncssh.SSHClientConnection) -> None:
        logger.debug("SSH transport to %s established", self._target)

    def auth_banner_received(self, msg: str, lang: str) -> None:
        logger.debug("SSH banner from %s: %s", self._target, msg.strip())

    def password_auth_requested(self) -> Optional[str]:
        # One try only; returning None moves negotiation on to the next method.
        if self.password_attempts:
            return None
        self.password_attempts += 1
        logger.debug("Password authentication requested by %s", self._target)
        return self._password

    def kbdint_auth_requested(self) -> Optional[str]:
        # Empty submethods string lets the server pick.
        return ""

    def kbdint_challenge_received(
        self,
        name: str,
        instructions: str,
        lang: str,
        prompts: Sequence[Tuple[str, bool]],
    ) -> Optional[List[str]]:
        self.kbdint_rounds += 1
        logger.debug("Keyboard-interactive round %d from %s (%d prompts)", self.kbdint_rounds, self._target, len(prompts))
        return [self._password for _ in prompts]

    def auth_completed(self) -> None:
        logger.info("SSH authentication to %s succeeded", self._target)


class NetworkDeviceSshAdapter(BackendAdapter):
    """Shell channel on a network device's SSH server."""

    kind = TargetKind.NETWORK_DEVICE_SSH
    READ_CHUNK = 4096

    def __init__(self, target, config) -> None:
        super().__init__(target, config)
        self.client: Optional[DeviceAuthClient] = None
        self._conn: Optional[asyncssh.SSHClientConnection] = None
        self._process: Optional[asyncssh.SSHClientProcess] = None
        self._reader: Optional[asyncio.Task] = None

    def _client_factory(self) -> DeviceAuthClient:
        self.client = DeviceAuthClient(self.target, self.config.device_password)
        return self.client

    async def _open(self, request: HandshakeRequest) -> None:
        self._conn = await asyncssh.connect(
            self.target,
            port=self.config.device_port,
            username=self.config.device_username,
            client_factory=self._client_factory,
            known_hosts=None,
            preferred_auth=",".join(PREFERRED_AUTH),
            client_keys=None,
            agent_path=None,
        )
        self._process = await self._conn.create_process(
            term_type=self.config.term_type,
            term_size=(request.columns, request.rows),
            encoding=None,
            stderr=asyncssh.STDOUT,
        )

    async def _start(self, request: HandshakeRequest) -> None:
        logger.info("Attempting SSH connection to %s:%s", self.target, self.config.device_port)
        try:
            await asyncio.wait_for(self._open(request), timeout=self.config.connect_timeout)
        except asyncio.TimeoutError as exc:
            await self._release()
            raise ConnectError(ConnectReason.TIMEOUT, "Connection timeout") from exc
        except asyncssh.PermissionDenied as exc:
            await self._release()
            raise ConnectError(ConnectReason.AUTH_FAILED, f"Authentication failed: {exc.reason}") from exc
        except ConnectionRefusedError as exc:
            await self._release()
            raise ConnectError(ConnectReason.REFUSED, f"Connection refused by {self.target}") from exc
        except (asyncssh.Error, OSError) as exc:
            await self._release()
            raise ConnectError(ConnectReason.UNKNOWN, str(exc) or exc.__class__.__name__) from exc

        logger.info("SSH shell to %s ready", self.target)
        self._reader = asyncio.create_task(self._channel_reader())

    async def _channel_reader(self) -> None:
        process = self._process
        try:
            while True:
                data = await process.stdout.read(self.READ_CHUNK)
                if not data:
                    break
                await self._emit_data(data)
            await process.wait_closed()
        except asyncio.CancelledError:
            raise
        except (asyncssh.Error, OSError) as exc:
            if not self.stopped:
                await self._emit_error(AdapterRuntimeError(f"SSH channel failed: {exc}"))
            return

        if self.stopped:
            return
        logger.info("SSH stream to %s closed", self.target)
        # Device shells give no usable exit status; a close is a clean exit.
        await self._emit_exit(ExitInfo())

    async def _write(self, data: bytes) -> None:
        process = self._process
        if process is None:
            raise AdapterRuntimeError("SSH channel is not open")
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (asyncssh.Error, OSError) as exc:
            raise AdapterRuntimeError(f"SSH write failed: {exc}") from exc

    async def _resize(self, columns: int, rows: int) -> None:
        if self._process is None:
            return
        try:
            self._process.change_terminal_size(columns, rows)
        except (asyncssh.Error, OSError) as exc:
            logger.debug("Resize of %s failed: %s", self.target, exc)

    async def _release(self) -> None:
        process, conn = self._process, self._conn
        self._process = None
        self._conn = None
        if process is not None:
            process.close()
        if conn is not None:
            conn.close()
            try:
                await asyncio.wait_for(conn.wait_closed(), timeout=self.config.stop_grace_period)
            except (asyncio.TimeoutError, asyncssh.Error, OSError):
                pass

    async def _stop(self) -> None:
        if self._reader and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        await self._release()

    def describe(self) -> Dict[str, Any]:
        payload = super().describe()
        payload["port"] = self.config.device_port
        payload["username"] = self.config.device_username
        if self.client is not None:
            payload["password_attempts"] = self.client.password_attempts
            payload["kbdint_rounds"] = self.client.kbdint_rounds
        return payload
