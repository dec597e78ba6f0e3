from __future__ import annotations

import asyncio
import logging
import os
import select
import signal
import subprocess
from abc import abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import AdapterRuntimeError, ConnectError, ConnectReason
from ..handshake import HandshakeRequest
from ..pty import (
    PTYState,
    acquire_controlling_tty,
    close_fd,
    descendants,
    process_stats,
    reap_stragglers,
    set_winsize,
    signal_group,
)
from .base import BackendAdapter, ExitInfo

logger = logging.getLogger(__name__)

HOME_DIR = Path(os.path.expanduser("~"))


class PtyProcessAdapter(BackendAdapter):
    """Adapter that runs a local command on a fresh pseudo-terminal."""

    READ_CHUNK = 4096
    SELECT_TIMEOUT = 0.5
    DRAIN_LIMIT = 64

    def __init__(self, target, config) -> None:
        super().__init__(target, config)
        self._state: Optional[PTYState] = None
        self.command: List[str] = []

    @abstractmethod
    def build_command(self, request: HandshakeRequest) -> List[str]: ...

    @property
    def pid(self) -> Optional[int]:
        return self._state.process.pid if self._state else None

    def _prepare_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env["TERM"] = self.config.term_type
        return env

    async def _start(self, request: HandshakeRequest) -> None:
        self.command = self.build_command(request)
        master_fd, slave_fd = await asyncio.to_thread(os.openpty)
        try:
            set_winsize(slave_fd, request.columns, request.rows)
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=str(HOME_DIR),
                env=self._prepare_env(),
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                preexec_fn=acquire_controlling_tty,
            )
        except FileNotFoundError as exc:
            close_fd(master_fd)
            raise ConnectError(ConnectReason.UNKNOWN, f"{self.command[0]} not found") from exc
        except OSError as exc:
            close_fd(master_fd)
            raise ConnectError(ConnectReason.UNKNOWN, f"Failed to spawn {self.command[0]}: {exc}") from exc
        except subprocess.SubprocessError as exc:
            # preexec_fn failed in the child, e.g. the PTY could not become its controlling tty
            close_fd(master_fd)
            raise ConnectError(ConnectReason.UNKNOWN, f"Failed to spawn {self.command[0]}: {exc}") from exc
        finally:
            close_fd(slave_fd)

        logger.info("Spawned %s for %s (pid=%s)", self.command[0], self.target, proc.pid)
        self._state = PTYState(master_fd=master_fd, process=proc)
        self._state.reader = asyncio.create_task(self._pty_reader(self._state))

    async def _pty_reader(self, state: PTYState) -> None:
        loop = asyncio.get_running_loop()
        try:
            while not state.stop.is_set():
                if state.process.returncode is not None:
                    # Leader is gone; a descendant may still hold the slave open.
                    await self._drain(state)
                    break
                rlist, _, _ = await loop.run_in_executor(
                    None,
                    select.select,
                    [state.master_fd],
                    [],
                    [],
                    self.SELECT_TIMEOUT,
                )
                if not rlist:
                    continue
                try:
                    data = os.read(state.master_fd, self.READ_CHUNK)
                except OSError:
                    # EIO: every slave handle is closed, the process is gone
                    break
                if not data:
                    break
                await self._emit_data(data)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self.stopped:
                await self._emit_error(AdapterRuntimeError(f"PTY read failed: {exc}"))
            return

        if state.stop.is_set():
            return
        returncode = await state.process.wait()
        if returncode is not None and returncode < 0:
            info = ExitInfo(exit_code=None, signal=-returncode)
        else:
            info = ExitInfo(exit_code=returncode, signal=None)
        logger.info(
            "%s for %s exited with code %s and signal %s",
            self.command[0], self.target, info.exit_code, info.signal,
        )
        await self._emit_exit(info)

    async def _drain(self, state: PTYState) -> None:
        """Forward output still buffered on the master without blocking."""
        for _ in range(self.DRAIN_LIMIT):
            rlist, _, _ = select.select([state.master_fd], [], [], 0)
            if not rlist:
                return
            try:
                data = os.read(state.master_fd, self.READ_CHUNK)
            except OSError:
                return
            if not data:
                return
            await self._emit_data(data)

    async def _write(self, data: bytes) -> None:
        state = self._state
        if state is None or state.closed:
            raise AdapterRuntimeError("PTY is not open")
        view = memoryview(data)
        try:
            while view:
                written = await asyncio.to_thread(os.write, state.master_fd, view)
                view = view[written:]
        except OSError as exc:
            raise AdapterRuntimeError(f"PTY write failed: {exc}") from exc

    async def _resize(self, columns: int, rows: int) -> None:
        state = self._state
        if state is None or state.closed:
            return
        try:
            await asyncio.to_thread(set_winsize, state.master_fd, columns, rows)
        except OSError as exc:
            logger.debug("Resize of %s failed: %s", self.target, exc)

    async def _stop(self) -> None:
        state = self._state
        if state is None:
            return
        state.stop.set()
        if state.reader and not state.reader.done():
            state.reader.cancel()
            try:
                await state.reader
            except asyncio.CancelledError:
                pass
        await self._terminate(state.process)
        if not state.closed:
            state.closed = True
            close_fd(state.master_fd)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        grace = self.config.stop_grace_period
        if proc.returncode is not None:
            # Leader already exited; clear anything left in its process group.
            signal_group(proc.pid, signal.SIGTERM)
            signal_group(proc.pid, signal.SIGKILL)
            return
        children = await asyncio.to_thread(descendants, proc.pid)
        signal_group(proc.pid, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=grace)
        except asyncio.TimeoutError:
            signal_group(proc.pid, signal.SIGKILL)
            await proc.wait()
        await asyncio.to_thread(reap_stragglers, children, grace)

    def describe(self) -> Dict[str, Any]:
        payload = super().describe()
        payload["command"] = list(self.command)
        payload["stats"] = process_stats(self.pid)
        return payload
