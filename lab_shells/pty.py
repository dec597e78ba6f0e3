from dataclasses import dataclass, field
import asyncio
import fcntl
import os
import struct
import termios
from typing import List, Optional

import psutil


@dataclass
class PTYState:
    master_fd: int
    process: asyncio.subprocess.Process
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    reader: Optional[asyncio.Task] = None
    closed: bool = False


def set_winsize(fd: int, columns: int, rows: int) -> None:
    winsz = struct.pack("HHHH", max(1, rows), max(1, columns), 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsz)


def acquire_controlling_tty() -> None:
    """preexec hook: new session with the PTY slave (fd 0) as controlling tty.

    ssh and `docker exec -t` both need a real controlling terminal to switch
    the line discipline to raw mode and to receive SIGWINCH on resize.
    """
    os.setsid()
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


def close_fd(fd: Optional[int]) -> None:
    if fd is None:
        return
    try:
        os.close(fd)
    except OSError:
        pass


def signal_group(pid: int, sig: int) -> None:
    # The child called setsid(), so its pid is also its process group id.
    try:
        os.killpg(pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError:
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            pass


def descendants(pid: int) -> List[psutil.Process]:
    try:
        return psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


def reap_stragglers(procs: List[psutil.Process], timeout: float) -> None:
    """Terminate, then kill, processes that outlived their session leader."""
    alive: List[psutil.Process] = []
    for proc in procs:
        try:
            if proc.is_running():
                proc.terminate()
                alive.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    if not alive:
        return
    _, still_alive = psutil.wait_procs(alive, timeout=timeout)
    for proc in still_alive:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue


def process_stats(pid: Optional[int]) -> dict:
    stats: dict = {"alive": False}
    if not pid:
        return stats
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            stats["alive"] = proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
            stats["cpu_percent"] = proc.cpu_percent(interval=0.0)
            stats["memory_rss"] = proc.memory_info().rss
            stats["num_threads"] = proc.num_threads()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        pass
    return stats
