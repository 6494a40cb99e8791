"""Display (VNC) port allocation.

The pool is shared by every build in the process, so it serializes access
with its own lock; builders never lock anything themselves.
"""

from __future__ import annotations

import socket
import threading
from typing import Protocol, runtime_checkable

from bhyve_argv import constants
from bhyve_argv._logging import get_logger
from bhyve_argv.exceptions import HostResourceError

logger = get_logger(__name__)


@runtime_checkable
class PortAllocator(Protocol):
    """Hands out display ports, one owner per port."""

    def acquire(self) -> int: ...

    def mark_used(self, port: int) -> None: ...

    def release(self, port: int) -> None: ...


def _port_is_bindable(port: int, host: str) -> bool:
    """Check whether a TCP port is currently free on the host."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        s.bind((host, port))
    except OSError:
        return False
    finally:
        s.close()
    return True


class PortPool:
    """Thread-safe allocator over an inclusive port range.

    Args:
        start: First port of the range.
        end: Last port of the range (inclusive).
        host: Address used to probe whether a port is free on the host.
        probe_host: When False, skip the bind probe and trust the pool's own
            bookkeeping only.
    """

    def __init__(
        self,
        start: int = constants.VNC_PORT_MIN,
        end: int = constants.VNC_PORT_MAX,
        *,
        host: str = "127.0.0.1",
        probe_host: bool = True,
    ) -> None:
        if start > end:
            raise ValueError(f"Empty port range: {start}-{end}")
        self.start = start
        self.end = end
        self._host = host
        self._probe_host = probe_host
        self._used: set[int] = set()
        self._lock = threading.Lock()

    def acquire(self) -> int:
        """Reserve the lowest free port.

        Raises:
            HostResourceError: No free port left in the range
        """
        with self._lock:
            for port in range(self.start, self.end + 1):
                if port in self._used:
                    continue
                if self._probe_host and not _port_is_bindable(port, self._host):
                    continue
                self._used.add(port)
                logger.debug("Acquired port", extra={"port": port})
                return port
        raise HostResourceError(
            f"Unable to find an unused port in range {self.start}-{self.end}",
            context={"start": self.start, "end": self.end},
        )

    def mark_used(self, port: int) -> None:
        """Record a caller-chosen port as taken.

        Raises:
            HostResourceError: Port already taken in this pool
        """
        with self._lock:
            if port in self._used:
                raise HostResourceError(f"Port {port} is already in use", context={"port": port})
            self._used.add(port)
        logger.debug("Marked port as used", extra={"port": port})

    def release(self, port: int) -> None:
        with self._lock:
            self._used.discard(port)
        logger.debug("Released port", extra={"port": port})

    def in_use(self, port: int) -> bool:
        with self._lock:
            return port in self._used
