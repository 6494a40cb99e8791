"""Host-side resources touched while building a command.

HostServices bundles the collaborators a build may call. HostResourceStack
records a release callback for every side effect committed during a build
and unwinds them if the build fails; on success the callbacks are dropped
and the resources belong to whoever runs the VM.

Release callbacks log errors instead of raising, so the error that aborted
the build is the one the caller sees.
"""

from __future__ import annotations

import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Self

from bhyve_argv._logging import get_logger
from bhyve_argv.netdev import TapProvisioner
from bhyve_argv.port_allocator import PortAllocator
from bhyve_argv.storage import SourceResolver

logger = get_logger(__name__)


@dataclass(frozen=True)
class HostServices:
    """Host collaborators used by the command builders."""

    taps: TapProvisioner
    ports: PortAllocator
    sources: SourceResolver


class HostResourceStack:
    """Compensating-action stack scoped to one build.

    Example:
        >>> with HostResourceStack("vm0") as resources:
        ...     ifname = taps.create_tap(bridge, "vm0", pattern)
        ...     resources.push(f"tap {ifname}", taps.destroy_tap, ifname)
        ...     ...  # more steps, any of which may raise
        ...     resources.commit()
    """

    def __init__(self, context_id: str) -> None:
        self._context_id = context_id
        self._stack = contextlib.ExitStack()
        self._committed = False

    def __enter__(self) -> Self:
        self._stack.__enter__()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if exc_type is not None and not self._committed:
            logger.info(
                "Build failed, releasing host resources",
                extra={"context_id": self._context_id, "error": str(exc)},
            )
        return bool(self._stack.__exit__(exc_type, exc, tb))

    def push(self, description: str, release: Callable[..., object], *args: object) -> None:
        """Register the release action for a side effect that just happened."""

        def _release() -> None:
            try:
                release(*args)
            except Exception as e:  # noqa: BLE001
                logger.error(
                    f"Failed to release {description}",
                    extra={"context_id": self._context_id, "error": str(e), "error_type": type(e).__name__},
                )
            else:
                logger.debug(f"Released {description}", extra={"context_id": self._context_id})

        self._stack.callback(_release)

    def commit(self) -> None:
        """Keep every registered resource: nothing is released on exit."""
        self._stack.pop_all()
        self._committed = True
