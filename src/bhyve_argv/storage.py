"""Disk source resolution.

Volume-backed disks name a (pool, volume) pair instead of a path; the
resolver turns either kind into the path bhyve should open.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from bhyve_argv._logging import get_logger
from bhyve_argv.exceptions import InternalInconsistencyError, UnsupportedConfigurationError
from bhyve_argv.models import Disk
from bhyve_argv.vm_types import StorageType

logger = get_logger(__name__)

USABLE_STORAGE_TYPES: frozenset[StorageType] = frozenset({StorageType.FILE, StorageType.VOLUME})
"""Storage backings bhyve can open as a disk image."""


@runtime_checkable
class SourceResolver(Protocol):
    """Resolves the host path backing a disk (None when it has none)."""

    def resolve_source(self, disk: Disk) -> str | None: ...


class StoragePoolResolver:
    """Resolve file disks to their path and volume disks through pool directories.

    Args:
        pools: Storage pool name -> directory containing the pool's volumes.
    """

    def __init__(self, pools: Mapping[str, Path] | None = None) -> None:
        self._pools = dict(pools or {})

    def resolve_source(self, disk: Disk) -> str | None:
        if disk.storage_type != StorageType.VOLUME:
            return disk.source

        if disk.volume is None:
            raise InternalInconsistencyError(
                "Volume disk without volume source",
                context={"disk": disk.model_dump(mode="json")},
            )

        pool_dir = self._pools.get(disk.volume.pool)
        if pool_dir is None:
            raise UnsupportedConfigurationError(
                f"Storage pool '{disk.volume.pool}' not found",
                context={"pool": disk.volume.pool, "known_pools": sorted(self._pools)},
            )

        path = str(pool_dir / disk.volume.volume)
        logger.debug(
            "Resolved volume source",
            extra={"pool": disk.volume.pool, "volume": disk.volume.volume, "path": path},
        )
        return path
