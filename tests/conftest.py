"""Shared pytest fixtures for bhyve-argv tests.

Host collaborators are replaced by in-memory fakes that record every call,
so tests can assert exactly which side effects a build committed and which
ones it released again.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from bhyve_argv.capabilities import ALL_CAPABILITIES, BhyveCapability
from bhyve_argv.exceptions import HostResourceError
from bhyve_argv.host_resources import HostServices
from bhyve_argv.models import Disk, VmConfig
from bhyve_argv.port_allocator import PortPool
from bhyve_argv.settings import Settings
from bhyve_argv.storage import StoragePoolResolver


class FakeTapProvisioner:
    """Records tap operations; hands out tapN devices renamed to vnetN."""

    def __init__(self, *, fail_on_create: int | None = None) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.live: set[str] = set()
        self._fail_on_create = fail_on_create
        self._created = 0

    def create_tap(self, bridge: str, vm_identity: str, name_pattern: str) -> str:
        self.calls.append(("create_tap", bridge, vm_identity, name_pattern))
        if self._fail_on_create is not None and self._created == self._fail_on_create:
            raise HostResourceError(f"Bridge '{bridge}' does not exist")
        ifname = name_pattern.replace("%d", str(self._created))
        self._created += 1
        self.live.add(ifname)
        return ifname

    def resolve_real_name(self, ifname: str) -> str:
        self.calls.append(("resolve_real_name", ifname))
        return f"tap{ifname.removeprefix('vnet')}" if ifname.startswith("vnet") else ifname

    def set_interface_up(self, ifname: str) -> None:
        self.calls.append(("set_interface_up", ifname))

    def destroy_tap(self, ifname: str) -> None:
        self.calls.append(("destroy_tap", ifname))
        self.live.discard(ifname)


class RecordingSourceResolver(StoragePoolResolver):
    def __init__(self, pools: dict[str, Path] | None = None) -> None:
        super().__init__(pools)
        self.resolved: list[Disk] = []

    def resolve_source(self, disk: Disk) -> str | None:
        self.resolved.append(disk)
        return super().resolve_source(disk)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        bhyve_bin=Path("/usr/sbin/bhyve"),
        bhyvectl_bin=Path("/usr/sbin/bhyvectl"),
        bhyveload_bin=Path("/usr/sbin/bhyveload"),
        state_dir=tmp_path / "state",
        storage_pools={"default": Path("/vm/pool")},
    )


@pytest.fixture
def taps() -> FakeTapProvisioner:
    return FakeTapProvisioner()


@pytest.fixture
def ports() -> PortPool:
    return PortPool(5900, 5910, probe_host=False)


@pytest.fixture
def sources() -> RecordingSourceResolver:
    return RecordingSourceResolver({"default": Path("/vm/pool")})


@pytest.fixture
def host(taps: FakeTapProvisioner, ports: PortPool, sources: RecordingSourceResolver) -> HostServices:
    return HostServices(taps=taps, ports=ports, sources=sources)


@pytest.fixture
def all_caps() -> BhyveCapability:
    return ALL_CAPABILITIES


def make_config(**overrides: Any) -> VmConfig:
    """Minimal valid VM: 1 vCPU, 256 MiB, no devices."""
    data: dict[str, Any] = {"name": "vm0", "vcpus": 1, "memory_kib": 256 * 1024}
    data.update(overrides)
    return VmConfig.model_validate(data)


def virtio_disk(slot: int, source: str = "/vm/disk0.img", **extra: Any) -> dict[str, Any]:
    return {"bus": "virtio", "device": "disk", "source": source, "address": {"slot": slot}, **extra}


def sata_disk(source: str | None, device: str = "disk", controller: int = 0, **extra: Any) -> dict[str, Any]:
    return {"bus": "sata", "device": device, "source": source, "drive": {"controller": controller}, **extra}


def bridge_nic(slot: int, mac: str = "52:54:00:00:00:01", **extra: Any) -> dict[str, Any]:
    return {"type": "bridge", "bridge": "bridge0", "model": "virtio", "mac": mac, "address": {"slot": slot}, **extra}


def vnc_graphics(**extra: Any) -> dict[str, Any]:
    return {"type": "vnc", "autoport": True, "listens": [{"type": "address", "address": "127.0.0.1"}], **extra}
