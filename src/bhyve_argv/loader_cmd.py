"""Loader stage: boot disk selection and loader command builders.

Guests that don't boot from UEFI firmware need their kernel loaded into
guest memory by a separate process before bhyve starts:

    bhyveload -m 256 -d /vm/disk.img vm0
    grub-bhyve --root hd0,msdos1 --device-map /run/.../device.map --memory 256 vm0
    /usr/local/bin/custom-loader <bootloader_args...>

The loader process must exit successfully before the bhyve command runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from bhyve_argv import constants
from bhyve_argv._logging import get_logger
from bhyve_argv.capabilities import BhyveCapability
from bhyve_argv.command import BuiltCommand
from bhyve_argv.devices import nmdm_path
from bhyve_argv.exceptions import UnsupportedConfigurationError
from bhyve_argv.models import Disk, VmConfig
from bhyve_argv.settings import Settings
from bhyve_argv.storage import USABLE_STORAGE_TYPES, SourceResolver
from bhyve_argv.vm_types import BootDevice, DiskDevice

logger = get_logger(__name__)

_BOOT_DEVICE_KINDS: dict[BootDevice, DiskDevice] = {
    BootDevice.HD: DiskDevice.DISK,
    BootDevice.CDROM: DiskDevice.CDROM,
}


@dataclass(frozen=True)
class LoaderPlan:
    """Result of boot resolution.

    Attributes:
        command: Loader command, or None when bhyve boots from firmware itself
        device_map: grub device.map contents to write before running the
            loader (grub-bhyve only)
        device_map_path: Where the loader expects the device map
        boot_disk: Disk the loader boots from, when one was selected
    """

    command: BuiltCommand | None
    device_map: str | None = None
    device_map_path: Path | None = None
    boot_disk: Disk | None = None


def split_bootloader_args(raw: str) -> list[str]:
    """Split a bootloader argument string on whitespace.

    Quoting is not interpreted: `-a "b c"` yields ['-a', '"b', 'c"'].
    """
    return raw.split()


def is_usable_boot_disk(disk: Disk) -> bool:
    return disk.storage_type in USABLE_STORAGE_TYPES and disk.device in (DiskDevice.DISK, DiskDevice.CDROM)


def select_boot_disk(config: VmConfig) -> Disk:
    """Pick the disk the loader boots from.

    Resolution order:
      1. A single top-level boot device type: first usable disk of that kind.
      2. The one usable disk carrying a boot index.
      3. The first usable disk.

    bhyve has no boot priorities, so at most one usable disk may carry a
    boot index.

    Raises:
        UnsupportedConfigurationError: No usable disk, more than one boot
            device or boot index, or an unbootable boot device type
    """
    if not config.disks:
        raise UnsupportedConfigurationError("Domain should have at least one disk defined")

    boot_devices = config.os.boot_devices
    if len(boot_devices) > 1:
        raise UnsupportedConfigurationError(
            "Only one boot device is supported", context={"boot_devices": [b.value for b in boot_devices]}
        )

    usable: list[Disk] = []
    for disk in config.disks:
        if is_usable_boot_disk(disk):
            usable.append(disk)
        else:
            logger.debug(
                "Skipping disk unusable for boot",
                extra={"vm": config.name, "device": disk.device.value, "storage_type": disk.storage_type.value},
            )

    marked = [d for d in usable if d.boot_index is not None]
    if len(marked) > 1:
        raise UnsupportedConfigurationError(
            "Only one boot device is supported",
            context={"boot_indexes": [d.boot_index for d in marked]},
        )

    if boot_devices:
        boot_dev = boot_devices[0]
        kind = _BOOT_DEVICE_KINDS.get(boot_dev)
        if kind is None:
            raise UnsupportedConfigurationError(f"Cannot boot from device {boot_dev.value}")
        for disk in usable:
            if disk.device == kind:
                return disk
        raise UnsupportedConfigurationError(f"Cannot find boot device of requested type {boot_dev.value}")

    if marked:
        return marked[0]
    if usable:
        return usable[0]
    raise UnsupportedConfigurationError("Domain has no disk usable for boot")


def device_map_path(settings: Settings, name: str) -> Path:
    """Default location of a VM's grub device map."""
    return settings.state_dir / constants.DEVICE_MAP_NAME_TEMPLATE.format(name=name)


def write_device_map(path: Path, content: str) -> None:
    """Write the grub device map side file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    logger.debug("Wrote device map", extra={"path": str(path)})


def _custom_loader_cmd(executable: str | Path, config: VmConfig) -> BuiltCommand:
    args = split_bootloader_args(config.os.bootloader_args or "")
    logger.debug("Custom loader with arguments", extra={"vm": config.name, "loader": str(executable)})
    return BuiltCommand.create(executable, args)


def _bhyveload_cmd(settings: Settings, config: VmConfig, boot_source: str) -> BuiltCommand:
    return BuiltCommand.create(
        settings.bhyveload_bin,
        ["-m", str(config.memory_mib), "-d", boot_source, config.name],
    )


def _grub_bhyve_cmd(
    config: VmConfig,
    caps: BhyveCapability,
    boot_disk: Disk,
    map_path: Path,
) -> BuiltCommand:
    root = constants.GRUB_ROOT_CDROM if boot_disk.device == DiskDevice.CDROM else constants.GRUB_ROOT_DISK
    args = ["--root", root, "--device-map", str(map_path), "--memory", str(config.memory_mib)]

    if BhyveCapability.GRUB_CONSDEV in caps and config.serials:
        args.extend(["--cons-dev", nmdm_path(config.serials[0])])

    args.append(config.name)
    return BuiltCommand.create(config.os.bootloader or "", args)


def build_load_cmd(
    settings: Settings,
    config: VmConfig,
    caps: BhyveCapability,
    resolver: SourceResolver,
    *,
    map_path: Path | None = None,
) -> LoaderPlan:
    """Decide how the guest gets its boot image and build the loader command.

    Args:
        settings: Binary paths and state directory
        config: VM configuration
        caps: Capabilities of the target bhyve / grub-bhyve binaries
        resolver: Resolves the boot disk's source path
        map_path: Device map location for grub-bhyve (defaults to the
            state directory)

    Returns:
        LoaderPlan; its command is None when bhyve boots UEFI firmware directly.
        The caller writes plan.device_map (if any) before running the loader.

    Raises:
        UnsupportedConfigurationError: No bootable disk, or a custom loader
            without arguments
    """
    os_config = config.os

    if os_config.bootloader is None and os_config.loader:
        logger.debug("Firmware boot, no loader stage", extra={"vm": config.name, "loader": os_config.loader})
        return LoaderPlan(command=None)

    if os_config.bootloader_args is not None:
        executable = os_config.bootloader or settings.bhyveload_bin
        return LoaderPlan(command=_custom_loader_cmd(executable, config))

    if os_config.bootloader is None:
        boot_disk = select_boot_disk(config)
        source = _boot_source(resolver, boot_disk)
        logger.debug("bhyveload with default arguments", extra={"vm": config.name, "boot_disk": source})
        return LoaderPlan(command=_bhyveload_cmd(settings, config, source), boot_disk=boot_disk)

    if constants.GRUB_BHYVE_MARKER in os_config.bootloader:
        boot_disk = select_boot_disk(config)
        source = _boot_source(resolver, boot_disk)
        device = constants.GRUB_DEVICE_CDROM if boot_disk.device == DiskDevice.CDROM else constants.GRUB_DEVICE_DISK
        path = map_path or device_map_path(settings, config.name)
        logger.debug("grub-bhyve with default arguments", extra={"vm": config.name, "boot_disk": source})
        return LoaderPlan(
            command=_grub_bhyve_cmd(config, caps, boot_disk, path),
            device_map=f"{device} {source}\n",
            device_map_path=path,
            boot_disk=boot_disk,
        )

    raise UnsupportedConfigurationError(
        "Custom loader requires explicit bootloader_args configuration",
        context={"bootloader": os_config.bootloader},
    )


def _boot_source(resolver: SourceResolver, disk: Disk) -> str:
    source = resolver.resolve_source(disk)
    if not source:
        raise UnsupportedConfigurationError(
            "Boot disk has no source path", context={"device": disk.device.value, "bus": disk.bus.value}
        )
    return source
