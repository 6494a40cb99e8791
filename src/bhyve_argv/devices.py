"""Per-device bhyve argument formatters.

Each device category has a formatter class with two steps:

    validate(ctx)  -- checks against the config, capability bitset and disk
                      sources; never creates anything on the host
    format(ctx)    -- emit the argument fragment; may touch the host

The assembler validates every formatter before formatting any of them, so a
configuration error never leaves a tap device or a reserved port behind.
Side effects committed in format() register their release on ctx.resources.

Slot syntax:  -s <slot>:<function>,<emulation>[,<options>]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from bhyve_argv import constants
from bhyve_argv._logging import get_logger
from bhyve_argv.capabilities import BhyveCapability
from bhyve_argv.exceptions import (
    HostResourceError,
    InternalInconsistencyError,
    UnsupportedConfigurationError,
)
from bhyve_argv.host_resources import HostResourceStack, HostServices
from bhyve_argv.models import (
    Audio,
    Controller,
    Disk,
    Graphics,
    GraphicsListen,
    NetInterface,
    PciAddress,
    Serial,
    Sound,
    Video,
    VmConfig,
)
from bhyve_argv.netdev import tap_name_pattern
from bhyve_argv.storage import USABLE_STORAGE_TYPES
from bhyve_argv.vm_types import (
    AudioType,
    ChrType,
    ControllerModel,
    ControllerType,
    DiskBus,
    DiskDevice,
    GraphicsType,
    InputBus,
    InputType,
    ListenType,
    NetModel,
    NetType,
    SoundModel,
)

logger = get_logger(__name__)


@dataclass
class BuildContext:
    """State threaded through every formatter of one build."""

    config: VmConfig
    caps: BhyveCapability
    host: HostServices
    resources: HostResourceStack
    dry_run: bool = False
    resolved_ifnames: list[str] = field(default_factory=list)
    resolved_ports: list[int] = field(default_factory=list)
    disk_sources: dict[int, str] = field(default_factory=dict)
    """Disk source paths resolved during validation, keyed by id(disk)."""


class DeviceFormatter(Protocol):
    def validate(self, ctx: BuildContext) -> None: ...

    def format(self, ctx: BuildContext) -> list[str]: ...


def require_capability(caps: BhyveCapability, cap: BhyveCapability, reason: str) -> None:
    """Raise UnsupportedConfigurationError unless `cap` is in `caps`."""
    if cap not in caps:
        raise UnsupportedConfigurationError(reason, context={"capability": cap.name})


def require_address(address: PciAddress | None, device: str) -> PciAddress:
    if address is None:
        raise InternalInconsistencyError(f"{device} has no PCI address", context={"device": device})
    return address


def slot_arg(address: PciAddress, emulation: str) -> list[str]:
    return ["-s", f"{address},{emulation}"]


def check_disk_backing(disk: Disk) -> None:
    """Only plain files and managed volumes can back a bhyve disk."""
    if disk.storage_type not in USABLE_STORAGE_TYPES:
        raise UnsupportedConfigurationError(
            "unsupported disk type",
            context={"storage_type": disk.storage_type.value, "source": disk.source},
        )


def resolve_disk_source(ctx: BuildContext, disk: Disk) -> str:
    """Resolve a disk's source path once per build.

    Called from validate() so a missing source or an unknown pool fails the
    build before any host resource exists; format() gets the cached path.
    """
    if (cached := ctx.disk_sources.get(id(disk))) is not None:
        return cached

    source = ctx.host.sources.resolve_source(disk)
    if not source:
        if disk.device == DiskDevice.CDROM:
            raise UnsupportedConfigurationError("cdrom device without source path not supported")
        raise UnsupportedConfigurationError("disk device without source path not supported")
    ctx.disk_sources[id(disk)] = source
    return source


# ============================================================================
# Controllers
# ============================================================================


@dataclass(frozen=True)
class PciRootFormatter:
    controller: Controller

    def validate(self, ctx: BuildContext) -> None:
        if self.controller.model not in (None, ControllerModel.PCI_ROOT):
            raise UnsupportedConfigurationError(
                "unsupported PCI controller model: only PCI root supported",
                context={"model": self.controller.model.value},
            )

    def format(self, ctx: BuildContext) -> list[str]:
        return []


@dataclass(frozen=True)
class AhciFormatter:
    """SATA controller with every SATA disk bound to its index."""

    controller: Controller

    def _disks(self, ctx: BuildContext) -> list[Disk]:
        return [
            d
            for d in ctx.config.disks
            if d.bus == DiskBus.SATA and d.drive.controller == self.controller.index
        ]

    def validate(self, ctx: BuildContext) -> None:
        require_address(self.controller.address, f"sata controller {self.controller.index}")
        for disk in self._disks(ctx):
            check_disk_backing(disk)
            if disk.device not in (DiskDevice.DISK, DiskDevice.CDROM):
                raise UnsupportedConfigurationError(
                    "unsupported disk device", context={"device": disk.device.value}
                )
            resolve_disk_source(ctx, disk)

    def format(self, ctx: BuildContext) -> list[str]:
        address = require_address(self.controller.address, f"sata controller {self.controller.index}")
        slots32 = BhyveCapability.AHCI32SLOT in ctx.caps
        fragments: list[str] = []
        for disk in self._disks(ctx):
            source = resolve_disk_source(ctx, disk)
            kind = "hd" if disk.device == DiskDevice.DISK else "cd"
            logger.debug(
                "AHCI disk",
                extra={"vm": ctx.config.name, "controller": self.controller.index, "source": source, "kind": kind},
            )
            fragments.append(f",{kind}:{source}" if slots32 else f"-{kind},{source}")
        return slot_arg(address, "ahci" + "".join(fragments))


@dataclass(frozen=True)
class UsbFormatter:
    """xhci controller; bhyve only emulates a single USB tablet behind it."""

    controller: Controller

    def validate(self, ctx: BuildContext) -> None:
        require_address(self.controller.address, "usb controller")
        for device in ctx.config.inputs:
            if device.bus != InputBus.USB:
                raise UnsupportedConfigurationError("only USB input devices are supported")
            if device.type != InputType.TABLET:
                raise UnsupportedConfigurationError("only tablet input devices are supported")
        if len(ctx.config.inputs) != 1:
            raise UnsupportedConfigurationError(
                "only single input device is supported", context={"inputs": len(ctx.config.inputs)}
            )

    def format(self, ctx: BuildContext) -> list[str]:
        return slot_arg(require_address(self.controller.address, "usb controller"), "xhci,tablet")


@dataclass(frozen=True)
class LpcFormatter:
    controller: Controller

    def validate(self, ctx: BuildContext) -> None:
        require_address(self.controller.address, "isa controller")

    def format(self, ctx: BuildContext) -> list[str]:
        return slot_arg(require_address(self.controller.address, "isa controller"), "lpc")


def controller_formatter(controller: Controller) -> DeviceFormatter:
    match controller.type:
        case ControllerType.PCI:
            return PciRootFormatter(controller)
        case ControllerType.SATA:
            return AhciFormatter(controller)
        case ControllerType.USB:
            return UsbFormatter(controller)
        case ControllerType.ISA:
            return LpcFormatter(controller)
        case _:
            raise UnsupportedConfigurationError(
                f"unsupported controller type '{controller.type.value}'",
                context={"index": controller.index},
            )


# ============================================================================
# Disks
# ============================================================================


@dataclass(frozen=True)
class SataDiskFormatter:
    """SATA disks are emitted by their AHCI controller; only check the binding."""

    disk: Disk

    def validate(self, ctx: BuildContext) -> None:
        indexes = {c.index for c in ctx.config.controllers if c.type == ControllerType.SATA}
        if self.disk.drive.controller not in indexes:
            raise InternalInconsistencyError(
                f"SATA disk references missing controller {self.disk.drive.controller}",
                context={"source": self.disk.source, "controllers": sorted(indexes)},
            )

    def format(self, ctx: BuildContext) -> list[str]:
        return []


@dataclass(frozen=True)
class VirtioDiskFormatter:
    disk: Disk

    def validate(self, ctx: BuildContext) -> None:
        if self.disk.device != DiskDevice.DISK:
            raise UnsupportedConfigurationError(
                "unsupported disk device", context={"device": self.disk.device.value, "bus": "virtio"}
            )
        check_disk_backing(self.disk)
        require_address(self.disk.address, "virtio disk")
        resolve_disk_source(ctx, self.disk)

    def format(self, ctx: BuildContext) -> list[str]:
        address = require_address(self.disk.address, "virtio disk")
        return slot_arg(address, f"virtio-blk,{resolve_disk_source(ctx, self.disk)}")


def disk_formatter(disk: Disk) -> DeviceFormatter:
    match disk.bus:
        case DiskBus.SATA:
            return SataDiskFormatter(disk)
        case DiskBus.VIRTIO:
            return VirtioDiskFormatter(disk)
        case _:
            raise UnsupportedConfigurationError(
                "unsupported disk device", context={"bus": disk.bus.value, "source": disk.source}
            )


# ============================================================================
# Network
# ============================================================================

_NIC_EMULATION: dict[NetModel, str] = {
    NetModel.VIRTIO: "virtio-net",
    NetModel.E1000: "e1000",
}


@dataclass(frozen=True)
class NetFormatter:
    """Bridged NIC. Creates the tap device unless this is a dry run."""

    net: NetInterface

    def validate(self, ctx: BuildContext) -> None:
        if self.net.model not in _NIC_EMULATION:
            raise UnsupportedConfigurationError("NIC model is not supported", context={"model": self.net.model.value})
        if self.net.model == NetModel.E1000:
            require_capability(
                ctx.caps, BhyveCapability.NET_E1000, "NIC model 'e1000' is not supported by given bhyve binary"
            )
        if self.net.type != NetType.BRIDGE:
            raise UnsupportedConfigurationError(
                f"Network type '{self.net.type.value}' is not supported", context={"mac": self.net.mac}
            )
        if not self.net.bridge:
            raise InternalInconsistencyError("Bridge interface without bridge name", context={"mac": self.net.mac})
        require_address(self.net.address, f"network interface {self.net.mac}")

    def _provision(self, ctx: BuildContext) -> str:
        taps = ctx.host.taps
        ifname = taps.create_tap(self.net.bridge or "", ctx.config.identity, tap_name_pattern(self.net.ifname))
        ctx.resources.push(f"tap {ifname}", taps.destroy_tap, ifname)

        real_ifname = taps.resolve_real_name(ifname)
        logger.debug(f"{ifname} -> {real_ifname}", extra={"vm": ctx.config.name})
        # Reopening the device to read its name drops the interface, so bring it up again.
        taps.set_interface_up(ifname)
        return real_ifname

    def format(self, ctx: BuildContext) -> list[str]:
        address = require_address(self.net.address, f"network interface {self.net.mac}")
        ifname = constants.DRY_RUN_TAP_NAME if ctx.dry_run else self._provision(ctx)
        ctx.resolved_ifnames.append(ifname)
        return slot_arg(address, f"{_NIC_EMULATION[self.net.model]},{ifname},mac={self.net.mac}")


# ============================================================================
# Graphics
# ============================================================================


@dataclass(frozen=True)
class GraphicsFormatter:
    """VNC framebuffer (fbuf) device; needs UEFI boot."""

    graphics: Graphics
    video: Video

    def _listen(self) -> GraphicsListen:
        if not self.graphics.listens:
            raise InternalInconsistencyError("Missing listen element")
        return self.graphics.listens[0]

    def _fixed_port(self) -> int:
        if self.graphics.port is None:
            raise InternalInconsistencyError("VNC port missing and autoport disabled")
        return self.graphics.port

    def validate(self, ctx: BuildContext) -> None:
        os_config = ctx.config.os
        if BhyveCapability.LPC_BOOTROM not in ctx.caps or os_config.bootloader or not os_config.loader:
            raise UnsupportedConfigurationError("Graphics are only supported when booting using UEFI")
        require_capability(ctx.caps, BhyveCapability.FBUF, "Bhyve version does not support framebuffer")
        if self.graphics.type != GraphicsType.VNC:
            raise UnsupportedConfigurationError("Only VNC supported", context={"type": self.graphics.type.value})

        listen = self._listen()
        require_address(self.video.address, "video device")

        match listen.type:
            case ListenType.ADDRESS | ListenType.NETWORK:
                pass
            case ListenType.SOCKET | ListenType.NONE:
                raise UnsupportedConfigurationError("Unsupported listen type", context={"listen": listen.type.value})

        if not self.graphics.autoport:
            port = self._fixed_port()
            if not constants.VNC_PORT_MIN <= port <= constants.VNC_PORT_MAX:
                raise UnsupportedConfigurationError(
                    f"vnc port must be in range [{constants.VNC_PORT_MIN},{constants.VNC_PORT_MAX}]",
                    context={"port": port},
                )

        if self.graphics.password:
            raise UnsupportedConfigurationError("vnc password auth not supported")

    def _port(self, ctx: BuildContext) -> int:
        ports = ctx.host.ports
        if self.graphics.autoport:
            if ctx.dry_run:
                return constants.DRY_RUN_VNC_PORT
            port = ports.acquire()
            ctx.resources.push(f"vnc port {port}", ports.release, port)
            return port

        port = self._fixed_port()
        if not ctx.dry_run:
            try:
                ports.mark_used(port)
            except HostResourceError as e:
                logger.warning(
                    f"Failed to mark VNC port '{port}' as used by '{ctx.config.name}'",
                    extra={"vm": ctx.config.name, "port": port, "error": e.message},
                )
            else:
                ctx.resources.push(f"vnc port {port}", ports.release, port)
        return port

    def format(self, ctx: BuildContext) -> list[str]:
        address = require_address(self.video.address, "video device")
        listen = self._listen()

        logger.warning(
            "Security warning: currently VNC auth is not supported.",
            extra={"vm": ctx.config.name},
        )

        opt = "fbuf,tcp="
        if listen.address:
            opt += f"[{listen.address}]" if ":" in listen.address else listen.address

        port = self._port(ctx)
        ctx.resolved_ports.append(port)
        opt += f":{port}"

        if self.video.resolution:
            opt += f",w={self.video.resolution.x},h={self.video.resolution.y}"
        if self.video.vga:
            opt += f",vga={self.video.vga.value}"

        return slot_arg(address, opt)


# ============================================================================
# Sound
# ============================================================================


@dataclass(frozen=True)
class SoundFormatter:
    """hda sound device with an optional OSS audio backend."""

    sound: Sound

    def _audio(self, ctx: BuildContext) -> Audio | None:
        audio = ctx.config.audio_for(self.sound)
        if audio is None and self.sound.audio_id is not None:
            raise InternalInconsistencyError(
                f"Sound device references missing audio backend {self.sound.audio_id}",
                context={"audio_id": self.sound.audio_id},
            )
        return audio

    def validate(self, ctx: BuildContext) -> None:
        # hda is the only sound device bhyve emulates
        require_capability(
            ctx.caps,
            BhyveCapability.SOUND_HDA,
            "Sound devices emulation is not supported by given bhyve binary",
        )
        if self.sound.model != SoundModel.ICH7:
            raise UnsupportedConfigurationError(
                "Sound device model is not supported", context={"model": self.sound.model.value}
            )
        require_address(self.sound.address, "sound device")
        audio = self._audio(ctx)
        if audio is not None and audio.type != AudioType.OSS:
            raise UnsupportedConfigurationError(f"unsupported audio backend '{audio.type.value}'")

    def format(self, ctx: BuildContext) -> list[str]:
        address = require_address(self.sound.address, "sound device")
        params = ""
        audio = self._audio(ctx)
        if audio is not None:
            # Deliberately play=output_dev, rec=input_dev: the guest plays to the
            # backend output and records from its input. Do not swap.
            if audio.output_dev:
                params += f",play={audio.output_dev}"
            if audio.input_dev:
                params += f",rec={audio.input_dev}"
        return slot_arg(address, f"hda{params}")


# ============================================================================
# Console
# ============================================================================


def nmdm_path(serial: Serial) -> str:
    """Path of an nmdm serial, rejecting other console kinds."""
    if serial.type != ChrType.NMDM:
        raise UnsupportedConfigurationError("only nmdm console types are supported", context={"type": serial.type.value})
    if not serial.path:
        raise InternalInconsistencyError("nmdm console without device path")
    return serial.path


@dataclass(frozen=True)
class ConsoleFormatter:
    """First serial device, attached to one of bhyve's two LPC channels."""

    serial: Serial

    def validate(self, ctx: BuildContext) -> None:
        nmdm_path(self.serial)
        if self.serial.target_port not in constants.CONSOLE_CHANNELS:
            raise UnsupportedConfigurationError(
                "only two serial ports are supported", context={"target_port": self.serial.target_port}
            )

    def format(self, ctx: BuildContext) -> list[str]:
        channel = constants.CONSOLE_CHANNELS[self.serial.target_port]
        return ["-l", f"{channel},{nmdm_path(self.serial)}"]
