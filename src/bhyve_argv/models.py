"""VM configuration models.

The configuration is read once at build start and never mutated: values
resolved during a build (tap names, display ports) are returned with the
command instead of being written back.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bhyve_argv import constants
from bhyve_argv.vm_types import (
    AudioType,
    BootDevice,
    ChrType,
    ClockOffset,
    ControllerModel,
    ControllerType,
    DiskBus,
    DiskDevice,
    GraphicsType,
    InputBus,
    InputType,
    ListenType,
    MsrPolicy,
    NetModel,
    NetType,
    SoundModel,
    StorageType,
    Tristate,
    VgaConf,
)

_MAC_PATTERN = re.compile(r"^[0-9a-fA-F]{2}(:[0-9a-fA-F]{2}){5}$")


class _Frozen(BaseModel):
    model_config = ConfigDict(
        frozen=True,  # Immutable after creation
        extra="forbid",  # Reject unknown fields
    )


class PciAddress(_Frozen):
    """Device position on the emulated PCI bus."""

    slot: int = Field(ge=0, le=constants.MAX_PCI_SLOT)
    function: int = Field(default=0, ge=0, le=constants.MAX_PCI_FUNCTION)

    def __str__(self) -> str:
        return f"{self.slot}:{self.function}"


class DriveAddress(_Frozen):
    """Disk position behind a controller (SATA)."""

    controller: int = Field(default=0, ge=0)
    unit: int = Field(default=0, ge=0)


class CpuTopology(_Frozen):
    sockets: int = Field(ge=1)
    cores: int = Field(default=1, ge=1)
    threads: int = Field(default=1, ge=1)
    dies: int = Field(default=1, ge=1)


class Features(_Frozen):
    acpi: Tristate = Tristate.ABSENT
    apic: Tristate = Tristate.ABSENT
    msrs: Tristate = Tristate.ABSENT
    msrs_unknown: MsrPolicy = MsrPolicy.FAULT


class OsConfig(_Frozen):
    """Boot configuration.

    Attributes:
        loader: Firmware (UEFI bootrom) path, handed to bhyve itself.
        bootloader: External loader binary run before bhyve (grub-bhyve, ...).
        bootloader_args: Raw argument string for the external loader.
        boot_devices: Top-level boot order (at most one entry is usable).
    """

    loader: str | None = Field(default=None, min_length=1)
    bootloader: str | None = Field(default=None, min_length=1)
    bootloader_args: str | None = Field(default=None, min_length=1)
    boot_devices: list[BootDevice] = Field(default_factory=list)


class Controller(_Frozen):
    type: ControllerType
    index: int = Field(default=0, ge=0)
    model: ControllerModel | None = None
    address: PciAddress | None = None


class NetInterface(_Frozen):
    type: NetType = NetType.BRIDGE
    bridge: str | None = None
    model: NetModel = NetModel.VIRTIO
    mac: str
    ifname: str | None = None
    address: PciAddress | None = None

    @field_validator("mac")
    @classmethod
    def _normalize_mac(cls, value: str) -> str:
        if not _MAC_PATTERN.match(value):
            raise ValueError(f"invalid MAC address: {value!r}")
        return value.lower()


class VolumeSource(_Frozen):
    """Disk backed by a volume in a storage pool."""

    pool: str
    volume: str


class Disk(_Frozen):
    device: DiskDevice = DiskDevice.DISK
    bus: DiskBus = DiskBus.VIRTIO
    storage_type: StorageType = StorageType.FILE
    source: str | None = None
    volume: VolumeSource | None = None
    address: PciAddress | None = None
    drive: DriveAddress = Field(default_factory=DriveAddress)
    boot_index: int | None = Field(default=None, ge=1)


class InputDevice(_Frozen):
    type: InputType = InputType.TABLET
    bus: InputBus = InputBus.USB


class GraphicsListen(_Frozen):
    type: ListenType = ListenType.ADDRESS
    address: str | None = None


class Graphics(_Frozen):
    type: GraphicsType = GraphicsType.VNC
    port: int | None = None
    autoport: bool = True
    password: str | None = None
    listens: list[GraphicsListen] = Field(default_factory=list)


class Resolution(_Frozen):
    x: int = Field(ge=1)
    y: int = Field(ge=1)


class Video(_Frozen):
    address: PciAddress | None = None
    resolution: Resolution | None = None
    vga: VgaConf | None = None


class Audio(_Frozen):
    id: int = Field(ge=1)
    type: AudioType = AudioType.OSS
    input_dev: str | None = None
    output_dev: str | None = None


class Sound(_Frozen):
    model: SoundModel = SoundModel.ICH7
    address: PciAddress | None = None
    audio_id: int | None = None


class Serial(_Frozen):
    type: ChrType = ChrType.NMDM
    path: str | None = None
    target_port: int = Field(default=0, ge=0)


class VmConfig(_Frozen):
    """Complete VM definition consumed by the command builders."""

    name: str = Field(min_length=1)
    uuid: str | None = None
    vcpus: int = Field(default=1, ge=1)
    cpu: CpuTopology | None = None
    memory_kib: int = Field(ge=1)
    memory_locked: bool = False
    features: Features = Field(default_factory=Features)
    clock_offset: ClockOffset = ClockOffset.LOCALTIME
    os: OsConfig = Field(default_factory=OsConfig)
    controllers: list[Controller] = Field(default_factory=list)
    nets: list[NetInterface] = Field(default_factory=list)
    disks: list[Disk] = Field(default_factory=list)
    inputs: list[InputDevice] = Field(default_factory=list)
    graphics: list[Graphics] = Field(default_factory=list)
    videos: list[Video] = Field(default_factory=list)
    sounds: list[Sound] = Field(default_factory=list)
    audios: list[Audio] = Field(default_factory=list)
    serials: list[Serial] = Field(default_factory=list)
    passthrough_args: list[str] = Field(default_factory=list)

    @property
    def memory_mib(self) -> int:
        """Memory in MiB, rounded up."""
        return -(-self.memory_kib // constants.KIB_PER_MIB)

    @property
    def identity(self) -> str:
        """Identifier handed to host collaborators (uuid when known)."""
        return self.uuid or self.name

    def audio_for(self, sound: Sound) -> Audio | None:
        """Audio backend paired with a sound device.

        A sound without an explicit audio_id uses the first backend.
        """
        if sound.audio_id is None:
            return self.audios[0] if self.audios else None
        for audio in self.audios:
            if audio.id == sound.audio_id:
                return audio
        return None
