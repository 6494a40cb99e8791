"""Enumerations describing VM devices and their settings.

Values match the names used by libvirt domain definitions so that configs
exported from there can be loaded without translation.
"""

from enum import Enum


class Tristate(str, Enum):
    """Feature switch: explicitly on, explicitly off, or not mentioned."""

    ABSENT = "absent"
    ON = "on"
    OFF = "off"


class MsrPolicy(str, Enum):
    """What the guest sees when it touches an MSR bhyve does not emulate."""

    IGNORE = "ignore"
    FAULT = "fault"


class ClockOffset(str, Enum):
    LOCALTIME = "localtime"
    UTC = "utc"
    VARIABLE = "variable"
    TIMEZONE = "timezone"
    ABSOLUTE = "absolute"


class ControllerType(str, Enum):
    PCI = "pci"
    SATA = "sata"
    USB = "usb"
    ISA = "isa"
    IDE = "ide"
    SCSI = "scsi"
    VIRTIO_SERIAL = "virtio-serial"


class ControllerModel(str, Enum):
    PCI_ROOT = "pci-root"
    PCIE_ROOT = "pcie-root"
    PCI_BRIDGE = "pci-bridge"
    NEC_XHCI = "nec-xhci"
    QEMU_XHCI = "qemu-xhci"


class DiskBus(str, Enum):
    SATA = "sata"
    VIRTIO = "virtio"
    IDE = "ide"
    SCSI = "scsi"
    USB = "usb"
    NVME = "nvme"


class DiskDevice(str, Enum):
    DISK = "disk"
    CDROM = "cdrom"
    FLOPPY = "floppy"
    LUN = "lun"


class StorageType(str, Enum):
    """Kind of storage backing a disk."""

    FILE = "file"
    VOLUME = "volume"
    BLOCK = "block"
    DIR = "dir"
    NETWORK = "network"


class NetType(str, Enum):
    BRIDGE = "bridge"
    NETWORK = "network"
    USER = "user"
    ETHERNET = "ethernet"
    DIRECT = "direct"


class NetModel(str, Enum):
    VIRTIO = "virtio"
    E1000 = "e1000"
    RTL8139 = "rtl8139"


class InputType(str, Enum):
    TABLET = "tablet"
    MOUSE = "mouse"
    KEYBOARD = "keyboard"


class InputBus(str, Enum):
    USB = "usb"
    PS2 = "ps2"
    VIRTIO = "virtio"


class GraphicsType(str, Enum):
    VNC = "vnc"
    SPICE = "spice"
    SDL = "sdl"
    RDP = "rdp"


class ListenType(str, Enum):
    ADDRESS = "address"
    NETWORK = "network"
    SOCKET = "socket"
    NONE = "none"


class VgaConf(str, Enum):
    """bhyve framebuffer VGA mode (fbuf vga= option)."""

    IO = "io"
    ON = "on"
    OFF = "off"


class SoundModel(str, Enum):
    ICH6 = "ich6"
    ICH7 = "ich7"
    ICH9 = "ich9"
    AC97 = "ac97"
    ES1370 = "es1370"
    SB16 = "sb16"


class AudioType(str, Enum):
    OSS = "oss"
    NONE = "none"
    SDL = "sdl"
    PULSEAUDIO = "pulseaudio"


class ChrType(str, Enum):
    """Character device source kind for serial consoles."""

    NMDM = "nmdm"
    PTY = "pty"
    FILE = "file"
    TCP = "tcp"
    STDIO = "stdio"


class BootDevice(str, Enum):
    """Entries of the top-level boot order."""

    HD = "hd"
    CDROM = "cdrom"
    NETWORK = "network"
    FLOPPY = "fd"
