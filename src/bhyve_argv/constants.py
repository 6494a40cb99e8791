"""Constants for bhyve command generation."""

from typing import Final

# ============================================================================
# Memory
# ============================================================================

KIB_PER_MIB: Final[int] = 1024
"""Configured memory is in KiB; bhyve and its loaders take MiB."""

# ============================================================================
# PCI Addressing
# ============================================================================

HOSTBRIDGE_SLOT: Final[int] = 0
"""Slot reserved for the host bridge (always emitted as 0:0)."""

HOSTBRIDGE_FUNCTION: Final[int] = 0

MAX_PCI_SLOT: Final[int] = 31

MAX_PCI_FUNCTION: Final[int] = 7

# ============================================================================
# Networking
# ============================================================================

GENERATED_TAP_PREFIX: Final[str] = "vnet"
"""Prefix of auto-generated tap names. Names using it are regenerated."""

GENERATED_TAP_PATTERN: Final[str] = f"{GENERATED_TAP_PREFIX}%d"

DRY_RUN_TAP_NAME: Final[str] = "tap0"
"""Placeholder interface name used when no tap device is created."""

# ============================================================================
# Graphics
# ============================================================================

VNC_PORT_MIN: Final[int] = 5900

VNC_PORT_MAX: Final[int] = 65535

DRY_RUN_VNC_PORT: Final[int] = VNC_PORT_MIN
"""Placeholder port for autoport displays when no port is allocated."""

# ============================================================================
# Console
# ============================================================================

CONSOLE_CHANNELS: Final[dict[int, str]] = {0: "com1", 1: "com2"}
"""bhyve exposes two LPC serial channels. Serial target port -> channel name."""

# ============================================================================
# Loaders
# ============================================================================

GRUB_BHYVE_MARKER: Final[str] = "grub-bhyve"
"""Bootloader paths containing this are driven as grub-bhyve."""

GRUB_ROOT_DISK: Final[str] = "hd0,msdos1"

GRUB_ROOT_CDROM: Final[str] = "cd"

GRUB_DEVICE_DISK: Final[str] = "(hd0)"

GRUB_DEVICE_CDROM: Final[str] = "(cd)"

DEVICE_MAP_NAME_TEMPLATE: Final[str] = "grub_bhyve-{name}-device.map"
