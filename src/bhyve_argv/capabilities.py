"""Capability bitset of the installed bhyve binary and its loaders.

The bitset is produced elsewhere (by probing `bhyve -h` and friends) and is
passed into every builder as an immutable value.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable

from bhyve_argv.exceptions import UnsupportedConfigurationError


class BhyveCapability(enum.Flag):
    """Optional features of the target bhyve / grub-bhyve binaries."""

    NONE = 0
    RTC_UTC = enum.auto()
    """`-u`: RTC keeps UTC time."""
    AHCI32SLOT = enum.auto()
    """`ahci,hd:...,cd:...`: many drives behind one AHCI controller."""
    NET_E1000 = enum.auto()
    """e1000 NIC emulation."""
    LPC_BOOTROM = enum.auto()
    """`-l bootrom,PATH`: UEFI firmware boot."""
    FBUF = enum.auto()
    """fbuf framebuffer device (VNC)."""
    CPUTOPOLOGY = enum.auto()
    """`-c cpus=,sockets=,cores=,threads=`."""
    SOUND_HDA = enum.auto()
    """hda sound device."""
    GRUB_CONSDEV = enum.auto()
    """grub-bhyve `--cons-dev`."""


ALL_CAPABILITIES = BhyveCapability(sum(c.value for c in BhyveCapability if c.value))


def parse_capabilities(names: Iterable[str]) -> BhyveCapability:
    """Combine capability names (case-insensitive) into a bitset.

    "all" selects every known capability.

    Raises:
        UnsupportedConfigurationError: Unknown capability name
    """
    caps = BhyveCapability.NONE
    for raw in names:
        name = raw.strip().upper().replace("-", "_")
        if not name:
            continue
        if name == "ALL":
            caps |= ALL_CAPABILITIES
            continue
        try:
            caps |= BhyveCapability[name]
        except KeyError:
            raise UnsupportedConfigurationError(
                f"Unknown capability '{raw}'",
                context={"known": [c.name for c in BhyveCapability if c.value]},
            ) from None
    return caps


def capability_names(caps: BhyveCapability) -> list[str]:
    """Names of the capabilities set in a bitset, in declaration order."""
    return [c.name for c in BhyveCapability if c.value and c in caps]
