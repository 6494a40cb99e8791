"""PCI slot bookkeeping for a VM configuration.

bhyve takes one `-s slot:function,...` per emulated device, so two devices
sharing an address would make bhyve refuse to start. Validation happens up
front, before any host side effect.
"""

from __future__ import annotations

from collections.abc import Iterator

from bhyve_argv import constants
from bhyve_argv._logging import get_logger
from bhyve_argv.exceptions import InternalInconsistencyError, UnsupportedConfigurationError
from bhyve_argv.models import PciAddress, VmConfig
from bhyve_argv.vm_types import ControllerType, DiskBus

logger = get_logger(__name__)

_SINGLETON_CONTROLLERS: dict[ControllerType, str] = {
    ControllerType.USB: "only single USB controller is supported",
    ControllerType.ISA: "only single ISA controller is supported",
}


def iter_pci_devices(config: VmConfig) -> Iterator[tuple[str, PciAddress | None]]:
    """Yield (description, address) for every device that occupies a PCI slot."""
    for controller in config.controllers:
        # The PCI root is the bus itself, it has no slot of its own.
        if controller.type == ControllerType.PCI:
            continue
        yield f"{controller.type.value} controller {controller.index}", controller.address
    for net in config.nets:
        yield f"network interface {net.mac}", net.address
    for disk in config.disks:
        if disk.bus == DiskBus.VIRTIO:
            yield f"virtio disk {disk.source or disk.volume}", disk.address
    if config.graphics:
        for video in config.videos:
            yield "video device", video.address
    for sound in config.sounds:
        yield f"{sound.model.value} sound device", sound.address


def validate_addresses(config: VmConfig) -> dict[tuple[int, int], str]:
    """Check controller cardinality and (slot, function) uniqueness.

    Returns:
        Map of occupied (slot, function) -> device description,
        including the host bridge at 0:0.

    Raises:
        UnsupportedConfigurationError: A second USB/ISA controller, or two
            devices claiming the same address
        InternalInconsistencyError: A slot-occupying device without address
    """
    for ctype, reason in _SINGLETON_CONTROLLERS.items():
        count = sum(1 for c in config.controllers if c.type == ctype)
        if count > 1:
            raise UnsupportedConfigurationError(reason, context={"count": count})

    occupied: dict[tuple[int, int], str] = {
        (constants.HOSTBRIDGE_SLOT, constants.HOSTBRIDGE_FUNCTION): "hostbridge",
    }
    for description, address in iter_pci_devices(config):
        if address is None:
            raise InternalInconsistencyError(f"{description} has no PCI address", context={"device": description})
        key = (address.slot, address.function)
        if key in occupied:
            raise UnsupportedConfigurationError(
                f"PCI address {address} of {description} is already used by {occupied[key]}",
                context={"address": str(address), "device": description, "occupant": occupied[key]},
            )
        occupied[key] = description

    logger.debug(
        "PCI addresses validated",
        extra={"vm": config.name, "slots": {f"{s}:{f}": d for (s, f), d in sorted(occupied.items())}},
    )
    return occupied
