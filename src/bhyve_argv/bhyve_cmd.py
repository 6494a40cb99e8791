"""bhyve command line builder.

    /usr/sbin/bhyve -c 2 -m 256 -A -I -H -P \\
                    -s 0:0,hostbridge \\
                    -s 1:0,virtio-net,tap0,mac=52:54:00:00:00:01 \\
                    -s 2:0,virtio-blk,/vm/disk.img \\
                    -l com1,/dev/nmdm0A \\
                    vm0

Argument groups are emitted in a fixed order: CPU, memory, feature flags,
clock, guest-exit flags, host bridge, firmware, then controllers, network
interfaces, disks, graphics, sound, console, pass-through arguments and the
VM name last.
"""

from __future__ import annotations

from bhyve_argv._logging import get_logger
from bhyve_argv.addressing import validate_addresses
from bhyve_argv.capabilities import BhyveCapability
from bhyve_argv.command import BuiltCommand
from bhyve_argv.devices import (
    BuildContext,
    ConsoleFormatter,
    DeviceFormatter,
    GraphicsFormatter,
    NetFormatter,
    SoundFormatter,
    controller_formatter,
    disk_formatter,
    require_capability,
)
from bhyve_argv.exceptions import InternalInconsistencyError, UnsupportedConfigurationError
from bhyve_argv.host_resources import HostResourceStack, HostServices
from bhyve_argv.models import VmConfig
from bhyve_argv.settings import Settings
from bhyve_argv.vm_types import ClockOffset, MsrPolicy, Tristate

logger = get_logger(__name__)


def cpu_args(config: VmConfig, caps: BhyveCapability) -> list[str]:
    """`-c N`, or the full topology when one is configured."""
    topology = config.cpu
    if topology is None:
        return ["-c", str(config.vcpus)]

    if topology.dies != 1:
        raise UnsupportedConfigurationError("Only 1 die per socket is supported", context={"dies": topology.dies})
    if config.vcpus != topology.sockets * topology.cores * topology.threads:
        raise UnsupportedConfigurationError(
            "Invalid CPU topology: total number of vCPUs must equal the product of sockets, cores, and threads",
            context={
                "vcpus": config.vcpus,
                "sockets": topology.sockets,
                "cores": topology.cores,
                "threads": topology.threads,
            },
        )
    require_capability(caps, BhyveCapability.CPUTOPOLOGY, "Installed bhyve binary does not support defining CPU topology")
    return [
        "-c",
        f"cpus={config.vcpus},sockets={topology.sockets},cores={topology.cores},threads={topology.threads}",
    ]


def memory_args(config: VmConfig) -> list[str]:
    args = ["-m", str(config.memory_mib)]
    if config.memory_locked:
        args.append("-S")  # wire guest memory
    return args


def feature_args(config: VmConfig) -> list[str]:
    features = config.features
    args: list[str] = []
    if features.acpi == Tristate.ON:
        args.append("-A")  # generate ACPI tables
    if features.apic == Tristate.ON:
        args.append("-I")  # present an ioapic
    if features.msrs == Tristate.ON and features.msrs_unknown == MsrPolicy.IGNORE:
        args.append("-w")  # ignore accesses to unimplemented MSRs
    return args


def clock_args(config: VmConfig, caps: BhyveCapability) -> list[str]:
    match config.clock_offset:
        case ClockOffset.LOCALTIME:
            # bhyve's default
            return []
        case ClockOffset.UTC:
            require_capability(caps, BhyveCapability.RTC_UTC, "Installed bhyve binary does not support UTC clock")
            return ["-u"]
        case _:
            raise UnsupportedConfigurationError(f"unsupported clock offset '{config.clock_offset.value}'")


def firmware_args(config: VmConfig, caps: BhyveCapability) -> list[str]:
    os_config = config.os
    if not os_config.loader:
        return []
    if os_config.bootloader:
        raise UnsupportedConfigurationError(
            "Firmware loader cannot be combined with an external bootloader",
            context={"loader": os_config.loader, "bootloader": os_config.bootloader},
        )
    require_capability(caps, BhyveCapability.LPC_BOOTROM, "Installed bhyve binary does not support UEFI loader")
    return ["-l", f"bootrom,{os_config.loader}"]


def device_formatters(config: VmConfig) -> list[DeviceFormatter]:
    """Formatters for every device, in emission order."""
    formatters: list[DeviceFormatter] = [controller_formatter(c) for c in config.controllers]
    formatters.extend(NetFormatter(net) for net in config.nets)
    formatters.extend(disk_formatter(disk) for disk in config.disks)

    if config.graphics and config.videos:
        if len(config.graphics) != 1 or len(config.videos) != 1:
            raise UnsupportedConfigurationError(
                "Multiple graphics devices are not supported",
                context={"graphics": len(config.graphics), "videos": len(config.videos)},
            )
        formatters.append(GraphicsFormatter(config.graphics[0], config.videos[0]))

    formatters.extend(SoundFormatter(sound) for sound in config.sounds)

    # bhyve takes a single console; further serials are ignored.
    if config.serials:
        formatters.append(ConsoleFormatter(config.serials[0]))
    return formatters


def build_bhyve_cmd(
    settings: Settings,
    config: VmConfig,
    caps: BhyveCapability,
    host: HostServices,
    *,
    dry_run: bool = False,
) -> BuiltCommand:
    """Build the bhyve command for a VM.

    Every device is validated before any host side effect happens. Side
    effects (tap devices, display ports) are then committed device by
    device; if a later step fails they are released again before the error
    propagates.

    Args:
        settings: Binary paths and pools
        config: VM configuration
        caps: Capabilities of the target bhyve binary
        host: Tap provisioning, port allocation and source resolution
        dry_run: Skip tap creation and port allocation, using placeholder
            values instead. The result is structurally complete.

    Returns:
        bhyve command, VM name as last argument

    Raises:
        UnsupportedConfigurationError: Config can't be expressed for this binary
        InternalInconsistencyError: Config lacks something it must have
        HostResourceError: Tap creation or port allocation failed
    """
    args: list[str] = []
    args.extend(cpu_args(config, caps))
    args.extend(memory_args(config))
    args.extend(feature_args(config))
    args.extend(clock_args(config, caps))
    # Force a VM exit on HLT (idle guests sleep instead of spinning) and on
    # PAUSE (lock spinning yields to other VMs).
    args.extend(["-H", "-P"])
    args.extend(["-s", "0:0,hostbridge"])
    args.extend(firmware_args(config, caps))

    formatters = device_formatters(config)

    with HostResourceStack(config.name) as resources:
        ctx = BuildContext(config=config, caps=caps, host=host, resources=resources, dry_run=dry_run)
        for formatter in formatters:
            formatter.validate(ctx)
        validate_addresses(config)

        for formatter in formatters:
            args.extend(formatter.format(ctx))
        resources.commit()

    if config.passthrough_args:
        logger.warning(
            "Booting the guest using command line pass-through feature, "
            "which could potentially cause inconsistent state and upgrade issues",
            extra={"vm": config.name, "passthrough_args": config.passthrough_args},
        )
        args.extend(config.passthrough_args)

    args.append(config.name)

    logger.info(
        "Built bhyve command",
        extra={
            "vm": config.name,
            "dry_run": dry_run,
            "ifnames": ctx.resolved_ifnames,
            "ports": ctx.resolved_ports,
        },
    )
    return BuiltCommand.create(settings.bhyve_bin, args)


def build_destroy_cmd(settings: Settings, name: str) -> BuiltCommand:
    """Build `bhyvectl --destroy --vm=NAME`."""
    if not name:
        raise InternalInconsistencyError("VM name is required to destroy a VM")
    return BuiltCommand.create(settings.bhyvectl_bin, ["--destroy", f"--vm={name}"])
