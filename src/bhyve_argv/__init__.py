"""bhyve-argv: bhyve command line generation.

Turns a VM configuration into the argument vectors needed to run it under
FreeBSD's bhyve hypervisor: the optional loader stage, bhyve itself, and
the bhyvectl teardown command. Nothing is executed here.

Quick Start:
    ```python
    from bhyve_argv import (
        BhyveCapability,
        HostServices,
        IfconfigTapProvisioner,
        PortPool,
        Settings,
        StoragePoolResolver,
        VmConfig,
        build_bhyve_cmd,
        build_load_cmd,
    )

    settings = Settings()
    config = VmConfig.model_validate_json(open("vm0.json").read())
    caps = BhyveCapability.RTC_UTC | BhyveCapability.LPC_BOOTROM
    host = HostServices(
        taps=IfconfigTapProvisioner(settings.ifconfig_bin),
        ports=PortPool(settings.vnc_port_min, settings.vnc_port_max),
        sources=StoragePoolResolver(settings.storage_pools),
    )

    plan = build_load_cmd(settings, config, caps, host.sources)
    cmd = build_bhyve_cmd(settings, config, caps, host)
    print(cmd)  # /usr/sbin/bhyve -c 1 -m 256 -H -P -s 0:0,hostbridge ... vm0
    ```

Dry run (no tap devices, no port allocation):
    ```python
    cmd = build_bhyve_cmd(settings, config, caps, host, dry_run=True)
    ```
"""

from bhyve_argv.bhyve_cmd import build_bhyve_cmd, build_destroy_cmd
from bhyve_argv.capabilities import BhyveCapability, parse_capabilities
from bhyve_argv.command import BuiltCommand
from bhyve_argv.exceptions import (
    BhyveArgvError,
    HostResourceError,
    InternalInconsistencyError,
    PermanentError,
    UnsupportedConfigurationError,
)
from bhyve_argv.host_resources import HostResourceStack, HostServices
from bhyve_argv.loader_cmd import LoaderPlan, build_load_cmd, select_boot_disk, write_device_map
from bhyve_argv.models import VmConfig
from bhyve_argv.netdev import IfconfigTapProvisioner, TapProvisioner
from bhyve_argv.port_allocator import PortAllocator, PortPool
from bhyve_argv.settings import Settings
from bhyve_argv.storage import SourceResolver, StoragePoolResolver

__all__ = [
    "BhyveArgvError",
    "BhyveCapability",
    "BuiltCommand",
    "HostResourceError",
    "HostResourceStack",
    "HostServices",
    "IfconfigTapProvisioner",
    "InternalInconsistencyError",
    "LoaderPlan",
    "PermanentError",
    "PortAllocator",
    "PortPool",
    "Settings",
    "SourceResolver",
    "StoragePoolResolver",
    "TapProvisioner",
    "UnsupportedConfigurationError",
    "VmConfig",
    "build_bhyve_cmd",
    "build_destroy_cmd",
    "build_load_cmd",
    "parse_capabilities",
    "select_boot_disk",
    "write_device_map",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("bhyve-argv")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
