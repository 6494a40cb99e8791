"""Tap device provisioning for bridged network interfaces.

FreeBSD implementation on top of ifconfig(8):

    ifconfig tap create            -> prints the new device name (tapN)
    ifconfig tapN name vnetM       -> renames it after the requested pattern
    ifconfig vnetM description VM  -> tags it with the owning VM
    ifconfig BRIDGE addm vnetM     -> attaches it to the bridge
    ifconfig vnetM up

bhyve opens the tap through its device node, which keeps the original tapN
name after a rename; resolve_real_name() reads it back from the
`drivername:` line of `ifconfig vnetM`.
"""

from __future__ import annotations

import re
import subprocess
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

import psutil

from bhyve_argv import constants
from bhyve_argv._logging import get_logger
from bhyve_argv.exceptions import HostResourceError

logger = get_logger(__name__)

_DRIVERNAME_PATTERN = re.compile(r"^\s*drivername:\s*(\S+)", re.MULTILINE)

_IFCONFIG_TIMEOUT_SECONDS = 10


@runtime_checkable
class TapProvisioner(Protocol):
    """Host network operations needed for a bridged interface."""

    def create_tap(self, bridge: str, vm_identity: str, name_pattern: str) -> str: ...

    def resolve_real_name(self, ifname: str) -> str: ...

    def set_interface_up(self, ifname: str) -> None: ...

    def destroy_tap(self, ifname: str) -> None: ...


def tap_name_pattern(ifname: str | None) -> str:
    """Name (or pattern) to request for an interface's tap device.

    Unset names, names in the generated namespace and names containing a
    '%' placeholder all fall back to the generated pattern.
    """
    if not ifname or ifname.startswith(constants.GENERATED_TAP_PREFIX) or "%" in ifname:
        return constants.GENERATED_TAP_PATTERN
    return ifname


def first_free_name(pattern: str, existing: set[str]) -> str:
    """Expand a '%d' pattern to the lowest index not in `existing`."""
    index = 0
    while (candidate := pattern.replace("%d", str(index), 1)) in existing:
        index += 1
    return candidate


class IfconfigTapProvisioner:
    """Create and configure tap devices with ifconfig(8).

    Thread-safe: name selection and the rename run under an instance lock,
    so concurrent builds sharing a provisioner never pick the same name.

    Args:
        ifconfig: Path of the ifconfig binary.
    """

    def __init__(self, ifconfig: Path = Path("/sbin/ifconfig")) -> None:
        self._ifconfig = str(ifconfig)
        self._lock = threading.Lock()

    def _run(self, *args: str) -> str:
        cmd = [self._ifconfig, *args]
        try:
            result = subprocess.run(  # noqa: S603
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=_IFCONFIG_TIMEOUT_SECONDS,
            )
        except FileNotFoundError as e:
            raise HostResourceError(f"ifconfig not found: {self._ifconfig}", context={"cmd": cmd}) from e
        except subprocess.CalledProcessError as e:
            raise HostResourceError(
                f"ifconfig failed: {' '.join(args)}",
                context={"cmd": cmd, "returncode": e.returncode},
                stderr=(e.stderr or "").strip(),
            ) from e
        except subprocess.TimeoutExpired as e:
            raise HostResourceError(f"ifconfig timed out: {' '.join(args)}", context={"cmd": cmd}) from e
        return result.stdout.strip()

    def create_tap(self, bridge: str, vm_identity: str, name_pattern: str) -> str:
        """Create a tap device, name it after the pattern and add it to the bridge.

        Returns:
            The interface name the tap ended up with.

        Raises:
            HostResourceError: Bridge missing or any ifconfig step failed
        """
        with self._lock:
            existing = set(psutil.net_if_stats())
            if bridge not in existing:
                raise HostResourceError(f"Bridge '{bridge}' does not exist", context={"bridge": bridge})

            if "%d" in name_pattern:
                ifname = first_free_name(name_pattern, existing)
            elif name_pattern in existing:
                raise HostResourceError(
                    f"Interface '{name_pattern}' already exists", context={"ifname": name_pattern}
                )
            else:
                ifname = name_pattern

            created = self._run("tap", "create")
            try:
                if created != ifname:
                    self._run(created, "name", ifname)
            except HostResourceError:
                self._discard_failed_tap(created, bridge)
                raise

        try:
            self._run(ifname, "description", vm_identity)
            self._run(bridge, "addm", ifname)
        except HostResourceError:
            self._discard_failed_tap(ifname, bridge)
            raise

        logger.info(
            "Created tap device",
            extra={"ifname": ifname, "device": created, "bridge": bridge, "vm": vm_identity},
        )
        return ifname

    def _discard_failed_tap(self, ifname: str, bridge: str) -> None:
        """Destroy a partially configured tap; the setup error stays the one raised."""
        logger.warning(
            "Tap setup failed, destroying partially configured device",
            extra={"ifname": ifname, "bridge": bridge},
        )
        try:
            self._run(ifname, "destroy")
        except HostResourceError as e:
            logger.warning(
                f"Failed to destroy tap '{ifname}' after setup failure",
                extra={"ifname": ifname, "error": e.message, "stderr": e.stderr},
            )

    def resolve_real_name(self, ifname: str) -> str:
        """Name of the tap's device node (tapN) behind a possibly renamed interface."""
        output = self._run(ifname)
        if match := _DRIVERNAME_PATTERN.search(output):
            return match.group(1)
        return ifname

    def set_interface_up(self, ifname: str) -> None:
        self._run(ifname, "up")

    def destroy_tap(self, ifname: str) -> None:
        self._run(ifname, "destroy")
        logger.info("Destroyed tap device", extra={"ifname": ifname})
