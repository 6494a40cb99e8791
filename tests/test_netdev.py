"""Tests for ifconfig-based tap provisioning.

subprocess.run and psutil are patched; nothing touches the host network.
"""

import logging
import subprocess
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from bhyve_argv.exceptions import HostResourceError
from bhyve_argv.netdev import (
    IfconfigTapProvisioner,
    TapProvisioner,
    first_free_name,
    tap_name_pattern,
)

IFCONFIG = "/sbin/ifconfig"


def completed(stdout: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")


class FakeIfconfig:
    """subprocess.run replacement answering like ifconfig(8)."""

    def __init__(self, *, created: str = "tap3", fail_on: tuple[str, ...] = ()) -> None:
        self.created = created
        self.fail_on = fail_on
        self.commands: list[list[str]] = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd[1:])
        if any(word in cmd for word in self.fail_on):
            raise subprocess.CalledProcessError(1, cmd, output="", stderr="ifconfig: SIOCIFCREATE2: File exists\n")
        if cmd[1:] == ["tap", "create"]:
            return completed(f"{self.created}\n")
        return completed()


class FakeHostInterfaces:
    """Interface table shared by a fake ifconfig and a fake psutil.

    `tap create` is slow on purpose so concurrent callers overlap.
    """

    def __init__(self, *names: str) -> None:
        self.names = set(names)
        self._lock = threading.Lock()
        self._next_tap = 0

    def net_if_stats(self) -> dict[str, None]:
        with self._lock:
            return dict.fromkeys(self.names)

    def run(self, cmd, **kwargs):
        args = cmd[1:]
        if args == ["tap", "create"]:
            time.sleep(0.05)
            with self._lock:
                created = f"tap{self._next_tap}"
                self._next_tap += 1
                self.names.add(created)
            return completed(f"{created}\n")
        if len(args) == 3 and args[1] == "name":
            with self._lock:
                if args[2] in self.names:
                    raise subprocess.CalledProcessError(1, cmd, output="", stderr="SIOCSIFNAME: File exists")
                self.names.discard(args[0])
                self.names.add(args[2])
        return completed()


@pytest.fixture
def provisioner() -> IfconfigTapProvisioner:
    return IfconfigTapProvisioner(Path(IFCONFIG))


class TestNamePatterns:
    @pytest.mark.parametrize("ifname", [None, "", "vnet3", "vm%d"])
    def test_generated(self, ifname) -> None:
        assert tap_name_pattern(ifname) == "vnet%d"

    def test_custom(self) -> None:
        assert tap_name_pattern("web0") == "web0"

    def test_first_free_name(self) -> None:
        assert first_free_name("vnet%d", {"vnet0", "vnet1", "vnet3"}) == "vnet2"
        assert first_free_name("vnet%d", set()) == "vnet0"


class TestIfconfigTapProvisioner:
    def test_satisfies_protocol(self, provisioner) -> None:
        assert isinstance(provisioner, TapProvisioner)

    def test_create_tap(self, provisioner) -> None:
        fake = FakeIfconfig()
        with (
            patch("bhyve_argv.netdev.psutil.net_if_stats", return_value={"lo0": None, "bridge0": None, "vnet0": None}),
            patch("bhyve_argv.netdev.subprocess.run", side_effect=fake),
        ):
            ifname = provisioner.create_tap("bridge0", "vm0", "vnet%d")

        assert ifname == "vnet1"
        assert fake.commands == [
            ["tap", "create"],
            ["tap3", "name", "vnet1"],
            ["vnet1", "description", "vm0"],
            ["bridge0", "addm", "vnet1"],
        ]

    def test_create_tap_fixed_name(self, provisioner) -> None:
        fake = FakeIfconfig(created="web0")
        with (
            patch("bhyve_argv.netdev.psutil.net_if_stats", return_value={"bridge0": None}),
            patch("bhyve_argv.netdev.subprocess.run", side_effect=fake),
        ):
            assert provisioner.create_tap("bridge0", "vm0", "web0") == "web0"
        # already named as requested, no rename
        assert ["web0", "name", "web0"] not in fake.commands

    def test_missing_bridge(self, provisioner) -> None:
        with (
            patch("bhyve_argv.netdev.psutil.net_if_stats", return_value={"lo0": None}),
            patch("bhyve_argv.netdev.subprocess.run") as run,
        ):
            with pytest.raises(HostResourceError, match="Bridge 'bridge0' does not exist"):
                provisioner.create_tap("bridge0", "vm0", "vnet%d")
        run.assert_not_called()

    def test_name_taken(self, provisioner) -> None:
        with (
            patch("bhyve_argv.netdev.psutil.net_if_stats", return_value={"bridge0": None, "web0": None}),
            patch("bhyve_argv.netdev.subprocess.run") as run,
        ):
            with pytest.raises(HostResourceError, match="already exists"):
                provisioner.create_tap("bridge0", "vm0", "web0")
        run.assert_not_called()

    def test_failed_addm_destroys_tap(self, provisioner) -> None:
        fake = FakeIfconfig(fail_on=("addm",))
        with (
            patch("bhyve_argv.netdev.psutil.net_if_stats", return_value={"bridge0": None}),
            patch("bhyve_argv.netdev.subprocess.run", side_effect=fake),
        ):
            with pytest.raises(HostResourceError) as exc_info:
                provisioner.create_tap("bridge0", "vm0", "vnet%d")

        assert fake.commands[-1] == ["vnet0", "destroy"]
        assert "File exists" in exc_info.value.stderr

    def test_failed_rename_destroys_original_device(self, provisioner) -> None:
        fake = FakeIfconfig(fail_on=("name",))
        with (
            patch("bhyve_argv.netdev.psutil.net_if_stats", return_value={"bridge0": None}),
            patch("bhyve_argv.netdev.subprocess.run", side_effect=fake),
        ):
            with pytest.raises(HostResourceError):
                provisioner.create_tap("bridge0", "vm0", "vnet%d")

        assert fake.commands[-1] == ["tap3", "destroy"]

    def test_failed_cleanup_keeps_setup_error(self, provisioner, caplog) -> None:
        fake = FakeIfconfig(fail_on=("addm", "destroy"))
        with (
            caplog.at_level(logging.WARNING, logger="bhyve_argv"),
            patch("bhyve_argv.netdev.psutil.net_if_stats", return_value={"bridge0": None}),
            patch("bhyve_argv.netdev.subprocess.run", side_effect=fake),
        ):
            with pytest.raises(HostResourceError, match="ifconfig failed: bridge0 addm vnet0"):
                provisioner.create_tap("bridge0", "vm0", "vnet%d")

        assert fake.commands[-1] == ["vnet0", "destroy"]
        assert "Failed to destroy tap 'vnet0'" in caplog.text

    def test_concurrent_creates_get_distinct_names(self, provisioner) -> None:
        """Two builds sharing a provisioner never pick the same generated name."""
        host = FakeHostInterfaces("lo0", "bridge0")
        results: list[object] = []
        results_lock = threading.Lock()

        def worker(vm: str) -> None:
            try:
                outcome: object = provisioner.create_tap("bridge0", vm, "vnet%d")
            except HostResourceError as e:
                outcome = e
            with results_lock:
                results.append(outcome)

        with (
            patch("bhyve_argv.netdev.psutil.net_if_stats", side_effect=host.net_if_stats),
            patch("bhyve_argv.netdev.subprocess.run", side_effect=host.run),
        ):
            threads = [threading.Thread(target=worker, args=(f"vm{i}",)) for i in range(2)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert all(isinstance(r, str) for r in results), results
        assert sorted(results) == ["vnet0", "vnet1"]
        assert {"vnet0", "vnet1"} <= host.names

    def test_resolve_real_name(self, provisioner) -> None:
        output = (
            "vnet0: flags=8943<UP,BROADCAST,RUNNING,PROMISC,SIMPLEX,MULTICAST> metric 0 mtu 1500\n"
            "\tdescription: vm0\n"
            "\toptions=80000<LINKSTATE>\n"
            "\tether 58:9c:fc:10:ff:8b\n"
            "\tgroups: tap\n"
            "\tdrivername: tap3\n"
        )
        with patch("bhyve_argv.netdev.subprocess.run", return_value=completed(output)):
            assert provisioner.resolve_real_name("vnet0") == "tap3"

    def test_resolve_real_name_without_drivername(self, provisioner) -> None:
        with patch("bhyve_argv.netdev.subprocess.run", return_value=completed("tap0: flags=8802<BROADCAST>\n")):
            assert provisioner.resolve_real_name("tap0") == "tap0"

    def test_set_interface_up(self, provisioner) -> None:
        with patch("bhyve_argv.netdev.subprocess.run", return_value=completed()) as run:
            provisioner.set_interface_up("vnet0")
        assert run.call_args.args[0] == [IFCONFIG, "vnet0", "up"]

    def test_destroy_tap(self, provisioner) -> None:
        with patch("bhyve_argv.netdev.subprocess.run", return_value=completed()) as run:
            provisioner.destroy_tap("vnet0")
        assert run.call_args.args[0] == [IFCONFIG, "vnet0", "destroy"]

    def test_missing_binary(self, provisioner) -> None:
        with patch("bhyve_argv.netdev.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(HostResourceError, match="ifconfig not found"):
                provisioner.set_interface_up("vnet0")

    def test_timeout(self, provisioner) -> None:
        with patch(
            "bhyve_argv.netdev.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd=[IFCONFIG], timeout=10),
        ):
            with pytest.raises(HostResourceError, match="timed out"):
                provisioner.destroy_tap("vnet0")
