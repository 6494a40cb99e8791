"""Tests for the bhyve-argv command line."""

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
from click.testing import CliRunner

from bhyve_argv._logging import LIBRARY_LOGGER_NAME, shutdown_logging
from bhyve_argv.cli import EXIT_CLI_ERROR, EXIT_SUCCESS, EXIT_UNSUPPORTED, format_error, main


@pytest.fixture
def runner(monkeypatch, tmp_path: Path) -> Iterator[CliRunner]:
    monkeypatch.setenv("BHYVE_ARGV_STATE_DIR", str(tmp_path / "state"))
    yield CliRunner()
    shutdown_logging()
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(logging.NOTSET)


def write_config(tmp_path: Path, **data) -> Path:
    body = {"name": "vm0", "vcpus": 2, "memory_kib": 262144, **data}
    path = tmp_path / "vm0.json"
    path.write_text(json.dumps(body))
    return path


DISK = {"bus": "virtio", "source": "/vm/disk0.img", "address": {"slot": 2}}
NIC = {"bridge": "bridge0", "mac": "52:54:00:00:00:01", "address": {"slot": 1}}


class TestBuild:
    def test_dry_run(self, runner, tmp_path) -> None:
        path = write_config(tmp_path, nets=[NIC], disks=[DISK])
        result = runner.invoke(main, ["build", str(path), "--dry-run"])
        assert result.exit_code == EXIT_SUCCESS, result.output
        assert result.output.strip() == (
            "/usr/sbin/bhyve -c 2 -m 256 -H -P -s 0:0,hostbridge "
            "-s 1:0,virtio-net,tap0,mac=52:54:00:00:00:01 -s 2:0,virtio-blk,/vm/disk0.img vm0"
        )

    def test_json(self, runner, tmp_path) -> None:
        path = write_config(tmp_path, disks=[DISK])
        result = runner.invoke(main, ["build", str(path), "--json"])
        assert result.exit_code == EXIT_SUCCESS, result.output
        data = json.loads(result.output)
        assert data["executable"] == "/usr/sbin/bhyve"
        assert data["args"][-1] == "vm0"

    def test_stdin(self, runner, tmp_path) -> None:
        config = json.dumps({"name": "vm1", "memory_kib": 1048576})
        result = runner.invoke(main, ["build", "-"], input=config)
        assert result.exit_code == EXIT_SUCCESS, result.output
        assert result.output.strip().endswith("-m 1024 -H -P -s 0:0,hostbridge vm1")

    def test_capabilities(self, runner, tmp_path) -> None:
        path = write_config(tmp_path, clock_offset="utc")
        result = runner.invoke(main, ["build", str(path), "--cap", "rtc_utc"])
        assert result.exit_code == EXIT_SUCCESS, result.output
        assert " -u " in result.output

    def test_verbose_logs_context(self, runner, tmp_path, capsys) -> None:
        """-v shows the fields passed with each log record, not just the message."""
        path = write_config(tmp_path, nets=[NIC], disks=[DISK])
        result = runner.invoke(main, ["-v", "build", str(path), "--dry-run"])
        assert result.exit_code == EXIT_SUCCESS, result.output

        shutdown_logging()  # drain records still queued for stderr
        logged = result.output + capsys.readouterr().err
        assert "Built bhyve command | vm=vm0 dry_run=True ifnames=['tap0'] ports=[]" in logged

    def test_unsupported(self, runner, tmp_path) -> None:
        path = write_config(tmp_path, clock_offset="utc")
        result = runner.invoke(main, ["build", str(path)])
        assert result.exit_code == EXIT_UNSUPPORTED
        assert "Unsupported configuration" in result.output
        assert "UTC clock" in result.output

    def test_unknown_capability(self, runner, tmp_path) -> None:
        path = write_config(tmp_path)
        result = runner.invoke(main, ["build", str(path), "--cap", "warp"])
        assert result.exit_code == EXIT_CLI_ERROR
        assert "Unknown capability 'warp'" in result.output

    def test_missing_file(self, runner, tmp_path) -> None:
        result = runner.invoke(main, ["build", str(tmp_path / "nope.json")])
        assert result.exit_code == EXIT_CLI_ERROR
        assert "Config file not found" in result.output

    def test_invalid_config(self, runner, tmp_path) -> None:
        path = tmp_path / "bad.json"
        path.write_text('{"name": "vm0"}')
        result = runner.invoke(main, ["build", str(path)])
        assert result.exit_code == EXIT_CLI_ERROR
        assert "Invalid VM configuration" in result.output


class TestLoad:
    def test_bhyveload(self, runner, tmp_path) -> None:
        path = write_config(tmp_path, disks=[DISK])
        result = runner.invoke(main, ["load", str(path)])
        assert result.exit_code == EXIT_SUCCESS, result.output
        assert result.output.strip() == "/usr/sbin/bhyveload -m 256 -d /vm/disk0.img vm0"

    def test_grub_writes_device_map(self, runner, tmp_path) -> None:
        path = write_config(tmp_path, os={"bootloader": "/usr/local/sbin/grub-bhyve"}, disks=[DISK])
        map_path = tmp_path / "maps" / "vm0.map"
        result = runner.invoke(main, ["load", str(path), "--device-map", str(map_path), "--json"])

        assert result.exit_code == EXIT_SUCCESS, result.output
        data = json.loads(result.output)
        assert data["device_map_path"] == str(map_path)
        assert map_path.read_text() == "(hd0) /vm/disk0.img\n"

    def test_grub_no_write(self, runner, tmp_path) -> None:
        path = write_config(tmp_path, os={"bootloader": "/usr/local/sbin/grub-bhyve"}, disks=[DISK])
        map_path = tmp_path / "vm0.map"
        result = runner.invoke(main, ["load", str(path), "--device-map", str(map_path), "--no-write"])

        assert result.exit_code == EXIT_SUCCESS, result.output
        assert "(hd0) /vm/disk0.img" in result.output
        assert not map_path.exists()

    def test_firmware(self, runner, tmp_path) -> None:
        path = write_config(tmp_path, os={"loader": "/fw.fd"}, disks=[DISK])
        result = runner.invoke(main, ["load", str(path)])
        assert result.exit_code == EXIT_SUCCESS
        assert "No loader stage" in result.output

    def test_no_disks(self, runner, tmp_path) -> None:
        path = write_config(tmp_path)
        result = runner.invoke(main, ["load", str(path)])
        assert result.exit_code == EXIT_UNSUPPORTED
        assert "at least one disk" in result.output


class TestDestroy:
    def test_destroy(self, runner) -> None:
        result = runner.invoke(main, ["destroy", "vm0"])
        assert result.exit_code == EXIT_SUCCESS
        assert result.output.strip() == "/usr/sbin/bhyvectl --destroy --vm=vm0"

    def test_version(self, runner) -> None:
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == EXIT_SUCCESS
        assert "bhyve-argv" in result.output


def test_format_error() -> None:
    text = format_error("Title", "Something broke", ["Try again"])
    assert "Error: Title" in text
    assert "Something broke" in text
    assert "• Try again" in text
