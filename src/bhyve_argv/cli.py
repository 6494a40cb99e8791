"""Command-line interface for bhyve-argv.

Usage:
    bhyve-argv build vm0.json --cap all --dry-run   # Preview the bhyve command
    bhyve-argv load vm0.json                        # Loader stage (bhyveload / grub-bhyve)
    bhyve-argv destroy vm0                          # bhyvectl teardown command
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import NoReturn

import click
from pydantic import ValidationError

from bhyve_argv import (
    BhyveArgvError,
    BuiltCommand,
    HostResourceError,
    HostServices,
    IfconfigTapProvisioner,
    PortPool,
    Settings,
    StoragePoolResolver,
    UnsupportedConfigurationError,
    VmConfig,
    __version__,
    build_bhyve_cmd,
    build_destroy_cmd,
    build_load_cmd,
    parse_capabilities,
    write_device_map,
)
from bhyve_argv._logging import configure_logging
from bhyve_argv.capabilities import BhyveCapability

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_CLI_ERROR = 2
EXIT_UNSUPPORTED = 3
EXIT_HOST_ERROR = 4
EXIT_BUILD_ERROR = 125


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What → Why → Fix pattern.

    Args:
        title: Short error title
        message: Detailed explanation
        suggestions: Optional list of suggestions to fix the issue

    Returns:
        Formatted error string
    """
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def load_config(source: str) -> VmConfig:
    """Load a VM configuration from a JSON file ("-" reads stdin).

    Raises:
        click.UsageError: Missing file or invalid configuration
    """
    if source == "-":
        raw = sys.stdin.read()
    else:
        path = Path(source)
        if not path.is_file():
            raise click.UsageError(f"Config file not found: {source}")
        raw = path.read_text()

    try:
        return VmConfig.model_validate_json(raw)
    except ValidationError as exc:
        raise click.UsageError(f"Invalid VM configuration:\n{exc}") from exc


def resolve_caps(names: tuple[str, ...]) -> BhyveCapability:
    try:
        return parse_capabilities(names)
    except UnsupportedConfigurationError as exc:
        raise click.BadParameter(
            f"{exc.message}. Known: {', '.join(exc.context.get('known', []))}",
            param_hint="'--cap'",
        ) from exc


def emit(command: BuiltCommand, json_output: bool, extra: dict[str, object] | None = None) -> None:
    if json_output:
        click.echo(json.dumps({**command.to_dict(), **(extra or {})}, indent=2))
    else:
        click.echo(str(command))


def handle_error(exc: BhyveArgvError) -> int:
    """Render a build error and map it to an exit code."""
    if isinstance(exc, UnsupportedConfigurationError):
        click.echo(
            format_error(
                "Unsupported configuration",
                exc.message,
                ["Check the capabilities passed with --cap", "Adjust the VM definition"],
            ),
            err=True,
        )
        return EXIT_UNSUPPORTED
    if isinstance(exc, HostResourceError):
        suggestions = ["Use --dry-run to preview the command without touching the host"]
        if exc.stderr:
            suggestions.insert(0, f"Host command said: {exc.stderr}")
        click.echo(format_error("Host resource error", exc.message, suggestions), err=True)
        return EXIT_HOST_ERROR
    click.echo(format_error("Build error", exc.message), err=True)
    return EXIT_BUILD_ERROR


def host_services(settings: Settings) -> HostServices:
    return HostServices(
        taps=IfconfigTapProvisioner(settings.ifconfig_bin),
        ports=PortPool(settings.vnc_port_min, settings.vnc_port_max),
        sources=StoragePoolResolver(settings.storage_pools),
    )


cap_option = click.option(
    "--cap",
    "caps",
    multiple=True,
    help="Capability of the target bhyve binary (repeatable, 'all' for every one)",
)
json_option = click.option("--json", "json_output", is_flag=True, help="Output as JSON")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.version_option(__version__, "-V", "--version", prog_name="bhyve-argv")
def main(verbose: bool, quiet: bool) -> None:
    """Generate bhyve, loader and bhyvectl command lines for a VM."""
    configure_logging(level="DEBUG" if verbose else None, quiet=quiet)


@main.command()
@click.argument("config_source", metavar="CONFIG")
@cap_option
@click.option("--dry-run", is_flag=True, help="Don't create tap devices or allocate ports")
@json_option
def build(config_source: str, caps: tuple[str, ...], dry_run: bool, json_output: bool) -> NoReturn:
    """Print the bhyve command for the VM defined in CONFIG."""
    config = load_config(config_source)
    capabilities = resolve_caps(caps)
    settings = Settings()

    try:
        command = build_bhyve_cmd(settings, config, capabilities, host_services(settings), dry_run=dry_run)
    except BhyveArgvError as exc:
        sys.exit(handle_error(exc))

    emit(command, json_output)
    sys.exit(EXIT_SUCCESS)


@main.command()
@click.argument("config_source", metavar="CONFIG")
@cap_option
@click.option(
    "--device-map",
    "device_map",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Where to write the grub-bhyve device map",
)
@click.option("--no-write", is_flag=True, help="Print the device map instead of writing it")
@json_option
def load(
    config_source: str,
    caps: tuple[str, ...],
    device_map: Path | None,
    no_write: bool,
    json_output: bool,
) -> NoReturn:
    """Print the loader command for the VM defined in CONFIG."""
    config = load_config(config_source)
    capabilities = resolve_caps(caps)
    settings = Settings()

    try:
        plan = build_load_cmd(
            settings,
            config,
            capabilities,
            StoragePoolResolver(settings.storage_pools),
            map_path=device_map,
        )
    except BhyveArgvError as exc:
        sys.exit(handle_error(exc))

    if plan.command is None:
        click.echo("No loader stage: bhyve boots the firmware directly.", err=True)
        sys.exit(EXIT_SUCCESS)

    if plan.device_map is not None and plan.device_map_path is not None and not no_write:
        try:
            write_device_map(plan.device_map_path, plan.device_map)
        except OSError as exc:
            click.echo(format_error("Cannot write device map", str(exc)), err=True)
            sys.exit(EXIT_HOST_ERROR)

    extra: dict[str, object] = {}
    if plan.device_map is not None:
        extra = {"device_map": plan.device_map, "device_map_path": str(plan.device_map_path)}
    emit(plan.command, json_output, extra)
    if plan.device_map is not None and no_write and not json_output:
        click.echo(plan.device_map, nl=False, err=True)
    sys.exit(EXIT_SUCCESS)


@main.command()
@click.argument("name")
@json_option
def destroy(name: str, json_output: bool) -> NoReturn:
    """Print the bhyvectl command destroying VM NAME."""
    try:
        command = build_destroy_cmd(Settings(), name)
    except BhyveArgvError as exc:
        sys.exit(handle_error(exc))

    emit(command, json_output)
    sys.exit(EXIT_SUCCESS)


if __name__ == "__main__":
    main()
