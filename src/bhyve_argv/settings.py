"""Runtime configuration from environment variables."""

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bhyve_argv import constants


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with BHYVE_ARGV_ prefix.
    Example: BHYVE_ARGV_BHYVE_BIN=/usr/local/sbin/bhyve
    """

    model_config = SettingsConfigDict(
        env_prefix="BHYVE_ARGV_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Binaries
    bhyve_bin: Path = Path("/usr/sbin/bhyve")
    bhyvectl_bin: Path = Path("/usr/sbin/bhyvectl")
    bhyveload_bin: Path = Path("/usr/sbin/bhyveload")
    ifconfig_bin: Path = Path("/sbin/ifconfig")

    # Where grub-bhyve device maps are written
    state_dir: Path = Path("/var/run/bhyve-argv")

    # VNC port pool
    vnc_port_min: int = Field(default=constants.VNC_PORT_MIN, ge=1, le=65535)
    vnc_port_max: int = Field(default=constants.VNC_PORT_MAX, ge=1, le=65535)

    # Storage pools: pool name -> directory holding its volumes.
    # Example: BHYVE_ARGV_STORAGE_POOLS='{"default": "/vm/images"}'
    storage_pools: dict[str, Path] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_port_range(self) -> "Settings":
        if self.vnc_port_min > self.vnc_port_max:
            raise ValueError(f"vnc_port_min ({self.vnc_port_min}) exceeds vnc_port_max ({self.vnc_port_max})")
        return self
