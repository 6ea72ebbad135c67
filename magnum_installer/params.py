from __future__ import annotations

import re
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from .errors import InstallerError
from .lib.block import partition_path
from .lib.pkg import GpuFamily
from .lib.swap import parse_size_mib

_USERNAME_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")

BOOT_MODES = ("efistub", "systemd-boot")


@dataclass(frozen=True)
class ProvisioningParameters:
    """Everything the second stage needs, collected once in the live environment.

    Frozen after the outer stage validates it; the second stage receives it by
    value (baked into the generated stage-2 program) and never re-derives it.
    """

    hostname: str
    username: str
    timezone: str
    locale: str
    keymap: str
    swap_size: str
    microcode: str  # "" when no microcode package is installed
    gpu: str
    disk: str
    esp_partition: str
    root_partition: str
    mapping_name: str = "cryptroot"
    boot_mode: str = "efistub"
    boot_label: str = "Arch Linux"
    boot_timeout: int = 3
    secure_boot: bool = True
    vendor_keys: bool = True
    enroll_timeout_s: int = 120

    def __post_init__(self) -> None:
        if not _USERNAME_RE.match(self.username):
            raise ValueError(f"Invalid username {self.username!r}")
        if not _HOSTNAME_RE.match(self.hostname):
            raise ValueError(f"Invalid hostname {self.hostname!r}")
        if not self.disk.startswith("/dev/"):
            raise ValueError(f"Disk must be a /dev path, got {self.disk!r}")
        if self.boot_mode not in BOOT_MODES:
            raise ValueError(f"boot_mode must be one of {BOOT_MODES}, got {self.boot_mode!r}")
        GpuFamily.parse(self.gpu)
        parse_size_mib(self.swap_size)

    @property
    def gpu_family(self) -> GpuFamily:
        return GpuFamily.parse(self.gpu)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ProvisioningParameters":
        names = {f.name for f in fields(cls)}
        unknown = set(raw) - names
        if unknown:
            raise ValueError(f"Unknown parameter(s): {', '.join(sorted(unknown))}")
        return cls(**raw)

    @classmethod
    def from_config(
        cls,
        cfg: Dict[str, Any],
        *,
        disk: str,
        microcode: Optional[str],
    ) -> "ProvisioningParameters":
        boot = cfg.get("boot") or {}
        sb = cfg.get("secure_boot") or {}
        timeouts = cfg.get("timeouts") or {}
        return cls(
            hostname=str(cfg.get("hostname", "")).strip(),
            username=str(cfg.get("username", "")).strip(),
            timezone=str(cfg.get("timezone", "")).strip(),
            locale=str(cfg.get("locale", "")).strip(),
            keymap=str(cfg.get("keymap", "")).strip(),
            swap_size=str(cfg.get("swap_size", "")).strip(),
            microcode=microcode or "",
            gpu=GpuFamily.parse(cfg.get("gpu")).value,
            disk=disk,
            esp_partition=partition_path(disk, 1),
            root_partition=partition_path(disk, 2),
            mapping_name=str(cfg.get("mapping_name", "cryptroot")),
            boot_mode=str(boot.get("mode", "efistub")),
            boot_label=str(boot.get("label", "Arch Linux")),
            boot_timeout=int(boot.get("timeout", 3)),
            secure_boot=bool(sb.get("enabled", True)),
            vendor_keys=bool(sb.get("vendor_keys", True)),
            enroll_timeout_s=int(timeouts.get("enroll_s", 120)),
        )


def load_parameters(state: Dict[str, Any]) -> ProvisioningParameters:
    raw = state.get("parameters")
    if not raw:
        raise InstallerError("state.parameters missing; run 15_freeze_parameters first")
    return ProvisioningParameters.from_dict(raw)
