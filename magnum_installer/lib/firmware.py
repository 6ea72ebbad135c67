from __future__ import annotations

import shutil
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict

EFIVARS = "/sys/firmware/efi/efivars"


def detect_firmware() -> str:
    """Detect firmware type for the *currently running* environment.

    Returns: 'efi' or 'bios'.
    """

    if Path("/sys/firmware/efi").exists():
        return "efi"
    return "bios"


def efivars_available() -> bool:
    return Path(EFIVARS).is_dir()


@dataclass(frozen=True)
class Capabilities:
    """Feature flags probed once and consulted by later steps."""

    uefi: bool = False
    secure_boot: bool = False
    firmware_entries: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any] | None) -> "Capabilities":
        raw = raw or {}
        return cls(
            uefi=bool(raw.get("uefi", False)),
            secure_boot=bool(raw.get("secure_boot", False)),
            firmware_entries=bool(raw.get("firmware_entries", False)),
        )


def probe_firmware_entries() -> bool:
    # Virtual machines commonly expose no writable efivars.
    return efivars_available() and shutil.which("efibootmgr") is not None
