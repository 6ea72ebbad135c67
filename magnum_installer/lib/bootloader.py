from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

from ..errors import BootImageError, CommandError
from .command import run_cmd

logger = logging.getLogger(__name__)

ESP_MOUNTPOINT = "/efi"

# Binaries placed on the ESP by ``bootctl install``.
SYSTEMD_BOOT_BINARIES = (
    "EFI/systemd/systemd-bootx64.efi",
    "EFI/BOOT/BOOTX64.EFI",
)


@dataclass(frozen=True)
class BootEntry:
    label: str
    loader: str  # path relative to the ESP root, e.g. EFI/Linux/arch.efi
    disk: str
    partition: int

    def efi_loader_path(self) -> str:
        return "\\" + self.loader.strip("/").replace("/", "\\")


def verify_loader(esp_root: str, entry: BootEntry) -> Path:
    p = Path(esp_root) / entry.loader.lstrip("/")
    if not p.is_file():
        raise BootImageError(f"Loader {entry.loader} not found on ESP {esp_root}")
    return p


def register_firmware_entry(entry: BootEntry, *, dry_run: bool = False) -> bool:
    """Create an NVRAM boot entry. Failure is reported, not raised."""

    if not entry.disk:
        logger.warning("Could not determine the disk holding the ESP; skipping UEFI boot entry")
        return False
    logger.info("Creating UEFI boot entry %r -> %s", entry.label, entry.efi_loader_path())
    try:
        run_cmd(
            [
                "efibootmgr",
                "--create",
                "--disk",
                entry.disk,
                "--part",
                str(entry.partition),
                "--label",
                entry.label,
                "--loader",
                entry.efi_loader_path(),
                "--unicode",
            ],
            dry_run=dry_run,
        )
    except (CommandError, OSError) as e:
        logger.warning(
            "Failed to register UEFI boot entry (%s). The install is valid; add the entry from firmware setup.",
            e,
        )
        return False
    return True


def install_systemd_boot(*, esp_path: str = ESP_MOUNTPOINT, dry_run: bool = False) -> List[Path]:
    run_cmd(["bootctl", f"--esp-path={esp_path}", "install"], dry_run=dry_run)
    logger.info("systemd-boot installed")
    return [Path(esp_path) / rel for rel in SYSTEMD_BOOT_BINARIES]


def write_loader_conf(esp_root: str, *, default: str, timeout: int, dry_run: bool = False) -> Path:
    cfg = Path(esp_root) / "loader/loader.conf"
    contents = f"default {default}\ntimeout {timeout}\neditor no\n"
    if not dry_run:
        cfg.parent.mkdir(parents=True, exist_ok=True)
        cfg.write_text(contents, encoding="utf-8")
    logger.info("Wrote loader config: %s", str(cfg))
    return cfg


def write_boot_entry(
    esp_root: str,
    *,
    name: str,
    title: str,
    efi_path: str,
    cmdline: str,
    dry_run: bool = False,
) -> Path:
    entry = Path(esp_root) / "loader/entries" / f"{name}.conf"
    contents = (
        f"title   {title}\n"
        f"efi     /{efi_path.lstrip('/')}\n"
        f"options {cmdline}\n"
    )
    if not dry_run:
        entry.parent.mkdir(parents=True, exist_ok=True)
        entry.write_text(contents, encoding="utf-8")
    logger.info("Wrote boot entry: %s", str(entry))
    return entry
