from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .command import run_cmd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FstabEntry:
    spec: str
    mountpoint: str
    fstype: str
    options: str = "defaults"
    dump: int = 0
    passno: int = 0

    def render(self) -> str:
        return f"{self.spec} {self.mountpoint} {self.fstype} {self.options} {self.dump} {self.passno}"


def render_fstab(entries: Iterable[FstabEntry]) -> str:
    return "".join(e.render() + "\n" for e in entries)


def generate_fstab(mount_root: str, *, dry_run: bool = False) -> Path:
    """Write ``<mount_root>/etc/fstab`` from the live mount table (by UUID)."""

    fstab_path = Path(mount_root) / "etc/fstab"
    r = run_cmd(["genfstab", "-U", mount_root], dry_run=dry_run)
    if dry_run:
        logger.info("Would write %s", str(fstab_path))
        return fstab_path
    fstab_path.parent.mkdir(parents=True, exist_ok=True)
    fstab_path.write_text(r.stdout, encoding="utf-8")
    logger.info("Wrote %s", str(fstab_path))
    return fstab_path


def has_entry(text: str, entry: FstabEntry) -> bool:
    for line in text.splitlines():
        fields = line.split()
        if not fields or fields[0].startswith("#"):
            continue
        if len(fields) >= 2 and fields[0] == entry.spec and fields[1] == entry.mountpoint:
            return True
    return False


def ensure_entry(fstab_path: str | Path, entry: FstabEntry) -> bool:
    """Append ``entry`` unless an entry for the same spec and mountpoint exists."""

    p = Path(fstab_path)
    text = p.read_text(encoding="utf-8") if p.exists() else ""
    if has_entry(text, entry):
        logger.info("fstab already has %s %s", entry.spec, entry.mountpoint)
        return False
    if text and not text.endswith("\n"):
        text += "\n"
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text + render_fstab([entry]), encoding="utf-8")
    return True
