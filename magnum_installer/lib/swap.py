from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from ..errors import CommandError
from .command import run_cmd
from .fstab import FstabEntry, ensure_entry

logger = logging.getLogger(__name__)

_SIZE_RE = re.compile(r"^\s*(\d+)\s*([KMGT]?)(?:i?B)?\s*$", re.IGNORECASE)
_MIB_PER_UNIT = {"K": 1 / 1024, "": 1, "M": 1, "G": 1024, "T": 1024 * 1024}


def parse_size_mib(size: str) -> int:
    """``8G`` -> 8192. A bare number is MiB."""

    m = _SIZE_RE.match(str(size))
    if not m:
        raise ValueError(f"Unparseable swap size {size!r} (use e.g. 8G or 512M)")
    mib = int(int(m.group(1)) * _MIB_PER_UNIT[m.group(2).upper()])
    if mib < 1:
        raise ValueError(f"Swap size {size!r} is smaller than 1 MiB")
    return mib


def _remove_existing(path: str, *, dry_run: bool) -> None:
    if dry_run or not os.path.lexists(path):
        return
    logger.info("Existing swap file %s found; deactivating and removing it", path)
    run_cmd(["swapoff", path], check=False)
    os.remove(path)


def _mkswapfile_native(path: str, size_mib: int, *, dry_run: bool) -> bool:
    try:
        run_cmd(["btrfs", "filesystem", "mkswapfile", "--size", f"{size_mib}m", path], dry_run=dry_run)
        return True
    except CommandError as e:
        logger.warning("btrfs mkswapfile unavailable (%s); using manual swapfile creation", e.returncode)
        return False


def _mkswapfile_manual(path: str, size_mib: int, *, dry_run: bool) -> None:
    # No-COW must be set while the file is still empty.
    if not dry_run:
        Path(path).write_bytes(b"")
    run_cmd(["chattr", "+C", path], dry_run=dry_run)
    run_cmd(["dd", "if=/dev/zero", f"of={path}", "bs=1M", f"count={size_mib}", "status=progress"], dry_run=dry_run)


def provision_swapfile(
    path: str,
    size: str,
    *,
    fstab_path: str = "/etc/fstab",
    activate: bool = True,
    dry_run: bool = False,
) -> bool:
    """Create, enable and register a no-COW swap file. Returns True if fstab was updated."""

    size_mib = parse_size_mib(size)
    logger.info("Creating btrfs swapfile (%s) size=%s", path, size)
    _remove_existing(path, dry_run=dry_run)

    if _mkswapfile_native(path, size_mib, dry_run=dry_run):
        logger.info("Swapfile created using btrfs command")
    else:
        _mkswapfile_manual(path, size_mib, dry_run=dry_run)

    if not dry_run:
        os.chmod(path, 0o600)
    run_cmd(["mkswap", path], dry_run=dry_run)
    if activate:
        run_cmd(["swapon", path], dry_run=dry_run)

    entry = FstabEntry(spec=path, mountpoint="none", fstype="swap", options="defaults", dump=0, passno=0)
    if dry_run:
        return False
    return ensure_entry(fstab_path, entry)


def deactivate_swapfile(path: str, *, dry_run: bool = False) -> bool:
    """``swapoff`` a swap file seen from outside the chroot. Returns True if it was active."""

    if not dry_run and not os.path.lexists(path):
        return False
    r = run_cmd(["swapoff", path], check=False, dry_run=dry_run)
    if r.returncode == 0:
        logger.info("Deactivated swap file %s", path)
    return r.returncode == 0
