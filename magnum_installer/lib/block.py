from __future__ import annotations

import enum
import logging
import os
import re
import stat
import time
from dataclasses import dataclass
from typing import Sequence

from ..errors import DeviceNotFoundError, PartitionLayoutError
from .command import run_cmd

logger = logging.getLogger(__name__)

_TRAILING_INDEX = re.compile(r"(\d+)$")


class DeviceClass(str, enum.Enum):
    # sda -> sda1
    SUFFIX = "suffix"
    # nvme0n1 -> nvme0n1p1, mmcblk0 -> mmcblk0p1, loop0 -> loop0p1
    P_SUFFIX = "p_suffix"


def device_class(disk: str) -> DeviceClass:
    if disk.rstrip("/")[-1:].isdigit():
        return DeviceClass.P_SUFFIX
    return DeviceClass.SUFFIX


def partition_path(disk: str, index: int) -> str:
    """Derive the device node of partition ``index`` on ``disk``.

    Pure function of its inputs; the kernel's naming scheme depends only on
    whether the disk name already ends in a digit.
    """

    if index < 1:
        raise ValueError(f"partition index must be >= 1, got {index}")
    base = disk.rstrip("/")
    if device_class(base) is DeviceClass.P_SUFFIX:
        return f"{base}p{index}"
    return f"{base}{index}"


def partition_number(partition: str) -> int:
    m = _TRAILING_INDEX.search(partition)
    if not m:
        raise ValueError(f"Not a partition device: {partition}")
    return int(m.group(1))


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


@dataclass(frozen=True)
class TargetDisk:
    path: str
    device_class: DeviceClass

    @property
    def esp(self) -> str:
        return partition_path(self.path, 1)

    @property
    def root(self) -> str:
        return partition_path(self.path, 2)


def resolve_disk(identifier: str) -> TargetDisk:
    """Map ``sda`` / ``/dev/nvme0n1`` to a TargetDisk backed by a real block device."""

    ident = (identifier or "").strip()
    if not ident:
        raise DeviceNotFoundError("No disk given")
    path = ident if ident.startswith("/dev/") else f"/dev/{ident}"
    if not is_block_device(path):
        raise DeviceNotFoundError(f"Disk {path} not found (not a block device)")
    return TargetDisk(path=path, device_class=device_class(path))


def parent_disk(partition: str, *, dry_run: bool = False) -> str:
    r = run_cmd(["lsblk", "-no", "PKNAME", partition], dry_run=dry_run)
    name = (r.stdout or "").strip().splitlines()
    if not name:
        return ""
    return f"/dev/{name[0].strip()}"


def get_uuid(dev: str, *, dry_run: bool = False) -> str:
    """Return filesystem UUID for a block device."""

    r = run_cmd(["blkid", "-s", "UUID", "-o", "value", dev], dry_run=dry_run)
    uuid = (r.stdout or "").strip()
    if not uuid and not dry_run:
        raise DeviceNotFoundError(f"Unable to determine UUID for {dev}")
    return uuid


def udev_settle(*, dry_run: bool = False) -> None:
    run_cmd(["udevadm", "settle"], check=False, dry_run=dry_run)


def wait_for_partitions(
    paths: Sequence[str],
    *,
    tries: int = 5,
    base_delay: float = 0.5,
    dry_run: bool = False,
) -> None:
    """Block until the kernel has re-enumerated every partition node."""

    if dry_run:
        return
    delay = base_delay
    missing = list(paths)
    for _ in range(max(1, tries)):
        udev_settle()
        missing = [p for p in paths if not is_block_device(p)]
        if not missing:
            return
        logger.info("Waiting for partition nodes: %s", ", ".join(missing))
        time.sleep(delay)
        delay = min(4.0, delay * 2)
    raise PartitionLayoutError(f"Partition nodes never appeared: {', '.join(missing)}")
