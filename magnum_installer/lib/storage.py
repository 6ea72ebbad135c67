from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..errors import DeviceBusyError, PartitionLayoutError
from .block import partition_path, wait_for_partitions
from .command import run_cmd

logger = logging.getLogger(__name__)

ROLE_ESP = "esp"
ROLE_ROOT = "root"

MIN_ESP_MIB = 300
MIN_ROOT_MIB = 4096
# First partition starts at 1 MiB for alignment.
ALIGN_START_MIB = 1


@dataclass(frozen=True)
class PartitionSpec:
    role: str  # esp|root
    size_mib: Optional[int]  # None means "remainder of the disk"
    fs_hint: Optional[str] = None
    flag: Optional[str] = None


@dataclass(frozen=True)
class PartitionPlan:
    disk: str
    partitions: List[PartitionSpec] = field(default_factory=list)

    @classmethod
    def default(cls, disk: str, esp_size_mib: int = 1024) -> "PartitionPlan":
        return cls(
            disk=disk,
            partitions=[
                PartitionSpec(role=ROLE_ESP, size_mib=esp_size_mib, fs_hint="fat32", flag="esp"),
                PartitionSpec(role=ROLE_ROOT, size_mib=None),
            ],
        )

    def validate(self) -> None:
        parts = self.partitions
        if not parts or parts[0].role != ROLE_ESP:
            raise PartitionLayoutError("ESP must be the first partition")
        esp = parts[0]
        if esp.fs_hint != "fat32":
            raise PartitionLayoutError("ESP must be FAT32-formattable")
        if esp.size_mib is None or esp.size_mib < MIN_ESP_MIB:
            raise PartitionLayoutError(f"ESP must be at least {MIN_ESP_MIB} MiB")
        roots = [p for p in parts if p.role == ROLE_ROOT]
        if len(roots) != 1:
            raise PartitionLayoutError(f"Exactly one root partition required, got {len(roots)}")
        if parts[-1].role != ROLE_ROOT:
            raise PartitionLayoutError("Root partition must follow the ESP")
        for p in parts[:-1]:
            if p.size_mib is None:
                raise PartitionLayoutError("Only the last partition may take the remainder")

    def fixed_mib(self) -> int:
        return ALIGN_START_MIB + sum(p.size_mib or 0 for p in self.partitions)


@dataclass(frozen=True)
class PartitionResult:
    esp_part: str
    root_part: str


def _walk(node: dict):
    yield node
    for child in node.get("children") or []:
        yield from _walk(child)


def ensure_not_busy(disk: str, *, dry_run: bool = False) -> None:
    if dry_run:
        return
    r = run_cmd(["lsblk", "-J", "-o", "NAME,PATH,TYPE,MOUNTPOINT", disk])
    try:
        payload = json.loads(r.stdout or "{}")
    except json.JSONDecodeError as e:
        raise PartitionLayoutError(f"failed to parse lsblk output for {disk}: {e}") from e
    busy = []
    for dev in payload.get("blockdevices") or []:
        for node in _walk(dev):
            if node.get("mountpoint"):
                busy.append(f"{node.get('path') or node.get('name')} on {node['mountpoint']}")
    if busy:
        raise DeviceBusyError(f"Disk {disk} is busy: {'; '.join(busy)}")


def disk_size_mib(disk: str) -> int:
    r = run_cmd(["blockdev", "--getsize64", disk])
    return int((r.stdout or "0").strip() or 0) // (1024 * 1024)


def ensure_capacity(plan: PartitionPlan, *, dry_run: bool = False) -> None:
    if dry_run:
        return
    needed = plan.fixed_mib() + MIN_ROOT_MIB
    have = disk_size_mib(plan.disk)
    if have < needed:
        raise PartitionLayoutError(f"Disk {plan.disk} too small: {have} MiB < {needed} MiB required")


def partition_disk(plan: PartitionPlan, *, dry_run: bool = False) -> PartitionResult:
    """Write a fresh GPT and the planned partitions. Irreversible."""

    plan.validate()
    disk = plan.disk
    ensure_not_busy(disk, dry_run=dry_run)
    ensure_capacity(plan, dry_run=dry_run)

    logger.info("Partitioning %s (%s)", disk, ", ".join(f"{p.role}:{p.size_mib or 'rest'}" for p in plan.partitions))
    run_cmd(["parted", "--script", disk, "mklabel", "gpt"], dry_run=dry_run)

    start = ALIGN_START_MIB
    paths = {}
    for num, spec in enumerate(plan.partitions, start=1):
        end = "100%" if spec.size_mib is None else f"{start + spec.size_mib}MiB"
        argv = ["parted", "--script", disk, "mkpart", spec.role.upper()]
        if spec.fs_hint:
            argv.append(spec.fs_hint)
        argv += [f"{start}MiB", end]
        run_cmd(argv, dry_run=dry_run)
        if spec.flag:
            run_cmd(["parted", "--script", disk, "set", str(num), spec.flag, "on"], dry_run=dry_run)
        paths[spec.role] = partition_path(disk, num)
        if spec.size_mib is not None:
            start += spec.size_mib

    # Inform kernel
    run_cmd(["partprobe", disk], check=False, dry_run=dry_run)
    wait_for_partitions(list(paths.values()), dry_run=dry_run)

    logger.info("EFI: %s   ROOT: %s", paths[ROLE_ESP], paths[ROLE_ROOT])
    return PartitionResult(esp_part=paths[ROLE_ESP], root_part=paths[ROLE_ROOT])
