from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import CommandError, DeviceBusyError, SubvolumeExistsError
from .command import run_cmd

logger = logging.getLogger(__name__)

DEFAULT_BTRFS_OPTIONS = ("noatime", "space_cache=v2", "compress=zstd:3")


@dataclass(frozen=True)
class Subvolume:
    name: str
    mountpoint: str


@dataclass(frozen=True)
class SubvolumeTopology:
    subvolumes: Tuple[Subvolume, ...]
    options: Tuple[str, ...] = DEFAULT_BTRFS_OPTIONS

    @classmethod
    def default(cls) -> "SubvolumeTopology":
        return cls(
            subvolumes=(
                Subvolume("@", "/"),
                Subvolume("@home", "/home"),
                Subvolume("@var", "/var"),
                Subvolume("@tmp", "/tmp"),
                Subvolume("@.snapshots", "/.snapshots"),
            )
        )

    @property
    def root(self) -> Subvolume:
        for sv in self.subvolumes:
            if sv.mountpoint == "/":
                return sv
        raise ValueError("topology has no subvolume mounted at /")

    @property
    def siblings(self) -> List[Subvolume]:
        return [sv for sv in self.subvolumes if sv.mountpoint != "/"]

    def mount_options(self, subvol: Subvolume) -> str:
        return ",".join([f"subvol={subvol.name}", *self.options])


@dataclass
class MountedTree:
    mount_root: str
    # (source, target) in the order they were mounted
    mounts: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"mount_root": self.mount_root, "mounts": [list(m) for m in self.mounts]}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "MountedTree":
        return cls(
            mount_root=str(raw["mount_root"]),
            mounts=[(str(src), str(dst)) for src, dst in raw.get("mounts") or []],
        )


def _target(mount_root: str, mountpoint: str) -> str:
    if mountpoint == "/":
        return mount_root
    return str(Path(mount_root) / mountpoint.lstrip("/"))


def format_esp(partition: str, *, label: str = "ARCH_EFI", dry_run: bool = False) -> None:
    run_cmd(["mkfs.fat", "-F32", "-n", label, partition], dry_run=dry_run)


def format_root(mapped_device: str, *, label: str = "Arch_Root", dry_run: bool = False) -> None:
    run_cmd(["mkfs.btrfs", "-f", "-L", label, mapped_device], dry_run=dry_run)


def create_subvolumes(
    mapped_device: str,
    topology: SubvolumeTopology,
    mount_root: str,
    *,
    on_create: Optional[Callable[[List[str]], None]] = None,
    dry_run: bool = False,
) -> List[str]:
    """Create every subvolume on the top level of a fresh filesystem.

    Refuses (EEXIST) if any subvolume is already present; nothing is created
    in that case. The top level is always unmounted again. ``on_create`` sees
    the names created so far after each one.
    """

    if not dry_run:
        os.makedirs(mount_root, exist_ok=True)
    run_cmd(["mount", mapped_device, mount_root], dry_run=dry_run)
    created: List[str] = []
    try:
        if not dry_run:
            existing = [sv.name for sv in topology.subvolumes if os.path.lexists(os.path.join(mount_root, sv.name))]
            if existing:
                raise SubvolumeExistsError(
                    f"Subvolumes already exist on {mapped_device}: {', '.join(existing)} (EEXIST)"
                )
        for sv in topology.subvolumes:
            run_cmd(["btrfs", "subvolume", "create", os.path.join(mount_root, sv.name)], dry_run=dry_run)
            created.append(sv.name)
            if on_create is not None:
                on_create(list(created))
    finally:
        run_cmd(["umount", mount_root], dry_run=dry_run)
    logger.info("Created subvolumes: %s", " ".join(created))
    return created


def mount_topology(
    mapped_device: str,
    esp_partition: str,
    topology: SubvolumeTopology,
    mount_root: str,
    *,
    esp_mountpoint: str = "/efi",
    on_mount: Optional[Callable[[MountedTree], None]] = None,
    dry_run: bool = False,
) -> MountedTree:
    """Mount @ first, then its siblings, then the ESP.

    ``on_mount`` is called after every successful mount, so a caller can
    record a partially mounted tree before a later mount fails.
    """

    tree = MountedTree(mount_root=mount_root)

    def _mount(argv: Sequence[str], source: str, target: str) -> None:
        run_cmd(list(argv), dry_run=dry_run)
        tree.mounts.append((source, target))
        if on_mount is not None:
            on_mount(tree)

    root = topology.root
    if not dry_run:
        os.makedirs(mount_root, exist_ok=True)
    _mount(["mount", "-o", topology.mount_options(root), mapped_device, mount_root], mapped_device, mount_root)

    dirs = [_target(mount_root, sv.mountpoint) for sv in topology.siblings]
    dirs.append(_target(mount_root, esp_mountpoint))
    if not dry_run:
        for d in dirs:
            os.makedirs(d, exist_ok=True)

    for sv in topology.siblings:
        target = _target(mount_root, sv.mountpoint)
        _mount(["mount", "-o", topology.mount_options(sv), mapped_device, target], mapped_device, target)

    esp_target = _target(mount_root, esp_mountpoint)
    _mount(["mount", esp_partition, esp_target], esp_partition, esp_target)
    return tree


def unmount_order(tree: MountedTree) -> List[str]:
    # Reverse of mount order; ties broken by path depth so nothing is
    # unmounted while something beneath it is still mounted.
    indexed = list(enumerate(tree.mounts))
    indexed.sort(key=lambda item: (item[1][1].count("/"), item[0]), reverse=True)
    return [target for _, (_, target) in indexed]


def unmount_topology(tree: MountedTree, *, dry_run: bool = False) -> None:
    for target in unmount_order(tree):
        try:
            run_cmd(["umount", target], dry_run=dry_run)
        except CommandError as e:
            raise DeviceBusyError(f"Could not unmount {target}: {e.stderr.strip() or e}") from e
    tree.mounts.clear()


def unmount_recursive(mount_root: str, *, dry_run: bool = False) -> bool:
    """Best-effort recursive unmount used when unwinding after a failure."""

    r = run_cmd(["umount", "-R", mount_root], check=False, dry_run=dry_run)
    return r.returncode == 0
