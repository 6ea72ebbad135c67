from __future__ import annotations

import enum
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .command import run_cmd

logger = logging.getLogger(__name__)


BASE_PACKAGES: Tuple[str, ...] = (
    "base",
    "linux",
    "linux-headers",
    "linux-firmware",
    "btrfs-progs",
    "base-devel",
    "vim",
    "nano",
    "git",
    "cryptsetup",
    "sbctl",
    "efibootmgr",
    "dosfstools",
    "os-prober",
    "sudo",
    "networkmanager",
    "binutils",
    # The second stage runs as a Python program inside the new root.
    "python",
)


class GpuFamily(str, enum.Enum):
    NVIDIA = "nvidia"
    NOUVEAU = "nouveau"
    AMD = "amd"
    INTEL = "intel"
    NONE = "none"

    @classmethod
    def parse(cls, value: Optional[str]) -> "GpuFamily":
        v = str(value or "none").strip().lower()
        aliases = {
            "1": cls.NVIDIA,
            "nvidia-proprietary": cls.NVIDIA,
            "2": cls.NOUVEAU,
            "nvidia-open": cls.NOUVEAU,
            "3": cls.AMD,
            "4": cls.INTEL,
            "5": cls.NONE,
            "": cls.NONE,
        }
        if v in aliases:
            return aliases[v]
        try:
            return cls(v)
        except ValueError:
            raise ValueError(f"Unsupported GPU family {value!r} (expected one of: {', '.join(m.value for m in cls)})")


GPU_PACKAGES: Dict[GpuFamily, Tuple[str, ...]] = {
    GpuFamily.NVIDIA: ("nvidia", "nvidia-utils", "nvidia-settings"),
    GpuFamily.NOUVEAU: ("xf86-video-nouveau",),
    GpuFamily.AMD: ("vulkan-radeon",),
    GpuFamily.INTEL: ("libva-intel-driver", "intel-media-driver"),
    GpuFamily.NONE: (),
}

# Mesa userspace shared by the AMD and Intel drivers; not part of any family subset.
MESA_FAMILIES = frozenset({GpuFamily.AMD, GpuFamily.INTEL})
MESA_PACKAGES: Tuple[str, ...] = ("mesa",)


def select_packages(
    *,
    microcode: Optional[str],
    gpu: GpuFamily,
    extra: Iterable[str] = (),
) -> List[str]:
    """Base set plus at most one microcode package and one GPU family's packages."""

    gpu_common = MESA_PACKAGES if gpu in MESA_FAMILIES else ()
    out: List[str] = []
    for pkg in (*BASE_PACKAGES, *([microcode] if microcode else []), *GPU_PACKAGES[gpu], *gpu_common, *extra):
        if pkg and pkg not in out:
            out.append(pkg)
    return out


def pacstrap(
    mount_root: str,
    packages: Sequence[str],
    *,
    timeout: Optional[float] = None,
    dry_run: bool = False,
) -> None:
    if not packages:
        return
    logger.info("Installing %d packages into %s", len(packages), mount_root)
    run_cmd(["pacstrap", "-K", mount_root, *packages], timeout=timeout, dry_run=dry_run)
