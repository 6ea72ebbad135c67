"""Unified Kernel Image composition.

A UKI is the systemd EFI stub with four extra PE sections placed at fixed
virtual addresses. The layout is described by :class:`UkiLayout`, validated
as a whole, and only then handed to ``objcopy``.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..errors import BootImageError
from .command import run_cmd

logger = logging.getLogger(__name__)

SECTION_VMAS: Dict[str, int] = {
    ".osrel": 0x20000,
    ".cmdline": 0x30000,
    ".linux": 0x2000000,
    ".initrd": 0x3000000,
}

SECTION_ALIGN = 0x1000
VMA_LIMIT = 0x1_0000_0000

STUB_PATH = Path("/usr/lib/systemd/boot/efi/linuxx64.efi.stub")
OS_RELEASE_PATH = Path("/etc/os-release")
KERNEL_PATH = Path("/boot/vmlinuz-linux")
INITRD_PATH = Path("/boot/initramfs-linux.img")
FALLBACK_INITRD_PATH = Path("/boot/initramfs-linux-fallback.img")
UKI_DIR = Path("/efi/EFI/Linux")
WORK_DIR = Path("/tmp")

VARIANT_FILENAMES = {
    "primary": "arch.efi",
    "fallback": "arch-fallback.efi",
}


@dataclass(frozen=True)
class Section:
    name: str
    source: Path
    vma: int

    @property
    def size(self) -> int:
        return self.source.stat().st_size


@dataclass(frozen=True)
class UkiLayout:
    stub: Path
    sections: Tuple[Section, ...]

    @classmethod
    def standard(cls, stub: Path, *, osrel: Path, cmdline: Path, linux: Path, initrd: Path) -> "UkiLayout":
        sources = {".osrel": osrel, ".cmdline": cmdline, ".linux": linux, ".initrd": initrd}
        return cls(
            stub=stub,
            sections=tuple(Section(name, Path(sources[name]), vma) for name, vma in SECTION_VMAS.items()),
        )

    def validate(self) -> None:
        if not self.stub.is_file():
            raise BootImageError(f"EFI stub missing: {self.stub}")

        names = [s.name for s in self.sections]
        if len(set(names)) != len(names):
            raise BootImageError(f"Duplicate sections: {names}")
        missing = sorted(set(SECTION_VMAS) - set(names))
        if missing:
            raise BootImageError(f"Missing required sections: {', '.join(missing)}")

        for s in self.sections:
            if not s.source.is_file():
                raise BootImageError(f"Section {s.name} source missing: {s.source}")
            if s.vma % SECTION_ALIGN:
                raise BootImageError(f"Section {s.name} VMA {s.vma:#x} is not {SECTION_ALIGN:#x}-aligned")
            if s.vma + s.size > VMA_LIMIT:
                raise BootImageError(f"Section {s.name} at {s.vma:#x} (+{s.size:#x}) exceeds the 32-bit range")

        ordered = sorted(self.sections, key=lambda s: s.vma)
        for prev, nxt in zip(ordered, ordered[1:]):
            if prev.vma + prev.size > nxt.vma:
                raise BootImageError(
                    f"Section {prev.name} ({prev.vma:#x}+{prev.size:#x}) overlaps {nxt.name} at {nxt.vma:#x}"
                )

    def describe(self) -> Tuple[Tuple[str, int, int], ...]:
        return tuple((s.name, s.vma, s.size) for s in sorted(self.sections, key=lambda s: s.vma))


def objcopy_argv(layout: UkiLayout, output: Path) -> list[str]:
    argv = ["objcopy"]
    for s in layout.sections:
        argv += ["--add-section", f"{s.name}={s.source}", "--change-section-vma", f"{s.name}={s.vma:#x}"]
    argv += [str(layout.stub), str(output)]
    return argv


@dataclass(frozen=True)
class UkiSpec:
    cmdline: str
    os_release: Path = OS_RELEASE_PATH
    kernel: Path = KERNEL_PATH
    initrd: Path = INITRD_PATH
    microcode: Optional[Path] = None
    stub: Path = STUB_PATH


def build_kernel_cmdline(root_uuid: str, mapping: str = "cryptroot") -> str:
    if not root_uuid:
        raise BootImageError("Could not get root UUID")
    return f"rd.luks.name={root_uuid}={mapping} root=/dev/mapper/{mapping} rootflags=subvol=@ rw"


def resolve_microcode(package: str, *, boot_dir: Path = Path("/boot")) -> Optional[Path]:
    if not package:
        return None
    image = boot_dir / f"{package}.img"
    if image.is_file():
        logger.info("Including microcode: %s", package)
        return image
    logger.warning("Microcode %s selected but %s is absent; building without it", package, str(image))
    return None


def _remove(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def combine_initrd(initrd: Path, microcode: Optional[Path], output: Path) -> Path:
    """Write ``microcode || initrd`` to ``output`` as raw bytes."""

    _remove(output)
    with open(output, "wb") as out:
        if microcode is not None:
            with open(microcode, "rb") as src:
                shutil.copyfileobj(src, out)
        with open(initrd, "rb") as src:
            shutil.copyfileobj(src, out)
    return output


def _require_inputs(spec: UkiSpec) -> None:
    for label, path in (("kernel", spec.kernel), ("initrd", spec.initrd)):
        if not Path(path).is_file():
            raise BootImageError(f"Missing {label} image: {path}")


def build_uki(
    spec: UkiSpec,
    output: Path,
    *,
    workdir: Path = WORK_DIR,
    dry_run: bool = False,
) -> Path:
    combined = workdir / f"combined-{output.stem}.img"
    cmdline_file = workdir / "cmdline"
    if dry_run:
        layout = UkiLayout.standard(
            spec.stub, osrel=spec.os_release, cmdline=cmdline_file, linux=spec.kernel, initrd=combined
        )
        run_cmd(objcopy_argv(layout, output), dry_run=True)
        return output

    _require_inputs(spec)
    workdir.mkdir(parents=True, exist_ok=True)
    output.parent.mkdir(parents=True, exist_ok=True)
    try:
        combine_initrd(spec.initrd, spec.microcode, combined)
        cmdline_file.write_text(spec.cmdline + "\n", encoding="utf-8")
        layout = UkiLayout.standard(
            spec.stub, osrel=spec.os_release, cmdline=cmdline_file, linux=spec.kernel, initrd=combined
        )
        layout.validate()
        _remove(output)
        run_cmd(objcopy_argv(layout, output))
    finally:
        _remove(combined)
        _remove(cmdline_file)
    logger.info("Built UKI %s", str(output))
    return output


def build_variants(
    spec: UkiSpec,
    *,
    out_dir: Path = UKI_DIR,
    fallback_initrd: Path = FALLBACK_INITRD_PATH,
    workdir: Path = WORK_DIR,
    dry_run: bool = False,
) -> Dict[str, Path]:
    """Build the primary UKI, plus a fallback one when a fallback initrd exists."""

    built: Dict[str, Path] = {}
    logger.info("Building main UKI")
    built["primary"] = build_uki(spec, out_dir / VARIANT_FILENAMES["primary"], workdir=workdir, dry_run=dry_run)

    if fallback_initrd.is_file():
        logger.info("Building fallback UKI")
        fb = replace(spec, initrd=fallback_initrd)
        built["fallback"] = build_uki(fb, out_dir / VARIANT_FILENAMES["fallback"], workdir=workdir, dry_run=dry_run)
    return built


def cleanup_transients(workdir: Path = WORK_DIR) -> List[Path]:
    """Remove leftover cmdline blobs and combined initrds from an interrupted build."""

    removed: List[Path] = []
    for p in [workdir / "cmdline", *sorted(workdir.glob("combined-*.img"))]:
        if p.is_file():
            _remove(p)
            removed.append(p)
    if removed:
        logger.info("Removed transient files: %s", " ".join(str(p) for p in removed))
    return removed
