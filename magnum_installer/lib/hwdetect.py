from __future__ import annotations

import logging
import platform
from pathlib import Path
from typing import Any, Dict, Optional

from .firmware import detect_firmware, efivars_available

logger = logging.getLogger(__name__)

_CPU_VENDOR_MAP = {
    "authenticamd": "amd",
    "genuineintel": "intel",
}

MICROCODE_PACKAGES = {
    "amd": "amd-ucode",
    "intel": "intel-ucode",
}


def _read_text(path: Path) -> Optional[str]:
    try:
        txt = path.read_text(encoding="utf-8", errors="ignore").strip()
        return txt or None
    except OSError:
        return None


def detect_cpu_vendor(cpuinfo_path: str = "/proc/cpuinfo") -> Optional[str]:
    text = _read_text(Path(cpuinfo_path)) or ""
    for line in text.splitlines():
        if not line.lower().startswith("vendor_id"):
            continue
        vendor = line.split(":", 1)[-1].strip().lower()
        return _CPU_VENDOR_MAP.get(vendor)
    return None


def microcode_package(vendor: Optional[str]) -> Optional[str]:
    if not vendor:
        return None
    return MICROCODE_PACKAGES.get(vendor)


def detect_hardware(*, cpuinfo_path: str = "/proc/cpuinfo") -> Dict[str, Any]:
    vendor = detect_cpu_vendor(cpuinfo_path)
    hw: Dict[str, Any] = {
        "arch": platform.machine(),
        "cpu_vendor": vendor,
        "microcode": microcode_package(vendor),
        "firmware": detect_firmware(),
        "efivars": efivars_available(),
    }

    # RAM (best-effort)
    meminfo = _read_text(Path("/proc/meminfo")) or ""
    for line in meminfo.splitlines():
        if line.startswith("MemTotal:"):
            hw["ram_mb"] = int(line.split()[1]) // 1024
            break

    logger.info(
        "Hardware: arch=%s cpu=%s microcode=%s firmware=%s",
        hw["arch"],
        vendor or "unknown",
        hw["microcode"] or "none",
        hw["firmware"],
    )
    return hw
