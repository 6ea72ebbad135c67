from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..lib.hwdetect import MICROCODE_PACKAGES, detect_hardware

logger = logging.getLogger(__name__)


def choose_microcode(setting: Optional[str], detected: Optional[str]) -> Optional[str]:
    """Resolve config.microcode (auto|amd|intel|none) to a package name."""

    value = str(setting or "auto").strip().lower()
    if value == "auto":
        return detected
    if value == "none":
        return None
    if value in MICROCODE_PACKAGES:
        return MICROCODE_PACKAGES[value]
    raise ValueError(f"config.microcode must be auto, amd, intel or none, got {setting!r}")


class DetectHardwareStep:
    step_id = "10_detect_hardware"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = state.get("config") or {}

        hw = detect_hardware()
        hw["microcode"] = choose_microcode(cfg.get("microcode"), hw.get("microcode"))
        state["hardware"] = hw

        if hw["microcode"]:
            logger.info("Microcode package: %s", hw["microcode"])
        else:
            logger.info("No microcode package will be installed")
        return state
