from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.env import PATHS
from ..lib.pkg import pacstrap, select_packages
from ..params import load_parameters

logger = logging.getLogger(__name__)


class InstallBaseStep:
    step_id = "50_install_base"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = state.get("config") or {}
        params = load_parameters(state)
        dry_run = bool(cfg.get("dry_run", False))
        mount_root = str(cfg.get("mount_root") or PATHS.mount_root)
        timeout = (cfg.get("timeouts") or {}).get("pacstrap_s")

        packages = select_packages(
            microcode=params.microcode or None,
            gpu=params.gpu_family,
            extra=cfg.get("extra_packages") or [],
        )
        state.setdefault("execution", {}).setdefault("decisions", {})["packages"] = packages
        pacstrap(mount_root, packages, timeout=float(timeout) if timeout else None, dry_run=dry_run)
        return state
