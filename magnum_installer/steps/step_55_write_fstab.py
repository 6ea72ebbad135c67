from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.env import PATHS
from ..lib.fstab import generate_fstab

logger = logging.getLogger(__name__)


class WriteFstabStep:
    step_id = "55_write_fstab"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = state.get("config") or {}
        dry_run = bool(cfg.get("dry_run", False))
        mount_root = str(cfg.get("mount_root") or PATHS.mount_root)

        generate_fstab(mount_root, dry_run=dry_run)
        return state
