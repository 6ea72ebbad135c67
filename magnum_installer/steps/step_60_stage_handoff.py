from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from ..lib.env import PATHS
from ..lib.template import run_stage2, write_stage2
from ..params import load_parameters
from ..state_store import set_resource

logger = logging.getLogger(__name__)


class StageHandoffStep:
    step_id = "60_stage_handoff"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = state.get("config") or {}
        params = load_parameters(state)
        dry_run = bool(cfg.get("dry_run", False))
        mount_root = str(cfg.get("mount_root") or PATHS.mount_root)

        write_stage2(mount_root, params, dry_run=dry_run)
        run_stage2(mount_root, dry_run=dry_run)
        set_resource(state, "swap", "created", str(Path(mount_root) / PATHS.swapfile.lstrip("/")))
        return state
