from __future__ import annotations

import logging
import os
from typing import Any, Dict

from ..errors import CommandError, InstallerError
from ..lib.command import run_cmd
from ..lib.firmware import efivars_available

logger = logging.getLogger(__name__)


class PreflightStep:
    step_id = "05_preflight"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = state.get("config") or {}
        dry_run = bool(cfg.get("dry_run", False))

        if os.geteuid() != 0 and not dry_run:
            raise InstallerError("This installer must be run as root")

        if not efivars_available() and not dry_run:
            raise InstallerError("System is not booted in UEFI mode (/sys/firmware/efi/efivars missing)")

        try:
            run_cmd(["timedatectl", "set-ntp", "true"], dry_run=dry_run)
        except (CommandError, OSError) as e:
            logger.warning("Could not enable NTP time sync: %s", e)

        logger.info("Preflight checks passed")
        return state
