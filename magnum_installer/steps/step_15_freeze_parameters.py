from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from ..errors import InstallerError
from ..lib.block import resolve_disk
from ..params import ProvisioningParameters

logger = logging.getLogger(__name__)

CONFIRM_WORD = "YES"


class FreezeParametersStep:
    """Resolve the target disk, confirm the wipe and freeze all parameters."""

    step_id = "15_freeze_parameters"

    def __init__(self, prompt: Callable[[str], str] = input) -> None:
        self._prompt = prompt

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = state.get("config") or {}
        hw = state.get("hardware") or {}
        dry_run = bool(cfg.get("dry_run", False))

        if not cfg.get("disk"):
            raise InstallerError("config.disk is required (e.g. --disk /dev/nvme0n1)")
        if not cfg.get("username"):
            raise InstallerError("config.username is required")

        if dry_run:
            disk = str(cfg["disk"])
            if not disk.startswith("/dev/"):
                disk = "/dev/" + disk
        else:
            disk = resolve_disk(str(cfg["disk"])).path

        params = ProvisioningParameters.from_config(cfg, disk=disk, microcode=hw.get("microcode"))

        if not (cfg.get("assume_yes") or dry_run):
            logger.warning("ALL DATA ON %s WILL BE DESTROYED", disk)
            answer = self._prompt(f"Type {CONFIRM_WORD} to wipe {disk}: ")
            if answer.strip() != CONFIRM_WORD:
                raise InstallerError("Aborted by user")

        state["parameters"] = params.to_dict()
        logger.info(
            "Parameters frozen: disk=%s host=%s user=%s gpu=%s boot=%s",
            params.disk,
            params.hostname,
            params.username,
            params.gpu,
            params.boot_mode,
        )
        return state
