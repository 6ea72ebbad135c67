from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.btrfs import (
    MountedTree,
    SubvolumeTopology,
    create_subvolumes,
    format_esp,
    format_root,
    mount_topology,
)
from ..lib.env import PATHS
from ..params import load_parameters
from ..state_store import set_resource

logger = logging.getLogger(__name__)


class FilesystemsStep:
    step_id = "40_filesystems"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = state.get("config") or {}
        exe = state.setdefault("execution", {})
        params = load_parameters(state)
        dry_run = bool(cfg.get("dry_run", False))
        mount_root = str(cfg.get("mount_root") or PATHS.mount_root)
        mapped = f"/dev/mapper/{params.mapping_name}"

        format_esp(params.esp_partition, dry_run=dry_run)
        format_root(mapped, dry_run=dry_run)
        set_resource(state, "filesystems", "formatted", f"{params.esp_partition} vfat, {mapped} btrfs")

        topology = SubvolumeTopology.default()
        create_subvolumes(
            mapped,
            topology,
            mount_root,
            on_create=lambda names: set_resource(state, "subvolumes", "created", " ".join(names)),
            dry_run=dry_run,
        )

        def record_mounts(partial: MountedTree) -> None:
            exe["mounts"] = partial.to_dict()
            set_resource(state, "mounts", "mounted", mount_root)

        tree = mount_topology(
            mapped,
            params.esp_partition,
            topology,
            mount_root,
            esp_mountpoint=PATHS.esp_mountpoint,
            on_mount=record_mounts,
            dry_run=dry_run,
        )
        logger.info("Mounted %d filesystems under %s", len(tree.mounts), mount_root)
        return state
