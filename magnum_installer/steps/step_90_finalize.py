from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any, Dict

from ..lib.btrfs import MountedTree, unmount_topology
from ..lib.env import PATHS
from ..lib.luks import EncryptedContainer, EncryptionProfile, close_container
from ..lib.swap import deactivate_swapfile
from ..lib.template import STAGE2_PACKAGE_DIR, STAGE2_SCRIPT
from ..state_store import set_resource

logger = logging.getLogger(__name__)


class FinalizeStep:
    step_id = "90_finalize"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = state.get("config") or {}
        exe = state.setdefault("execution", {})
        dry_run = bool(cfg.get("dry_run", False))

        mounts = exe.get("mounts")
        if mounts:
            tree = MountedTree.from_dict(mounts)
            if not dry_run:
                root = Path(tree.mount_root)
                (root / STAGE2_SCRIPT.lstrip("/")).unlink(missing_ok=True)
                shutil.rmtree(root / STAGE2_PACKAGE_DIR.lstrip("/"), ignore_errors=True)
            swapfile = str(Path(tree.mount_root) / PATHS.swapfile.lstrip("/"))
            deactivate_swapfile(swapfile, dry_run=dry_run)
            set_resource(state, "swap", "inactive", swapfile)
            unmount_topology(tree, dry_run=dry_run)
            exe["mounts"] = tree.to_dict()
            set_resource(state, "mounts", "unmounted", tree.mount_root)

        info = exe.get("container") or {}
        if info.get("mapping"):
            container = EncryptedContainer(
                device=info["device"],
                profile=EncryptionProfile.from_dict(cfg.get("encryption") or {}),
                mapping=info["mapping"],
            )
            container = close_container(container, dry_run=dry_run)
            exe["container"] = {"device": container.device, "mapping": container.mapping}
            set_resource(state, "container", "closed", container.device)

        logger.info("Installation complete. Remove the install medium and reboot.")
        return state
