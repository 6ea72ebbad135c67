from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.luks import (
    EncryptionProfile,
    clear_stale_mapping,
    dump_profile,
    format_container,
    open_container,
    read_passphrase,
)
from ..params import load_parameters
from ..state_store import set_resource

logger = logging.getLogger(__name__)


class EncryptStep:
    step_id = "30_encrypt"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = state.get("config") or {}
        exe = state.setdefault("execution", {})
        params = load_parameters(state)
        dry_run = bool(cfg.get("dry_run", False))

        profile = EncryptionProfile.from_dict(cfg.get("encryption") or {})
        clear_stale_mapping(params.mapping_name, dry_run=dry_run)

        passphrase = "" if dry_run else read_passphrase(cfg.get("passphrase_file"))
        container = format_container(params.root_partition, profile, passphrase, dry_run=dry_run)
        set_resource(state, "container", "closed", params.root_partition)

        container = open_container(container, passphrase, params.mapping_name, dry_run=dry_run)
        set_resource(state, "container", "open", params.mapping_name)

        if not dry_run:
            logger.info("LUKS header: %s", dump_profile(params.root_partition))

        exe["container"] = {"device": container.device, "mapping": container.mapping}
        return state
