from __future__ import annotations

import logging
from typing import Any, Dict

from ..errors import PartitionLayoutError
from ..lib.storage import PartitionPlan, partition_disk
from ..params import load_parameters
from ..state_store import set_resource

logger = logging.getLogger(__name__)


class PartitionStep:
    step_id = "20_partition"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = state.get("config") or {}
        exe = state.setdefault("execution", {})
        params = load_parameters(state)
        dry_run = bool(cfg.get("dry_run", False))

        plan = PartitionPlan.default(params.disk, esp_size_mib=int(cfg.get("esp_size_mib", 1024)))
        result = partition_disk(plan, dry_run=dry_run)

        if (result.esp_part, result.root_part) != (params.esp_partition, params.root_partition):
            raise PartitionLayoutError(
                f"Partition paths {result.esp_part}, {result.root_part} differ from frozen parameters "
                f"{params.esp_partition}, {params.root_partition}"
            )

        exe["partitions"] = {"esp": result.esp_part, "root": result.root_part}
        set_resource(state, "disk", "partitioned", params.disk)
        return state
