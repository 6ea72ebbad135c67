from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import InstallerError
from .lib.btrfs import MountedTree, unmount_recursive, unmount_topology
from .lib.env import PATHS
from .lib.luks import EncryptedContainer, EncryptionProfile, close_container
from .lib.swap import deactivate_swapfile
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .pipeline import run_pipeline
from .state_store import (
    describe_resources,
    ensure_defaults,
    get_resource,
    load_config,
    load_state,
    save_state,
    set_resource,
)
from .steps import (
    DetectHardwareStep,
    EncryptStep,
    FilesystemsStep,
    FinalizeStep,
    FreezeParametersStep,
    InstallBaseStep,
    PartitionStep,
    PreflightStep,
    StageHandoffStep,
    WriteFstabStep,
)

logger = logging.getLogger(__name__)


DEFAULT_STATE_PATH = PATHS.state_default


def build_steps():
    return [
        PreflightStep(),
        DetectHardwareStep(),
        FreezeParametersStep(),
        PartitionStep(),
        EncryptStep(),
        FilesystemsStep(),
        InstallBaseStep(),
        WriteFstabStep(),
        StageHandoffStep(),
        FinalizeStep(),
    ]


def merge_config(state: Dict[str, Any], file_cfg: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    """Config file values replace stored ones; CLI overrides win over both."""

    cfg = state.setdefault("config", {})
    for key, value in file_cfg.items():
        if isinstance(value, dict) and isinstance(cfg.get(key), dict):
            cfg[key].update(value)
        else:
            cfg[key] = value
    for key, value in overrides.items():
        if value is not None:
            cfg[key] = value


def unwind(state: Dict[str, Any]) -> None:
    """Best-effort teardown after a fatal error: swapoff, unmount, then close the container.

    Every failure is logged; none is raised.
    """

    cfg = state.get("config") or {}
    exe = state.get("execution") or {}
    dry_run = bool(cfg.get("dry_run", False))

    if get_resource(state, "mounts").get("status") == "mounted":
        tree = MountedTree.from_dict(exe.get("mounts") or {"mount_root": cfg.get("mount_root") or PATHS.mount_root})
        swapfile = str(Path(tree.mount_root) / PATHS.swapfile.lstrip("/"))
        if deactivate_swapfile(swapfile, dry_run=dry_run):
            set_resource(state, "swap", "inactive", swapfile)
        logger.info("Unwind: unmounting %s", tree.mount_root)
        try:
            unmount_topology(tree, dry_run=dry_run)
            set_resource(state, "mounts", "unmounted", tree.mount_root)
        except (InstallerError, OSError) as e:
            logger.error("Unwind: ordered unmount failed (%s); trying recursive unmount", e)
            if unmount_recursive(tree.mount_root, dry_run=dry_run):
                set_resource(state, "mounts", "unmounted", tree.mount_root)
            else:
                logger.error("Unwind: %s is still mounted", tree.mount_root)

    info = exe.get("container") or {}
    if get_resource(state, "container").get("status") == "open" and info.get("mapping"):
        container = EncryptedContainer(
            device=info["device"],
            profile=EncryptionProfile.from_dict(cfg.get("encryption") or {}),
            mapping=info["mapping"],
        )
        logger.info("Unwind: closing /dev/mapper/%s", container.mapping)
        try:
            close_container(container, dry_run=dry_run)
            set_resource(state, "container", "closed", container.device)
        except (InstallerError, OSError) as e:
            logger.error("Unwind: could not close container: %s", e)


def run(
    *,
    state_path: str = DEFAULT_STATE_PATH,
    log_path: str = DEFAULT_LOG_PATH,
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    start_at: Optional[str] = None,
    stop_after: Optional[str] = None,
    force: bool = False,
    unwind_on_error: bool = False,
) -> Dict[str, Any]:
    """Run the installer pipeline, persisting state for resume."""

    actual_log_path = configure_logging(log_path=log_path)

    state = load_state(state_path)
    merge_config(state, load_config(config_path) if config_path else {}, overrides or {})
    state = ensure_defaults(state)
    state.setdefault("execution", {}).setdefault("paths", {})["log_path_requested"] = log_path
    state.setdefault("execution", {}).setdefault("paths", {})["log_path_actual"] = actual_log_path

    steps = build_steps()

    try:
        result = run_pipeline(
            state=state,
            steps=steps,
            start_at=start_at,
            stop_after=stop_after,
            force=force,
            checkpoint=lambda s: save_state(state_path, s),
        )
        state = result.state
        state.setdefault("execution", {}).setdefault("summary", {})["ran_steps"] = result.ran_steps
        state.setdefault("execution", {}).setdefault("summary", {})["skipped_steps"] = result.skipped_steps
        return state
    except Exception as e:
        logger.exception("Installer failed")
        state.setdefault("execution", {}).setdefault("errors", []).append(
            {
                "step": (state.get("execution") or {}).get("current_step"),
                "error": str(e),
            }
        )
        for line in describe_resources(state):
            logger.error("Left behind: %s", line)
        if unwind_on_error:
            unwind(state)
        raise
    finally:
        save_state(state_path, state)


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="magnum-installer")
    p.add_argument("--config", default=None, help="Path to YAML configuration")
    p.add_argument("--state", default=DEFAULT_STATE_PATH, help="Path to installer state (json|yaml)")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to installer log")
    p.add_argument("--disk", default=None, help="Target disk (e.g. /dev/nvme0n1); overrides config")
    p.add_argument("--start-at", default=None, help="Start at step_id (e.g. 40_filesystems)")
    p.add_argument("--stop-after", default=None, help="Stop after step_id")
    p.add_argument("--force", action="store_true", help="Re-run steps even if marked completed")
    p.add_argument("--dry-run", action="store_true", help="Log commands without executing them")
    p.add_argument("--yes", action="store_true", help="Do not ask for confirmation before wiping the disk")
    p.add_argument(
        "--unwind-on-error",
        action="store_true",
        help="On failure, unmount the target and close the encrypted container",
    )

    args = p.parse_args(argv)

    overrides: Dict[str, Any] = {"disk": args.disk}
    if args.dry_run:
        overrides["dry_run"] = True
    if args.yes:
        overrides["assume_yes"] = True

    run(
        state_path=args.state,
        log_path=args.log,
        config_path=args.config,
        overrides=overrides,
        start_at=args.start_at,
        stop_after=args.stop_after,
        force=args.force,
        unwind_on_error=args.unwind_on_error,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
