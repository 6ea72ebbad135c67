from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions.
    return "json"


def _yaml():
    try:
        import yaml  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            "YAML requested but PyYAML is not available. Use JSON or install PyYAML."
        ) from e
    return yaml


def load_state(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}

    if _detect_format(p) in {"yaml", "yml"}:
        data = _yaml().safe_load(p.read_text(encoding="utf-8")) or {}
    else:
        data = json.loads(p.read_text(encoding="utf-8"))

    if not isinstance(data, dict):
        raise ValueError(f"State file must be an object/dict, got {type(data)}")

    return data


def save_state(path: str, state: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if _detect_format(p) in {"yaml", "yml"}:
        p.write_text(_yaml().safe_dump(state, sort_keys=False) + "\n", encoding="utf-8")
    else:
        p.write_text(json.dumps(state, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def load_config(path: str) -> Dict[str, Any]:
    """Read the YAML installer configuration."""

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)
    raw = _yaml().safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a mapping/object")
    return raw


def ensure_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    """Fill required keys with sane defaults (without overriding user values)."""

    state.setdefault("version", "1.0")
    state.setdefault("config", {})
    state.setdefault("hardware", {})
    state.setdefault("execution", {})

    cfg = state["config"]
    cfg.setdefault("disk", None)
    cfg.setdefault("esp_size_mib", 1024)
    cfg.setdefault("hostname", "archbtw")
    cfg.setdefault("username", None)
    cfg.setdefault("timezone", "Africa/Algiers")
    cfg.setdefault("locale", "en_US.UTF-8")
    cfg.setdefault("keymap", "us")
    cfg.setdefault("swap_size", "8G")
    cfg.setdefault("gpu", "none")
    # auto: detect from /proc/cpuinfo; amd|intel force a package; none skips it.
    cfg.setdefault("microcode", "auto")
    cfg.setdefault("mapping_name", "cryptroot")
    cfg.setdefault("mount_root", "/mnt")
    cfg.setdefault("passphrase_file", None)
    cfg.setdefault("extra_packages", [])
    cfg.setdefault("dry_run", False)
    cfg.setdefault("assume_yes", False)

    enc = cfg.setdefault("encryption", {})
    enc.setdefault("luks_type", "luks2")
    enc.setdefault("cipher", "aes-xts-plain64")
    enc.setdefault("key_size", 512)
    enc.setdefault("hash", "sha512")
    enc.setdefault("pbkdf", "argon2id")
    enc.setdefault("iter_time_ms", 5000)

    boot = cfg.setdefault("boot", {})
    boot.setdefault("mode", "efistub")
    boot.setdefault("label", "Arch Linux")
    boot.setdefault("timeout", 3)

    sb = cfg.setdefault("secure_boot", {})
    sb.setdefault("enabled", True)
    sb.setdefault("vendor_keys", True)

    timeouts = cfg.setdefault("timeouts", {})
    timeouts.setdefault("pacstrap_s", 3600)
    timeouts.setdefault("enroll_s", 120)

    exe = state["execution"]
    exe.setdefault("current_step", None)
    exe.setdefault("completed_steps", [])
    exe.setdefault("errors", [])
    exe.setdefault("resources", {})

    return state


def mark_step_completed(state: Dict[str, Any], step_id: str) -> None:
    exe = state.setdefault("execution", {})
    completed = exe.setdefault("completed_steps", [])
    if step_id not in completed:
        completed.append(step_id)


def is_step_completed(state: Dict[str, Any], step_id: str) -> bool:
    exe = state.get("execution") or {}
    completed = exe.get("completed_steps") or []
    return step_id in completed


# Resource ledger: what the disk, container and mounts look like right now.
RESOURCE_LABELS = {
    "disk": "disk",
    "container": "encryption container",
    "filesystems": "filesystems",
    "subvolumes": "subvolumes",
    "mounts": "mount tree",
    "swap": "swap file",
}


def set_resource(state: Dict[str, Any], name: str, status: str, detail: str | None = None) -> None:
    res = state.setdefault("execution", {}).setdefault("resources", {})
    res[name] = {"status": status, "detail": detail}


def get_resource(state: Dict[str, Any], name: str) -> Dict[str, Any]:
    return ((state.get("execution") or {}).get("resources") or {}).get(name) or {}


def describe_resources(state: Dict[str, Any]) -> List[str]:
    lines = []
    res = (state.get("execution") or {}).get("resources") or {}
    for key, label in RESOURCE_LABELS.items():
        entry = res.get(key)
        if not entry:
            continue
        detail = f" ({entry['detail']})" if entry.get("detail") else ""
        lines.append(f"{label}: {entry['status']}{detail}")
    return lines
