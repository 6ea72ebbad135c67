"""Second stage: runs inside the new root with ``/`` as the target system.

Entered through the generated ``/root/magnum-stage2.py`` program, which
calls :func:`main` with the frozen parameter record. Steps run in one
fail-fast pipeline pass; state is checkpointed so a failed run can resume.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from .lib.block import get_uuid, parent_disk, partition_number
from .lib.bootloader import (
    ESP_MOUNTPOINT,
    BootEntry,
    install_systemd_boot,
    register_firmware_entry,
    verify_loader,
    write_boot_entry,
    write_loader_conf,
)
from .lib.env import PATHS
from .lib.firmware import Capabilities, efivars_available, probe_firmware_entries
from .lib.secureboot import KeySet, KeyState, probe_secure_boot, sign_boot_chain
from .lib.swap import provision_swapfile
from .lib.sysconfig import (
    build_initramfs,
    configure_initramfs,
    create_user,
    enable_locale,
    enable_services,
    set_keymap,
    set_password,
    set_root_password,
    set_timezone,
    write_identity,
    write_sudoers_wheel,
)
from .lib.uki import (
    UKI_DIR,
    VARIANT_FILENAMES,
    UkiSpec,
    build_kernel_cmdline,
    build_variants,
    cleanup_transients,
    resolve_microcode,
)
from .logging_utils import configure_logging
from .params import load_parameters
from .pipeline import run_pipeline
from .state_store import load_state, save_state, set_resource

logger = logging.getLogger(__name__)

SERVICES = ("NetworkManager", "fstrim.timer")

# Boot-chain binaries besides the UKIs that are signed when present.
FIRMWARE_FALLBACK_LOADER = "EFI/BOOT/BOOTX64.EFI"


def _dry_run(state: Dict[str, Any]) -> bool:
    return bool((state.get("execution") or {}).get("dry_run", False))


def _capabilities(state: Dict[str, Any]) -> Capabilities:
    return Capabilities.from_dict(state.get("capabilities"))


def _keyset(state: Dict[str, Any]) -> KeySet:
    raw = (state.get("secure_boot") or {}).get("keys") or KeyState.ABSENT.value
    return KeySet(KeyState(raw))


class ConfigureSystemStep:
    step_id = "s10_configure_system"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        params = load_parameters(state)
        dry_run = _dry_run(state)

        set_root_password(dry_run=dry_run)
        create_user(params.username, dry_run=dry_run)
        set_password(params.username, dry_run=dry_run)

        write_identity(params.hostname, dry_run=dry_run)
        set_timezone(params.timezone, dry_run=dry_run)
        enable_locale(params.locale, dry_run=dry_run)
        set_keymap(params.keymap, dry_run=dry_run)

        configure_initramfs(dry_run=dry_run)
        build_initramfs(dry_run=dry_run)
        return state


class SwapStep:
    step_id = "s20_swap"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        params = load_parameters(state)
        # Activated by the fstab entry on first boot.
        provision_swapfile(PATHS.swapfile, params.swap_size, activate=False, dry_run=_dry_run(state))
        set_resource(state, "swap", "created", f"{PATHS.swapfile} {params.swap_size}")
        return state


class BuildUkiStep:
    step_id = "s30_build_uki"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        params = load_parameters(state)
        dry_run = _dry_run(state)

        root_uuid = get_uuid(params.root_partition, dry_run=dry_run)
        if dry_run and not root_uuid:
            root_uuid = "00000000-0000-0000-0000-000000000000"
        cmdline = build_kernel_cmdline(root_uuid, params.mapping_name)
        logger.info("Kernel command line: %s", cmdline)

        spec = UkiSpec(cmdline=cmdline, microcode=resolve_microcode(params.microcode))
        built = build_variants(spec, dry_run=dry_run)

        boot = state.setdefault("boot", {})
        boot["cmdline"] = cmdline
        boot["images"] = {variant: str(path) for variant, path in built.items()}
        return state


class SecureBootStep:
    step_id = "s40_secure_boot"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        params = load_parameters(state)
        dry_run = _dry_run(state)
        images = (state.get("boot") or {}).get("images") or {}

        keyset = probe_secure_boot(
            params.secure_boot,
            vendor_keys=params.vendor_keys,
            enroll_timeout=params.enroll_timeout_s,
            dry_run=dry_run,
        )
        state["capabilities"] = replace(_capabilities(state), secure_boot=keyset.can_sign).to_dict()

        primary = Path(images.get("primary") or UKI_DIR / VARIANT_FILENAMES["primary"])
        others: List[Path] = [Path(p) for v, p in images.items() if v != "primary"]
        others.append(Path(ESP_MOUNTPOINT) / FIRMWARE_FALLBACK_LOADER)
        report = sign_boot_chain(keyset, primary, others, dry_run=dry_run)

        state["secure_boot"] = {"keys": keyset.state.value, "report": report.to_dict()}
        return state


class RegisterBootStep:
    step_id = "s50_register_boot"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        params = load_parameters(state)
        dry_run = _dry_run(state)
        caps = _capabilities(state)

        if params.boot_mode == "systemd-boot":
            self._install_systemd_boot(state, params.boot_timeout, dry_run=dry_run)
            return state

        entry = BootEntry(
            label=params.boot_label,
            loader=f"EFI/Linux/{VARIANT_FILENAMES['primary']}",
            disk=parent_disk(params.esp_partition, dry_run=dry_run) or params.disk,
            partition=partition_number(params.esp_partition),
        )
        if not dry_run:
            verify_loader(ESP_MOUNTPOINT, entry)

        registered = False
        if caps.firmware_entries:
            registered = register_firmware_entry(entry, dry_run=dry_run)
        else:
            logger.warning(
                "Firmware boot entries are not writable here; add %s from firmware setup",
                entry.efi_loader_path(),
            )
        state["capabilities"] = replace(caps, firmware_entries=registered).to_dict()
        state.setdefault("boot", {})["entry"] = {"label": entry.label, "loader": entry.efi_loader_path()}
        return state

    def _install_systemd_boot(self, state: Dict[str, Any], timeout: int, *, dry_run: bool) -> None:
        boot = state.setdefault("boot", {})
        images = boot.get("images") or {}
        cmdline = boot.get("cmdline") or ""

        binaries = install_systemd_boot(esp_path=ESP_MOUNTPOINT, dry_run=dry_run)
        write_loader_conf(ESP_MOUNTPOINT, default="arch.conf", timeout=timeout, dry_run=dry_run)
        for variant, image in images.items():
            name = "arch" if variant == "primary" else f"arch-{variant}"
            title = "Arch Linux" if variant == "primary" else f"Arch Linux ({variant})"
            efi_path = str(Path(image).relative_to(ESP_MOUNTPOINT))
            write_boot_entry(ESP_MOUNTPOINT, name=name, title=title, efi_path=efi_path, cmdline=cmdline, dry_run=dry_run)

        report = sign_boot_chain(_keyset(state), binaries[0], binaries[1:], dry_run=dry_run)
        state.setdefault("secure_boot", {})["manager_report"] = report.to_dict()


class EnableServicesStep:
    step_id = "s60_enable_services"

    def run(self, state: Dict[str, Any]) -> Dict[str, Any]:
        dry_run = _dry_run(state)
        enable_services(SERVICES, dry_run=dry_run)
        write_sudoers_wheel(dry_run=dry_run)
        if not dry_run:
            cleanup_transients()
        return state


def build_steps():
    return [
        ConfigureSystemStep(),
        SwapStep(),
        BuildUkiStep(),
        SecureBootStep(),
        RegisterBootStep(),
        EnableServicesStep(),
    ]


def main(
    parameters: Dict[str, Any],
    *,
    state_path: str = PATHS.stage2_state_default,
    log_path: str = PATHS.stage2_log_default,
    dry_run: bool = False,
) -> int:
    """Configure the installed system from a frozen parameter record."""

    configure_logging(log_path=log_path)

    state = load_state(state_path)
    state["parameters"] = dict(parameters)
    # Fails here, before anything runs, if the record is malformed.
    load_parameters(state)
    exe = state.setdefault("execution", {})
    exe["dry_run"] = dry_run
    exe.setdefault("completed_steps", [])
    exe.setdefault("errors", [])

    if "capabilities" not in state:
        state["capabilities"] = Capabilities(
            uefi=efivars_available(),
            firmware_entries=probe_firmware_entries(),
        ).to_dict()
    logger.info("Capabilities: %s", state["capabilities"])

    try:
        run_pipeline(state=state, steps=build_steps(), checkpoint=lambda s: save_state(state_path, s))
    except Exception as e:
        logger.exception("Second stage failed")
        exe.setdefault("errors", []).append({"step": exe.get("current_step"), "error": str(e)})
        return 1
    finally:
        save_state(state_path, state)

    caps = _capabilities(state)
    if not caps.secure_boot:
        logger.warning("Secure Boot keys are not in place; boot images are unsigned")
    if not caps.firmware_entries:
        logger.warning("No UEFI boot entry was created")
    logger.info("Second stage complete")
    return 0


def cli(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="magnum-installer-stage2")
    p.add_argument("parameters", help="Parameter record (json|yaml), as frozen by the outer stage")
    p.add_argument("--state", default=PATHS.stage2_state_default, help="Path to second-stage state")
    p.add_argument("--log", default=PATHS.stage2_log_default, help="Path to second-stage log")
    p.add_argument("--dry-run", action="store_true", help="Log commands without executing them")
    args = p.parse_args(argv)

    record = load_state(args.parameters)
    if not record:
        p.error(f"No parameter record in {args.parameters}")
    # Accept either a bare record or a full outer-stage state file.
    params = record.get("parameters", record)
    return main(params, state_path=args.state, log_path=args.log, dry_run=args.dry_run)


if __name__ == "__main__":
    raise SystemExit(cli())
