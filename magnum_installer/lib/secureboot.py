"""Secure Boot key lifecycle via sbctl.

Key material moves ABSENT -> CREATED -> ENROLLED. Each transition function
takes a :class:`KeySet` and returns a new one; signing refuses a key set that
never reached CREATED.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..errors import CommandError, SecureBootStateError
from .command import run_cmd

logger = logging.getLogger(__name__)


class KeyState(str, enum.Enum):
    ABSENT = "absent"
    CREATED = "created"
    ENROLLED = "enrolled"


@dataclass(frozen=True)
class KeySet:
    state: KeyState = KeyState.ABSENT

    @property
    def can_sign(self) -> bool:
        return self.state in {KeyState.CREATED, KeyState.ENROLLED}


def create_keys(*, dry_run: bool = False) -> KeySet:
    logger.info("Creating Secure Boot keys with sbctl")
    try:
        run_cmd(["sbctl", "create-keys"], dry_run=dry_run)
    except (CommandError, OSError) as e:
        raise SecureBootStateError(f"Failed to create Secure Boot keys: {e}") from e
    return KeySet(KeyState.CREATED)


def enroll_keys(
    keyset: KeySet,
    *,
    vendor_keys: bool = True,
    timeout: Optional[float] = None,
    dry_run: bool = False,
) -> KeySet:
    if keyset.state is not KeyState.CREATED:
        raise SecureBootStateError(f"Cannot enroll keys in state {keyset.state.value}")
    argv = ["sbctl", "enroll-keys"]
    if vendor_keys:
        # Keep the Microsoft CA trusted for dual-boot and option ROMs.
        argv.append("--microsoft")
    logger.info("Enrolling Secure Boot keys%s", " (with vendor keys)" if vendor_keys else "")
    try:
        run_cmd(argv, timeout=timeout, dry_run=dry_run)
    except (CommandError, OSError) as e:
        raise SecureBootStateError(f"Failed to enroll Secure Boot keys: {e}") from e
    return KeySet(KeyState.ENROLLED)


def sign(keyset: KeySet, binary: Path, *, dry_run: bool = False) -> None:
    if not keyset.can_sign:
        raise SecureBootStateError(f"Cannot sign {binary}: keys are {keyset.state.value}")
    # -s records the path in sbctl's database so pacman hooks re-sign on update.
    run_cmd(["sbctl", "sign", "-s", str(binary)], dry_run=dry_run)


def probe_secure_boot(
    enabled: bool,
    *,
    vendor_keys: bool = True,
    enroll_timeout: Optional[float] = None,
    dry_run: bool = False,
) -> KeySet:
    """Create and enroll keys; degrade to ABSENT or CREATED instead of failing."""

    if not enabled:
        logger.info("Secure Boot disabled by configuration")
        return KeySet()
    try:
        keyset = create_keys(dry_run=dry_run)
    except SecureBootStateError as e:
        logger.warning("%s; continuing with Secure Boot disabled (images will be unsigned)", e)
        return KeySet()
    try:
        return enroll_keys(keyset, vendor_keys=vendor_keys, timeout=enroll_timeout, dry_run=dry_run)
    except SecureBootStateError as e:
        logger.warning("%s; images will be signed but keys must be enrolled manually (sbctl enroll-keys)", e)
        return keyset


@dataclass
class SigningReport:
    signed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    primary_ok: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {"signed": list(self.signed), "failed": dict(self.failed), "primary_ok": self.primary_ok}


def sign_boot_chain(
    keyset: KeySet,
    primary: Path,
    others: Iterable[Path] = (),
    *,
    dry_run: bool = False,
) -> SigningReport:
    """Sign the primary UKI and every other boot-chain binary that exists."""

    report = SigningReport()
    if not keyset.can_sign:
        logger.warning("Secure Boot keys unavailable; %s left unsigned", str(primary))
        return report

    try:
        sign(keyset, primary, dry_run=dry_run)
        report.signed.append(str(primary))
        report.primary_ok = True
    except CommandError as e:
        report.failed[str(primary)] = str(e)
        logger.error(
            "SIGNING FAILED for primary image %s: it will not boot with Secure Boot enforced (%s)",
            str(primary),
            e,
        )

    for binary in others:
        if not dry_run and not Path(binary).is_file():
            continue
        try:
            sign(keyset, Path(binary), dry_run=dry_run)
            report.signed.append(str(binary))
        except CommandError as e:
            report.failed[str(binary)] = str(e)
            logger.warning("Could not sign %s: %s", str(binary), e)
    return report
