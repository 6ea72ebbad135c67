"""LUKS container lifecycle: format, open, close.

The container is modelled as an immutable value whose ``mapping`` field is
the tagged state: ``None`` means closed, a mapping name means open. Each
transition returns a new value.
"""

from __future__ import annotations

import enum
import getpass
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import AlreadyOpenError, AuthenticationError, BusyError, CommandError
from .command import run_cmd

logger = logging.getLogger(__name__)

# cryptsetup(8) exit codes
_RC_NO_PERMISSION = 2
_RC_BUSY = 5


class ContainerState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"


@dataclass(frozen=True)
class EncryptionProfile:
    cipher: str = "aes-xts-plain64"
    key_size: int = 512
    hash: str = "sha512"
    pbkdf: str = "argon2id"
    # KDF time cost in milliseconds; large on purpose, tune per machine.
    iter_time_ms: int = 5000
    luks_type: str = "luks2"

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "EncryptionProfile":
        d = cls()
        return cls(
            cipher=str(raw.get("cipher", d.cipher)),
            key_size=int(raw.get("key_size", d.key_size)),
            hash=str(raw.get("hash", d.hash)),
            pbkdf=str(raw.get("pbkdf", d.pbkdf)),
            iter_time_ms=int(raw.get("iter_time_ms", d.iter_time_ms)),
            luks_type=str(raw.get("luks_type", d.luks_type)),
        )

    def to_args(self) -> List[str]:
        return [
            "--type", self.luks_type,
            "--cipher", self.cipher,
            "--hash", self.hash,
            "--iter-time", str(self.iter_time_ms),
            "--key-size", str(self.key_size),
            "--pbkdf", self.pbkdf,
        ]


@dataclass(frozen=True)
class EncryptedContainer:
    device: str
    profile: EncryptionProfile
    mapping: Optional[str] = None

    @property
    def state(self) -> ContainerState:
        return ContainerState.OPEN if self.mapping else ContainerState.CLOSED

    @property
    def mapped_device(self) -> str:
        if not self.mapping:
            raise BusyError(f"Container on {self.device} is closed; no mapped device")
        return f"/dev/mapper/{self.mapping}"


def mapping_exists(mapping: str) -> bool:
    return os.path.exists(f"/dev/mapper/{mapping}")


def format_container(
    partition: str,
    profile: EncryptionProfile,
    passphrase: str,
    *,
    dry_run: bool = False,
) -> EncryptedContainer:
    """Overwrite ``partition`` with a new LUKS header. Irreversible."""

    logger.info(
        "Formatting %s on %s (%s, %s-bit, %s). Key derivation takes ~%.1fs; this is expected, not a hang.",
        profile.luks_type,
        partition,
        profile.cipher,
        profile.key_size,
        profile.pbkdf,
        profile.iter_time_ms / 1000.0,
    )
    run_cmd(
        [
            "cryptsetup",
            "luksFormat",
            "--batch-mode",
            *profile.to_args(),
            "--use-urandom",
            "--key-file=-",
            partition,
        ],
        input_text=passphrase,
        dry_run=dry_run,
    )
    return EncryptedContainer(device=partition, profile=profile)


def open_container(
    container: EncryptedContainer,
    passphrase: str,
    mapping: str,
    *,
    dry_run: bool = False,
) -> EncryptedContainer:
    if container.state is ContainerState.OPEN:
        raise AlreadyOpenError(f"Container on {container.device} already open as {container.mapping}")
    if not dry_run and mapping_exists(mapping):
        raise AlreadyOpenError(f"Mapping name {mapping} is already in use")

    try:
        run_cmd(
            ["cryptsetup", "open", "--key-file=-", container.device, mapping],
            input_text=passphrase,
            dry_run=dry_run,
        )
    except CommandError as e:
        if e.returncode == _RC_NO_PERMISSION:
            raise AuthenticationError(f"Wrong passphrase for {container.device}") from e
        if e.returncode == _RC_BUSY:
            raise AlreadyOpenError(f"Mapping name {mapping} is already in use") from e
        raise
    logger.info("Opened %s as /dev/mapper/%s", container.device, mapping)
    return replace(container, mapping=mapping)


def close_container(container: EncryptedContainer, *, dry_run: bool = False) -> EncryptedContainer:
    if container.state is ContainerState.CLOSED:
        return container
    try:
        run_cmd(["cryptsetup", "close", container.mapping], dry_run=dry_run)
    except CommandError as e:
        if e.returncode == _RC_BUSY or "busy" in e.stderr.lower():
            raise BusyError(f"{container.mapped_device} is still in use (active mounts?)") from e
        raise
    logger.info("Closed /dev/mapper/%s", container.mapping)
    return replace(container, mapping=None)


def clear_stale_mapping(mapping: str, *, dry_run: bool = False) -> bool:
    """Close a leftover mapping from an earlier run. Returns True if one was closed."""

    if dry_run or not mapping_exists(mapping):
        return False
    logger.warning("Mapping /dev/mapper/%s already open; closing it before format", mapping)
    run_cmd(["cryptsetup", "close", mapping])
    return True


def dump_profile(partition: str) -> Dict[str, Any]:
    """Read back cipher, key size and PBKDF recorded in a LUKS2 header."""

    r = run_cmd(["cryptsetup", "luksDump", partition])
    out: Dict[str, Any] = {}
    for raw in (r.stdout or "").splitlines():
        line = raw.strip()
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        key = key.strip().lower()
        value = value.strip()
        if key == "version" and "version" not in out:
            out["version"] = value
        elif key == "cipher" and "cipher" not in out:
            out["cipher"] = value
        elif key == "cipher key" and "key_size" not in out:
            out["key_size"] = int(value.split()[0])
        elif key == "pbkdf" and "pbkdf" not in out:
            out["pbkdf"] = value
    return out


def read_passphrase(passphrase_file: Optional[str] = None) -> str:
    if passphrase_file:
        text = Path(passphrase_file).read_text(encoding="utf-8").rstrip("\n")
        if not text:
            raise AuthenticationError(f"Passphrase file {passphrase_file} is empty")
        return text
    first = getpass.getpass("LUKS passphrase: ")
    second = getpass.getpass("Verify passphrase: ")
    if not first:
        raise AuthenticationError("Empty passphrase")
    if first != second:
        raise AuthenticationError("Passphrases do not match")
    return first
