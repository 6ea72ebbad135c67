from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Sequence

from ..errors import InstallerError
from .command import run_cmd

logger = logging.getLogger(__name__)

INITRAMFS_HOOKS = (
    "base",
    "systemd",
    "autodetect",
    "keyboard",
    "sd-vconsole",
    "modconf",
    "block",
    "sd-encrypt",
    "btrfs",
    "filesystems",
    "fsck",
)

_HOOKS_LINE = re.compile(r"^HOOKS=.*$", re.MULTILINE)


def _write_file(root: str, rel: str, contents: str, *, mode: int | None = None, dry_run: bool = False) -> None:
    p = Path(root) / rel.lstrip("/")
    if dry_run:
        logger.info("Would write %s", str(p))
        return
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(contents, encoding="utf-8")
    if mode is not None:
        os.chmod(p, mode)


def set_root_password(*, dry_run: bool = False) -> None:
    logger.info("Set root password:")
    run_cmd(["passwd"], interactive=True, dry_run=dry_run)


def user_exists(username: str, *, dry_run: bool = False) -> bool:
    if dry_run:
        return False
    return run_cmd(["getent", "passwd", username], check=False).returncode == 0


def create_user(username: str, *, dry_run: bool = False) -> bool:
    """Create ``username`` in wheel. An existing account is only added to wheel."""

    if user_exists(username, dry_run=dry_run):
        logger.info("User %s already exists; ensuring wheel membership", username)
        run_cmd(["usermod", "-aG", "wheel", username])
        return False
    run_cmd(["useradd", "-m", "-G", "wheel", "-s", "/bin/bash", username], dry_run=dry_run)
    return True


def set_password(username: str, *, dry_run: bool = False) -> None:
    logger.info("Set password for %s:", username)
    run_cmd(["passwd", username], interactive=True, dry_run=dry_run)


def write_identity(hostname: str, *, root: str = "/", dry_run: bool = False) -> None:
    _write_file(root, "/etc/hostname", hostname + "\n", dry_run=dry_run)
    _write_file(
        root,
        "/etc/hosts",
        "\n".join(
            [
                "127.0.0.1\tlocalhost",
                "::1\tlocalhost",
                f"127.0.1.1\t{hostname}.localdomain\t{hostname}",
                "",
            ]
        ),
        dry_run=dry_run,
    )


def set_timezone(timezone: str, *, root: str = "/", dry_run: bool = False) -> None:
    zone = Path(root) / "usr/share/zoneinfo" / timezone
    if not dry_run and not zone.exists():
        raise InstallerError(f"Unknown timezone {timezone!r} ({zone} missing)")
    localtime = Path(root) / "etc/localtime"
    if not dry_run:
        if localtime.is_symlink() or localtime.exists():
            localtime.unlink()
        localtime.symlink_to(f"/usr/share/zoneinfo/{timezone}")
    run_cmd(["hwclock", "--systohc"], dry_run=dry_run)


def uncomment_locale(text: str, locale: str) -> str:
    """Enable ``<locale> <charset>`` in a locale.gen body."""

    pattern = re.compile(rf"^#\s*({re.escape(locale)}\s+\S+)[ \t]*$", re.MULTILINE)
    new, count = pattern.subn(r"\1", text)
    if count == 0 and not re.search(rf"^{re.escape(locale)}\s", text, re.MULTILINE):
        charset = locale.split(".", 1)[1] if "." in locale else "UTF-8"
        new = text.rstrip("\n") + f"\n{locale} {charset}\n"
    return new


def enable_locale(locale: str, *, root: str = "/", dry_run: bool = False) -> None:
    gen = Path(root) / "etc/locale.gen"
    if not dry_run:
        text = gen.read_text(encoding="utf-8") if gen.exists() else ""
        gen.write_text(uncomment_locale(text, locale), encoding="utf-8")
    run_cmd(["locale-gen"], dry_run=dry_run)
    _write_file(root, "/etc/locale.conf", f"LANG={locale}\n", dry_run=dry_run)


def set_keymap(keymap: str, *, root: str = "/", dry_run: bool = False) -> None:
    _write_file(root, "/etc/vconsole.conf", f"KEYMAP={keymap}\n", dry_run=dry_run)


def rewrite_hooks(text: str, hooks: Sequence[str] = INITRAMFS_HOOKS) -> str:
    line = f"HOOKS=({' '.join(hooks)})"
    if _HOOKS_LINE.search(text):
        return _HOOKS_LINE.sub(line, text, count=1)
    return text.rstrip("\n") + f"\n{line}\n"


def configure_initramfs(*, root: str = "/", hooks: Sequence[str] = INITRAMFS_HOOKS, dry_run: bool = False) -> None:
    conf = Path(root) / "etc/mkinitcpio.conf"
    if dry_run:
        logger.info("Would rewrite HOOKS in %s", str(conf))
        return
    text = conf.read_text(encoding="utf-8") if conf.exists() else ""
    conf.write_text(rewrite_hooks(text, hooks), encoding="utf-8")


def build_initramfs(*, dry_run: bool = False) -> None:
    logger.info("Building initramfs")
    run_cmd(["mkinitcpio", "-P"], dry_run=dry_run)


def enable_services(services: Sequence[str], *, dry_run: bool = False) -> None:
    for svc in services:
        run_cmd(["systemctl", "enable", svc], dry_run=dry_run)


def write_sudoers_wheel(*, root: str = "/", dry_run: bool = False) -> None:
    _write_file(root, "/etc/sudoers.d/wheel", "%wheel ALL=(ALL) ALL\n", mode=0o440, dry_run=dry_run)
