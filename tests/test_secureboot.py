from pathlib import Path

import pytest

from magnum_installer.errors import SecureBootStateError
from magnum_installer.lib import secureboot
from magnum_installer.lib.secureboot import KeySet, KeyState


def test_signing_before_keys_exist_is_refused(recorder):
    rec = recorder.install(secureboot)
    with pytest.raises(SecureBootStateError):
        secureboot.sign(KeySet(), Path("/efi/EFI/Linux/arch.efi"))
    assert rec.calls == []


def test_enroll_requires_created(recorder):
    recorder.install(secureboot)
    with pytest.raises(SecureBootStateError):
        secureboot.enroll_keys(KeySet(KeyState.ABSENT))


def test_full_lifecycle(recorder):
    rec = recorder.install(secureboot)
    keys = secureboot.probe_secure_boot(True, vendor_keys=True, enroll_timeout=120)

    assert keys.state is KeyState.ENROLLED
    assert rec.argvs == [["sbctl", "create-keys"], ["sbctl", "enroll-keys", "--microsoft"]]
    assert rec.kwargs_for("sbctl", "enroll-keys")["timeout"] == 120


def test_create_failure_degrades_to_absent(recorder, caplog):
    rec = recorder.install(secureboot)
    rec.respond("sbctl", "create-keys", returncode=1, stderr="no efivars")

    keys = secureboot.probe_secure_boot(True)

    assert keys.state is KeyState.ABSENT
    assert not keys.can_sign
    assert "continuing with Secure Boot disabled" in caplog.text


def test_enroll_failure_keeps_created_keys(recorder):
    rec = recorder.install(secureboot)
    rec.respond("sbctl", "enroll-keys", returncode=1, stderr="not in setup mode")

    keys = secureboot.probe_secure_boot(True, vendor_keys=False)

    assert keys.state is KeyState.CREATED
    assert keys.can_sign
    assert ["sbctl", "enroll-keys"] in rec.argvs


def test_disabled_does_nothing(recorder):
    rec = recorder.install(secureboot)
    assert secureboot.probe_secure_boot(False).state is KeyState.ABSENT
    assert rec.calls == []


def test_sign_boot_chain(tmp_path, recorder, caplog):
    rec = recorder.install(secureboot)
    primary = tmp_path / "arch.efi"
    fallback = tmp_path / "arch-fallback.efi"
    bootx64 = tmp_path / "BOOTX64.EFI"
    for p in (primary, fallback, bootx64):
        p.write_bytes(b"PE")
    rec.respond("sbctl", "sign", "-s", str(bootx64), returncode=1, stderr="bad PE")

    report = secureboot.sign_boot_chain(
        KeySet(KeyState.ENROLLED), primary, [fallback, bootx64, tmp_path / "missing.efi"]
    )

    assert report.primary_ok
    assert report.signed == [str(primary), str(fallback)]
    assert list(report.failed) == [str(bootx64)]
    assert not rec.find("sbctl", "sign", "-s", str(tmp_path / "missing.efi"))


def test_primary_signing_failure_is_an_error(tmp_path, recorder, caplog):
    rec = recorder.install(secureboot)
    primary = tmp_path / "arch.efi"
    primary.write_bytes(b"PE")
    rec.respond("sbctl", "sign", returncode=1, stderr="boom")

    report = secureboot.sign_boot_chain(KeySet(KeyState.CREATED), primary)

    assert not report.primary_ok
    assert str(primary) in report.failed
    assert any(r.levelname == "ERROR" for r in caplog.records)


def test_sign_boot_chain_without_keys(tmp_path, recorder):
    rec = recorder.install(secureboot)
    report = secureboot.sign_boot_chain(KeySet(), tmp_path / "arch.efi")
    assert report.to_dict() == {"signed": [], "failed": {}, "primary_ok": False}
    assert rec.calls == []
