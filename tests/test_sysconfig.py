import os

import pytest

from magnum_installer.errors import InstallerError
from magnum_installer.lib import sysconfig


def test_rewrite_hooks_replaces_line():
    text = "MODULES=()\nHOOKS=(base udev autodetect block filesystems fsck)\nCOMPRESSION=zstd\n"
    out = sysconfig.rewrite_hooks(text)
    assert (
        "HOOKS=(base systemd autodetect keyboard sd-vconsole modconf block sd-encrypt btrfs filesystems fsck)"
        in out.splitlines()
    )
    assert "MODULES=()" in out
    assert out.count("HOOKS=") == 1


def test_uncomment_locale():
    text = "#en_GB.UTF-8 UTF-8\n#en_US.UTF-8 UTF-8\n#en_US ISO-8859-1\n"
    out = sysconfig.uncomment_locale(text, "en_US.UTF-8")
    assert out.splitlines() == ["#en_GB.UTF-8 UTF-8", "en_US.UTF-8 UTF-8", "#en_US ISO-8859-1"]


def test_uncomment_locale_appends_missing():
    assert sysconfig.uncomment_locale("", "fr_FR.UTF-8").strip() == "fr_FR.UTF-8 UTF-8"


def test_identity_and_keymap(tmp_path):
    sysconfig.write_identity("archbtw", root=str(tmp_path))
    sysconfig.set_keymap("de-latin1", root=str(tmp_path))

    assert (tmp_path / "etc/hostname").read_text() == "archbtw\n"
    assert "127.0.1.1\tarchbtw.localdomain\tarchbtw" in (tmp_path / "etc/hosts").read_text()
    assert (tmp_path / "etc/vconsole.conf").read_text() == "KEYMAP=de-latin1\n"


def test_set_timezone(tmp_path, recorder):
    rec = recorder.install(sysconfig)
    (tmp_path / "usr/share/zoneinfo/Africa").mkdir(parents=True)
    (tmp_path / "usr/share/zoneinfo/Africa/Algiers").write_text("TZif")
    (tmp_path / "etc").mkdir()

    sysconfig.set_timezone("Africa/Algiers", root=str(tmp_path))

    assert os.readlink(tmp_path / "etc/localtime") == "/usr/share/zoneinfo/Africa/Algiers"
    assert rec.argvs == [["hwclock", "--systohc"]]


def test_set_timezone_unknown(tmp_path, recorder):
    recorder.install(sysconfig)
    with pytest.raises(InstallerError):
        sysconfig.set_timezone("Mars/Olympus", root=str(tmp_path))


def test_enable_locale(tmp_path, recorder):
    rec = recorder.install(sysconfig)
    (tmp_path / "etc").mkdir()
    (tmp_path / "etc/locale.gen").write_text("#en_US.UTF-8 UTF-8\n")

    sysconfig.enable_locale("en_US.UTF-8", root=str(tmp_path))

    assert (tmp_path / "etc/locale.gen").read_text() == "en_US.UTF-8 UTF-8\n"
    assert (tmp_path / "etc/locale.conf").read_text() == "LANG=en_US.UTF-8\n"
    assert rec.argvs == [["locale-gen"]]


def test_user_and_passwords_are_interactive(recorder):
    rec = recorder.install(sysconfig)
    rec.respond("getent", "passwd", returncode=2)
    sysconfig.set_root_password()
    sysconfig.create_user("alice")
    sysconfig.set_password("alice")

    assert rec.argvs == [
        ["passwd"],
        ["getent", "passwd", "alice"],
        ["useradd", "-m", "-G", "wheel", "-s", "/bin/bash", "alice"],
        ["passwd", "alice"],
    ]
    assert rec.kwargs_for("passwd")["interactive"] is True


def test_sudoers_mode(tmp_path):
    sysconfig.write_sudoers_wheel(root=str(tmp_path))
    path = tmp_path / "etc/sudoers.d/wheel"
    assert path.read_text() == "%wheel ALL=(ALL) ALL\n"
    assert os.stat(path).st_mode & 0o777 == 0o440


def test_services_and_initramfs(recorder):
    rec = recorder.install(sysconfig)
    sysconfig.enable_services(["NetworkManager", "fstrim.timer"])
    sysconfig.build_initramfs()
    assert rec.argvs == [
        ["systemctl", "enable", "NetworkManager"],
        ["systemctl", "enable", "fstrim.timer"],
        ["mkinitcpio", "-P"],
    ]


def test_create_user_is_rerunnable(recorder):
    rec = recorder.install(sysconfig)
    rec.respond("getent", "passwd", "alice", stdout="alice:x:1000:1000::/home/alice:/bin/bash\n")

    assert sysconfig.create_user("alice") is False

    assert not rec.find("useradd")
    assert rec.find("usermod") == [["usermod", "-aG", "wheel", "alice"]]


def test_create_user_dry_run_skips_lookup(recorder):
    rec = recorder.install(sysconfig)

    assert sysconfig.create_user("alice", dry_run=True) is True

    assert rec.argvs == [["useradd", "-m", "-G", "wheel", "-s", "/bin/bash", "alice"]]


def test_uncomment_locale_keeps_following_lines():
    text = "#en_GB.UTF-8 UTF-8\n#en_US.UTF-8 UTF-8  \n#fr_FR.UTF-8 UTF-8\n"
    assert sysconfig.uncomment_locale(text, "en_US.UTF-8") == (
        "#en_GB.UTF-8 UTF-8\nen_US.UTF-8 UTF-8\n#fr_FR.UTF-8 UTF-8\n"
    )
