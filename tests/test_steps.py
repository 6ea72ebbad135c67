import pytest

from magnum_installer import main as installer
from magnum_installer.errors import CommandError, InstallerError
from magnum_installer.lib import btrfs, luks, pkg, swap
from magnum_installer.lib.block import DeviceClass, TargetDisk
from magnum_installer.state_store import ensure_defaults, get_resource, set_resource
from magnum_installer.steps import (
    EncryptStep,
    FilesystemsStep,
    FinalizeStep,
    FreezeParametersStep,
    InstallBaseStep,
    StageHandoffStep,
    step_10_detect_hardware,
    step_15_freeze_parameters,
    step_60_stage_handoff,
)


def _state(tmp_path, parameters=None, **cfg):
    base = {"username": "alice", "disk": "/dev/nvme0n1", "mount_root": str(tmp_path / "mnt")}
    base.update(cfg)
    state = ensure_defaults({"config": base})
    if parameters is not None:
        state["parameters"] = dict(parameters)
    return state


@pytest.mark.parametrize(
    "setting,detected,expected",
    [
        ("auto", "amd-ucode", "amd-ucode"),
        ("auto", None, None),
        ("none", "amd-ucode", None),
        ("intel", "amd-ucode", "intel-ucode"),
    ],
)
def test_choose_microcode(setting, detected, expected):
    assert step_10_detect_hardware.choose_microcode(setting, detected) == expected


def test_choose_microcode_rejects_unknown():
    with pytest.raises(ValueError):
        step_10_detect_hardware.choose_microcode("arm", None)


@pytest.fixture
def nvme(monkeypatch):
    disk = TargetDisk(path="/dev/nvme0n1", device_class=DeviceClass.P_SUFFIX)
    monkeypatch.setattr(step_15_freeze_parameters, "resolve_disk", lambda ident: disk)
    return disk


def test_freeze_requires_confirmation(tmp_path, nvme):
    state = _state(tmp_path)
    state["hardware"] = {"microcode": "amd-ucode"}
    with pytest.raises(InstallerError, match="Aborted"):
        FreezeParametersStep(prompt=lambda msg: "yes").run(state)
    assert "parameters" not in state


def test_freeze_stores_parameters(tmp_path, nvme):
    prompts = []
    state = _state(tmp_path, gpu="amd")
    state["hardware"] = {"microcode": "amd-ucode"}

    FreezeParametersStep(prompt=lambda msg: (prompts.append(msg), "YES")[1]).run(state)

    assert "/dev/nvme0n1" in prompts[0]
    assert state["parameters"]["root_partition"] == "/dev/nvme0n1p2"
    assert state["parameters"]["microcode"] == "amd-ucode"


def test_freeze_assume_yes_skips_prompt(tmp_path, nvme):
    state = _state(tmp_path, assume_yes=True)

    def no_prompt(msg):
        raise AssertionError("prompted")

    FreezeParametersStep(prompt=no_prompt).run(state)
    assert state["parameters"]["disk"] == "/dev/nvme0n1"


def test_freeze_requires_username(tmp_path, nvme):
    state = _state(tmp_path, username=None)
    with pytest.raises(InstallerError, match="username"):
        FreezeParametersStep(prompt=lambda msg: "YES").run(state)


def test_encrypt_opens_container(tmp_path, monkeypatch, recorder, parameters):
    rec = recorder.install(luks)
    monkeypatch.setattr(luks, "mapping_exists", lambda name: False)
    secret = tmp_path / "pw"
    secret.write_text("hunter2\n")
    state = _state(tmp_path, parameters, passphrase_file=str(secret))

    EncryptStep().run(state)

    assert rec.find("cryptsetup", "luksFormat")[0][-1] == "/dev/nvme0n1p2"
    assert rec.find("cryptsetup", "open")[0][-2:] == ["/dev/nvme0n1p2", "cryptroot"]
    assert get_resource(state, "container")["status"] == "open"
    assert state["execution"]["container"] == {"device": "/dev/nvme0n1p2", "mapping": "cryptroot"}


def test_filesystems_records_mounts(tmp_path, recorder, parameters):
    rec = recorder.install(btrfs)
    state = _state(tmp_path, parameters)

    FilesystemsStep().run(state)

    assert rec.argvs[0] == ["mkfs.fat", "-F32", "-n", "ARCH_EFI", "/dev/nvme0n1p1"]
    mounts = state["execution"]["mounts"]
    assert mounts["mount_root"] == str(tmp_path / "mnt")
    assert mounts["mounts"][-1] == ["/dev/nvme0n1p1", str(tmp_path / "mnt" / "efi")]
    assert get_resource(state, "mounts")["status"] == "mounted"
    assert get_resource(state, "subvolumes")["status"] == "created"


def test_install_base_uses_frozen_choices(tmp_path, recorder, parameters):
    rec = recorder.install(pkg)
    state = _state(tmp_path, parameters, extra_packages=["htop"])

    InstallBaseStep().run(state)

    argv = rec.find("pacstrap")[0]
    assert argv[:3] == ["pacstrap", "-K", str(tmp_path / "mnt")]
    assert "amd-ucode" in argv and "vulkan-radeon" in argv and argv[-1] == "htop"
    assert rec.kwargs_for("pacstrap")["timeout"] == 3600.0


def test_stage_handoff(tmp_path, monkeypatch, parameters):
    calls = []
    monkeypatch.setattr(step_60_stage_handoff, "write_stage2", lambda root, params, **kw: calls.append(("write", root)))
    monkeypatch.setattr(step_60_stage_handoff, "run_stage2", lambda root, **kw: calls.append(("run", root)))
    state = _state(tmp_path, parameters)

    StageHandoffStep().run(state)

    assert calls == [("write", str(tmp_path / "mnt")), ("run", str(tmp_path / "mnt"))]


def test_finalize_unmounts_then_closes(tmp_path, recorder, parameters):
    rec = recorder.install(btrfs, luks)
    root = str(tmp_path / "mnt")
    state = _state(tmp_path, parameters)
    state["execution"]["mounts"] = {
        "mount_root": root,
        "mounts": [["/dev/mapper/cryptroot", root], ["/dev/mapper/cryptroot", f"{root}/home"], ["/dev/nvme0n1p1", f"{root}/efi"]],
    }
    state["execution"]["container"] = {"device": "/dev/nvme0n1p2", "mapping": "cryptroot"}
    set_resource(state, "container", "open", "cryptroot")

    FinalizeStep().run(state)

    assert rec.argvs[-1] == ["cryptsetup", "close", "cryptroot"]
    assert rec.find("umount")[-1] == ["umount", root]
    assert get_resource(state, "container")["status"] == "closed"
    assert get_resource(state, "mounts")["status"] == "unmounted"
    assert state["execution"]["container"]["mapping"] is None


def test_filesystems_records_partial_mounts(tmp_path, recorder, parameters):
    rec = recorder.install(btrfs, luks)
    rec.respond("mount", "-o", "subvol=@home,noatime,space_cache=v2,compress=zstd:3", returncode=32, stderr="bad superblock")
    root = str(tmp_path / "mnt")
    state = _state(tmp_path, parameters)
    state["execution"]["container"] = {"device": "/dev/nvme0n1p2", "mapping": "cryptroot"}
    set_resource(state, "container", "open", "cryptroot")

    with pytest.raises(CommandError):
        FilesystemsStep().run(state)

    assert get_resource(state, "mounts")["status"] == "mounted"
    assert state["execution"]["mounts"]["mounts"] == [["/dev/mapper/cryptroot", root]]
    assert get_resource(state, "subvolumes")["detail"] == "@ @home @var @tmp @.snapshots"

    installer.unwind(state)

    assert ["umount", root] in rec.argvs
    assert rec.argvs[-1] == ["cryptsetup", "close", "cryptroot"]
    assert get_resource(state, "container")["status"] == "closed"


def test_finalize_turns_swap_off_before_unmounting(tmp_path, recorder, parameters):
    rec = recorder.install(btrfs, luks, swap)
    root = tmp_path / "mnt"
    root.mkdir()
    (root / "swapfile").write_bytes(b"")
    state = _state(tmp_path, parameters)
    state["execution"]["mounts"] = {"mount_root": str(root), "mounts": [["/dev/mapper/cryptroot", str(root)]]}

    FinalizeStep().run(state)

    assert rec.argvs[:2] == [["swapoff", str(root / "swapfile")], ["umount", str(root)]]
    assert get_resource(state, "swap")["status"] == "inactive"


def test_stage_handoff_records_swap(tmp_path, monkeypatch, parameters):
    monkeypatch.setattr(step_60_stage_handoff, "write_stage2", lambda root, params, **kw: None)
    monkeypatch.setattr(step_60_stage_handoff, "run_stage2", lambda root, **kw: None)
    state = _state(tmp_path, parameters)

    StageHandoffStep().run(state)

    assert get_resource(state, "swap") == {"status": "created", "detail": str(tmp_path / "mnt" / "swapfile")}
