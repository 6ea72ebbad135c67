from magnum_installer.lib import firmware


def test_capabilities_round_trip():
    caps = firmware.Capabilities(uefi=True, secure_boot=False, firmware_entries=True)
    assert firmware.Capabilities.from_dict(caps.to_dict()) == caps
    assert firmware.Capabilities.from_dict(None) == firmware.Capabilities()


def test_firmware_entries_need_efibootmgr(monkeypatch):
    monkeypatch.setattr(firmware, "efivars_available", lambda: True)
    monkeypatch.setattr(firmware.shutil, "which", lambda name: None)
    assert firmware.probe_firmware_entries() is False

    monkeypatch.setattr(firmware.shutil, "which", lambda name: "/usr/bin/efibootmgr")
    assert firmware.probe_firmware_entries() is True
