from magnum_installer import errors


def test_custom_errors_are_distinct():
    excs = [
        errors.DeviceNotFoundError,
        errors.DeviceBusyError,
        errors.PartitionLayoutError,
        errors.AuthenticationError,
        errors.AlreadyOpenError,
        errors.BusyError,
        errors.SubvolumeExistsError,
        errors.TemplateError,
        errors.BootImageError,
        errors.SecureBootStateError,
    ]
    instances = [exc("message") for exc in excs]
    assert all(isinstance(inst, errors.InstallerError) for inst in instances)
    assert len({type(inst) for inst in instances}) == len(excs)


def test_command_error_carries_argv_and_stderr():
    err = errors.CommandError(["cryptsetup", "open", "/dev/sda2"], 2, "No key available\n")
    assert err.argv == ["cryptsetup", "open", "/dev/sda2"]
    assert err.returncode == 2
    assert "No key available" in str(err)
    assert "(2)" in str(err)
