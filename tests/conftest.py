import pytest

from magnum_installer.errors import CommandError
from magnum_installer.lib.command import CmdResult


class Recorder:
    """Stand-in for ``run_cmd`` that records argv and replays canned results.

    Responses are matched on an argv prefix; the most recently registered
    match wins. Unmatched commands succeed with empty output.
    """

    def __init__(self):
        self.calls = []
        self._responses = []

    def respond(self, *prefix, returncode=0, stdout="", stderr="", raises=None):
        self._responses.append((list(prefix), returncode, stdout, stderr, raises))

    def __call__(self, argv, **kwargs):
        argv = list(argv)
        self.calls.append((argv, kwargs))
        for prefix, returncode, stdout, stderr, raises in reversed(self._responses):
            if argv[: len(prefix)] != prefix:
                continue
            if raises is not None:
                raise raises
            if kwargs.get("check", True) and returncode != 0:
                raise CommandError(argv, returncode, stderr)
            return CmdResult(argv=argv, returncode=returncode, stdout=stdout, stderr=stderr)
        return CmdResult(argv=argv, returncode=0, stdout="", stderr="")

    @property
    def argvs(self):
        return [argv for argv, _ in self.calls]

    def find(self, *prefix):
        return [argv for argv in self.argvs if argv[: len(prefix)] == list(prefix)]

    def kwargs_for(self, *prefix):
        for argv, kwargs in self.calls:
            if argv[: len(prefix)] == list(prefix):
                return kwargs
        raise AssertionError(f"no call starting with {prefix}")


@pytest.fixture
def recorder(monkeypatch):
    rec = Recorder()

    def install(*modules):
        for module in modules:
            monkeypatch.setattr(module, "run_cmd", rec)
        return rec

    rec.install = install
    return rec


@pytest.fixture
def parameters():
    return {
        "hostname": "archbtw",
        "username": "alice",
        "timezone": "Africa/Algiers",
        "locale": "en_US.UTF-8",
        "keymap": "us",
        "swap_size": "8G",
        "microcode": "amd-ucode",
        "gpu": "amd",
        "disk": "/dev/nvme0n1",
        "esp_partition": "/dev/nvme0n1p1",
        "root_partition": "/dev/nvme0n1p2",
        "mapping_name": "cryptroot",
        "boot_mode": "efistub",
        "boot_label": "Arch Linux",
        "boot_timeout": 3,
        "secure_boot": True,
        "vendor_keys": True,
        "enroll_timeout_s": 120,
    }
