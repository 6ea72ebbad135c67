from magnum_installer.lib import hwdetect


def test_detect_amd(tmp_path):
    cpuinfo = tmp_path / "cpuinfo"
    cpuinfo.write_text("processor\t: 0\nvendor_id\t: AuthenticAMD\ncpu family\t: 25\n", encoding="utf-8")
    assert hwdetect.detect_cpu_vendor(str(cpuinfo)) == "amd"
    assert hwdetect.microcode_package("amd") == "amd-ucode"


def test_detect_intel(tmp_path):
    cpuinfo = tmp_path / "cpuinfo"
    cpuinfo.write_text("vendor_id\t: GenuineIntel\n", encoding="utf-8")
    assert hwdetect.detect_cpu_vendor(str(cpuinfo)) == "intel"


def test_unknown_vendor_has_no_microcode(tmp_path):
    cpuinfo = tmp_path / "cpuinfo"
    cpuinfo.write_text("vendor_id\t: CentaurHauls\n", encoding="utf-8")
    vendor = hwdetect.detect_cpu_vendor(str(cpuinfo))
    assert vendor is None
    assert hwdetect.microcode_package(vendor) is None


def test_missing_cpuinfo(tmp_path):
    assert hwdetect.detect_cpu_vendor(str(tmp_path / "nope")) is None
