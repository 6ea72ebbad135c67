import ast
import os

import pytest

from magnum_installer.errors import TemplateError
from magnum_installer.lib import template
from magnum_installer.params import ProvisioningParameters


def test_find_placeholders():
    assert template.find_placeholders("a @ONE@ b @TWO_2@ c @one@ @@") == {"ONE", "TWO_2"}


def test_unbound_and_unused_are_both_reported():
    with pytest.raises(TemplateError) as exc:
        template.render("@HOST@ @USER@", {"HOST": "x", "EXTRA": "y"})
    msg = str(exc.value)
    assert "unbound: USER" in msg
    assert "unused: EXTRA" in msg


def test_values_are_not_rescanned():
    out = template.render("@A@ @B@", {"A": "@B@", "B": "b"})
    assert out == "@B@ b"


def test_shipped_template_matches_parameter_fields():
    text = template.STAGE2_TEMPLATE.read_text(encoding="utf-8")
    fields = {name.upper() for name in ProvisioningParameters.__dataclass_fields__}
    assert template.find_placeholders(text) == fields | {"PACKAGE_DIR"}


def test_rendered_stage2_is_valid_python(parameters):
    params = ProvisioningParameters.from_dict(dict(parameters, hostname="host-1"))
    source = template.render_stage2(params)

    assert "@" not in source.replace("#!/usr/bin/env python3", "")
    tree = ast.parse(source)
    assigns = [n for n in tree.body if isinstance(n, ast.Assign) and n.targets[0].id == "PARAMETERS"]
    assert ast.literal_eval(assigns[0].value) == params.to_dict()


def test_quoting_keeps_hostile_values_as_data():
    hostile = "x\"; import os; os.system('reboot') #"
    out = template.render("LABEL = @LABEL@\n", {"LABEL": hostile}, quote=repr)
    assert ast.literal_eval(ast.parse(out).body[0].value) == hostile


def test_write_stage2(tmp_path, parameters):
    params = ProvisioningParameters.from_dict(parameters)
    script = template.write_stage2(str(tmp_path), params)

    assert script == tmp_path / "root" / "magnum-stage2.py"
    assert os.stat(script).st_mode & 0o777 == 0o755
    pkg = tmp_path / "root" / "magnum-installer" / "magnum_installer"
    assert (pkg / "stage2.py").is_file()
    assert (pkg / "templates" / "stage2.py.tmpl").is_file()
    assert not list(pkg.rglob("__pycache__"))


def test_run_stage2_is_interactive(monkeypatch):
    calls = []
    monkeypatch.setattr(template, "chroot_cmd", lambda root, argv, **kw: calls.append((root, argv, kw)))

    template.run_stage2("/mnt")

    assert calls == [("/mnt", ["/root/magnum-stage2.py"], {"interactive": True, "dry_run": False})]
