from click.testing import CliRunner

import imagetaster.cli as cli_module
from imagetaster.errors import ImageNotFoundError

CREDENTIALS_ENV = {
    "OS_AUTH_URL": None,
    "OS_USERNAME": None,
    "OS_PASSWORD": None,
    "OS_PROJECT_NAME": None,
    "OS_USER_DOMAIN_NAME": None,
    "OS_PROJECT_DOMAIN_NAME": None,
    "OS_REGION_NAME": None,
}


def _write_config(path, extra=""):
    path.write_text(
        "images:\n"
        "  - ubuntu2004-x86\n"
        "ssh_user: ubuntu\n"
        "keypair: taster\n"
        "private_key: /keys/taster\n"
        "auth_url: https://keystone:5000\n"
        "username: taster\n"
        "password: secret\n"
        "project_name: images\n" + extra,
        encoding="utf-8",
    )


def _install_fakes(monkeypatch, results=None, error=None):
    captured = {"tasted": []}

    class FakeClient:
        def __init__(self, **kwargs):
            captured["client"] = kwargs

        def authenticate(self):
            captured["authenticated"] = True

    class FakeTaster:
        def __init__(self, **kwargs):
            captured["taster"] = kwargs

        def taste(self, image_name, settings):
            if error:
                raise error
            captured["tasted"].append(image_name)
            captured["settings"] = settings
            return (results or {}).get(image_name, True)

    monkeypatch.setattr(cli_module, "OpenStackClient", FakeClient)
    monkeypatch.setattr(cli_module, "ImageTaster", FakeTaster)
    return captured


def test_cli_uses_config_and_allows_cli_override(tmp_path, monkeypatch):
    config_file = tmp_path / ".imagetaster.yml"
    _write_config(config_file, "create_snapshot: true\nvolumes: false\n")
    captured = _install_fakes(monkeypatch)

    runner = CliRunner()
    result = runner.invoke(
        cli_module.main,
        ["--config", str(config_file), "--ssh-user", "centos", "--no-create-snapshot", "centos7-x86"],
        env=CREDENTIALS_ENV,
    )

    assert result.exit_code == 0, result.output
    assert captured["tasted"] == ["centos7-x86"]
    assert captured["settings"].ssh_user == "centos"
    assert captured["settings"].create_snapshot is False
    assert captured["settings"].volumes is False
    assert captured["settings"].security is True
    assert captured["client"]["auth_url"] == "https://keystone:5000"
    assert captured["taster"]["network_name"] == "public"
    assert captured["taster"]["flavor_name"] == "m1.tiny"


def test_cli_uses_default_config_file_when_present(tmp_path, monkeypatch):
    _write_config(tmp_path / ".imagetaster.yml")
    captured = _install_fakes(monkeypatch)
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli_module.main, [], env=CREDENTIALS_ENV)

    assert result.exit_code == 0, result.output
    assert captured["tasted"] == ["ubuntu2004-x86"]
    assert captured["taster"]["log_dir"] == str(tmp_path / "logs")


def test_cli_exits_non_zero_when_an_image_fails(tmp_path, monkeypatch):
    config_file = tmp_path / "taster.yml"
    _write_config(config_file)
    captured = _install_fakes(monkeypatch, results={"bad-image": False})

    result = CliRunner().invoke(
        cli_module.main,
        ["--config", str(config_file), "ubuntu2004-x86", "bad-image"],
        env=CREDENTIALS_ENV,
    )

    assert result.exit_code == 1
    assert captured["tasted"] == ["ubuntu2004-x86", "bad-image"]


def test_cli_reports_missing_image_as_error(tmp_path, monkeypatch):
    config_file = tmp_path / "taster.yml"
    _write_config(config_file)
    _install_fakes(monkeypatch, error=ImageNotFoundError("nope is not an available image."))

    result = CliRunner().invoke(cli_module.main, ["--config", str(config_file), "nope"], env=CREDENTIALS_ENV)

    assert result.exit_code == 1
    assert "is not an available image" in result.output


def test_cli_requires_credentials(tmp_path, monkeypatch):
    _install_fakes(monkeypatch)
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(
        cli_module.main,
        ["--ssh-user", "ubuntu", "--keypair", "taster", "--private-key", "/keys/taster", "ubuntu2004-x86"],
        env=CREDENTIALS_ENV,
    )

    assert result.exit_code != 0
    assert "Missing OpenStack credentials" in result.output
