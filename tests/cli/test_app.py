import textwrap
import types
import zipfile
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from ravenfleet.cli import app as cli
from ravenfleet.provision import package
from ravenfleet.state.models import NodeState

runner = CliRunner()


@pytest.fixture
def config(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("RAVENFLEET_SECRETS_FILE", raising=False)
    (tmp_path / "deploy.pem").write_text("KEY")
    with zipfile.ZipFile(tmp_path / "setup.zip", "w") as zf:
        zf.writestr("A/settings.json", '{"ServerUrl": "http://a.example.com:8080"}')
        zf.writestr("B/settings.json", '{"ServerUrl": "http://b.example.com:8080"}')
    cfg = tmp_path / "cluster.yaml"
    cfg.write_text(textwrap.dedent("""
        hosts: [10.0.0.5, 10.0.0.6]
        package: {version: 6.0.105}
        ssh: {user: ubuntu, pem_file: deploy.pem}
        setup_zip: setup.zip
        url:
          urls: ["http://a.example.com:8080", "http://b.example.com:8080"]
    """))
    return cfg


def test_check_package_ok(config, monkeypatch):
    monkeypatch.setattr(package.requests, "head", lambda url, **kw: types.SimpleNamespace(status_code=200))

    result = runner.invoke(cli.app, ["check-package", str(config)])

    assert result.exit_code == 0, result.output
    assert "ravendb_6.0.105-0_amd64.deb" in result.output


def test_project_errors_exit_with_status_one(config, monkeypatch):
    monkeypatch.setattr(package.requests, "head", lambda url, **kw: types.SimpleNamespace(status_code=403))

    result = runner.invoke(cli.app, ["check-package", str(config)])

    assert result.exit_code == 1
    assert "HTTP status code: 403" in result.output


def test_read_writes_yaml_states(config, tmp_path: Path, monkeypatch):
    class FakeReader:
        def __init__(self, spec, **kw):
            self.spec = spec

        def read_all(self):
            return [
                NodeState(host="10.0.0.5", version="60105", unsecured=True),
                NodeState(host="10.0.0.6", failed=True, unsecured=True),
            ]

    monkeypatch.setattr(cli, "StateReader", FakeReader)
    out = tmp_path / "state.yaml"

    result = runner.invoke(cli.app, ["--verbose", "read", str(config), "--output", str(out)])

    assert result.exit_code == 0, result.output
    states = yaml.safe_load(out.read_text())
    assert [s["host"] for s in states] == ["10.0.0.5", "10.0.0.6"]
    assert states[1]["failed"] is True
    assert list((tmp_path / ".ravenfleet" / "logs").glob("ravenfleet-*.log"))
