"""Tests for the signalcraft-sync command line."""

import json
import tempfile
from pathlib import Path

import pytest
from typer.testing import CliRunner

from signalcraft_sync.cli.app import app

MANIFEST = """\
kind: Team
metadata:
  namespace: platform
  name: sre
spec:
  members: [u1, u2]
---
resources:
  - kind: Schedule
    metadata:
      name: primary
    spec:
      timezone: UTC
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory() as temp_dir:
        path = Path(temp_dir)
        (path / "config.yaml").write_text(
            "logging:\n"
            "  level: WARNING\n"
            "audit:\n"
            "  enabled: false\n"
            "state:\n"
            f"  state_file: {path / 'state.json'}\n"
            "  enable_state_backup: false\n",
            encoding="utf-8",
        )
        (path / "resources.yaml").write_text(MANIFEST, encoding="utf-8")
        yield path


def invoke(runner, workdir, *args):
    return runner.invoke(app, [*args, "--config", str(workdir / "config.yaml")])


def stored(workdir):
    document = json.loads((workdir / "state.json").read_text(encoding="utf-8"))
    return {record["identity"]["name"]: record for record in document["resources"]}


class TestCli:
    """Test the CLI commands that do not reach the network."""

    def test_validate(self, runner, workdir):
        result = invoke(runner, workdir, "validate")

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "SIGNALCRAFT_API_URL" in result.output

    def test_missing_config_file(self, runner, workdir):
        result = runner.invoke(app, ["validate", "--config", str(workdir / "nope.yaml")])

        assert result.exit_code == 1
        assert "Configuration file not found" in result.output

    def test_apply_is_idempotent(self, runner, workdir):
        first = invoke(runner, workdir, "apply", "-f", str(workdir / "resources.yaml"))
        second = invoke(runner, workdir, "apply", "-f", str(workdir / "resources.yaml"))

        assert first.exit_code == 0
        assert "Applied 2 resources, 2 changed" in first.output
        assert "Applied 2 resources, 0 changed" in second.output

        records = stored(workdir)
        assert records["sre"]["generation"] == 1
        assert records["sre"]["desired_spec"] == {"members": ["u1", "u2"]}
        assert records["primary"]["identity"]["scope"] == "default"

    def test_apply_rejects_unknown_kind(self, runner, workdir):
        manifest = workdir / "bad.yaml"
        manifest.write_text("kind: Dashboard\nmetadata:\n  name: cpu\n", encoding="utf-8")

        result = invoke(runner, workdir, "apply", "-f", str(manifest))

        assert result.exit_code == 1
        assert "Unsupported kinds: Dashboard" in result.output

    def test_delete_unsynced_resource(self, runner, workdir):
        invoke(runner, workdir, "apply", "-f", str(workdir / "resources.yaml"))

        result = invoke(runner, workdir, "delete", "Team", "platform", "sre")

        assert result.exit_code == 0
        assert "never synced" in result.output
        assert "sre" not in stored(workdir)

    def test_delete_unknown_resource(self, runner, workdir):
        result = invoke(runner, workdir, "delete", "Team", "platform", "missing")

        assert result.exit_code == 1
        assert "is not managed" in result.output

    def test_reconcile_without_api_settings(self, runner, workdir):
        invoke(runner, workdir, "apply", "-f", str(workdir / "resources.yaml"))

        result = invoke(runner, workdir, "reconcile")

        assert result.exit_code == 1
        records = stored(workdir)
        for record in records.values():
            assert record["status"]["state"] == "Error"
            assert record["status"]["message"] == "Missing SIGNALCRAFT_API_URL or SIGNALCRAFT_API_KEY"
            assert record["finalizers"] == ["signalcraft.io/finalizer"]

        status = invoke(runner, workdir, "status")
        assert status.exit_code == 0
        assert "Error" in status.output
