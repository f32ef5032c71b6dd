"""Test CLI functionality."""

import json

import click
import pytest
from click.testing import CliRunner

from conftest import FakeTransport
from guestplay import __version__
from guestplay.cli import cli, parse_host


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "guestplay.yml"
    path.write_text(
        "machines: [web, db]\n"
        "ansible_local:\n"
        "  playbook: site.yml\n"
        "  galaxy_role_file: requirements.yml\n"
        "  host_vars:\n"
        "    db: {ansible_user: admin}\n"
        "  groups:\n"
        "    databases: [db]\n"
    )
    return str(path)


@pytest.fixture
def fake_ssh(monkeypatch):
    """Replace SSHTransport with FakeTransport instances, keyed by address."""
    created = {}
    failures = {}

    def factory(ssh_config):
        transport = FakeTransport(failures=failures.get(ssh_config.hostname))
        created[ssh_config.hostname] = transport
        return transport

    monkeypatch.setattr("guestplay.cli.SSHTransport", factory)
    return created, failures


def test_cli_version():
    """Test CLI version output."""
    runner = CliRunner()
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_cli_help():
    """Test CLI help output."""
    runner = CliRunner()
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "provision" in result.output
    assert "inventory" in result.output
    assert "check-config" in result.output


def test_provision_requires_host(config_file):
    runner = CliRunner()
    result = runner.invoke(cli, ["provision", "-c", config_file])
    assert result.exit_code != 0


class TestParseHost:
    """Tests for parse_host."""

    def test_named(self):
        assert parse_host("web=192.168.56.10") == ("web", "192.168.56.10")

    def test_bare_address(self):
        assert parse_host("192.168.56.10") == ("192.168.56.10", "192.168.56.10")

    def test_invalid(self):
        with pytest.raises(click.BadParameter):
            parse_host("=192.168.56.10")


class TestInventoryCommand:
    """Tests for the inventory command."""

    def test_render(self, config_file):
        runner = CliRunner()
        result = runner.invoke(cli, ["inventory", "-c", config_file, "-n", "web"])

        assert result.exit_code == 0
        assert result.output == (
            "# Generated by guestplay\n\n"
            "web ansible_connection=local\n"
            "db ansible_user=admin\n"
            "\n[databases]\ndb\n"
        )

    def test_machines_override(self, config_file):
        runner = CliRunner()
        result = runner.invoke(cli, ["inventory", "-c", config_file, "-n", "cache", "-m", "web"])

        assert result.exit_code == 0
        assert "web\ncache ansible_connection=local\n" in result.output

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("ansible_local:\n  playbok: site.yml\n")

        runner = CliRunner()
        result = runner.invoke(cli, ["inventory", "-c", str(path), "-n", "web"])

        assert result.exit_code != 0
        assert "playbok" in result.output


class TestCheckConfig:
    """Tests for the check-config command."""

    def test_commands_shown(self, config_file):
        runner = CliRunner()
        result = runner.invoke(cli, ["check-config", "-c", config_file, "-n", "web"])

        assert result.exit_code == 0
        assert "playbook: site.yml (file)" in result.output
        assert "galaxy_role_file: requirements.yml (file)" in result.output
        assert "--roles-path='/vagrant/roles'" in result.output
        assert "--inventory=/tmp/guestplay-ansible/inventory --limit=web site.yml" in result.output


class TestProvisionCommand:
    """Tests for the provision command."""

    def test_success(self, config_file, fake_ssh):
        created, _ = fake_ssh
        runner = CliRunner()
        result = runner.invoke(cli, [
            "provision", "-c", config_file,
            "-H", "web=192.168.56.10", "--guest-type", "ubuntu", "--user", "vagrant",
        ])

        assert result.exit_code == 0, result.output
        assert "web: provisioned in" in result.output
        transport = created["192.168.56.10"]
        assert transport.closed
        assert any("ansible-galaxy install" in c for c in transport.commands)
        assert "chown -h vagrant /tmp/guestplay-ansible/inventory" in transport.sudo_commands

    def test_json_output(self, config_file, fake_ssh):
        runner = CliRunner()
        result = runner.invoke(cli, [
            "provision", "-c", config_file, "-H", "web=192.168.56.10",
            "--guest-type", "ubuntu", "--format", "json",
        ])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout.strip().splitlines()[-1])
        assert data["guest"] == "web"
        assert data["stages"][-1]["stage"] == "playbook_run"

    def test_one_guest_fails(self, config_file, fake_ssh):
        """Test that a failing guest does not stop the others but fails the command."""
        created, failures = fake_ssh
        failures["192.168.56.11"] = {"ansible-galaxy install": 2}
        runner = CliRunner()
        result = runner.invoke(cli, [
            "provision", "-c", config_file, "--guest-type", "ubuntu", "--format", "json",
            "-H", "web=192.168.56.10", "-H", "db=192.168.56.11",
        ])

        assert result.exit_code == 1
        events = [json.loads(line) for line in result.stdout.strip().splitlines()]
        by_guest = {e["guest"]: e for e in events}
        assert by_guest["db"]["error"]["kind"] == "CommandFailed"
        assert by_guest["db"]["error"]["step"] == "galaxy"
        assert "stages" in by_guest["web"]
        assert created["192.168.56.11"].closed

    def test_no_install_override(self, config_file, fake_ssh):
        created, failures = fake_ssh
        failures["192.168.56.10"] = {"command -v ansible": 1}
        runner = CliRunner()
        result = runner.invoke(cli, [
            "provision", "-c", config_file, "-H", "web=192.168.56.10",
            "--guest-type", "ubuntu", "--no-install",
        ])

        assert result.exit_code == 0, result.output
        assert not any("apt-get" in c for c in created["192.168.56.10"].sudo_commands)
