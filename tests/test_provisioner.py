"""Tests for the Provisioner orchestration."""

import pytest

from conftest import FakeCapability, FakeTransport, RecordingNotifier
from guestplay.exceptions import (
    CommandFailedError,
    ConfigFileNotFoundError,
    ErrorTypes,
    TransportError,
    VersionNotFoundError,
)
from guestplay.inventory import INVENTORY_FILENAME
from guestplay.provisioner import Provisioner, ProvisionResult, Stage, provision_many
from guestplay.types import GuestTarget, ProvisionConfig


def playbook_runs(transport):
    return [c for c in transport.commands if "--inventory=" in c]


class TestProvision:
    """Tests for Provisioner.provision."""

    @pytest.mark.asyncio
    async def test_stage_order(self, target, transport):
        """Test that every stage runs once, in order."""
        provisioner = Provisioner(capability=FakeCapability(installed=True))
        config = ProvisionConfig(playbook="site.yml", galaxy_role_file="requirements.yml")

        result = await provisioner.provision(target, config)

        assert result.completed == [
            Stage.PATHS_VALIDATED,
            Stage.INSTALLED,
            Stage.ROLES_FETCHED,
            Stage.INVENTORY_SHIPPED,
            Stage.PLAYBOOK_RUN,
        ]
        kinds = [kind for kind, _ in transport.events]
        # path checks, binary check, galaxy, inventory, playbook
        assert kinds == [
            "execute", "execute", "execute", "execute",
            "sudo", "sudo", "sudo", "upload",
            "execute",
        ]
        assert transport.commands[0] == "test -f /vagrant/site.yml"
        assert transport.commands[1] == "test -f /vagrant/requirements.yml"
        assert transport.commands[3].startswith("cd /vagrant && ansible-galaxy install")
        assert transport.commands[4] == (
            "cd /vagrant && ANSIBLE_FORCE_COLOR=true ansible-playbook "
            "--inventory=/tmp/guestplay-ansible/inventory --limit=web site.yml"
        )

    @pytest.mark.asyncio
    async def test_optional_stages_skipped(self, target, transport):
        provisioner = Provisioner(capability=FakeCapability(installed=True))

        result = await provisioner.provision(target, ProvisionConfig(playbook="site.yml"))

        assert Stage.ROLES_FETCHED not in result.completed
        assert [s.stage for s in result.stages] == list(Stage)
        assert not any("ansible-galaxy install" in c for c in transport.commands)

    @pytest.mark.asyncio
    async def test_missing_playbook_aborts(self, target):
        """Test that a missing input file aborts before anything else runs."""
        transport = FakeTransport(failures={"test -f": 1})
        target.transport = transport
        capability = FakeCapability(installed=False)

        with pytest.raises(ConfigFileNotFoundError) as exc_info:
            await Provisioner(capability=capability).provision(target, ProvisionConfig(playbook="site.yml"))

        assert exc_info.value.option == "playbook"
        assert capability.install_calls == []
        assert transport.commands == ["test -f /vagrant/site.yml"]

    @pytest.mark.asyncio
    async def test_galaxy_failure_stops_run(self, target):
        """Test that a failing galaxy step prevents the playbook from running."""
        transport = FakeTransport(failures={"ansible-galaxy install": 2})
        target.transport = transport
        config = ProvisionConfig(playbook="site.yml", galaxy_role_file="requirements.yml")

        with pytest.raises(CommandFailedError) as exc_info:
            await Provisioner(capability=FakeCapability(installed=True)).provision(target, config)

        record = exc_info.value.record
        assert record.kind == ErrorTypes.COMMAND_FAILED
        assert record["step"] == "galaxy"
        assert record["exit_code"] == 2
        assert transport.uploads == []
        assert playbook_runs(transport) == []

    @pytest.mark.asyncio
    async def test_playbook_failure(self, target):
        target.transport = FakeTransport(failures={"--inventory=": 4})

        with pytest.raises(CommandFailedError) as exc_info:
            await Provisioner(capability=FakeCapability(installed=True)).provision(
                target, ProvisionConfig(playbook="site.yml")
            )

        assert exc_info.value.step == "playbook"

    @pytest.mark.asyncio
    async def test_version_not_found(self, target, transport):
        capability = FakeCapability(installed=True, versions={"2.8"})
        config = ProvisionConfig(
            playbook="site.yml", version="2.9", galaxy_role_file="requirements.yml"
        )

        with pytest.raises(VersionNotFoundError) as exc_info:
            await Provisioner(capability=capability).provision(target, config)

        assert exc_info.value.record.to_dict()["required"] == "2.9"
        assert not any("ansible-galaxy install" in c for c in transport.commands)

    @pytest.mark.asyncio
    async def test_existing_inventory(self, target, transport):
        """Test that a configured inventory is validated and used as is."""
        config = ProvisionConfig(playbook="site.yml", inventory_path="hosts")

        result = await Provisioner(capability=FakeCapability(installed=True)).provision(target, config)

        assert Stage.INVENTORY_SHIPPED not in result.completed
        assert "test -e /vagrant/hosts" in transport.commands
        assert transport.uploads == []
        assert transport.commands[-1] == (
            "cd /vagrant && ANSIBLE_FORCE_COLOR=true ansible-playbook "
            "--inventory=/vagrant/hosts site.yml"
        )

    @pytest.mark.asyncio
    async def test_generated_inventory_lists_machines(self, target, transport):
        provisioner = Provisioner(
            capability=FakeCapability(installed=True), machine_names=["db", "web", "cache"]
        )
        config = ProvisionConfig(playbook="site.yml", host_vars={"db": {"ansible_user": "admin"}})

        await provisioner.provision(target, config)

        remote_path, content = transport.uploads[0]
        assert remote_path == f"/tmp/guestplay-ansible/inventory/{INVENTORY_FILENAME}"
        assert content.endswith("db ansible_user=admin\nweb ansible_connection=local\ncache\n")

    @pytest.mark.asyncio
    async def test_capability_from_guest_type(self, target, transport):
        """Test that the capability is chosen from the guest type when not injected."""
        result = await Provisioner().provision(target, ProvisionConfig(playbook="site.yml"))

        assert 'test -x "$(command -v ansible)"' in transport.commands
        assert result.completed[-1] == Stage.PLAYBOOK_RUN

    @pytest.mark.asyncio
    async def test_unsupported_guest_warns(self, target):
        target.guest_type = "plan9"
        notifier = RecordingNotifier()

        result = await Provisioner(notifier=notifier).provision(
            target, ProvisionConfig(playbook="site.yml")
        )

        assert [w.kind for w in result.warnings] == [ErrorTypes.DETECTION_UNSUPPORTED]
        assert len(notifier.warnings) == 1

    @pytest.mark.asyncio
    async def test_output_reaches_notifier(self, target):
        target.transport = FakeTransport(output={"--inventory=": [("stdout", "PLAY RECAP\n")]})
        notifier = RecordingNotifier()

        await Provisioner(capability=FakeCapability(installed=True), notifier=notifier).provision(
            target, ProvisionConfig(playbook="site.yml")
        )

        assert ("stdout", "PLAY RECAP\n") in notifier.lines
        assert ("info", "Running ansible-playbook...") in notifier.messages

    @pytest.mark.asyncio
    async def test_result_to_dict(self, target):
        result = await Provisioner(capability=FakeCapability(installed=True)).provision(
            target, ProvisionConfig(playbook="site.yml")
        )

        data = result.to_dict()

        assert data["guest"] == "web"
        assert [s["stage"] for s in data["stages"]] == [s.value for s in Stage]
        assert data["warnings"] == []


class TestRequiredPaths:
    """Tests for Provisioner.required_paths."""

    def test_all_inputs(self):
        config = ProvisionConfig(
            playbook="site.yml",
            galaxy_role_file="requirements.yml",
            inventory_path="hosts",
            config_file="ansible.cfg",
            vault_password_file="vault.txt",
        )

        assert Provisioner().required_paths(config) == [
            ("site.yml", "playbook", True),
            ("requirements.yml", "galaxy_role_file", True),
            ("hosts", "inventory_path", False),
            ("ansible.cfg", "config_file", True),
            ("vault.txt", "vault_password_file", True),
        ]


class TestProvisionMany:
    """Tests for provision_many."""

    @pytest.mark.asyncio
    async def test_independent_guests(self):
        """Test that one guest failing does not affect the others."""
        good = GuestTarget(name="web", transport=FakeTransport(), username="vagrant")
        bad = GuestTarget(
            name="db", transport=FakeTransport(failures={"--inventory=": 1}), username="vagrant"
        )
        config = ProvisionConfig(playbook="site.yml")
        names = ["web", "db"]

        results = await provision_many([
            (Provisioner(capability=FakeCapability(installed=True), machine_names=names), good, config),
            (Provisioner(capability=FakeCapability(installed=True), machine_names=names), bad, config),
        ])

        assert isinstance(results[0], ProvisionResult)
        assert results[0].guest == "web"
        assert isinstance(results[1], CommandFailedError)

    @pytest.mark.asyncio
    async def test_transport_failure_returned(self):
        target = GuestTarget(
            name="web", transport=FakeTransport(failures={"mkdir": 1}), username="vagrant"
        )

        results = await provision_many([
            (Provisioner(capability=FakeCapability(installed=True)), target, ProvisionConfig(playbook="site.yml")),
        ])

        assert isinstance(results[0], TransportError)
