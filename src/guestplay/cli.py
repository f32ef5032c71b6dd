"""Command-line interface for guestplay."""

import asyncio
import json
import logging
import posixpath
from typing import Any

import click

from guestplay import __version__
from guestplay.commands import galaxy_command, playbook_command
from guestplay.config import ProvisionSettings, load_config
from guestplay.exceptions import ConfigError, ProvisionError
from guestplay.inventory import InventoryBuilder
from guestplay.logging import configure_logging, get_level_from_verbosity, get_logger
from guestplay.notify import create_notifier
from guestplay.paths import expand_path_in_unix_style
from guestplay.provisioner import Provisioner, ProvisionResult, provision_many
from guestplay.transport import SSHConfig, SSHTransport
from guestplay.types import GuestTarget, ProvisionConfig

logger = get_logger("guestplay.cli")


def parse_host(value: str) -> tuple[str, str]:
    """Split a NAME=ADDRESS host option; a bare address is its own name.

    Example:
        >>> parse_host("web=192.168.56.10")
        ('web', '192.168.56.10')
        >>> parse_host("192.168.56.10")
        ('192.168.56.10', '192.168.56.10')
    """
    name, sep, address = value.partition("=")
    if not sep:
        return value, value
    if not name or not address:
        raise click.BadParameter(f"Expected NAME=ADDRESS, got '{value}'")
    return name, address


def _load(config_file: str, **overrides: Any) -> ProvisionSettings:
    try:
        return load_config(config_file, **overrides)
    except ConfigError as e:
        raise click.ClickException(str(e))


def format_result_text(result: ProvisionResult) -> str:
    lines = [f"{result.guest}: provisioned in {result.duration:.2f}s"]
    for stage in result.stages:
        status = "skipped" if stage.skipped else "ok"
        detail = f" ({stage.detail})" if stage.detail else ""
        lines.append(f"  {stage.stage.value}: {status}{detail}")
    for warning in result.warnings:
        lines.append(f"  warning: {warning.message}")
    return "\n".join(lines)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """guestplay - provision guests with ansible running on the guest."""
    if version:
        click.echo(f"guestplay {__version__}")
        ctx.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("provision")
@click.option("--config", "-c", "config_file", required=True, help="Configuration file (YAML)")
@click.option("--host", "-H", "hosts", multiple=True, required=True,
              help="Guest to provision, NAME=ADDRESS or ADDRESS (repeatable)")
@click.option("--port", "-p", default=22, show_default=True, help="SSH port")
@click.option("--user", "-u", default=None, help="SSH user (also owns staged files)")
@click.option("--key", "-k", "keys", multiple=True, help="SSH private key file (repeatable)")
@click.option("--no-host-key-check", is_flag=True, help="Disable known_hosts verification")
@click.option("--guest-type", default="", help="Guest OS family (detected when omitted)")
@click.option("--machine", "-m", "machines", multiple=True,
              help="Known machine for the generated inventory (repeatable, overrides config)")
@click.option("--playbook", default=None, help="Playbook (overrides config)")
@click.option("--no-install", is_flag=True, help="Never install ansible on the guest")
@click.option("--timeout", "-t", default=None, type=float, help="Per-command timeout in seconds")
@click.option("--format", "-f", "output_format", type=click.Choice(["text", "json"]),
              default="text", show_default=True, help="Output format")
@click.option("--verbose", "-v", count=True, help="Increase verbosity (-v, -vv, -vvv)")
@click.option("--log-file", default=None, help="Write logs to this file")
def provision(
    config_file: str,
    hosts: tuple[str, ...],
    port: int,
    user: str | None,
    keys: tuple[str, ...],
    no_host_key_check: bool,
    guest_type: str,
    machines: tuple[str, ...],
    playbook: str | None,
    no_install: bool,
    timeout: float | None,
    output_format: str,
    verbose: int,
    log_file: str | None,
) -> None:
    """Provision one or more guests over SSH.

    Each guest runs: path checks, ansible installation, ansible-galaxy
    (when a role file is configured), inventory upload (when no inventory
    is configured) and ansible-playbook.
    """
    configure_logging(level=get_level_from_verbosity(verbose), log_file=log_file,
                      file_level=logging.DEBUG if log_file else None)

    settings = _load(config_file, playbook=playbook, install=False if no_install else None)
    targets = [parse_host(h) for h in hosts]
    known = list(machines) or settings.machines or [name for name, _ in targets]
    json_format = output_format == "json"

    async def run_async() -> list[ProvisionResult | BaseException]:
        jobs = []
        transports = []
        for name, address in targets:
            logger.debug("Opening SSH transport", guest=name, address=address, port=port)
            transport = SSHTransport(SSHConfig(
                hostname=address,
                port=port,
                username=user,
                client_keys=list(keys) or None,
                known_hosts=None if no_host_key_check else (),
                command_timeout=timeout,
            ))
            transports.append(transport)
            target = GuestTarget(
                name=name,
                transport=transport,
                username=user or "root",
                guest_type=guest_type,
            )
            notifier = create_notifier(json_format=json_format, guest=name)
            jobs.append((Provisioner(notifier=notifier, machine_names=known), target, settings.config))
        try:
            return await provision_many(jobs)
        finally:
            for transport in transports:
                await transport.close()

    results = asyncio.run(run_async())

    failures = 0
    for (name, _), result in zip(targets, results):
        if isinstance(result, ProvisionError):
            failures += 1
            logger.error("Provisioning failed", guest=name, kind=result.kind)
            if json_format:
                click.echo(json.dumps({"guest": name, "error": result.record.to_dict()}))
            else:
                click.echo(f"{name}: {result.msg}", err=True)
        elif isinstance(result, BaseException):
            raise result
        else:
            logger.info("Provisioning succeeded", guest=name, duration=f"{result.duration:.2f}s")
            if json_format:
                click.echo(json.dumps(result.to_dict()))
            else:
                click.echo(format_result_text(result))

    if failures:
        if json_format:
            raise SystemExit(1)
        raise click.ClickException(f"{failures} guest(s) failed provisioning")


@cli.command("inventory")
@click.option("--config", "-c", "config_file", required=True, help="Configuration file (YAML)")
@click.option("--name", "-n", "self_name", required=True, help="Guest the inventory is generated for")
@click.option("--machine", "-m", "machines", multiple=True,
              help="Known machine (repeatable, overrides config)")
def inventory(config_file: str, self_name: str, machines: tuple[str, ...]) -> None:
    """Print the inventory that would be shipped to a guest."""
    settings = _load(config_file)
    names = list(machines) or settings.machines
    if self_name not in names:
        names.append(self_name)

    config = settings.config
    click.echo(
        InventoryBuilder().render(names, self_name, host_vars=config.host_vars, groups=config.groups),
        nl=False,
    )


@cli.command("check-config")
@click.option("--config", "-c", "config_file", required=True, help="Configuration file (YAML)")
@click.option("--name", "-n", "guest_name", default="default", show_default=True,
              help="Guest name used as the default --limit")
def check_config(config_file: str, guest_name: str) -> None:
    """Validate a configuration file and show the remote commands it produces."""
    config: ProvisionConfig = _load(config_file).config
    provisioner = Provisioner()

    click.echo(f"Configuration: {config_file}")
    click.echo(f"  install: {config.install} (mode={config.install_mode.value}, "
               f"version={config.version or 'any'})")
    click.echo(f"  working directory: {config.provisioning_path}")
    click.echo("\nRequired paths:")
    for path, option, is_file in provisioner.required_paths(config):
        click.echo(f"  {option}: {path} ({'file' if is_file else 'any'})")

    click.echo("\nCommands:")
    if config.galaxy_role_file:
        click.echo(f"  galaxy: {galaxy_command(config)}")
    if config.generates_inventory:
        inventory_dir = posixpath.join(config.tmp_path, "inventory")
        command = playbook_command(config, inventory_dir, default_limit=guest_name)
    else:
        inventory_path = expand_path_in_unix_style(config.inventory_path or "", config.provisioning_path)
        command = playbook_command(config, inventory_path)
    click.echo(f"  playbook: {command}")


def main() -> None:
    """Package entry point for the guestplay command-line interface."""
    cli()


if __name__ == "__main__":
    cli()
