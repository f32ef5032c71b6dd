"""Inventory generation for guestplay.

Builds the INI inventory describing every machine known to the
environment, so that playbooks running on the guest can address their
peers, and ships it to the guest's staging directory.

Generated format:

    # Generated by guestplay

    web ansible_connection=local
    db ansible_user=admin

    [databases]
    db

    [databases:vars]
    db_port=5432
"""

import logging
import os
import posixpath
import re
import shlex
import tempfile
from typing import Any, Callable, Iterable, Mapping

from .exceptions import ConfigError
from .transport import Transport
from .types import InventoryEntry

logger = logging.getLogger(__name__)

INVENTORY_HEADER = "# Generated by guestplay\n\n"
INVENTORY_FILENAME = "guestplay_ansible_local_inventory"

# e.g. web[01:20] or db-[a:f]
HOST_RANGE_PATTERN = re.compile(r"\[[a-z0-9]+:[a-z0-9]+\]", re.IGNORECASE)

HostVarsLookup = Callable[[str], str | None]


def format_host_vars(value: Any) -> str | None:
    """Render host variables as a space separated key=value string.

    Example:
        >>> format_host_vars({"ansible_user": "admin", "http_port": 80})
        'ansible_user=admin http_port=80'
        >>> format_host_vars("ansible_user=admin")
        'ansible_user=admin'

    Raises:
        ConfigError: If value is not a mapping, a list or a string
    """
    if value is None:
        return None
    if isinstance(value, Mapping):
        rendered = " ".join(f"{k}={v}" for k, v in value.items())
    elif isinstance(value, (list, tuple)):
        rendered = " ".join(str(item) for item in value)
    elif isinstance(value, str):
        rendered = value.strip()
    else:
        raise ConfigError(
            f"Host variables must be a mapping, a list or a string, not {type(value).__name__}",
            option="host_vars",
        )
    return rendered or None


def host_vars_lookup(host_vars: Mapping[str, Any]) -> HostVarsLookup:
    """Lookup function over a host_vars mapping."""

    def lookup(name: str) -> str | None:
        return format_host_vars(host_vars.get(name))

    return lookup


def _no_host_vars(name: str) -> str | None:
    return None


class InventoryBuilder:
    """Produces inventory text for all known machines."""

    def entries(
        self,
        machine_names: Iterable[str],
        self_name: str,
        lookup: HostVarsLookup = _no_host_vars,
    ) -> list[InventoryEntry]:
        """Build one entry per machine, in the given order.

        A lookup that raises is treated as "no host vars for this entry":
        the machine stays in the inventory without its variables and a
        warning is logged.
        """
        entries: list[InventoryEntry] = []
        seen: set[str] = set()
        for name in machine_names:
            if name in seen:
                continue
            seen.add(name)

            try:
                host_vars = lookup(name)
            except Exception as e:
                logger.warning(f"Ignoring host vars for {name}: {e}")
                host_vars = None

            entries.append(InventoryEntry(name=name, is_self=name == self_name, host_vars=host_vars))
        return entries

    def build(
        self,
        machine_names: Iterable[str],
        self_name: str,
        lookup: HostVarsLookup = _no_host_vars,
    ) -> str:
        """Render the machine lines of the inventory.

        Example:
            >>> InventoryBuilder().build(["web", "db"], "web", host_vars_lookup({"db": "ansible_user=admin"}))
            'web ansible_connection=local\\ndb ansible_user=admin\\n'
        """
        return "".join(entry.render() for entry in self.entries(machine_names, self_name, lookup))

    def build_groups(self, groups: Mapping[str, Any], machine_names: Iterable[str]) -> str:
        """Render [group], [group:children] and [group:vars] sections.

        Members that are not known machines are left out, except host
        range patterns (web[01:10]) which are passed through for ansible
        to expand.
        """
        known = set(machine_names)
        defined_groups: list[str] = []
        children: dict[str, list[str]] = {}
        group_vars: dict[str, Any] = {}
        sections = ""

        for group_name, members in groups.items():
            if group_name.endswith(":vars"):
                group_vars[group_name] = members
                continue
            if not isinstance(members, (list, tuple)):
                members = [members]
            if group_name.endswith(":children"):
                children[group_name] = list(members)
                defined_groups.append(group_name[: -len(":children")])
                continue

            defined_groups.append(group_name)
            sections += f"\n[{group_name}]\n"
            for member in members:
                member = str(member)
                if member in known or HOST_RANGE_PATTERN.search(member):
                    sections += f"{member}\n"

        for group_name, members in children.items():
            sections += f"\n[{group_name}]\n"
            for member in members:
                if member in defined_groups:
                    sections += f"{member}\n"

        for group_name, variables in group_vars.items():
            owner = group_name[: -len(":vars")]
            if owner in defined_groups or owner == "all":
                if isinstance(variables, Mapping):
                    lines = [f"{k}={v}" for k, v in variables.items()]
                elif isinstance(variables, (list, tuple)):
                    lines = [str(v) for v in variables]
                else:
                    lines = [str(variables)]
                sections += f"\n[{group_name}]\n" + "\n".join(lines) + "\n"

        return sections

    def render(
        self,
        machine_names: Iterable[str],
        self_name: str,
        host_vars: Mapping[str, Any] | None = None,
        groups: Mapping[str, Any] | None = None,
    ) -> str:
        """Render the complete inventory file content."""
        names = list(machine_names)
        content = INVENTORY_HEADER
        content += self.build(names, self_name, host_vars_lookup(host_vars or {}))
        content += self.build_groups(groups or {}, names)
        return content


class InventoryShipper:
    """Delivers generated inventory content to the guest's staging directory."""

    def __init__(self, transport: Transport, tmp_path: str, username: str) -> None:
        self.transport = transport
        self.inventory_dir = posixpath.join(tmp_path, "inventory")
        self.inventory_path = posixpath.join(self.inventory_dir, INVENTORY_FILENAME)
        self.username = username

    async def ship(self, content: str, prefix: str = "guestplay-inventory-") -> str:
        """Upload content and return the remote inventory directory.

        The local staging file is removed before returning, whether the
        upload succeeded or not.
        """
        inventory_dir = shlex.quote(self.inventory_dir)
        await self.transport.sudo(f"mkdir -p {inventory_dir}")
        await self.transport.sudo(f"chown -h {shlex.quote(self.username)} {inventory_dir}")
        # A stale inventory may belong to another user
        await self.transport.sudo(f"rm -f {shlex.quote(self.inventory_path)}", check=False)

        fd, local_path = tempfile.mkstemp(prefix=prefix)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content.encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())
            logger.debug(f"Uploading inventory to {self.inventory_path}")
            await self.transport.upload(local_path, self.inventory_path)
        finally:
            os.unlink(local_path)

        return self.inventory_dir
