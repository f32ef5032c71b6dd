"""Composition of the ansible-galaxy and ansible-playbook command lines."""

import json
import posixpath
import shlex

from .paths import expand_path_in_unix_style
from .types import ProvisionConfig


def _csv(value: str | list[str]) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def galaxy_role_file(config: ProvisionConfig) -> str:
    return expand_path_in_unix_style(config.galaxy_role_file or "", config.provisioning_path)


def galaxy_roles_path(config: ProvisionConfig) -> str:
    """Where galaxy installs roles: configured, or a roles/ dir next to the playbook."""
    if config.galaxy_roles_path:
        return expand_path_in_unix_style(config.galaxy_roles_path, config.provisioning_path)
    playbook = expand_path_in_unix_style(config.playbook, config.provisioning_path)
    return posixpath.join(posixpath.dirname(playbook), "roles")


def galaxy_command(config: ProvisionConfig) -> str:
    """Format the galaxy command template.

    Example:
        >>> galaxy_command(ProvisionConfig(playbook="site.yml", galaxy_role_file="requirements.yml"))
        "ansible-galaxy install --role-file='/vagrant/requirements.yml' --roles-path='/vagrant/roles' --force"
    """
    values = {
        "role_file": f"'{galaxy_role_file(config)}'",
        "roles_path": f"'{galaxy_roles_path(config)}'",
    }
    return config.galaxy_command % values


def verbosity_flag(verbose: str | bool) -> str | None:
    """Turn the verbose setting into a -v flag.

    Example:
        >>> verbosity_flag("vvv")
        '-vvv'
        >>> verbosity_flag(True)
        '-v'
    """
    if verbose is True:
        return "-v"
    if not verbose:
        return None
    flag = str(verbose).strip()
    if not flag.startswith("-"):
        flag = "-" + flag
    if not set(flag[1:]) <= {"v"} or len(flag) < 2:
        return None
    return flag


def playbook_command(
    config: ProvisionConfig,
    inventory: str | None = None,
    default_limit: str | None = None,
) -> str:
    """Compose the ansible-playbook command line.

    Args:
        config: Provisioning configuration
        inventory: Inventory file or directory on the guest
        default_limit: Host pattern used when config.limit is unset
    """
    base_dir = config.provisioning_path
    env = ["ANSIBLE_FORCE_COLOR=true"]
    if config.config_file:
        env.append(
            "ANSIBLE_CONFIG=" + shlex.quote(expand_path_in_unix_style(config.config_file, base_dir))
        )
    if config.galaxy_roles_path:
        env.append("ANSIBLE_ROLES_PATH=" + shlex.quote(galaxy_roles_path(config)))

    args = [config.playbook_command]
    if inventory:
        args.append("--inventory=" + shlex.quote(inventory))

    limit = config.limit or default_limit
    if limit:
        args.append("--limit=" + shlex.quote(_csv(limit)))

    if isinstance(config.extra_vars, dict) and config.extra_vars:
        args.append("--extra-vars=" + shlex.quote(json.dumps(config.extra_vars)))
    elif isinstance(config.extra_vars, str) and config.extra_vars:
        extra = config.extra_vars
        if extra.startswith("@"):
            extra = "@" + expand_path_in_unix_style(extra[1:], base_dir)
        args.append("--extra-vars=" + shlex.quote(extra))

    if config.become:
        args.append("--become")
        if config.become_user:
            args.append("--become-user=" + shlex.quote(config.become_user))
    if config.tags:
        args.append("--tags=" + shlex.quote(_csv(config.tags)))
    if config.skip_tags:
        args.append("--skip-tags=" + shlex.quote(_csv(config.skip_tags)))
    if config.start_at_task:
        args.append("--start-at-task=" + shlex.quote(config.start_at_task))
    if config.vault_password_file:
        args.append(
            "--vault-password-file="
            + shlex.quote(expand_path_in_unix_style(config.vault_password_file, base_dir))
        )

    flag = verbosity_flag(config.verbose)
    if flag:
        args.append(flag)

    args.extend(config.raw_arguments)
    args.append(shlex.quote(config.playbook))

    return " ".join(env + args)
