"""Configuration file loading for guestplay.

Configuration is a YAML document. Provisioner options live under an
``ansible_local`` key (or make up the whole document), and the optional
``machines`` key lists every machine of the environment, in the order the
generated inventory should use:

    machines: [web, db]
    ansible_local:
      playbook: provisioning/site.yml
      install_mode: pip
      version: "2.16.3"
      host_vars:
        db: {ansible_user: admin}
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError
from .types import ProvisionConfig

logger = logging.getLogger(__name__)

SECTION = "ansible_local"


@dataclass
class ProvisionSettings:
    """Everything read from a configuration file.

    Attributes:
        config: Provisioner options
        machines: Known machines, in discovery order
    """

    config: ProvisionConfig
    machines: list[str] = field(default_factory=list)


def parse_config(data: Any) -> ProvisionSettings:
    """Build settings from a parsed YAML document.

    Raises:
        ConfigError: If the document is malformed or options are invalid
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    machines = data.get("machines", [])
    if not isinstance(machines, list):
        raise ConfigError("`machines` must be a list of machine names", option="machines")

    if SECTION in data:
        options = data[SECTION]
        if not isinstance(options, dict):
            raise ConfigError(f"`{SECTION}` must be a mapping", option=SECTION)
    else:
        options = {k: v for k, v in data.items() if k != "machines"}

    try:
        config = ProvisionConfig.from_dict(options)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    return ProvisionSettings(config=config, machines=[str(m) for m in machines])


def load_config(path: str | Path, **overrides: Any) -> ProvisionSettings:
    """Load settings from a YAML file, applying non-None overrides.

    Example:
        >>> settings = load_config("guestplay.yml", playbook="site.yml")
        >>> settings.config.playbook
        'site.yml'

    Raises:
        ConfigError: If the file cannot be read or is invalid
    """
    config_path = Path(path)
    try:
        data = yaml.safe_load(config_path.read_text())
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        data = {}
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if isinstance(data, dict) and overrides:
        section = data.get(SECTION) if isinstance(data.get(SECTION), dict) else None
        target = section if section is not None else data
        # A playbook given on the command line may complete a partial file
        for key, value in overrides.items():
            target.setdefault(key, value)

    settings = parse_config(data)
    if overrides:
        settings.config = replace(settings.config, **overrides)
    logger.debug(f"Loaded configuration from {config_path}")
    return settings
