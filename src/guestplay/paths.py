"""Remote path resolution and existence checks."""

import logging
import posixpath
import shlex
from enum import Enum

from .exceptions import ConfigFileNotFoundError
from .executor import RemoteExecutor

logger = logging.getLogger(__name__)


class PathMode(str, Enum):
    """test(1) flag used to check a remote path."""

    FILE = "-f"
    EXISTS = "-e"


def expand_path_in_unix_style(path: str, base_dir: str) -> str:
    """Resolve path against base_dir using guest (POSIX) path rules.

    Example:
        >>> expand_path_in_unix_style("playbook.yml", "/vagrant")
        '/vagrant/playbook.yml'
        >>> expand_path_in_unix_style("../roles", "/vagrant/provisioning")
        '/vagrant/roles'
    """
    return posixpath.normpath(posixpath.join(base_dir, path))


class PathValidator:
    """Checks that required files exist on the guest before anything runs."""

    def __init__(self, executor: RemoteExecutor, base_dir: str) -> None:
        self.executor = executor
        self.base_dir = base_dir

    def resolve(self, path: str) -> str:
        return expand_path_in_unix_style(path, self.base_dir)

    async def check_exists(self, path: str, mode: PathMode, option_name: str) -> str:
        """Check path on the guest, returning the resolved remote path.

        Raises:
            ConfigFileNotFoundError: If the test command exits non-zero
        """
        remote_path = self.resolve(path)
        command = f"test {PathMode(mode).value} {shlex.quote(remote_path)}"

        if not await self.executor.check(command):
            logger.error(f"{option_name}: {remote_path} not found on guest")
            raise ConfigFileNotFoundError(path=remote_path, option=option_name, system="guest")

        logger.debug(f"{option_name}: {remote_path} found")
        return remote_path

    async def check_file(self, path: str, option_name: str) -> str:
        return await self.check_exists(path, PathMode.FILE, option_name)

    async def check_path(self, path: str, option_name: str) -> str:
        return await self.check_exists(path, PathMode.EXISTS, option_name)
