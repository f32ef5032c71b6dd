"""Remote command execution for guestplay.

RemoteExecutor submits commands through a transport and streams their
output to a sink. CommandRunner builds on it to run the named ansible
steps (galaxy, playbook) from the provisioning directory and turns a
non-zero exit into CommandFailedError.
"""

import logging
import shlex

from .exceptions import CommandFailedError
from .notify import Notifier, NullNotifier
from .transport import OutputSink, Transport, discard_output
from .types import CommandOutcome

logger = logging.getLogger(__name__)


class RemoteExecutor:
    """Runs commands on the guest and streams output to a sink.

    Exit status determination is independent of the sink: the sink only
    sees output lines, in arrival order within each stream.

    Example:
        >>> executor = RemoteExecutor(transport, sink=notifier.sink())
        >>> rc = await executor.run("ansible --version")
    """

    def __init__(self, transport: Transport, sink: OutputSink = discard_output) -> None:
        self.transport = transport
        self.sink = sink

    async def run(self, command: str, sink: OutputSink | None = None) -> int:
        """Run command on the guest.

        Args:
            command: Shell command line
            sink: Overrides the executor's default sink for this command

        Returns:
            The command's exit status
        """
        return await self.transport.execute(command, sink or self.sink)

    async def check(self, command: str) -> bool:
        """Run command with output discarded and report whether it succeeded."""
        return await self.transport.execute(command, discard_output) == 0


class CommandRunner:
    """Runs a named ansible step from a working directory on the guest."""

    def __init__(
        self,
        executor: RemoteExecutor,
        notifier: Notifier | None = None,
    ) -> None:
        self.executor = executor
        self.notifier = notifier or NullNotifier()

    async def run_named_step(self, step: str, command: str, working_dir: str) -> CommandOutcome:
        """Run command as step `step` from working_dir.

        Raises:
            CommandFailedError: If the command exits non-zero
        """
        remote_command = f"cd {shlex.quote(working_dir)} && {command}"

        self.notifier.info(f"Running ansible-{step}...")
        self.notifier.detail(remote_command)
        logger.info(f"Running step {step}: {remote_command}")

        outcome = CommandOutcome(step=step, exit_code=await self.executor.run(remote_command))
        if not outcome.succeeded:
            logger.error(f"Step {step} failed with exit code {outcome.exit_code}")
            raise CommandFailedError(step=step, exit_code=outcome.exit_code)
        return outcome
