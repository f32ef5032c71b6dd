"""Provisioning orchestration for guestplay.

A run walks a fixed, linear sequence of stages:

    paths validated -> installed -> roles fetched -> inventory shipped -> playbook run

Optional stages (roles fetched, inventory shipped) are recorded as skipped
when the configuration does not ask for them. The first failing stage
aborts the run by raising; nothing done by earlier stages is rolled back.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Sequence

from .capabilities import Capability, capability_for, detect_guest_type
from .commands import galaxy_command, playbook_command
from .exceptions import ErrorRecord
from .executor import CommandRunner, RemoteExecutor
from .install import InstallationManager
from .inventory import InventoryBuilder, InventoryShipper
from .logging import get_logger, log_performance, log_scope
from .notify import Notifier, NullNotifier
from .paths import PathValidator, expand_path_in_unix_style
from .types import GuestTarget, ProvisionConfig

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Provisioning stages, in execution order."""

    PATHS_VALIDATED = "paths_validated"
    INSTALLED = "installed"
    ROLES_FETCHED = "roles_fetched"
    INVENTORY_SHIPPED = "inventory_shipped"
    PLAYBOOK_RUN = "playbook_run"


@dataclass
class StageResult:
    """Outcome of one stage.

    Attributes:
        stage: Which stage ran
        skipped: True when the configuration did not ask for the stage
        detail: Short description (paths checked, inventory dir, ...)
    """

    stage: Stage
    skipped: bool = False
    detail: str = ""


@dataclass
class ProvisionResult:
    """Summary of a successful provisioning run.

    Attributes:
        guest: Name of the provisioned guest
        stages: Stage results in execution order
        warnings: Non-fatal conditions met along the way
        duration: Run duration in seconds
    """

    guest: str
    stages: list[StageResult] = field(default_factory=list)
    warnings: list[ErrorRecord] = field(default_factory=list)
    duration: float = 0.0

    @property
    def completed(self) -> list[Stage]:
        """Stages that actually ran."""
        return [s.stage for s in self.stages if not s.skipped]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "guest": self.guest,
            "stages": [
                {"stage": s.stage.value, "skipped": s.skipped, "detail": s.detail}
                for s in self.stages
            ],
            "warnings": [w.to_dict() for w in self.warnings],
            "duration": round(self.duration, 3),
        }


@dataclass
class _Run:
    """Per-run state; nothing here outlives a provision() call."""

    target: GuestTarget
    config: ProvisionConfig
    executor: RemoteExecutor
    runner: CommandRunner
    result: ProvisionResult
    inventory: str | None = None


class Provisioner:
    """Provisions a guest with ansible running on the guest itself.

    Example:
        >>> provisioner = Provisioner(notifier=TextNotifier("web"), machine_names=["web", "db"])
        >>> result = await provisioner.provision(target, config)
        >>> result.completed
        [<Stage.PATHS_VALIDATED: ...>, <Stage.INSTALLED: ...>, <Stage.INVENTORY_SHIPPED: ...>, ...]
    """

    def __init__(
        self,
        capability: Capability | None = None,
        notifier: Notifier | None = None,
        machine_names: Sequence[str] | None = None,
        inventory_builder: InventoryBuilder | None = None,
    ) -> None:
        """Initialize the provisioner.

        Args:
            capability: Detect/install provider; chosen from the guest type
                when None
            notifier: Receives notices, warnings and remote output
            machine_names: Every machine known to the environment, in
                discovery order (defaults to the target alone)
            inventory_builder: Inventory generator
        """
        self.capability = capability
        self.notifier = notifier or NullNotifier()
        self.machine_names = list(machine_names) if machine_names is not None else None
        self.inventory_builder = inventory_builder or InventoryBuilder()

    def _stages(self) -> list[tuple[Stage, Callable[[_Run], Awaitable[StageResult]]]]:
        return [
            (Stage.PATHS_VALIDATED, self._validate_paths),
            (Stage.INSTALLED, self._install),
            (Stage.ROLES_FETCHED, self._fetch_roles),
            (Stage.INVENTORY_SHIPPED, self._ship_inventory),
            (Stage.PLAYBOOK_RUN, self._run_playbook),
        ]

    async def provision(self, target: GuestTarget, config: ProvisionConfig) -> ProvisionResult:
        """Run every stage against target.

        Raises:
            ProvisionError: The first fatal failure (its record holds the details)
        """
        executor = RemoteExecutor(target.transport, sink=self.notifier.sink())
        run = _Run(
            target=target,
            config=config,
            executor=executor,
            runner=CommandRunner(executor, self.notifier),
            result=ProvisionResult(guest=target.name),
        )

        run_logger = get_logger(__name__, guest=target.name)
        start = time.perf_counter()
        with log_performance(logger, "Provisioning", guest=target.name):
            for stage, handler in self._stages():
                with log_scope(logger, f"Stage {stage.value}", level=logging.DEBUG, guest=target.name):
                    stage_result = await handler(run)
                if stage_result.skipped:
                    run_logger.debug(f"Stage {stage.value} skipped")
                run.result.stages.append(stage_result)

        run.result.duration = time.perf_counter() - start
        run_logger.info(
            "Provisioned",
            stages=len(run.result.completed),
            warnings=len(run.result.warnings),
        )
        return run.result

    def required_paths(self, config: ProvisionConfig) -> list[tuple[str, str, bool]]:
        """(path, option name, must be a regular file) for every configured input."""
        paths = [(config.playbook, "playbook", True)]
        if config.galaxy_role_file:
            paths.append((config.galaxy_role_file, "galaxy_role_file", True))
        if config.inventory_path:
            paths.append((config.inventory_path, "inventory_path", False))
        if config.config_file:
            paths.append((config.config_file, "config_file", True))
        if config.vault_password_file:
            paths.append((config.vault_password_file, "vault_password_file", True))
        return paths

    async def _validate_paths(self, run: _Run) -> StageResult:
        validator = PathValidator(run.executor, run.config.provisioning_path)
        checked = []
        for path, option, is_file in self.required_paths(run.config):
            if is_file:
                checked.append(await validator.check_file(path, option))
            else:
                checked.append(await validator.check_path(path, option))
        return StageResult(Stage.PATHS_VALIDATED, detail=", ".join(checked))

    async def _resolve_capability(self, target: GuestTarget) -> Capability:
        if self.capability is not None:
            return self.capability
        guest_type = target.guest_type or await detect_guest_type(target.transport)
        logger.debug(f"Guest {target.name} type: {guest_type or 'unknown'}")
        return capability_for(guest_type, target.transport)

    async def _install(self, run: _Run) -> StageResult:
        manager = InstallationManager(
            await self._resolve_capability(run.target), run.executor, self.notifier
        )
        report = await manager.ensure_installed(run.target, run.config)
        run.result.warnings.extend(report.warnings)
        return StageResult(
            Stage.INSTALLED, detail="installed" if report.install_attempted else "verified"
        )

    async def _fetch_roles(self, run: _Run) -> StageResult:
        if not run.config.galaxy_role_file:
            return StageResult(Stage.ROLES_FETCHED, skipped=True)
        await run.runner.run_named_step(
            "galaxy", galaxy_command(run.config), run.config.provisioning_path
        )
        return StageResult(Stage.ROLES_FETCHED)

    def machines_for(self, target: GuestTarget) -> list[str]:
        names = list(self.machine_names) if self.machine_names is not None else []
        if target.name not in names:
            names.append(target.name)
        return names

    async def _ship_inventory(self, run: _Run) -> StageResult:
        config = run.config
        if not config.generates_inventory:
            run.inventory = expand_path_in_unix_style(
                config.inventory_path or "", config.provisioning_path
            )
            return StageResult(Stage.INVENTORY_SHIPPED, skipped=True, detail=run.inventory)

        content = self.inventory_builder.render(
            self.machines_for(run.target),
            run.target.name,
            host_vars=config.host_vars,
            groups=config.groups,
        )
        shipper = InventoryShipper(run.target.transport, config.tmp_path, run.target.username)
        run.inventory = await shipper.ship(
            content, prefix=f"guestplay-inventory-{run.target.name}-"
        )
        return StageResult(Stage.INVENTORY_SHIPPED, detail=run.inventory)

    async def _run_playbook(self, run: _Run) -> StageResult:
        default_limit = run.target.name if run.config.generates_inventory else None
        command = playbook_command(run.config, run.inventory, default_limit=default_limit)
        await run.runner.run_named_step("playbook", command, run.config.provisioning_path)
        return StageResult(Stage.PLAYBOOK_RUN)


async def provision_many(
    jobs: Iterable[tuple[Provisioner, GuestTarget, ProvisionConfig]],
) -> list[ProvisionResult | BaseException]:
    """Provision several guests concurrently.

    Runs are independent: each has its own target and transport, and one
    guest failing does not stop the others. Failures are returned in place
    of the corresponding result.
    """
    tasks = [provisioner.provision(target, config) for provisioner, target, config in jobs]
    return await asyncio.gather(*tasks, return_exceptions=True)
