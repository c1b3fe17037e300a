"""Component definitions: ordered steps, a status probe and test assertions."""

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

import structlog

from host_provisioner.config import ProvisionerConfig
from host_provisioner.exceptions import (
    ExternalCommandError,
    ProvisionerError,
    ValidationError,
)
from host_provisioner.system_info import SystemInfo
from host_provisioner.types import ComponentId, ComponentState
from host_provisioner.utils.command import ALREADY_ABSENT, ALREADY_INSTALLED, CommandRunner
from host_provisioner.utils.file import ConfigEdit, ConfigWriter

logger = structlog.get_logger(__name__)


@dataclass
class StepContext:
    """Collaborators handed to every step, probe and assertion."""

    config: ProvisionerConfig
    runner: CommandRunner
    writer: ConfigWriter
    system: SystemInfo


Action = Callable[[StepContext], None]
Value = Union[str, Callable[[StepContext], str]]


@dataclass(frozen=True)
class Step:
    description: str
    action: Action


@dataclass(frozen=True)
class Assertion:
    name: str
    check: Callable[[StepContext], bool]


@dataclass(frozen=True)
class AssertionResult:
    name: str
    passed: bool
    detail: str = ""


@dataclass
class OperationResult:
    """Outcome of running a component's install or uninstall steps."""

    component: ComponentId
    operation: str
    completed: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.failed_step is None


@dataclass
class TestReport:
    """Per-assertion results of a component test."""

    __test__ = False

    component: ComponentId
    results: List[AssertionResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return bool(self.results) and all(r.passed for r in self.results)

    def result(self, name: str) -> Optional[AssertionResult]:
        for item in self.results:
            if item.name == name:
                return item
        return None


@dataclass(frozen=True)
class ComponentDefinition:
    """One installable unit. Registered once and never mutated."""

    id: ComponentId
    label: str
    install_steps: Tuple[Step, ...]
    uninstall_steps: Tuple[Step, ...]
    probe: Callable[[StepContext], ComponentState]
    assertions: Tuple[Assertion, ...]

    def install(self, ctx: StepContext) -> OperationResult:
        return self._run("install", self.install_steps, ctx)

    def uninstall(self, ctx: StepContext) -> OperationResult:
        return self._run("uninstall", self.uninstall_steps, ctx)

    def status(self, ctx: StepContext) -> ComponentState:
        """Read-only probe of live state."""
        return self.probe(ctx)

    def test(self, ctx: StepContext) -> TestReport:
        """Evaluate every assertion; a probe error counts as a failure."""
        report = TestReport(component=self.id)
        for assertion in self.assertions:
            try:
                passed = bool(assertion.check(ctx))
                detail = ""
            except ProvisionerError as e:
                passed, detail = False, str(e)
            report.results.append(AssertionResult(assertion.name, passed, detail))
        return report

    def _run(
        self, operation: str, steps: Sequence[Step], ctx: StepContext
    ) -> OperationResult:
        """Run steps strictly in order, stopping at the first failure.

        Command and validation failures end this component's run and are
        returned. FilesystemError and anything else propagate to the caller.
        """
        result = OperationResult(component=self.id, operation=operation)
        log = logger.bind(component=self.id.value, operation=operation)

        for index, step in enumerate(steps, start=1):
            log.info("step_started", step=step.description, index=index, total=len(steps))
            try:
                step.action(ctx)
            except (ExternalCommandError, ValidationError) as e:
                log.error("step_failed", step=step.description, error=str(e))
                result.failed_step = step.description
                result.error = str(e)
                return result
            result.completed.append(step.description)

        log.info("operation_completed", steps=len(result.completed))
        return result


def _resolve(value: Value, ctx: StepContext) -> str:
    return value(ctx) if callable(value) else value


# Step builders ---------------------------------------------------------------


def run(command: Value, benign: Iterable[str] = ()) -> Action:
    """Run a command; only unexpected failures abort the component."""
    patterns = tuple(benign)

    def action(ctx: StepContext) -> None:
        ctx.runner.check(_resolve(command, ctx), benign=patterns)

    return action


def apt_install(*packages: str) -> Action:
    def action(ctx: StepContext) -> None:
        ctx.runner.check(
            f"apt-get install -y {' '.join(packages)}", benign=ALREADY_INSTALLED
        )

    return action


def apt_install_from(get_packages: Callable[[StepContext], List[str]]) -> Action:
    def action(ctx: StepContext) -> None:
        apt_install(*get_packages(ctx))(ctx)

    return action


def apt_purge(get_packages: Callable[[StepContext], List[str]]) -> Action:
    """Purge packages one at a time so a missing one does not block the rest."""

    def action(ctx: StepContext) -> None:
        for package in get_packages(ctx):
            ctx.runner.check(f"apt-get purge -y {package}", benign=ALREADY_ABSENT)

    return action


def apt_autoremove(ctx: StepContext) -> None:
    ctx.runner.check("apt-get autoremove -y")


def service(action_name: str, name: Value) -> Action:
    """systemctl action; stop/disable on a missing unit count as done."""
    benign = ALREADY_ABSENT if action_name in ("stop", "disable") else ()

    def action(ctx: StepContext) -> None:
        ctx.runner.check(f"systemctl {action_name} {_resolve(name, ctx)}", benign=benign)

    return action


def edit(build: Callable[[StepContext], ConfigEdit]) -> Action:
    def action(ctx: StepContext) -> None:
        ctx.writer.apply(build(ctx))

    return action


def remove_paths(get_paths: Callable[[StepContext], Iterable[object]]) -> Action:
    def action(ctx: StepContext) -> None:
        ctx.writer.remove_paths(get_paths(ctx))

    return action


def require(predicate: Callable[[StepContext], bool], message: str) -> Action:
    """Stop the component with a ValidationError unless predicate holds."""

    def action(ctx: StepContext) -> None:
        if not predicate(ctx):
            raise ValidationError(message)

    return action


# Probes ----------------------------------------------------------------------


def package_installed(ctx: StepContext, package: str) -> bool:
    result = ctx.runner.execute(f"dpkg-query -W -f='${{Status}}' {package}", quiet=True)
    return result.succeeded and "install ok installed" in result.stdout


def service_active(ctx: StepContext, name: str) -> bool:
    return ctx.runner.execute(f"systemctl is-active --quiet {name}", quiet=True).succeeded


def package_service_state(package: str, unit: Value) -> Callable[[StepContext], ComponentState]:
    """Probe built from a package and the unit it ships."""

    def probe(ctx: StepContext) -> ComponentState:
        if not package_installed(ctx, package):
            return ComponentState.NOT_INSTALLED
        if service_active(ctx, _resolve(unit, ctx)):
            return ComponentState.ACTIVE
        return ComponentState.INACTIVE

    return probe
