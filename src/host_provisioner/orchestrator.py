"""Menu-driven dispatcher over the component catalog."""

import getpass
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, TextIO, Tuple, Union

import structlog

from host_provisioner import components
from host_provisioner.bootstrap import AdminIdentity, IdentityBootstrap
from host_provisioner.components.base import OperationResult, StepContext, TestReport
from host_provisioner.exceptions import (
    ExternalCommandError,
    FilesystemError,
    PrivilegeError,
    ProvisionerError,
    UserInputError,
)
from host_provisioner.status import StatusReport, StatusReporter
from host_provisioner.types import ComponentId, ExistingUserPolicy

logger = structlog.get_logger(__name__)

UPGRADE_COMMANDS = (
    "apt-get update",
    "apt-get -y -o Dpkg::Options::=--force-confdef "
    "-o Dpkg::Options::=--force-confold upgrade",
    "apt-get -y autoremove",
)


class MenuState(str, Enum):
    MAIN = "main"
    INSTALL_ALL = "install-all"
    INSTALL_ONE = "install-one"
    UNINSTALL_ONE = "uninstall-one"
    TEST = "test"
    STATUS = "status"
    CREATE_ADMIN = "create-admin"
    EXIT = "exit"


MAIN_MENU: Tuple[Tuple[str, MenuState], ...] = (
    ("Install all components", MenuState.INSTALL_ALL),
    ("Install one component", MenuState.INSTALL_ONE),
    ("Uninstall one component", MenuState.UNINSTALL_ONE),
    ("Test a component", MenuState.TEST),
    ("Show status", MenuState.STATUS),
    ("Create admin user", MenuState.CREATE_ADMIN),
    ("Exit", MenuState.EXIT),
)


@dataclass
class BatchSummary:
    """Aggregate outcome of an install-all run."""

    results: List[OperationResult] = field(default_factory=list)
    upgraded: Optional[bool] = None
    upgrade_error: Optional[str] = None
    aborted: Optional[str] = None

    @property
    def succeeded(self) -> List[ComponentId]:
        return [r.component for r in self.results if r.success]

    @property
    def failed(self) -> List[OperationResult]:
        return [r for r in self.results if not r.success]

    @property
    def success(self) -> bool:
        return not self.failed and self.aborted is None


class Console:
    """Leveled user-facing messages, mirrored to the structured log."""

    def __init__(
        self,
        out: Optional[TextIO] = None,
        input_fn: Optional[Callable[[str], str]] = None,
        password_fn: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.out = out or sys.stdout
        self.input_fn = input_fn or input
        self.password_fn = password_fn or getpass.getpass

    def write(self, text: str = "") -> None:
        print(text, file=self.out)

    def info(self, message: str) -> None:
        self.write(f"[INFO] {message}")
        logger.info("console", message=message)

    def success(self, message: str) -> None:
        self.write(f"[ OK ] {message}")
        logger.info("console", message=message)

    def warning(self, message: str) -> None:
        self.write(f"[WARN] {message}")
        logger.warning("console", message=message)

    def error(self, message: str) -> None:
        self.write(f"[FAIL] {message}")
        logger.error("console", message=message)

    def prompt(self, text: str) -> str:
        return self.input_fn(text).strip()

    def secret(self, text: str) -> str:
        return self.password_fn(text)

    def confirm(self, text: str) -> bool:
        return self.prompt(f"{text} (yes/no): ").lower() in ("y", "yes")


class Orchestrator:
    """Route menu selections to component operations."""

    def __init__(self, ctx: StepContext, console: Optional[Console] = None) -> None:
        self.ctx = ctx
        self.console = console or Console()
        self.reporter = StatusReporter(ctx)
        self._handlers: Dict[MenuState, Callable[[], None]] = {
            MenuState.INSTALL_ALL: self._menu_install_all,
            MenuState.INSTALL_ONE: self._menu_install_one,
            MenuState.UNINSTALL_ONE: self._menu_uninstall_one,
            MenuState.TEST: self._menu_test,
            MenuState.STATUS: self._menu_status,
            MenuState.CREATE_ADMIN: self._menu_create_admin,
        }

    # Operations ---------------------------------------------------------------

    def update_system(self) -> None:
        """Refresh the index, upgrade keeping local config files, autoremove.

        Raises:
            ExternalCommandError: If any apt step fails
        """
        for cmd in UPGRADE_COMMANDS:
            self.ctx.runner.check(cmd)

    def install_all(self) -> BatchSummary:
        """Install every component in order, continuing past failures."""
        summary = BatchSummary()
        log = logger.bind(operation="install-all")

        if self.ctx.config.system.upgrade_before_install_all:
            try:
                self.update_system()
                summary.upgraded = True
            except ExternalCommandError as e:
                summary.upgraded = False
                summary.upgrade_error = str(e)
                log.warning("system_upgrade_failed", error=str(e))

        for definition in components.ordered():
            try:
                result = definition.install(self.ctx)
            except FilesystemError as e:
                summary.aborted = f"{definition.label}: {e}"
                log.error("batch_aborted", component=definition.id.value, error=str(e))
                break
            summary.results.append(result)

        log.info(
            "batch_finished",
            succeeded=[c.value for c in summary.succeeded],
            failed=[r.component.value for r in summary.failed],
        )
        return summary

    def install_one(self, component: Union[ComponentId, str]) -> OperationResult:
        return components.get(component).install(self.ctx)

    def uninstall_one(self, component: Union[ComponentId, str]) -> OperationResult:
        return components.get(component).uninstall(self.ctx)

    def test(self, component: Union[ComponentId, str]) -> TestReport:
        return components.get(component).test(self.ctx)

    def status(self, with_tests: bool = False) -> StatusReport:
        return self.reporter.report(with_tests=with_tests)

    def create_admin(
        self,
        username: str,
        public_keys: List[str],
        policy: Union[ExistingUserPolicy, str],
        root_password: Optional[str] = None,
    ) -> AdminIdentity:
        """Bootstrap an admin and count it among the SSH admin users."""
        identity = IdentityBootstrap(self.ctx).create_admin(
            username, public_keys, policy, root_password=root_password
        )
        admins = self.ctx.config.ssh.admin_users
        if identity.username not in admins:
            admins.append(identity.username)
        return identity

    # Menu loop ----------------------------------------------------------------

    def run(self) -> int:
        """Show the main menu until Exit is chosen.

        Every error except PrivilegeError is reported and the loop returns
        to the main menu.

        Returns:
            Process exit code
        """
        state = MenuState.MAIN
        while state != MenuState.EXIT:
            if state == MenuState.MAIN:
                try:
                    state = self._main_menu()
                except UserInputError as e:
                    self.console.error(str(e))
                except EOFError:
                    state = MenuState.EXIT
                continue

            try:
                self._handlers[state]()
            except PrivilegeError:
                raise
            except ProvisionerError as e:
                self.console.error(str(e))
            except EOFError:
                self.console.warning("Input closed")
            state = MenuState.MAIN

        self.console.info("Exiting")
        return 0

    def _main_menu(self) -> MenuState:
        self.console.write()
        self.console.write("Main menu")
        for index, (label, _) in enumerate(MAIN_MENU, start=1):
            self.console.write(f"  {index}. {label}")
        return MAIN_MENU[self._choose(len(MAIN_MENU)) - 1][1]

    def _choose(self, count: int, allow_back: bool = False) -> int:
        """Read a numeric selection.

        Raises:
            UserInputError: If the input is empty or out of range
        """
        lowest = 0 if allow_back else 1
        raw = self.console.prompt(f"Select [{lowest}-{count}]: ")
        if not raw:
            raise UserInputError("Empty selection")
        if not raw.isdigit() or not lowest <= int(raw) <= count:
            raise UserInputError(f"Invalid selection: {raw}")
        return int(raw)

    def _pick_component(self, action: str) -> Optional[ComponentId]:
        definitions = components.ordered()
        self.console.write(f"{action}:")
        for index, definition in enumerate(definitions, start=1):
            self.console.write(f"  {index}. {definition.label}")
        self.console.write("  0. Back")
        choice = self._choose(len(definitions), allow_back=True)
        return None if choice == 0 else definitions[choice - 1].id

    def _report_operation(self, result: OperationResult) -> None:
        label = components.get(result.component).label
        if result.success:
            self.console.success(f"{label}: {result.operation} completed")
        else:
            self.console.error(
                f"{label}: {result.operation} stopped at '{result.failed_step}': {result.error}"
            )

    def _menu_install_all(self) -> None:
        summary = self.install_all()
        if summary.upgraded is False:
            self.console.warning(f"System upgrade failed: {summary.upgrade_error}")
        elif summary.upgraded:
            self.console.success("System packages upgraded")
        for result in summary.results:
            self._report_operation(result)
        if summary.aborted:
            self.console.error(f"Install all aborted: {summary.aborted}")
        elif summary.success:
            self.console.success("All components installed. A reboot is recommended.")
        else:
            self.console.warning(
                f"{len(summary.succeeded)} of {len(summary.results)} components installed"
            )

    def _menu_install_one(self) -> None:
        component = self._pick_component("Install")
        if component:
            self._report_operation(self.install_one(component))

    def _menu_uninstall_one(self) -> None:
        component = self._pick_component("Uninstall")
        if component is None:
            return
        label = components.get(component).label
        if not self.console.confirm(f"Remove {label}?"):
            self.console.info("Cancelled")
            return
        self._report_operation(self.uninstall_one(component))

    def _menu_test(self) -> None:
        component = self._pick_component("Test")
        if component is None:
            return
        report = self.test(component)
        for result in report.results:
            detail = f" ({result.detail})" if result.detail else ""
            if result.passed:
                self.console.success(f"{result.name}{detail}")
            else:
                self.console.error(f"{result.name}{detail}")
        if report.passed:
            self.console.success(f"{components.get(component).label}: all checks passed")
        else:
            self.console.warning(f"{components.get(component).label}: checks failed")

    def _menu_status(self) -> None:
        self.console.write(StatusReporter.render(self.status(with_tests=True)))

    def _menu_create_admin(self) -> None:
        username = self.console.prompt("Admin username: ")
        if not username:
            raise UserInputError("Empty username")

        self.console.write("Paste public keys, one per line; empty line to finish.")
        keys: List[str] = []
        while True:
            line = self.console.prompt("> ")
            if not line:
                break
            keys.append(line)
        if not keys:
            raise UserInputError("No public keys entered")

        policy = ExistingUserPolicy.ABORT
        if self.ctx.system.user_exists(username):
            if self.console.confirm(f"User {username} already exists. Reuse it?"):
                policy = ExistingUserPolicy.REUSE

        root_password = None
        if self.console.confirm("Set a root password for console access?"):
            root_password = self.console.secret("Root password: ")
            if not root_password:
                raise UserInputError("Empty root password")
            if root_password != self.console.secret("Repeat root password: "):
                raise UserInputError("Passwords do not match")

        identity = self.create_admin(username, keys, policy, root_password=root_password)
        self.console.success(
            f"Admin {identity.username} ready with {len(identity.authorized_keys)} key(s); "
            "password and root SSH login disabled"
        )
