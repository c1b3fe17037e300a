"""Read-only status report across the catalog and host facts."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from host_provisioner import components
from host_provisioner.components.base import StepContext, TestReport
from host_provisioner.types import ComponentId, ComponentState

logger = structlog.get_logger(__name__)


@dataclass
class ComponentStatus:
    component: ComponentId
    label: str
    state: ComponentState
    test: Optional[TestReport] = None


@dataclass
class StatusReport:
    components: List[ComponentStatus] = field(default_factory=list)
    system: Dict[str, str] = field(default_factory=dict)

    def state_of(self, component: ComponentId) -> ComponentState:
        for entry in self.components:
            if entry.component == component:
                return entry.state
        raise KeyError(component)

    @property
    def all_active(self) -> bool:
        return all(c.state == ComponentState.ACTIVE for c in self.components)


def _human_bytes(value: int) -> str:
    size = float(value)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if size < 1024 or unit == "TiB":
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TiB"


class StatusReporter:
    """Query live state; safe to call at any time."""

    def __init__(self, ctx: StepContext) -> None:
        self.ctx = ctx

    def report(self, with_tests: bool = False) -> StatusReport:
        """Probe every component, optionally running its assertions."""
        report = StatusReport()
        for definition in components.ordered():
            state = definition.status(self.ctx)
            test = None
            if with_tests and state != ComponentState.NOT_INSTALLED:
                test = definition.test(self.ctx)
            report.components.append(
                ComponentStatus(definition.id, definition.label, state, test)
            )

        report.system = self.system_facts()
        logger.info(
            "status_report",
            states={c.component.value: c.state.value for c in report.components},
        )
        return report

    def system_facts(self) -> Dict[str, str]:
        system = self.ctx.system
        disk = system.disk_usage()
        memory = system.memory()
        return {
            "distribution": f"{system.distro} {system.version} ({system.codename})",
            "address": system.primary_address(),
            "disk_free": f"{_human_bytes(disk['free'])} of {_human_bytes(disk['total'])}",
            "memory_available": (
                f"{_human_bytes(memory['available'])} of {_human_bytes(memory['total'])}"
            ),
        }

    @staticmethod
    def render(report: StatusReport) -> str:
        """Plain-text table for the console."""
        lines = ["Components:"]
        for entry in report.components:
            lines.append(f"  {entry.label:<36} {entry.state.value}")
            if entry.test:
                for result in entry.test.results:
                    mark = "PASS" if result.passed else "FAIL"
                    suffix = f" ({result.detail})" if result.detail else ""
                    lines.append(f"      [{mark}] {result.name}{suffix}")

        lines.append("System:")
        for key, value in report.system.items():
            lines.append(f"  {key.replace('_', ' '):<36} {value}")
        return "\n".join(lines)
