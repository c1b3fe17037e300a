"""Component catalog, registered once at import in dependency order."""

from types import MappingProxyType
from typing import List, Mapping, Union

from host_provisioner.components import container, desktop, firewall, intrusion, ssh
from host_provisioner.components.base import (
    ComponentDefinition,
    OperationResult,
    StepContext,
    TestReport,
)
from host_provisioner.exceptions import UserInputError
from host_provisioner.types import ComponentId


def _build_catalog() -> Mapping[ComponentId, ComponentDefinition]:
    definitions = [
        ssh.DEFINITION,
        firewall.DEFINITION,
        intrusion.DEFINITION,
        container.DEFINITION,
        desktop.DEFINITION,
    ]
    registry = {d.id: d for d in definitions}
    missing = set(ComponentId) - set(registry)
    if missing:
        raise RuntimeError(f"Unregistered components: {sorted(m.value for m in missing)}")
    return MappingProxyType(registry)


CATALOG = _build_catalog()


def ordered() -> List[ComponentDefinition]:
    """All definitions in install order."""
    return list(CATALOG.values())


def get(component: Union[ComponentId, str]) -> ComponentDefinition:
    """Look up a definition by id or its string value.

    Raises:
        UserInputError: If no such component exists
    """
    try:
        return CATALOG[ComponentId(component)]
    except ValueError as e:
        raise UserInputError(f"Unknown component: {component}") from e


__all__ = [
    "CATALOG",
    "ComponentDefinition",
    "OperationResult",
    "StepContext",
    "TestReport",
    "get",
    "ordered",
]
