# app/services/status_machine.py
"""
Explicit transition tables for vehicles, deployments and maintenance windows.

Services never compare status strings ad hoc; they ask the relevant machine
whether an edge exists and let it raise IllegalTransition when it does not.
"""
from typing import Dict, FrozenSet, Iterable

from app.core.exceptions import IllegalTransition
from app.models.vehicle import VehicleStatus
from app.models.deployment import DeploymentStatus
from app.models.maintenance import MaintenanceStatus


class StatusMachine:

    def __init__(self, name: str, transitions: Dict[str, Iterable[str]]):
        self.name = name
        self.transitions: Dict[str, FrozenSet[str]] = {
            str(_value(k)): frozenset(str(_value(v)) for v in targets)
            for k, targets in transitions.items()
        }

    @property
    def statuses(self) -> FrozenSet[str]:
        return frozenset(self.transitions)

    def is_terminal(self, status) -> bool:
        return not self.transitions.get(_value(status), frozenset())

    def non_terminal(self) -> list:
        return sorted(s for s, targets in self.transitions.items() if targets)

    def can_transition(self, current, new) -> bool:
        return _value(new) in self.transitions.get(_value(current), frozenset())

    def validate(self, current, new) -> str:
        """Return the new status value, or raise IllegalTransition naming the edge."""
        current, new = _value(current), _value(new)
        if current not in self.transitions or new not in self.transitions:
            raise IllegalTransition(self.name, str(current), str(new))
        if not self.can_transition(current, new):
            raise IllegalTransition(self.name, current, new)
        return new


def _value(status):
    return status.value if hasattr(status, "value") else status


VEHICLE_MACHINE = StatusMachine("vehicle", {
    VehicleStatus.AVAILABLE: [VehicleStatus.DEPLOYED, VehicleStatus.MAINTENANCE, VehicleStatus.RETIRED],
    VehicleStatus.DEPLOYED: [VehicleStatus.AVAILABLE, VehicleStatus.MAINTENANCE, VehicleStatus.RETIRED],
    VehicleStatus.MAINTENANCE: [VehicleStatus.AVAILABLE, VehicleStatus.DEPLOYED, VehicleStatus.RETIRED],
    VehicleStatus.RETIRED: [],
})

# Nothing re-enters scheduled.
DEPLOYMENT_MACHINE = StatusMachine("deployment", {
    DeploymentStatus.SCHEDULED: [DeploymentStatus.IN_PROGRESS, DeploymentStatus.CANCELLED],
    DeploymentStatus.IN_PROGRESS: [DeploymentStatus.COMPLETED, DeploymentStatus.CANCELLED],
    DeploymentStatus.COMPLETED: [],
    DeploymentStatus.CANCELLED: [],
})

MAINTENANCE_MACHINE = StatusMachine("maintenance", {
    MaintenanceStatus.SCHEDULED: [MaintenanceStatus.IN_PROGRESS, MaintenanceStatus.CANCELLED],
    MaintenanceStatus.IN_PROGRESS: [
        MaintenanceStatus.COMPLETED, MaintenanceStatus.FAILED, MaintenanceStatus.CANCELLED,
    ],
    MaintenanceStatus.COMPLETED: [],
    MaintenanceStatus.CANCELLED: [],
    MaintenanceStatus.FAILED: [],
})
