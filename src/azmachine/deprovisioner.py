"""Deprovisioning orchestrator: tear down a compute unit.

A compute unit is a VM plus its NIC, OS disk and data disks, all named after
the VM. Nothing records which of them exist; teardown looks each one up by
its derived name.

Order of work:
    1. Get the VM. If it is gone, skip to step 4.
    2. Detach all data disks (update the VM with an empty data-disk list) and
       wait for the update.
    3. Delete the VM and wait.
    4. Concurrently delete the NIC, the OS disk and every data disk. A
       resource still attached to a different VM is a conflict and is left
       alone. A resource that does not exist counts as deleted.

A failure in steps 1-3 aborts immediately: the NIC and disks may still belong
to the VM. Failures in step 4 are independent; every sibling still runs and
the resulting TeardownError lists every resource that is left behind.

Public API:
    Deprovisioner: Runs teardown against an AccessSession
    TeardownReport: Fate of every resource of the compute unit
    TeardownError: Raised when any resource could not be deleted
    delete_compute_unit: Convenience wrapper
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from azure.core.exceptions import AzureError
from azure.mgmt.compute.models import StorageProfile, VirtualMachine, VirtualMachineUpdate

from azmachine import naming
from azmachine.errors import (
    ConflictError,
    classify_azure_error,
    is_not_found,
)
from azmachine.parallel import ParallelTaskError, run_all
from azmachine.provider_spec import ProviderSpec

logger = logging.getLogger(__name__)

VM_KIND = "VM"
NIC_KIND = "NIC"
DISK_KIND = "disk"


class ResourceState(StrEnum):
    DELETED = "deleted"
    ABSENT = "absent"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass
class ResourceOutcome:
    """What happened to one resource during teardown."""

    resource_kind: str
    name: str
    state: ResourceState
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.state in (ResourceState.DELETED, ResourceState.ABSENT)

    def describe(self) -> str:
        if self.error is not None:
            return f"{self.resource_kind} {self.name}: {self.error}"
        return f"{self.resource_kind} {self.name} ({self.state})"


@dataclass
class TeardownReport:
    """Outcome of every resource of one compute unit, in submission order."""

    vm_name: str
    outcomes: list[ResourceOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[ResourceOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def outcome(self, name: str) -> ResourceOutcome | None:
        return next((o for o in self.outcomes if o.name == name), None)


class TeardownError(ParallelTaskError):
    """One or more resources of a compute unit could not be deleted.

    The message lists every failed resource with its cause, followed by the
    resources that were handled successfully. ``report`` has the details and
    ``errors`` the task failures in submission order.
    """

    def __init__(self, report: TeardownReport):
        self.report = report
        failures = report.failures
        lines = [
            f"failed to delete {len(failures)} resource(s) of compute unit {report.vm_name}:"
        ]
        lines.extend(f"  - {o.describe()}" for o in failures)
        completed = [o for o in report.outcomes if o.succeeded]
        if completed:
            lines.append("completed: " + ", ".join(o.describe() for o in completed))
        super().__init__([o.error for o in failures], "\n".join(lines))


@dataclass
class _DeletionTask:
    resource_kind: str
    name: str
    run: Callable[[], ResourceOutcome]


class Deprovisioner:
    """Tear down compute units through one AccessSession."""

    def __init__(self, session, max_workers: int | None = None):
        self.session = session
        self.max_workers = max_workers

    def delete_compute_unit(self, spec: ProviderSpec, vm_name: str) -> TeardownReport:
        """Delete the VM and all of its dependent resources.

        Safe to repeat: a compute unit that is already gone reports success.

        Args:
            spec: Provider spec the compute unit was created from
            vm_name: Compute-unit (VM) name

        Returns:
            TeardownReport with every resource deleted or absent

        Raises:
            DriverError: If the VM could not be detached or deleted
            TeardownError: If any NIC or disk could not be deleted
        """
        resource_group = spec.resource_group
        vm = self._get_vm(resource_group, vm_name)
        if vm is None:
            logger.info(
                f"VM {resource_group}/{vm_name} does not exist, "
                "checking for leftover NIC and disks"
            )
            vm_outcome = ResourceOutcome(VM_KIND, vm_name, ResourceState.ABSENT)
        else:
            if vm.storage_profile is not None and vm.storage_profile.data_disks:
                self._detach_data_disks(resource_group, vm_name, vm)
            vm_outcome = self._delete_vm(resource_group, vm_name)

        report = self.teardown_resource_set(spec, vm_name)
        report.outcomes.insert(0, vm_outcome)
        logger.info(f"Deleted compute unit {resource_group}/{vm_name} (VM, NIC and disks)")
        return report

    def teardown_resource_set(self, spec: ProviderSpec, vm_name: str) -> TeardownReport:
        """Concurrently delete the NIC, OS disk and data disks of a compute unit.

        Every task runs to completion even when siblings fail.

        Raises:
            TeardownError: Listing every resource that could not be deleted
        """
        resource_group = spec.resource_group
        tasks = [self._nic_task(resource_group, vm_name)]
        tasks.append(self._disk_task(resource_group, naming.os_disk_name(vm_name), vm_name))
        for disk_name in naming.data_disk_names(vm_name, spec.data_disks):
            tasks.append(self._disk_task(resource_group, disk_name, vm_name))

        results = run_all([task.run for task in tasks], max_workers=self.max_workers)

        report = TeardownReport(vm_name=vm_name)
        for task, result in zip(tasks, results, strict=True):
            if result.error is None:
                report.outcomes.append(result.value)
                continue
            state = (
                ResourceState.CONFLICT
                if isinstance(result.error, ConflictError)
                else ResourceState.FAILED
            )
            logger.error(f"Failed to delete {task.resource_kind} {task.name}: {result.error}")
            report.outcomes.append(
                ResourceOutcome(task.resource_kind, task.name, state, result.error)
            )

        if not report.succeeded:
            raise TeardownError(report)
        return report

    def _get_vm(self, resource_group: str, vm_name: str) -> VirtualMachine | None:
        try:
            return self.session.vms.get(resource_group, vm_name)
        except AzureError as e:
            if is_not_found(e):
                return None
            raise classify_azure_error(e, f"failed to get VM {resource_group}/{vm_name}") from e

    def _detach_data_disks(self, resource_group: str, vm_name: str, vm: VirtualMachine) -> None:
        attached = [d.name for d in vm.storage_profile.data_disks]
        logger.info(f"Detaching data disks {attached} from VM {resource_group}/{vm_name}")
        update = VirtualMachineUpdate(storage_profile=StorageProfile(data_disks=[]))
        try:
            self.session.vms.update(resource_group, vm_name, update)
        except AzureError as e:
            if is_not_found(e):
                logger.info(f"VM {vm_name} disappeared while detaching its data disks")
                return
            raise classify_azure_error(
                e, f"failed to detach data disks from VM {resource_group}/{vm_name}"
            ) from e

    def _delete_vm(self, resource_group: str, vm_name: str) -> ResourceOutcome:
        logger.info(f"Deleting VM {resource_group}/{vm_name}")
        try:
            self.session.vms.delete(resource_group, vm_name)
        except AzureError as e:
            if is_not_found(e):
                return ResourceOutcome(VM_KIND, vm_name, ResourceState.ABSENT)
            raise classify_azure_error(e, f"failed to delete VM {resource_group}/{vm_name}") from e
        return ResourceOutcome(VM_KIND, vm_name, ResourceState.DELETED)

    @staticmethod
    def _check_owner(resource_kind: str, name: str, owner_id: str | None, vm_name: str) -> None:
        """Refuse to touch a resource that belongs to another VM."""
        if not owner_id:
            return
        owner = naming.resource_name_from_id(owner_id)
        if owner.lower() != vm_name.lower():
            raise ConflictError(resource_kind, name, owner)
        logger.warning(
            f"{resource_kind} {name} still reports VM {owner} as owner, deleting it anyway"
        )

    def _delete_resource(
        self, resource_kind: str, name: str, delete: Callable[[], None]
    ) -> ResourceOutcome:
        try:
            delete()
        except AzureError as e:
            if is_not_found(e):
                return ResourceOutcome(resource_kind, name, ResourceState.ABSENT)
            raise classify_azure_error(e, f"failed to delete {resource_kind} {name}") from e
        logger.info(f"Deleted {resource_kind} {name}")
        return ResourceOutcome(resource_kind, name, ResourceState.DELETED)

    def _nic_task(self, resource_group: str, vm_name: str) -> _DeletionTask:
        nic_name = naming.nic_name(vm_name)

        def run() -> ResourceOutcome:
            try:
                nic = self.session.nics.get(resource_group, nic_name)
            except AzureError as e:
                if is_not_found(e):
                    return ResourceOutcome(NIC_KIND, nic_name, ResourceState.ABSENT)
                raise classify_azure_error(e, f"failed to get NIC {nic_name}") from e
            owner_id = nic.virtual_machine.id if nic.virtual_machine is not None else None
            self._check_owner(NIC_KIND, nic_name, owner_id, vm_name)
            return self._delete_resource(
                NIC_KIND, nic_name, lambda: self.session.nics.delete(resource_group, nic_name)
            )

        return _DeletionTask(NIC_KIND, nic_name, run)

    def _disk_task(self, resource_group: str, disk_name: str, vm_name: str) -> _DeletionTask:
        def run() -> ResourceOutcome:
            try:
                disk = self.session.disks.get(resource_group, disk_name)
            except AzureError as e:
                if is_not_found(e):
                    return ResourceOutcome(DISK_KIND, disk_name, ResourceState.ABSENT)
                raise classify_azure_error(e, f"failed to get disk {disk_name}") from e
            self._check_owner(DISK_KIND, disk_name, disk.managed_by, vm_name)
            return self._delete_resource(
                DISK_KIND, disk_name, lambda: self.session.disks.delete(resource_group, disk_name)
            )

        return _DeletionTask(DISK_KIND, disk_name, run)


def delete_compute_unit(
    session, spec: ProviderSpec, vm_name: str, max_workers: int | None = None
) -> TeardownReport:
    """Delete a compute unit. See Deprovisioner.delete_compute_unit."""
    return Deprovisioner(session, max_workers=max_workers).delete_compute_unit(spec, vm_name)


__all__ = [
    "Deprovisioner",
    "ResourceOutcome",
    "ResourceState",
    "TeardownError",
    "TeardownReport",
    "delete_compute_unit",
]
