"""Unit tests for deprovisioner module.

Teardown runs against the in-memory FakeCloud, which tracks attachments the
way Azure does, so the tests check both the calls made and the state left.
"""

import pytest

from mocks.azure_mock import http_error

from azmachine.deprovisioner import (
    DISK_KIND,
    NIC_KIND,
    VM_KIND,
    Deprovisioner,
    ResourceState,
    TeardownError,
    delete_compute_unit,
)
from azmachine.errors import ErrorKind, OperationCancelledError, RemoteCallError
from azmachine.parallel import ParallelTaskError
from azmachine.provider_spec import ProviderSpec
from azmachine.provisioner import Provisioner

RG = "shoot--core--dev"
VM = "worker-1"
DATA_DISKS = ["worker-1-0-data-disk", "worker-1-etcd-1-data-disk"]


@pytest.fixture
def created(cloud, session, spec, secrets):
    """A complete compute unit named worker-1."""
    Provisioner(session).create_compute_unit(spec, secrets, VM)
    cloud.calls.clear()
    return VM


class TestDeleteComputeUnit:
    """Tests for full compute-unit teardown."""

    def test_deletes_everything(self, cloud, session, spec, created):
        report = Deprovisioner(session).delete_compute_unit(spec, VM)

        assert report.succeeded
        assert cloud.vms == {}
        assert cloud.nics == {}
        assert cloud.disks == {}
        assert [(o.resource_kind, o.name) for o in report.outcomes] == [
            (VM_KIND, VM),
            (NIC_KIND, "worker-1-nic"),
            (DISK_KIND, "worker-1-os-disk"),
            (DISK_KIND, DATA_DISKS[0]),
            (DISK_KIND, DATA_DISKS[1]),
        ]
        assert all(o.state == ResourceState.DELETED for o in report.outcomes)

    def test_detaches_data_disks_before_deleting_vm(self, cloud, session, spec, created):
        Deprovisioner(session).delete_compute_unit(spec, VM)

        operations = [op for op, name in cloud.calls if name == VM]
        assert operations.index("vm.update") < operations.index("vm.delete")

    def test_no_detach_without_data_disks(self, cloud, session, spec_dict, secrets):
        spec_dict["properties"]["storageProfile"]["dataDisks"] = []
        spec = ProviderSpec.from_dict(spec_dict)
        Provisioner(session).create_compute_unit(spec, secrets, VM)

        Deprovisioner(session).delete_compute_unit(spec, VM)
        assert not cloud.called("vm.update")
        assert cloud.called("vm.delete", VM)

    def test_vm_absent_leftovers_deleted(self, cloud, session, spec):
        """VM gone, NIC and OS disk left unattached: both deleted, no VM delete issued."""
        cloud.add_nic(RG, "worker-1-nic")
        cloud.add_disk(RG, "worker-1-os-disk")

        report = Deprovisioner(session).delete_compute_unit(spec, VM)

        assert not cloud.called("vm.delete")
        assert report.outcome(VM).state == ResourceState.ABSENT
        assert report.outcome("worker-1-nic").state == ResourceState.DELETED
        assert report.outcome("worker-1-os-disk").state == ResourceState.DELETED
        assert report.outcome(DATA_DISKS[0]).state == ResourceState.ABSENT
        assert cloud.nics == {} and cloud.disks == {}

    def test_repeated_delete_is_success(self, cloud, session, spec, created):
        Deprovisioner(session).delete_compute_unit(spec, VM)
        report = Deprovisioner(session).delete_compute_unit(spec, VM)

        assert report.succeeded
        assert all(o.state == ResourceState.ABSENT for o in report.outcomes)

    def test_nic_attached_to_other_vm_is_conflict(self, cloud, session, spec):
        cloud.add_nic(RG, "worker-1-nic", attached_to="other-vm")
        cloud.add_disk(RG, "worker-1-os-disk")

        with pytest.raises(TeardownError) as exc_info:
            Deprovisioner(session).delete_compute_unit(spec, VM)

        error = exc_info.value
        assert error.kind == ErrorKind.CONFLICT
        assert "worker-1-nic" in str(error)
        assert "other-vm" in str(error)
        # The sibling OS-disk deletion still ran and is reported as completed
        assert error.report.outcome("worker-1-os-disk").state == ResourceState.DELETED
        assert "completed:" in str(error)
        assert "worker-1-nic" in cloud.nics
        assert "worker-1-os-disk" not in cloud.disks

    def test_disk_owned_by_other_vm_is_kept(self, cloud, session, spec):
        cloud.add_disk(RG, DATA_DISKS[1], managed_by="other-vm")

        with pytest.raises(TeardownError) as exc_info:
            Deprovisioner(session).delete_compute_unit(spec, VM)

        assert exc_info.value.report.outcome(DATA_DISKS[1]).state == ResourceState.CONFLICT
        assert DATA_DISKS[1] in cloud.disks
        assert not cloud.called("disk.delete", DATA_DISKS[1])

    def test_disk_still_owned_by_same_vm_is_deleted(self, cloud, session, spec):
        """A stale owner reference to the VM being torn down is not a conflict."""
        cloud.add_disk(RG, "worker-1-os-disk", managed_by="Worker-1")

        report = Deprovisioner(session).delete_compute_unit(spec, VM)
        assert report.outcome("worker-1-os-disk").state == ResourceState.DELETED

    def test_all_failures_listed(self, cloud, session, spec):
        cloud.add_nic(RG, "worker-1-nic")
        cloud.add_disk(RG, "worker-1-os-disk")
        cloud.fail("nic.delete", "worker-1-nic", http_error("nic busy", status_code=409))
        cloud.fail("disk.delete", "worker-1-os-disk", http_error("disk busy", status_code=409))

        with pytest.raises(TeardownError) as exc_info:
            Deprovisioner(session).delete_compute_unit(spec, VM)

        error = exc_info.value
        assert error.kind == ErrorKind.UNKNOWN
        assert [o.name for o in error.report.failures] == ["worker-1-nic", "worker-1-os-disk"]
        assert "failed to delete 2 resource(s)" in str(error)
        assert "nic busy" in str(error) and "disk busy" in str(error)
        assert isinstance(error.report.failures[0].error, RemoteCallError)
        assert isinstance(error, ParallelTaskError)
        assert error.errors == [o.error for o in error.report.failures]

    def test_vm_delete_failure_aborts(self, cloud, session, spec, created):
        cloud.fail("vm.delete", VM, http_error("internal error"))

        with pytest.raises(RemoteCallError, match="failed to delete VM"):
            Deprovisioner(session).delete_compute_unit(spec, VM)

        assert not cloud.called("nic.get")
        assert not cloud.called("disk.get")
        assert "worker-1-nic" in cloud.nics

    def test_detach_failure_aborts(self, cloud, session, spec, created):
        cloud.fail("vm.update", VM, http_error("internal error"))

        with pytest.raises(RemoteCallError, match="failed to detach data disks"):
            Deprovisioner(session).delete_compute_unit(spec, VM)
        assert not cloud.called("vm.delete")

    def test_cancelled_before_start(self, cloud, session, spec, created):
        session.context.cancel()

        with pytest.raises(OperationCancelledError):
            Deprovisioner(session).delete_compute_unit(spec, VM)
        assert VM in cloud.vms

    def test_module_level_wrapper(self, cloud, session, spec, created):
        report = delete_compute_unit(session, spec, VM, max_workers=1)
        assert report.succeeded
        assert cloud.vms == {}


class TestTeardownResourceSet:
    """Tests for the concurrent deletion phase on its own."""

    def test_cancellation_fails_each_task(self, cloud, session, spec):
        cloud.add_nic(RG, "worker-1-nic")
        session.context.cancel()

        with pytest.raises(TeardownError) as exc_info:
            Deprovisioner(session).teardown_resource_set(spec, VM)

        failures = exc_info.value.report.failures
        assert len(failures) == 4
        assert all(isinstance(o.error, OperationCancelledError) for o in failures)
        assert "worker-1-nic" in cloud.nics

    def test_bounded_workers(self, cloud, session, spec):
        cloud.add_disk(RG, "worker-1-os-disk")
        report = Deprovisioner(session, max_workers=1).teardown_resource_set(spec, VM)
        assert report.succeeded
        assert len(report.outcomes) == 4
