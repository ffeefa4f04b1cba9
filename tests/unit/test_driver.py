"""Unit tests for driver module."""

import pytest

from azmachine.access.session import CloudEnvironment
from azmachine.deprovisioner import ResourceState, TeardownError
from azmachine.errors import (
    ConfigurationError,
    ErrorKind,
    MachineNotFoundError,
    RemoteCallError,
)
from mocks.azure_mock import http_error

RG = "shoot--core--dev"


class TestCreateMachine:
    """Tests for Driver.create_machine."""

    def test_create(self, driver, cloud, spec_dict, secrets_dict):
        result = driver.create_machine(spec_dict, secrets_dict, "worker-1")

        assert result.provider_id == "azure:///westeurope/worker-1"
        assert result.node_name == "worker-1"
        assert "worker-1" in cloud.vms
        assert all(s.closed for s in driver.sessions)

    def test_machine_name_lowercased(self, driver, cloud, spec_dict, secrets_dict):
        result = driver.create_machine(spec_dict, secrets_dict, "  Worker-1 ")
        assert result.node_name == "worker-1"
        assert "worker-1-nic" in cloud.nics

    def test_empty_name_rejected(self, driver, spec_dict, secrets_dict):
        with pytest.raises(ConfigurationError, match="machine name"):
            driver.create_machine(spec_dict, secrets_dict, "  ")

    def test_invalid_spec_rejected_before_session(self, driver, spec_dict, secrets_dict):
        spec_dict["properties"]["zone"] = None
        with pytest.raises(ConfigurationError) as exc_info:
            driver.create_machine(spec_dict, secrets_dict, "worker-1")
        assert exc_info.value.kind == ErrorKind.CONFIGURATION
        assert driver.sessions == []

    def test_user_data_required(self, driver, spec_dict, secrets_dict):
        del secrets_dict["userData"]
        with pytest.raises(ConfigurationError, match="userData is required"):
            driver.create_machine(spec_dict, secrets_dict, "worker-1")

    def test_session_closed_on_failure(self, driver, cloud, spec_dict, secrets_dict):
        cloud.fail("vm.create", "worker-1", http_error("boom"))
        with pytest.raises(RemoteCallError):
            driver.create_machine(spec_dict, secrets_dict, "worker-1")
        assert driver.sessions[0].closed

    def test_connect_config_from_secret_and_cloud(self, driver, spec_dict, secrets_dict):
        spec_dict["cloudConfiguration"] = {"name": "azurechina"}
        driver.create_machine(spec_dict, secrets_dict, "worker-1")

        connect_config = driver.sessions[0].connect_config
        assert connect_config.cloud == CloudEnvironment.CHINA
        assert connect_config.subscription_id == secrets_dict["subscriptionID"]
        assert "fake-client-secret-value" not in repr(connect_config)

    def test_context_uses_config(self, driver, spec_dict, secrets_dict):
        driver.create_machine(spec_dict, secrets_dict, "worker-1")
        context = driver.sessions[0].context
        assert context.poll_interval == 0.01
        assert context.remaining() is not None


class TestDeleteMachine:
    """Tests for Driver.delete_machine."""

    def test_delete(self, driver, cloud, spec_dict, secrets_dict):
        driver.create_machine(spec_dict, secrets_dict, "worker-1")

        report = driver.delete_machine(spec_dict, secrets_dict, "worker-1")

        assert report.succeeded
        assert cloud.vms == {} and cloud.nics == {} and cloud.disks == {}

    def test_user_data_not_required(self, driver, cloud, spec_dict, secrets_dict):
        del secrets_dict["userData"]
        report = driver.delete_machine(spec_dict, secrets_dict, "worker-1")
        assert report.outcome("worker-1").state == ResourceState.ABSENT

    def test_skipped_when_resource_group_missing(self, driver, cloud, spec_dict, secrets_dict):
        cloud.resource_groups.clear()

        assert driver.delete_machine(spec_dict, secrets_dict, "worker-1") is None
        assert not cloud.called("vm.get")

    def test_conflict_surfaces(self, driver, cloud, spec_dict, secrets_dict):
        cloud.add_nic(RG, "worker-1-nic", attached_to="other-vm")

        with pytest.raises(TeardownError) as exc_info:
            driver.delete_machine(spec_dict, secrets_dict, "worker-1")
        assert exc_info.value.kind == ErrorKind.CONFLICT


class TestGetMachineStatus:
    """Tests for Driver.get_machine_status."""

    def test_existing(self, driver, spec_dict, secrets_dict):
        driver.create_machine(spec_dict, secrets_dict, "worker-1")

        status = driver.get_machine_status(spec_dict, secrets_dict, "Worker-1")
        assert status.provider_id == "azure:///westeurope/worker-1"
        assert status.node_name == "worker-1"

    def test_missing(self, driver, spec_dict, secrets_dict):
        with pytest.raises(MachineNotFoundError) as exc_info:
            driver.get_machine_status(spec_dict, secrets_dict, "worker-1")
        assert exc_info.value.kind == ErrorKind.NOT_FOUND

    def test_other_errors_classified(self, driver, cloud, spec_dict, secrets_dict):
        cloud.fail("vm.get", "worker-1", http_error("throttled", status_code=429))
        with pytest.raises(RemoteCallError, match="throttled"):
            driver.get_machine_status(spec_dict, secrets_dict, "worker-1")


class TestListMachines:
    """Tests for Driver.list_machines."""

    def test_lists_vms_and_orphans(self, driver, cloud, spec, spec_dict, secrets_dict):
        driver.create_machine(spec_dict, secrets_dict, "worker-2")
        driver.create_machine(spec_dict, secrets_dict, "worker-1")
        cloud.add_nic(RG, "worker-3-nic", tags=dict(spec.tags))
        cloud.add_disk(RG, "worker-4-etcd-1-data-disk", tags=dict(spec.tags))
        cloud.add_vm(RG, "foreign-vm")

        machines = driver.list_machines(spec_dict, secrets_dict)

        assert machines == {
            "azure:///westeurope/worker-1": "worker-1",
            "azure:///westeurope/worker-2": "worker-2",
            "azure:///westeurope/worker-3": "worker-3",
            "azure:///westeurope/worker-4": "worker-4",
        }
        assert list(machines.values()) == sorted(machines.values())

    def test_empty(self, driver, spec_dict, secrets_dict):
        assert driver.list_machines(spec_dict, secrets_dict) == {}


class TestGetVolumeIds:
    """Tests for Driver.get_volume_ids."""

    def test_volume_ids(self, driver):
        volumes = [
            {"azureDisk": {"diskName": "disk-a"}},
            {"csi": {"driver": "disk.csi.azure.com", "volumeHandle": "disk-b"}},
            {"csi": {"driver": "other.csi.example.com", "volumeHandle": "x"}},
            {"hostPath": {"path": "/tmp"}},
        ]
        assert driver.get_volume_ids(volumes) == ["disk-a", "disk-b"]

    def test_no_volumes(self, driver):
        assert driver.get_volume_ids([]) == []
