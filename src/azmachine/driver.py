"""Driver boundary called by the machine controller.

Each call parses and validates its inputs, opens a fresh AccessSession for
the secret it was given, runs one orchestrator and closes the session. Errors
leave as DriverError subclasses carrying an ErrorKind.

Public API:
    Driver: create / delete / list / status / volume-id operations
    CreateResult: Provider id and node name of a created machine
    MachineStatus: Provider id and node name of an existing machine
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from azure.core.exceptions import AzureError

from azmachine import naming
from azmachine.access.resource_graph import (
    DISK_TYPE,
    NETWORK_INTERFACE_TYPE,
    VIRTUAL_MACHINE_TYPE,
)
from azmachine.access.session import (
    AccessSession,
    ClientSecretCredentialProvider,
    CloudEnvironment,
    ConnectConfig,
    CredentialProvider,
)
from azmachine.config import DriverConfig
from azmachine.deprovisioner import Deprovisioner, TeardownReport
from azmachine.errors import (
    ConfigurationError,
    MachineNotFoundError,
    classify_azure_error,
    is_not_found,
)
from azmachine.operation import OperationContext
from azmachine.provider_spec import ProviderSecrets, ProviderSpec, VolumeSpec
from azmachine.provisioner import CreateResult, Provisioner
from azmachine.validation import validate_provider_spec, validate_secrets

logger = logging.getLogger(__name__)

SessionFactory = Callable[[ConnectConfig, OperationContext], Any]


@dataclass(frozen=True)
class MachineStatus:
    provider_id: str
    node_name: str


def _as_spec(provider_spec: ProviderSpec | Mapping[str, Any]) -> ProviderSpec:
    if isinstance(provider_spec, ProviderSpec):
        return provider_spec
    return ProviderSpec.from_dict(provider_spec)


def _as_secrets(secrets: ProviderSecrets | Mapping[str, Any]) -> ProviderSecrets:
    if isinstance(secrets, ProviderSecrets):
        return secrets
    return ProviderSecrets.from_dict(secrets)


def _machine_name(name: str) -> str:
    if not name or not name.strip():
        raise ConfigurationError("machine name must not be empty")
    return name.strip().lower()


class Driver:
    """Azure compute-unit driver.

    Example:
        >>> driver = Driver(config=DriverConfig())
        >>> result = driver.create_machine(spec_dict, secret_dict, "shoot-worker-1")
        >>> result.provider_id
        'azure:///westeurope/shoot-worker-1'
    """

    def __init__(
        self,
        config: DriverConfig | None = None,
        credential_provider: CredentialProvider | None = None,
        session_factory: SessionFactory | None = None,
    ):
        self.config = config or DriverConfig()
        self.credential_provider = credential_provider or ClientSecretCredentialProvider()
        self._session_factory = session_factory or self._default_session

    def _default_session(
        self, connect_config: ConnectConfig, context: OperationContext
    ) -> AccessSession:
        return AccessSession(connect_config, self.credential_provider, context)

    def _new_context(self) -> OperationContext:
        return OperationContext(
            timeout=self.config.operation_timeout_seconds or None,
            poll_interval=self.config.poll_interval_seconds,
        )

    def _prepare(
        self,
        provider_spec: ProviderSpec | Mapping[str, Any],
        secrets: ProviderSecrets | Mapping[str, Any],
        validate_user_data: bool = True,
    ) -> tuple[ProviderSpec, ProviderSecrets, ConnectConfig]:
        spec = _as_spec(provider_spec)
        parsed_secrets = _as_secrets(secrets)
        validate_provider_spec(spec)
        validate_secrets(parsed_secrets, require_user_data=validate_user_data)
        connect_config = ConnectConfig(
            subscription_id=parsed_secrets.subscription_id,
            tenant_id=parsed_secrets.tenant_id,
            client_id=parsed_secrets.client_id,
            client_secret=parsed_secrets.client_secret,
            cloud=CloudEnvironment.from_name(spec.cloud_name),
        )
        return spec, parsed_secrets, connect_config

    def _open(self, connect_config: ConnectConfig):
        return self._session_factory(connect_config, self._new_context())

    def create_machine(
        self,
        provider_spec: ProviderSpec | Mapping[str, Any],
        secrets: ProviderSecrets | Mapping[str, Any],
        machine_name: str,
    ) -> CreateResult:
        """Create the compute unit for a machine.

        Args:
            provider_spec: Provider spec (parsed or as a mapping)
            secrets: Provider secret (parsed or as a mapping)
            machine_name: Machine name; lower-cased to form the VM name

        Returns:
            CreateResult

        Raises:
            DriverError: On any failure
        """
        vm_name = _machine_name(machine_name)
        spec, parsed_secrets, connect_config = self._prepare(provider_spec, secrets)
        logger.info(f"Creating machine {spec.resource_group}/{vm_name} in {spec.location}")
        with self._open(connect_config) as session:
            provisioner = Provisioner(
                session,
                accept_marketplace_terms=self.config.accept_marketplace_terms,
                max_parallel_deletions=self.config.max_parallel_deletions,
            )
            return provisioner.create_compute_unit(spec, parsed_secrets, vm_name)

    def delete_machine(
        self,
        provider_spec: ProviderSpec | Mapping[str, Any],
        secrets: ProviderSecrets | Mapping[str, Any],
        machine_name: str,
    ) -> TeardownReport | None:
        """Delete the compute unit of a machine.

        Returns:
            TeardownReport, or None when the resource group no longer exists
            and deletion was skipped

        Raises:
            DriverError: If a VM-stage call failed
            TeardownError: If any NIC or disk could not be deleted
        """
        vm_name = _machine_name(machine_name)
        spec, _, connect_config = self._prepare(provider_spec, secrets, validate_user_data=False)
        with self._open(connect_config) as session:
            if self._skip_delete(session, spec.resource_group):
                logger.info(
                    f"Skipping delete of machine {spec.resource_group}/{vm_name} "
                    "since the resource group no longer exists"
                )
                return None
            deprovisioner = Deprovisioner(session, max_workers=self.config.max_parallel_deletions)
            return deprovisioner.delete_compute_unit(spec, vm_name)

    @staticmethod
    def _skip_delete(session, resource_group: str) -> bool:
        try:
            return not session.resource_groups.exists(resource_group)
        except AzureError as e:
            raise classify_azure_error(
                e, f"failed to check existence of resource group {resource_group}"
            ) from e

    def get_machine_status(
        self,
        provider_spec: ProviderSpec | Mapping[str, Any],
        secrets: ProviderSecrets | Mapping[str, Any],
        machine_name: str,
    ) -> MachineStatus:
        """Report whether the VM of a machine exists.

        Raises:
            MachineNotFoundError: If the VM does not exist
        """
        vm_name = _machine_name(machine_name)
        spec, _, connect_config = self._prepare(provider_spec, secrets, validate_user_data=False)
        with self._open(connect_config) as session:
            try:
                session.vms.get(spec.resource_group, vm_name)
            except AzureError as e:
                if is_not_found(e):
                    raise MachineNotFoundError(
                        f"VM {spec.resource_group}/{vm_name} is not found"
                    ) from e
                raise classify_azure_error(
                    e, f"failed to get VM {spec.resource_group}/{vm_name}"
                ) from e
        return MachineStatus(
            provider_id=naming.instance_id(spec.location, vm_name), node_name=vm_name
        )

    def list_machines(
        self,
        provider_spec: ProviderSpec | Mapping[str, Any],
        secrets: ProviderSecrets | Mapping[str, Any],
    ) -> dict[str, str]:
        """List compute units of the provider spec's cluster and role.

        VMs, NICs and disks carrying both the cluster and role tag keys are
        queried, so compute units whose VM is already gone but which left a
        NIC or disk behind are listed too.

        Returns:
            Mapping of provider id to VM name
        """
        spec, _, connect_config = self._prepare(provider_spec, secrets, validate_user_data=False)
        tag_keys = [spec.cluster_tag_key, spec.role_tag_key]
        suffixes = naming.data_disk_suffixes(spec.data_disks)
        with self._open(connect_config) as session:
            try:
                resources = session.resource_graph.list_resources(
                    spec.resource_group,
                    [VIRTUAL_MACHINE_TYPE, NETWORK_INTERFACE_TYPE, DISK_TYPE],
                    tag_keys,
                )
            except AzureError as e:
                raise classify_azure_error(
                    e, f"failed to list machines in resource group {spec.resource_group}"
                ) from e

        vm_names = sorted(_vm_names(resources, suffixes))
        logger.debug(f"Found {len(vm_names)} machine(s) in {spec.resource_group}")
        return {naming.instance_id(spec.location, name): name for name in vm_names}

    def get_volume_ids(self, pv_specs: Iterable[VolumeSpec | Mapping[str, Any]]) -> list[str]:
        """Azure disk names referenced by persistent-volume specs.

        In-tree Azure disks yield their disk name; CSI volumes yield their
        volume handle when the driver is ``disk.csi.azure.com``. Other volumes
        are ignored.
        """
        volume_ids = []
        for pv_spec in pv_specs or []:
            volume = pv_spec if isinstance(pv_spec, VolumeSpec) else VolumeSpec.from_dict(pv_spec)
            if volume.volume_id is not None:
                volume_ids.append(volume.volume_id)
        return volume_ids


def _vm_names(resources: Iterable[tuple[str, str]], data_disk_suffixes: list[str]) -> set[str]:
    names = set()
    for resource_type, name in resources:
        if resource_type == VIRTUAL_MACHINE_TYPE:
            vm_name = name
        elif resource_type == NETWORK_INTERFACE_TYPE:
            vm_name = (
                name[: -len(naming.NIC_SUFFIX)] if name.endswith(naming.NIC_SUFFIX) else None
            )
        elif resource_type == DISK_TYPE:
            vm_name = naming.vm_name_from_resource_name(name, data_disk_suffixes)
        else:
            vm_name = None
        if vm_name:
            names.add(vm_name)
    return names


__all__ = ["CreateResult", "Driver", "MachineStatus"]
