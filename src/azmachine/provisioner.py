"""Provisioning orchestrator: create a compute unit.

Creation is strictly sequential, each step needing the previous one's output:

    validate -> subnet -> NIC -> image -> VM

Placement and the image reference are checked before any Azure call. An
existing NIC of the same name is reused, so a retry after a crash between NIC
and VM creation continues where it stopped. Once the NIC exists, any later
failure runs a compensating teardown of the whole compute unit. That step is
recorded separately (``Provisioner.compensation``); its own failure is logged
and attached to the original error as a note, and the original error is
raised unchanged.

Public API:
    Provisioner: Runs creation against an AccessSession
    ProvisioningStage: Steps of the creation state machine
    CreateResult: Provider id and node name of the new VM
    CompensationResult: Outcome of the cleanup after a failed creation
    build_nic_parameters, build_vm_parameters: Pure parameter builders
    create_compute_unit: Convenience wrapper
"""

import base64
import logging
from dataclasses import dataclass
from enum import StrEnum

from azure.core.exceptions import AzureError
from azure.mgmt.compute.models import (
    DataDisk,
    HardwareProfile,
    ImageReference as AzureImageReference,
    LinuxConfiguration,
    ManagedDiskParameters,
    NetworkInterfaceReference,
    NetworkProfile,
    OSDisk,
    OSProfile,
    Plan,
    SshConfiguration,
    SshPublicKey,
    StorageProfile,
    UserAssignedIdentitiesValue,
    VirtualMachine,
    VirtualMachineIdentity,
)
from azure.mgmt.network.models import (
    NetworkInterface,
    NetworkInterfaceIPConfiguration,
    Subnet,
)
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from azmachine import naming
from azmachine.deprovisioner import Deprovisioner, TeardownReport
from azmachine.errors import (
    ConfigurationError,
    DependencyNotFoundError,
    classify_azure_error,
    is_not_found,
)
from azmachine.image import ImageKind, ImageReference, resolve_image_reference
from azmachine.placement import Placement, resolve_placement
from azmachine.provider_spec import ProviderSecrets, ProviderSpec

logger = logging.getLogger(__name__)

DEFAULT_DATA_DISK_CACHING = "None"
DATA_DISK_CREATE_OPTION = "Empty"
DUMMY_KEY_SIZE = 4096


class ProvisioningStage(StrEnum):
    VALIDATE = "validate"
    SUBNET = "subnet"
    NIC = "nic"
    IMAGE = "image"
    VM = "vm"
    COMPENSATE = "compensate"
    DONE = "done"


@dataclass(frozen=True)
class CreateResult:
    """Identifiers of a created compute unit."""

    provider_id: str
    node_name: str


@dataclass
class CompensationResult:
    """Outcome of tearing down a partially created compute unit."""

    vm_name: str
    failed_stage: ProvisioningStage
    succeeded: bool
    report: TeardownReport | None = None
    error: BaseException | None = None


def generate_dummy_public_key() -> str:
    """Throw-away RSA public key in OpenSSH format.

    Azure requires an SSH key for Linux VMs with password login disabled.
    The private half is discarded immediately.
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=DUMMY_KEY_SIZE)
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    )
    return public_bytes.decode("ascii").strip()


def build_nic_parameters(spec: ProviderSpec, subnet: Subnet, nic_name: str) -> NetworkInterface:
    """NIC creation parameters: dynamic private IP in the resolved subnet."""
    return NetworkInterface(
        location=spec.location,
        tags=dict(spec.tags),
        enable_accelerated_networking=spec.accelerated_networking,
        enable_ip_forwarding=True,
        ip_configurations=[
            NetworkInterfaceIPConfiguration(
                name=nic_name,
                private_ip_allocation_method="Dynamic",
                subnet=Subnet(id=subnet.id),
            )
        ],
    )


def to_azure_image_reference(image: ImageReference) -> AzureImageReference:
    if image.kind == ImageKind.ID:
        return AzureImageReference(id=image.value)
    if image.kind == ImageKind.COMMUNITY_GALLERY:
        return AzureImageReference(community_gallery_image_id=image.value)
    if image.kind == ImageKind.SHARED_GALLERY:
        return AzureImageReference(shared_gallery_image_id=image.value)
    urn = image.urn
    return AzureImageReference(
        publisher=urn.publisher, offer=urn.offer, sku=urn.sku, version=urn.version
    )


def build_data_disks(spec: ProviderSpec, vm_name: str) -> list[DataDisk]:
    """Data disk parameters, ordered by LUN. Caching defaults to "None"."""
    disks = []
    for index, disk in enumerate(spec.data_disks):
        lun = naming.effective_lun(disk.lun, index)
        disks.append(
            DataDisk(
                name=naming.data_disk_name(vm_name, disk.name, lun),
                lun=lun,
                caching=disk.caching or DEFAULT_DATA_DISK_CACHING,
                create_option=DATA_DISK_CREATE_OPTION,
                disk_size_gb=disk.disk_size_gb,
                managed_disk=ManagedDiskParameters(storage_account_type=disk.storage_account_type),
            )
        )
    return sorted(disks, key=lambda d: d.lun)


def build_vm_parameters(
    spec: ProviderSpec,
    secrets: ProviderSecrets,
    vm_name: str,
    nic_id: str,
    image_reference: AzureImageReference,
    plan: Plan | None,
    placement: Placement,
) -> VirtualMachine:
    """VM creation parameters.

    Args:
        spec: Provider spec
        secrets: Provider secrets (user data becomes the VM's custom data)
        vm_name: Compute-unit name, also the computer name
        nic_id: ARM id of the primary NIC
        image_reference: Resolved image
        plan: Marketplace plan of the image, if any
        placement: Resolved placement directive

    Returns:
        VirtualMachine model ready for create-or-update
    """
    os_profile = spec.os_profile
    key_data = os_profile.ssh_key_data
    if not key_data or not key_data.strip():
        logger.debug(f"No SSH public key configured for {vm_name}, generating a dummy key")
        key_data = generate_dummy_public_key()
    key_path = os_profile.ssh_key_path or f"/home/{os_profile.admin_username}/.ssh/authorized_keys"

    identity = None
    if spec.identity_id:
        identity = VirtualMachineIdentity(
            type="UserAssigned",
            user_assigned_identities={spec.identity_id: UserAssignedIdentitiesValue()},
        )

    vm = VirtualMachine(
        location=spec.location,
        tags=dict(spec.tags),
        plan=plan,
        identity=identity,
        hardware_profile=HardwareProfile(vm_size=spec.vm_size),
        storage_profile=StorageProfile(
            image_reference=image_reference,
            os_disk=OSDisk(
                name=naming.os_disk_name(vm_name),
                caching=spec.os_disk.caching,
                create_option=spec.os_disk.create_option,
                disk_size_gb=spec.os_disk.disk_size_gb,
                managed_disk=ManagedDiskParameters(
                    storage_account_type=spec.os_disk.storage_account_type
                ),
            ),
            data_disks=build_data_disks(spec, vm_name),
        ),
        os_profile=OSProfile(
            computer_name=vm_name,
            admin_username=os_profile.admin_username,
            custom_data=base64.b64encode(secrets.user_data.encode("utf-8")).decode("ascii"),
            linux_configuration=LinuxConfiguration(
                disable_password_authentication=os_profile.disable_password_authentication,
                ssh=SshConfiguration(
                    public_keys=[SshPublicKey(path=key_path, key_data=key_data.strip())]
                ),
            ),
        ),
        network_profile=NetworkProfile(
            network_interfaces=[NetworkInterfaceReference(id=nic_id, primary=True)]
        ),
    )
    return placement.apply(vm)


def log_vm_creation(location: str, resource_group: str, vm: VirtualMachine) -> None:
    """Log every resource that now makes up the compute unit."""
    lines = [
        f"Created compute unit in [Location: {location}, ResourceGroup: {resource_group}]:",
        f"  VM: {vm.name} ({vm.id})",
    ]
    if vm.network_profile and vm.network_profile.network_interfaces:
        lines.append(f"  NIC: {vm.network_profile.network_interfaces[0].id}")
    storage = vm.storage_profile
    if storage is not None:
        if storage.os_disk is not None:
            lines.append(f"  OS disk: {storage.os_disk.name}")
        for disk in storage.data_disks or []:
            lines.append(f"  Data disk: {disk.name} (LUN {disk.lun})")
    logger.info("\n".join(lines))


class Provisioner:
    """Create compute units through one AccessSession.

    Attributes:
        stage: Last stage entered by the most recent create call
        compensation: Cleanup outcome of the most recent failed create, if any
    """

    def __init__(
        self,
        session,
        accept_marketplace_terms: bool = False,
        max_parallel_deletions: int | None = None,
    ):
        self.session = session
        self.accept_marketplace_terms = accept_marketplace_terms
        self.max_parallel_deletions = max_parallel_deletions
        self.stage = ProvisioningStage.VALIDATE
        self.compensation: CompensationResult | None = None

    def create_compute_unit(
        self, spec: ProviderSpec, secrets: ProviderSecrets, vm_name: str
    ) -> CreateResult:
        """Create the NIC and VM (with OS and data disks) of a compute unit.

        Args:
            spec: Validated provider spec
            secrets: Validated provider secrets
            vm_name: Compute-unit name

        Returns:
            CreateResult with provider id ``azure:///<location>/<vm>``

        Raises:
            ConfigurationError: Invalid placement or image, or unaccepted marketplace terms
            DependencyNotFoundError: Subnet, image or marketplace agreement missing
            DriverError: Any other failure, after compensation ran
        """
        self.compensation = None
        self.stage = ProvisioningStage.VALIDATE
        placement = resolve_placement(spec)
        image = resolve_image_reference(spec.image)

        self.stage = ProvisioningStage.SUBNET
        subnet = self._get_subnet(spec)

        self.stage = ProvisioningStage.NIC
        nic = self._create_nic_if_not_exists(spec, subnet, vm_name)

        try:
            self.stage = ProvisioningStage.IMAGE
            image_reference, plan = self._resolve_image(spec, image, vm_name)

            self.stage = ProvisioningStage.VM
            parameters = build_vm_parameters(
                spec, secrets, vm_name, nic.id, image_reference, plan, placement
            )
            vm = self._create_vm(spec, vm_name, parameters)
        except Exception as e:
            self._compensate(spec, vm_name, e)
            raise

        self.stage = ProvisioningStage.DONE
        log_vm_creation(spec.location, spec.resource_group, vm)
        return CreateResult(
            provider_id=naming.instance_id(spec.location, vm_name), node_name=vm_name
        )

    def _get_subnet(self, spec: ProviderSpec) -> Subnet:
        resource_group = spec.subnet_resource_group
        vnet, subnet_name = spec.subnet_info.vnet_name, spec.subnet_info.subnet_name
        try:
            subnet = self.session.subnets.get(resource_group, vnet, subnet_name)
        except AzureError as e:
            if is_not_found(e):
                raise DependencyNotFoundError(
                    f"subnet {subnet_name} of vnet {vnet} in resource group "
                    f"{resource_group} does not exist"
                ) from e
            raise classify_azure_error(
                e, f"failed to get subnet {resource_group}/{vnet}/{subnet_name}"
            ) from e
        logger.info(f"Retrieved subnet {resource_group}/{vnet}/{subnet_name}")
        return subnet

    def _create_nic_if_not_exists(
        self, spec: ProviderSpec, subnet: Subnet, vm_name: str
    ) -> NetworkInterface:
        resource_group = spec.resource_group
        nic_name = naming.nic_name(vm_name)
        try:
            existing = self.session.nics.get(resource_group, nic_name)
        except AzureError as e:
            if not is_not_found(e):
                raise classify_azure_error(
                    e, f"failed to get NIC {resource_group}/{nic_name}"
                ) from e
        else:
            logger.info(f"NIC {resource_group}/{nic_name} exists ({existing.id}), reusing it")
            return existing

        parameters = build_nic_parameters(spec, subnet, nic_name)
        try:
            nic = self.session.nics.create_or_update(resource_group, nic_name, parameters)
        except AzureError as e:
            raise classify_azure_error(
                e, f"failed to create NIC {resource_group}/{nic_name}"
            ) from e
        logger.info(f"Created NIC {resource_group}/{nic_name} ({nic.id})")
        return nic

    def _resolve_image(
        self, spec: ProviderSpec, image: ImageReference, vm_name: str
    ) -> tuple[AzureImageReference, Plan | None]:
        reference = to_azure_image_reference(image)
        if not image.is_marketplace:
            return reference, None

        urn = image.urn
        try:
            vm_image = self.session.images.get(
                spec.location, urn.publisher, urn.offer, urn.sku, urn.version
            )
        except AzureError as e:
            if is_not_found(e):
                raise DependencyNotFoundError(
                    f"VM image {urn} does not exist in {spec.location}"
                ) from e
            raise classify_azure_error(e, f"failed to get VM image {urn}") from e
        logger.info(f"Retrieved VM image {urn} for {vm_name}")

        image_plan = getattr(vm_image, "plan", None)
        if image_plan is None:
            return reference, None

        self._ensure_agreement_accepted(image_plan.publisher, image_plan.product, image_plan.name)
        plan = Plan(
            name=image_plan.name, product=image_plan.product, publisher=image_plan.publisher
        )
        return reference, plan

    def _ensure_agreement_accepted(self, publisher: str, product: str, plan_name: str) -> None:
        describe = f"[Name: {plan_name}, Product: {product}, Publisher: {publisher}]"
        try:
            terms = self.session.agreements.get(publisher, product, plan_name)
        except AzureError as e:
            if is_not_found(e):
                raise DependencyNotFoundError(
                    f"marketplace agreement for plan {describe} does not exist"
                ) from e
            raise classify_azure_error(
                e, f"failed to get marketplace agreement for plan {describe}"
            ) from e

        if terms.accepted:
            logger.debug(f"Marketplace terms for plan {describe} already accepted")
            return
        if not self.accept_marketplace_terms:
            raise ConfigurationError(
                f"marketplace terms for plan {describe} have not been accepted; accept them "
                "for the subscription or enable accept_marketplace_terms"
            )
        try:
            self.session.agreements.accept(publisher, product, plan_name, terms)
        except AzureError as e:
            raise classify_azure_error(
                e, f"failed to accept marketplace terms for plan {describe}"
            ) from e
        logger.info(f"Accepted marketplace terms for plan {describe}")

    def _create_vm(
        self, spec: ProviderSpec, vm_name: str, parameters: VirtualMachine
    ) -> VirtualMachine:
        try:
            vm = self.session.vms.create_or_update(spec.resource_group, vm_name, parameters)
        except AzureError as e:
            raise classify_azure_error(
                e, f"failed to create VM {spec.resource_group}/{vm_name}"
            ) from e
        logger.info(f"Created VM {spec.resource_group}/{vm_name}")
        return vm

    def _compensate(self, spec: ProviderSpec, vm_name: str, error: BaseException) -> None:
        """Tear down whatever exists of a compute unit whose creation failed.

        Never raises: a cleanup failure is logged, recorded and added to
        ``error`` as a note.
        """
        failed_stage = self.stage
        self.stage = ProvisioningStage.COMPENSATE
        logger.warning(
            f"Creation of compute unit {vm_name} failed during {failed_stage}: {error}. "
            "Deleting resources created so far"
        )
        deprovisioner = Deprovisioner(self.session, max_workers=self.max_parallel_deletions)
        try:
            report = deprovisioner.delete_compute_unit(spec, vm_name)
        except Exception as cleanup_error:
            logger.error(f"Cleanup of compute unit {vm_name} failed: {cleanup_error}")
            error.add_note(
                f"cleanup of compute unit {vm_name} failed, resources may be left behind: "
                f"{cleanup_error}"
            )
            self.compensation = CompensationResult(
                vm_name=vm_name,
                failed_stage=failed_stage,
                succeeded=False,
                report=getattr(cleanup_error, "report", None),
                error=cleanup_error,
            )
            return
        logger.info(f"Cleaned up compute unit {vm_name} after failed creation")
        self.compensation = CompensationResult(
            vm_name=vm_name, failed_stage=failed_stage, succeeded=True, report=report
        )


def create_compute_unit(
    session,
    spec: ProviderSpec,
    secrets: ProviderSecrets,
    vm_name: str,
    accept_marketplace_terms: bool = False,
) -> CreateResult:
    """Create a compute unit. See Provisioner.create_compute_unit."""
    provisioner = Provisioner(session, accept_marketplace_terms=accept_marketplace_terms)
    return provisioner.create_compute_unit(spec, secrets, vm_name)


__all__ = [
    "CompensationResult",
    "CreateResult",
    "Provisioner",
    "ProvisioningStage",
    "build_nic_parameters",
    "build_vm_parameters",
    "create_compute_unit",
    "generate_dummy_public_key",
]
