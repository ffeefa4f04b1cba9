"""Validation of provider specs and secrets.

All problems are collected and reported together in one ConfigurationError,
so an operator fixes a machine class in one round trip. Validation runs
before any Azure call.
"""

import logging

from azmachine.errors import ConfigurationError
from azmachine.image import resolve_image_reference
from azmachine.naming import effective_lun
from azmachine.placement import resolve_placement
from azmachine.provider_spec import (
    CLUSTER_TAG_PREFIX,
    ROLE_TAG_PREFIX,
    DataDiskSpec,
    ProviderSecrets,
    ProviderSpec,
)

logger = logging.getLogger(__name__)

MAX_DATA_DISKS = 64
MAX_LUN = 63


def _required(value: str | None, path: str, problems: list[str]) -> None:
    if value is None or not value.strip():
        problems.append(f"{path} is required")


def validate_data_disks(data_disks: tuple[DataDiskSpec, ...] | list[DataDiskSpec]) -> list[str]:
    """Check data disk descriptors and the uniqueness of their effective LUNs."""
    problems: list[str] = []
    if len(data_disks) > MAX_DATA_DISKS:
        problems.append(
            f"properties.storageProfile.dataDisks: at most {MAX_DATA_DISKS} data disks "
            f"are allowed, got {len(data_disks)}"
        )

    seen: dict[int, int] = {}
    for index, disk in enumerate(data_disks):
        path = f"properties.storageProfile.dataDisks[{index}]"
        lun = effective_lun(disk.lun, index)
        if not 0 <= lun <= MAX_LUN:
            problems.append(f"{path}.lun must be between 0 and {MAX_LUN}, got {lun}")
        elif lun in seen:
            problems.append(f"{path}.lun {lun} is already used by dataDisks[{seen[lun]}]")
        else:
            seen[lun] = index
        _required(disk.storage_account_type, f"{path}.storageAccountType", problems)
        if disk.disk_size_gb is None or disk.disk_size_gb <= 0:
            problems.append(f"{path}.diskSizeGB must be greater than 0")
    return problems


def validate_provider_spec(spec: ProviderSpec) -> None:
    """Validate a provider spec.

    Args:
        spec: Parsed provider spec

    Raises:
        ConfigurationError: Listing every problem found
    """
    problems: list[str] = []
    fields: list[str] = []

    _required(spec.location, "location", problems)
    _required(spec.resource_group, "resourceGroup", problems)
    _required(spec.subnet_info.vnet_name, "subnetInfo.vnetName", problems)
    _required(spec.subnet_info.subnet_name, "subnetInfo.subnetName", problems)
    _required(spec.vm_size, "properties.hardwareProfile.vmSize", problems)
    _required(spec.os_profile.admin_username, "properties.osProfile.adminUsername", problems)

    try:
        resolve_image_reference(spec.image)
    except ConfigurationError as e:
        problems.append(str(e))
        fields.extend(e.fields)

    os_disk = spec.os_disk
    _required(os_disk.create_option, "properties.storageProfile.osDisk.createOption", problems)
    if os_disk.disk_size_gb is not None and os_disk.disk_size_gb <= 0:
        problems.append("properties.storageProfile.osDisk.diskSizeGB must be greater than 0")

    problems.extend(validate_data_disks(spec.data_disks))

    try:
        resolve_placement(spec)
    except ConfigurationError as e:
        problems.append(str(e))
        fields.extend(e.fields)

    if spec.cluster_tag_key is None:
        problems.append(f"tags must contain a key starting with {CLUSTER_TAG_PREFIX!r}")
    if spec.role_tag_key is None:
        problems.append(f"tags must contain a key starting with {ROLE_TAG_PREFIX!r}")

    if problems:
        logger.debug(f"Provider spec rejected with {len(problems)} problem(s)")
        raise ConfigurationError("invalid provider spec", problems=problems, fields=fields)


def validate_secrets(secrets: ProviderSecrets, require_user_data: bool = True) -> None:
    """Validate that every credential and the user data are present.

    Only creation needs the cloud-init payload, so other operations pass
    ``require_user_data=False``. Error messages name the missing keys, never
    their values.
    """
    problems: list[str] = []
    if not secrets.client_id:
        problems.append("clientID (or azureClientId) is required")
    if not secrets.client_secret:
        problems.append("clientSecret (or azureClientSecret) is required")
    if not secrets.subscription_id:
        problems.append("subscriptionID (or azureSubscriptionId) is required")
    if not secrets.tenant_id:
        problems.append("tenantID (or azureTenantId) is required")
    if require_user_data and not secrets.user_data:
        problems.append("userData is required")
    if problems:
        raise ConfigurationError("invalid provider secret", problems=problems)


__all__ = [
    "MAX_DATA_DISKS",
    "MAX_LUN",
    "validate_data_disks",
    "validate_provider_spec",
    "validate_secrets",
]
