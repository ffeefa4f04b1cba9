"""Deterministic names for the resources of a compute unit.

Every dependent resource of a VM (NIC, OS disk, data disks) is named after the
VM so that a later invocation can find it again by name alone. Nothing about
the mapping is stored anywhere.

Public API:
    nic_name: NIC name for a VM
    os_disk_name: OS disk name for a VM
    data_disk_name: Data disk name for a VM, disk name and LUN
    data_disk_names: All data disk names of a VM, ordered by LUN
    vm_name_from_resource_name: Recover the VM name from a dependent resource name
    instance_id: Provider id reported to the machine controller
"""

from collections.abc import Iterable, Sequence
from typing import Protocol

NIC_SUFFIX = "-nic"
OS_DISK_SUFFIX = "-os-disk"
DATA_DISK_SUFFIX = "-data-disk"

INSTANCE_ID_PREFIX = "azure:///"


class DataDiskLike(Protocol):
    """Anything carrying a data disk's declared name and optional LUN."""

    name: str | None
    lun: int | None


def dependent_name(vm_name: str, suffix: str) -> str:
    """Concatenate a VM name and a resource-kind suffix."""
    return f"{vm_name}{suffix}"


def nic_name(vm_name: str) -> str:
    return dependent_name(vm_name, NIC_SUFFIX)


def os_disk_name(vm_name: str) -> str:
    return dependent_name(vm_name, OS_DISK_SUFFIX)


def effective_lun(lun: int | None, index: int) -> int:
    """LUN of a data disk: the declared one, else its position in the list."""
    return index if lun is None else lun


def data_disk_suffix(disk_name: str | None, lun: int) -> str:
    """Suffix identifying one data disk of a VM.

    Examples:
        >>> data_disk_suffix("", 0)
        '-0-data-disk'
        >>> data_disk_suffix("etcd", 2)
        '-etcd-2-data-disk'
    """
    if disk_name and disk_name.strip():
        return f"-{disk_name.strip()}-{lun}{DATA_DISK_SUFFIX}"
    return f"-{lun}{DATA_DISK_SUFFIX}"


def data_disk_name(vm_name: str, disk_name: str | None, lun: int) -> str:
    """Name of a data disk.

    The LUN is always part of the name, so disks with distinct LUNs get
    distinct names even when their declared names are empty or repeated.
    """
    return f"{vm_name}{data_disk_suffix(disk_name, lun)}"


def data_disk_names(vm_name: str, data_disks: Sequence[DataDiskLike]) -> list[str]:
    """Names of all data disks of a VM, ordered by effective LUN."""
    entries = sorted(
        (effective_lun(disk.lun, index), disk.name) for index, disk in enumerate(data_disks)
    )
    return [data_disk_name(vm_name, name, lun) for lun, name in entries]


def data_disk_suffixes(data_disks: Sequence[DataDiskLike]) -> list[str]:
    """Name suffixes of all data disks, ordered by effective LUN."""
    entries = sorted(
        (effective_lun(disk.lun, index), disk.name) for index, disk in enumerate(data_disks)
    )
    return [data_disk_suffix(name, lun) for lun, name in entries]


def vm_name_from_resource_name(
    resource_name: str, data_disk_name_suffixes: Iterable[str] = ()
) -> str | None:
    """Recover the owning VM name from a NIC or disk name.

    Args:
        resource_name: Name of a NIC, OS disk or data disk
        data_disk_name_suffixes: Suffixes of the data disks the VM may own

    Returns:
        VM name, or None if the name does not follow the naming scheme
    """
    if resource_name.endswith(NIC_SUFFIX):
        return resource_name[: -len(NIC_SUFFIX)] or None
    if resource_name.endswith(OS_DISK_SUFFIX):
        return resource_name[: -len(OS_DISK_SUFFIX)] or None
    if resource_name.endswith(DATA_DISK_SUFFIX):
        # Longest suffix first so "-etcd-0-data-disk" wins over "-0-data-disk"
        for suffix in sorted(data_disk_name_suffixes, key=len, reverse=True):
            if resource_name.endswith(suffix):
                return resource_name[: -len(suffix)] or None
    return None


def resource_name_from_id(resource_id: str) -> str:
    """Last path segment of an ARM resource id."""
    return resource_id.rstrip("/").rsplit("/", 1)[-1]


def instance_id(location: str, vm_name: str) -> str:
    """Provider id of a VM, e.g. ``azure:///westeurope/shoot-worker-1``."""
    return f"{INSTANCE_ID_PREFIX}{location}/{vm_name}"


__all__ = [
    "DATA_DISK_SUFFIX",
    "NIC_SUFFIX",
    "OS_DISK_SUFFIX",
    "data_disk_name",
    "data_disk_names",
    "data_disk_suffix",
    "data_disk_suffixes",
    "dependent_name",
    "effective_lun",
    "instance_id",
    "nic_name",
    "os_disk_name",
    "resource_name_from_id",
    "vm_name_from_resource_name",
]
