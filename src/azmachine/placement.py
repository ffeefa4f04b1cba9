"""Placement policy for compute units.

A VM is placed in exactly one of: an availability zone, an availability set,
or a (flexible) virtual machine scale set. A ``machineSet`` entry in the provider spec
is another way to ask for one of the latter two. resolve_placement turns the
provider spec fields into a Placement and rejects every other combination before any
remote call is made.

Public API:
    PlacementKind: Zone, availability set or scale set
    Placement: Resolved placement directive
    resolve_placement: Validate and resolve the provider spec's placement
"""

from dataclasses import dataclass
from enum import StrEnum

from azure.mgmt.compute.models import SubResource, VirtualMachine

from azmachine.errors import ConfigurationError
from azmachine.provider_spec import ProviderSpec

MACHINE_SET_KIND_AVAILABILITY_SET = "availabilityset"
MACHINE_SET_KIND_VMO = "vmo"


class PlacementKind(StrEnum):
    ZONE = "zone"
    AVAILABILITY_SET = "availabilitySet"
    SCALE_SET = "virtualMachineScaleSet"


@dataclass(frozen=True)
class Placement:
    """One placement directive: a zone index or a resource id."""

    kind: PlacementKind
    value: str

    def __post_init__(self):
        if not self.value:
            raise ConfigurationError(f"{self.kind} placement requires a value")

    def apply(self, vm: VirtualMachine) -> VirtualMachine:
        """Set the matching field of VM creation parameters, clearing the other two."""
        vm.zones = [self.value] if self.kind == PlacementKind.ZONE else None
        vm.availability_set = (
            SubResource(id=self.value) if self.kind == PlacementKind.AVAILABILITY_SET else None
        )
        vm.virtual_machine_scale_set = (
            SubResource(id=self.value) if self.kind == PlacementKind.SCALE_SET else None
        )
        return vm


def _by_id(field_name: str, kind: PlacementKind, resource_id: str) -> Placement:
    if not resource_id:
        raise ConfigurationError(f"{field_name}.id must not be empty", fields=[field_name])
    return Placement(kind, resource_id)


def _candidates(spec: ProviderSpec) -> list[tuple[str, Placement]]:
    found: list[tuple[str, Placement]] = []
    if spec.zone is not None:
        if spec.zone < 1:
            raise ConfigurationError(f"zone must be a positive integer, got {spec.zone}")
        found.append(("zone", Placement(PlacementKind.ZONE, str(spec.zone))))
    if spec.availability_set is not None:
        found.append(
            (
                "availabilitySet",
                _by_id(
                    "availabilitySet", PlacementKind.AVAILABILITY_SET, spec.availability_set.id
                ),
            )
        )
    if spec.virtual_machine_scale_set is not None:
        found.append(
            (
                "virtualMachineScaleSet",
                _by_id(
                    "virtualMachineScaleSet",
                    PlacementKind.SCALE_SET,
                    spec.virtual_machine_scale_set.id,
                ),
            )
        )
    if spec.machine_set is not None:
        kind = spec.machine_set.kind.lower()
        if kind == MACHINE_SET_KIND_AVAILABILITY_SET:
            placement = _by_id(
                "machineSet", PlacementKind.AVAILABILITY_SET, spec.machine_set.id
            )
        elif kind == MACHINE_SET_KIND_VMO:
            placement = _by_id("machineSet", PlacementKind.SCALE_SET, spec.machine_set.id)
        else:
            raise ConfigurationError(
                f"machineSet.kind must be {MACHINE_SET_KIND_AVAILABILITY_SET!r} or "
                f"{MACHINE_SET_KIND_VMO!r}, got {spec.machine_set.kind!r}"
            )
        found.append(("machineSet", placement))
    return found


def resolve_placement(spec: ProviderSpec) -> Placement:
    """Resolve the single placement directive of a spec.

    Args:
        spec: Provider spec

    Returns:
        The one Placement the VM must be created with

    Raises:
        ConfigurationError: If no directive or more than one is given
    """
    found = _candidates(spec)
    if not found:
        raise ConfigurationError(
            "exactly one of zone, availabilitySet, virtualMachineScaleSet or machineSet "
            "must be set, found none"
        )
    if len(found) > 1:
        names = [name for name, _ in found]
        raise ConfigurationError(
            f"placement fields {', '.join(names)} are mutually exclusive, set only one",
            fields=names,
        )
    return found[0][1]


__all__ = ["Placement", "PlacementKind", "resolve_placement"]
