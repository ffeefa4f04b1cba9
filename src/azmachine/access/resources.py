"""Thin per-resource-type accessors over the Azure management SDK.

Accessors do not interpret errors: a missing resource surfaces as
``azure.core.exceptions.ResourceNotFoundError`` from get and delete alike, and
the orchestrators decide what "not found" means. Every call checks the
invocation's OperationContext first, and long-running calls are waited on
through it.
"""

import logging
from typing import Any

from azure.mgmt.compute.models import (
    Disk,
    VirtualMachine,
    VirtualMachineImage,
    VirtualMachineUpdate,
)
from azure.mgmt.marketplaceordering.models import AgreementTerms
from azure.mgmt.network.models import NetworkInterface, Subnet

from azmachine.access.polling import wait_for_completion
from azmachine.operation import OperationContext

logger = logging.getLogger(__name__)

MARKETPLACE_OFFER_TYPE = "virtualmachine"


class _ResourceAccess:
    def __init__(self, client: Any, context: OperationContext):
        self._client = client
        self.context = context

    def _wait(self, poller: Any, description: str) -> Any:
        return wait_for_completion(poller, self.context, description)


class VirtualMachineAccess(_ResourceAccess):
    """Virtual machines of a compute client."""

    def get(self, resource_group: str, name: str) -> VirtualMachine:
        self.context.check(f"get VM {name}")
        logger.debug(f"Getting VM {resource_group}/{name}")
        return self._client.virtual_machines.get(resource_group, name)

    def create_or_update(
        self, resource_group: str, name: str, parameters: VirtualMachine
    ) -> VirtualMachine:
        self.context.check(f"create VM {name}")
        logger.debug(f"Creating or updating VM {resource_group}/{name}")
        poller = self._client.virtual_machines.begin_create_or_update(
            resource_group, name, parameters
        )
        return self._wait(poller, f"create VM {name}")

    def update(
        self, resource_group: str, name: str, parameters: VirtualMachineUpdate
    ) -> VirtualMachine:
        self.context.check(f"update VM {name}")
        logger.debug(f"Updating VM {resource_group}/{name}")
        poller = self._client.virtual_machines.begin_update(resource_group, name, parameters)
        return self._wait(poller, f"update VM {name}")

    def delete(self, resource_group: str, name: str) -> None:
        self.context.check(f"delete VM {name}")
        logger.debug(f"Deleting VM {resource_group}/{name}")
        poller = self._client.virtual_machines.begin_delete(resource_group, name)
        self._wait(poller, f"delete VM {name}")


class DiskAccess(_ResourceAccess):
    """Managed disks of a compute client."""

    def get(self, resource_group: str, name: str) -> Disk:
        self.context.check(f"get disk {name}")
        logger.debug(f"Getting disk {resource_group}/{name}")
        return self._client.disks.get(resource_group, name)

    def delete(self, resource_group: str, name: str) -> None:
        self.context.check(f"delete disk {name}")
        logger.debug(f"Deleting disk {resource_group}/{name}")
        poller = self._client.disks.begin_delete(resource_group, name)
        self._wait(poller, f"delete disk {name}")


class VirtualMachineImageAccess(_ResourceAccess):
    """Platform (marketplace) images."""

    def get(
        self, location: str, publisher: str, offer: str, sku: str, version: str
    ) -> VirtualMachineImage:
        self.context.check(f"get image {publisher}:{offer}:{sku}:{version}")
        return self._client.virtual_machine_images.get(
            location=location,
            publisher_name=publisher,
            offer=offer,
            skus=sku,
            version=version,
        )


class NetworkInterfaceAccess(_ResourceAccess):
    """Network interfaces of a network client."""

    def get(self, resource_group: str, name: str) -> NetworkInterface:
        self.context.check(f"get NIC {name}")
        logger.debug(f"Getting NIC {resource_group}/{name}")
        return self._client.network_interfaces.get(resource_group, name)

    def create_or_update(
        self, resource_group: str, name: str, parameters: NetworkInterface
    ) -> NetworkInterface:
        self.context.check(f"create NIC {name}")
        logger.debug(f"Creating or updating NIC {resource_group}/{name}")
        poller = self._client.network_interfaces.begin_create_or_update(
            resource_group, name, parameters
        )
        return self._wait(poller, f"create NIC {name}")

    def delete(self, resource_group: str, name: str) -> None:
        self.context.check(f"delete NIC {name}")
        logger.debug(f"Deleting NIC {resource_group}/{name}")
        poller = self._client.network_interfaces.begin_delete(resource_group, name)
        self._wait(poller, f"delete NIC {name}")


class SubnetAccess(_ResourceAccess):
    """Subnets of a network client."""

    def get(self, resource_group: str, vnet_name: str, subnet_name: str) -> Subnet:
        self.context.check(f"get subnet {vnet_name}/{subnet_name}")
        logger.debug(f"Getting subnet {resource_group}/{vnet_name}/{subnet_name}")
        return self._client.subnets.get(resource_group, vnet_name, subnet_name)


class MarketplaceAgreementAccess(_ResourceAccess):
    """Marketplace terms for VM image plans."""

    def get(self, publisher: str, product: str, plan: str) -> AgreementTerms:
        self.context.check(f"get agreement for plan {plan}")
        return self._client.marketplace_agreements.get(
            offer_type=MARKETPLACE_OFFER_TYPE,
            publisher_id=publisher,
            offer_id=product,
            plan_id=plan,
        )

    def accept(
        self, publisher: str, product: str, plan: str, terms: AgreementTerms
    ) -> AgreementTerms:
        self.context.check(f"accept agreement for plan {plan}")
        terms.accepted = True
        return self._client.marketplace_agreements.create(
            offer_type=MARKETPLACE_OFFER_TYPE,
            publisher_id=publisher,
            offer_id=product,
            plan_id=plan,
            parameters=terms,
        )


class ResourceGroupAccess(_ResourceAccess):
    """Resource groups of a resource client."""

    def exists(self, name: str) -> bool:
        self.context.check(f"check resource group {name}")
        return bool(self._client.resource_groups.check_existence(name))


__all__ = [
    "DiskAccess",
    "MarketplaceAgreementAccess",
    "NetworkInterfaceAccess",
    "ResourceGroupAccess",
    "SubnetAccess",
    "VirtualMachineAccess",
    "VirtualMachineImageAccess",
]
