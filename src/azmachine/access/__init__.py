"""Cloud resource access: session, per-resource accessors and Resource Graph."""

from azmachine.access.resource_graph import ResourceGraphAccess
from azmachine.access.resources import (
    DiskAccess,
    MarketplaceAgreementAccess,
    NetworkInterfaceAccess,
    ResourceGroupAccess,
    SubnetAccess,
    VirtualMachineAccess,
    VirtualMachineImageAccess,
)
from azmachine.access.session import (
    AccessSession,
    ClientSecretCredentialProvider,
    CloudEnvironment,
    ConnectConfig,
    CredentialProvider,
)

__all__ = [
    "AccessSession",
    "ClientSecretCredentialProvider",
    "CloudEnvironment",
    "ConnectConfig",
    "CredentialProvider",
    "DiskAccess",
    "MarketplaceAgreementAccess",
    "NetworkInterfaceAccess",
    "ResourceGraphAccess",
    "ResourceGroupAccess",
    "SubnetAccess",
    "VirtualMachineAccess",
    "VirtualMachineImageAccess",
]
