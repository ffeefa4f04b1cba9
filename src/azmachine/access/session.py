"""Per-invocation Azure access session.

There is no process-wide client. Each driver call builds an AccessSession from
the connect config of its secret and an injected CredentialProvider, uses it,
and closes it. Management clients are created lazily, so a call that only
needs the compute API never authenticates against the others.

Public API:
    CloudEnvironment: Azure cloud (public, government, china)
    ConnectConfig: Credentials plus cloud of one invocation
    CredentialProvider: Protocol producing a TokenCredential
    ClientSecretCredentialProvider: Service principal with client secret
    AccessSession: Lazily built clients and resource accessors
"""

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

from azure.identity import AzureAuthorityHosts, ClientSecretCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.marketplaceordering import MarketplaceOrderingAgreements
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.resourcegraph import ResourceGraphClient

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
from azmachine.errors import ConfigurationError
from azmachine.log_sanitizer import LogSanitizer
from azmachine.operation import OperationContext

logger = logging.getLogger(__name__)


class CloudEnvironment(StrEnum):
    """Azure clouds, valued by their provider spec name."""

    PUBLIC = "AzurePublic"
    GOVERNMENT = "AzureGovernment"
    CHINA = "AzureChina"

    @classmethod
    def from_name(cls, name: str | None) -> "CloudEnvironment":
        """Case-insensitive lookup; unknown or missing names mean the public cloud."""
        if name:
            for cloud in cls:
                if cloud.value.lower() == name.strip().lower():
                    return cloud
            logger.warning(f"Unknown cloud configuration {name!r}, using {cls.PUBLIC}")
        return cls.PUBLIC

    @property
    def authority_host(self) -> str:
        return {
            CloudEnvironment.PUBLIC: AzureAuthorityHosts.AZURE_PUBLIC_CLOUD,
            CloudEnvironment.GOVERNMENT: AzureAuthorityHosts.AZURE_GOVERNMENT,
            CloudEnvironment.CHINA: AzureAuthorityHosts.AZURE_CHINA,
        }[self]

    @property
    def resource_manager(self) -> str:
        return {
            CloudEnvironment.PUBLIC: "https://management.azure.com",
            CloudEnvironment.GOVERNMENT: "https://management.usgovcloudapi.net",
            CloudEnvironment.CHINA: "https://management.chinacloudapi.cn",
        }[self]

    @property
    def credential_scopes(self) -> list[str]:
        return [f"{self.resource_manager}/.default"]


@dataclass(frozen=True)
class ConnectConfig:
    """Everything needed to talk to one subscription (CRITICAL: never log)."""

    subscription_id: str
    tenant_id: str
    client_id: str
    client_secret: str
    cloud: CloudEnvironment = CloudEnvironment.PUBLIC

    def __repr__(self) -> str:
        """Prevent accidental exposure of credentials in logs."""
        return (
            f"ConnectConfig(subscription_id={self.subscription_id}, cloud={self.cloud}, "
            "tenant_id=***REDACTED***, client_id=***REDACTED***, client_secret=***REDACTED***)"
        )


class CredentialProvider(Protocol):
    """Produces the azure-identity credential for a connect config."""

    def get_credential(self, connect_config: ConnectConfig) -> Any: ...


class ClientSecretCredentialProvider:
    """Service principal authentication with a client secret."""

    def get_credential(self, connect_config: ConnectConfig) -> ClientSecretCredential:
        try:
            return ClientSecretCredential(
                tenant_id=connect_config.tenant_id,
                client_id=connect_config.client_id,
                client_secret=connect_config.client_secret,
                authority=connect_config.cloud.authority_host,
            )
        except ValueError as e:
            safe_error = LogSanitizer.sanitize_exception(e)
            raise ConfigurationError(
                f"Failed to create service principal credential: {safe_error}"
            ) from e


class AccessSession:
    """Azure clients and resource accessors for a single driver invocation.

    Use as a context manager so clients are closed when the invocation ends:

        >>> with AccessSession(config, ClientSecretCredentialProvider(), ctx) as session:
        ...     session.vms.get("my-rg", "my-vm")
    """

    def __init__(
        self,
        connect_config: ConnectConfig,
        credential_provider: CredentialProvider,
        context: OperationContext | None = None,
    ):
        self.connect_config = connect_config
        self.context = context or OperationContext()
        self._credential_provider = credential_provider
        self._credential: Any = None
        self._clients: dict[str, Any] = {}

    @property
    def subscription_id(self) -> str:
        return self.connect_config.subscription_id

    def _get_credential(self) -> Any:
        if self._credential is None:
            self._credential = self._credential_provider.get_credential(self.connect_config)
        return self._credential

    def _client(self, key: str, factory: type, with_subscription: bool = True) -> Any:
        if key not in self._clients:
            cloud = self.connect_config.cloud
            args = [self._get_credential()]
            if with_subscription:
                args.append(self.subscription_id)
            logger.debug(f"Creating {key} client for cloud {cloud}")
            self._clients[key] = factory(
                *args,
                base_url=cloud.resource_manager,
                credential_scopes=cloud.credential_scopes,
            )
        return self._clients[key]

    @property
    def compute_client(self) -> ComputeManagementClient:
        return self._client("compute", ComputeManagementClient)

    @property
    def network_client(self) -> NetworkManagementClient:
        return self._client("network", NetworkManagementClient)

    @property
    def resource_client(self) -> ResourceManagementClient:
        return self._client("resource", ResourceManagementClient)

    @property
    def resource_graph_client(self) -> ResourceGraphClient:
        return self._client("resourcegraph", ResourceGraphClient, with_subscription=False)

    @property
    def marketplace_client(self) -> MarketplaceOrderingAgreements:
        return self._client("marketplace", MarketplaceOrderingAgreements)

    @property
    def vms(self) -> VirtualMachineAccess:
        return VirtualMachineAccess(self.compute_client, self.context)

    @property
    def disks(self) -> DiskAccess:
        return DiskAccess(self.compute_client, self.context)

    @property
    def images(self) -> VirtualMachineImageAccess:
        return VirtualMachineImageAccess(self.compute_client, self.context)

    @property
    def nics(self) -> NetworkInterfaceAccess:
        return NetworkInterfaceAccess(self.network_client, self.context)

    @property
    def subnets(self) -> SubnetAccess:
        return SubnetAccess(self.network_client, self.context)

    @property
    def resource_groups(self) -> ResourceGroupAccess:
        return ResourceGroupAccess(self.resource_client, self.context)

    @property
    def agreements(self) -> MarketplaceAgreementAccess:
        return MarketplaceAgreementAccess(self.marketplace_client, self.context)

    @property
    def resource_graph(self) -> ResourceGraphAccess:
        return ResourceGraphAccess(self.resource_graph_client, self.subscription_id, self.context)

    def close(self) -> None:
        for key, client in self._clients.items():
            try:
                client.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing {key} client: {e}")
        self._clients.clear()
        credential, self._credential = self._credential, None
        if credential is not None and hasattr(credential, "close"):
            credential.close()

    def __enter__(self) -> "AccessSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "AccessSession",
    "ClientSecretCredentialProvider",
    "CloudEnvironment",
    "ConnectConfig",
    "CredentialProvider",
]
