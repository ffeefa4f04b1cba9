"""Azure Resource Graph queries used for listing compute units."""

import logging
from collections.abc import Iterable
from typing import Any

from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions, ResultFormat

from azmachine.operation import OperationContext

logger = logging.getLogger(__name__)

VIRTUAL_MACHINE_TYPE = "microsoft.compute/virtualmachines"
NETWORK_INTERFACE_TYPE = "microsoft.network/networkinterfaces"
DISK_TYPE = "microsoft.compute/disks"


def kql_string(value: str) -> str:
    """Quote a value as a single-quoted KQL string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def build_resource_query(
    resource_group: str, resource_types: Iterable[str], tag_keys: Iterable[str]
) -> str:
    """KQL returning type and name of tagged resources in one resource group.

    Args:
        resource_group: Resource group to search (case-insensitive)
        resource_types: ARM resource types to include
        tag_keys: Tag keys every returned resource must carry

    Returns:
        KQL query text
    """
    type_filter = " or ".join(f"type =~ {kql_string(t)}" for t in resource_types)
    lines = [
        "Resources",
        f"| where {type_filter}",
        f"| where resourceGroup =~ {kql_string(resource_group)}",
        "| extend tagKeys = bag_keys(tags)",
    ]
    keys = list(tag_keys)
    if keys:
        lines.append("| where " + " and ".join(f"tagKeys has {kql_string(k)}" for k in keys))
    lines.append("| project type, name")
    return "\n".join(lines)


class ResourceGraphAccess:
    """Runs KQL queries against one subscription, following skip tokens."""

    def __init__(
        self, client: ResourceGraphClient, subscription_id: str, context: OperationContext
    ):
        self._client = client
        self._subscription_id = subscription_id
        self.context = context

    def query(self, query: str) -> list[dict[str, Any]]:
        """Run a query and return every row as a dict.

        Args:
            query: KQL query text

        Returns:
            All result rows across pages
        """
        rows: list[dict[str, Any]] = []
        skip_token: str | None = None
        while True:
            self.context.check("resource graph query")
            request = QueryRequest(
                subscriptions=[self._subscription_id],
                query=query,
                options=QueryRequestOptions(
                    skip_token=skip_token, result_format=ResultFormat.OBJECT_ARRAY
                ),
            )
            response = self._client.resources(request)
            page = response.data or []
            rows.extend(page)
            skip_token = response.skip_token
            logger.debug(f"Resource graph page with {len(page)} row(s), more: {bool(skip_token)}")
            if not skip_token:
                return rows

    def list_resources(
        self, resource_group: str, resource_types: Iterable[str], tag_keys: Iterable[str]
    ) -> list[tuple[str, str]]:
        """(type, name) of matching resources, type lower-cased."""
        rows = self.query(build_resource_query(resource_group, resource_types, tag_keys))
        results = []
        for row in rows:
            resource_type, name = row.get("type"), row.get("name")
            if isinstance(resource_type, str) and isinstance(name, str):
                results.append((resource_type.lower(), name))
        return results


__all__ = [
    "DISK_TYPE",
    "NETWORK_INTERFACE_TYPE",
    "VIRTUAL_MACHINE_TYPE",
    "ResourceGraphAccess",
    "build_resource_query",
    "kql_string",
]
