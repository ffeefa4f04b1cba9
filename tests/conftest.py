"""
Shared test fixtures for azmachine tests.

This module provides common fixtures used across all test modules:
- A fake Azure subscription (FakeCloud) and sessions bound to it
- Sample provider spec documents and secrets
- A Driver wired to the fake session
"""

import copy
from typing import Any

import pytest

from mocks.azure_mock import FakeCloud, FakeSession

from azmachine.config import DriverConfig
from azmachine.driver import Driver
from azmachine.operation import OperationContext
from azmachine.provider_spec import ProviderSecrets, ProviderSpec

RESOURCE_GROUP = "shoot--core--dev"
LOCATION = "westeurope"
VNET = "shoot--core--dev"
SUBNET = "shoot--core--dev-nodes"
IMAGE_URN = "Canonical:ubuntu-24_04-lts:server:latest"
CLUSTER_TAG = "kubernetes.io-cluster-shoot--core--dev"
ROLE_TAG = "kubernetes.io-role-node"
SSH_KEY = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQC7test operator@example"

SAMPLE_PROVIDER_SPEC: dict[str, Any] = {
    "location": LOCATION,
    "resourceGroup": RESOURCE_GROUP,
    "tags": {CLUSTER_TAG: "1", ROLE_TAG: "1", "Name": "shoot--core--dev"},
    "subnetInfo": {"vnetName": VNET, "subnetName": SUBNET},
    "properties": {
        "hardwareProfile": {"vmSize": "Standard_D2s_v5"},
        "storageProfile": {
            "imageReference": {"urn": IMAGE_URN},
            "osDisk": {
                "caching": "ReadWrite",
                "diskSizeGB": 50,
                "createOption": "FromImage",
                "managedDisk": {"storageAccountType": "Premium_LRS"},
            },
            "dataDisks": [
                {"lun": 0, "diskSizeGB": 100, "storageAccountType": "Standard_LRS"},
                {
                    "name": "etcd",
                    "lun": 1,
                    "diskSizeGB": 20,
                    "storageAccountType": "Premium_LRS",
                    "caching": "ReadOnly",
                },
            ],
        },
        "osProfile": {
            "adminUsername": "core",
            "linuxConfiguration": {
                "disablePasswordAuthentication": True,
                "ssh": {"publicKeys": {"path": "/home/core/.ssh/authorized_keys", "keyData": SSH_KEY}},
            },
        },
        "zone": 1,
    },
}

SAMPLE_SECRETS: dict[str, Any] = {
    "clientID": "11111111-1111-1111-1111-111111111111",
    "clientSecret": "fake-client-secret-value",  # noqa: S105 - test fixture
    "subscriptionID": "00000000-0000-0000-0000-000000000001",
    "tenantID": "22222222-2222-2222-2222-222222222222",
    "userData": "#cloud-config\nruncmd:\n  - echo hello\n",
}


@pytest.fixture
def spec_dict():
    """Mutable copy of the sample provider spec document."""
    return copy.deepcopy(SAMPLE_PROVIDER_SPEC)


@pytest.fixture
def spec(spec_dict):
    """Parsed sample provider spec."""
    return ProviderSpec.from_dict(spec_dict)


@pytest.fixture
def secrets_dict():
    return dict(SAMPLE_SECRETS)


@pytest.fixture
def secrets(secrets_dict):
    return ProviderSecrets.from_dict(secrets_dict)


@pytest.fixture
def cloud():
    """Fake subscription with the sample subnet and image in place."""
    fake = FakeCloud(resource_group=RESOURCE_GROUP, location=LOCATION)
    fake.add_subnet(RESOURCE_GROUP, VNET, SUBNET)
    fake.add_image(IMAGE_URN)
    return fake


@pytest.fixture
def context():
    return OperationContext(poll_interval=0.01)


@pytest.fixture
def session(cloud, context):
    return FakeSession(cloud, context)


@pytest.fixture
def driver(cloud):
    """Driver whose sessions all talk to the fake cloud.

    ``driver.sessions`` collects every session opened, so tests can check
    that each one was closed.
    """
    sessions = []

    def factory(connect_config, context):
        fake_session = FakeSession(cloud, context)
        fake_session.connect_config = connect_config
        sessions.append(fake_session)
        return fake_session

    instance = Driver(config=DriverConfig(poll_interval_seconds=0.01), session_factory=factory)
    instance.sessions = sessions
    return instance
