# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from datetime import datetime
from typing import Final

VM_TEARDOWN_METRIC_PREFIX: Final = "azure.vm_teardown."

# api version used for generic lookups of network interfaces by resource id
NETWORK_INTERFACE_API_VERSION: Final = "2023-09-01"


def get_resource_group_id(subscription_id: str, resource_group: str) -> str:
    return f"/subscriptions/{subscription_id}/resourcegroups/{resource_group}".lower()


def get_virtual_machine_id(subscription_id: str, resource_group: str, vm_name: str) -> str:
    return (
        get_resource_group_id(subscription_id, resource_group)
        + "/providers/microsoft.compute/virtualmachines/"
        + vm_name
    ).lower()


def get_connection_string(storage_account_name: str, key: str, endpoint_suffix: str) -> str:
    return (
        "DefaultEndpointsProtocol=https;AccountName="
        + storage_account_name
        + ";AccountKey="
        + key
        + ";EndpointSuffix="
        + endpoint_suffix
    )


def now() -> str:
    """Return the current time in ISO format"""
    return datetime.now().isoformat()
