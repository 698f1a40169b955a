# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from contextlib import AbstractAsyncContextManager
from logging import Logger
from types import TracebackType
from typing import Any, NamedTuple, Self, cast

# 3p
from azure.core.exceptions import ResourceNotFoundError
from azure.core.polling import AsyncLROPoller
from azure.identity.aio import DefaultAzureCredential
from azure.mgmt.compute.aio import ComputeManagementClient
from azure.mgmt.compute.models import VirtualMachine
from azure.mgmt.core.tools import parse_resource_id
from azure.mgmt.network.aio import NetworkManagementClient
from azure.mgmt.resource.resources.aio import ResourceManagementClient
from azure.mgmt.storage.aio import StorageManagementClient
from azure.mgmt.storage.models import StorageAccountKey
from azure.storage.blob.aio import BlobServiceClient

# project
from vm_teardown.models.vm_descriptor import BlobReference
from vm_teardown.tasks.common import NETWORK_INTERFACE_API_VERSION, get_connection_string, now


class StorageAccountKeyError(Exception):
    def __init__(self, storage_account_name: str) -> None:
        super().__init__(f"No keys found for storage account {storage_account_name}")


class OperationStatus(NamedTuple):
    status: str
    start_time: str
    end_time: str


async def wait_for_operation(poller: AsyncLROPoller[Any]) -> OperationStatus:
    """Wait for a long running operation to reach a terminal state"""
    start_time = now()
    await poller.result()
    return OperationStatus(poller.status(), start_time, now())


class TeardownClient(AbstractAsyncContextManager["TeardownClient"]):
    """Azure SDK clients bound to a single subscription"""

    def __init__(self, log: Logger, credential: DefaultAzureCredential, subscription_id: str) -> None:
        self.log = log
        self.subscription_id = subscription_id
        self.compute_client = ComputeManagementClient(credential, subscription_id)
        self.network_client = NetworkManagementClient(credential, subscription_id)
        self.resource_client = ResourceManagementClient(credential, subscription_id)
        self.storage_client = StorageManagementClient(credential, subscription_id)
        self._clients: tuple[AbstractAsyncContextManager, ...] = (
            self.compute_client,
            self.network_client,
            self.resource_client,
            self.storage_client,
        )

    async def __aenter__(self) -> Self:
        for client in self._clients:
            await client.__aenter__()
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: TracebackType | None
    ) -> None:
        for client in self._clients:
            await client.__aexit__(exc_type, exc_val, exc_tb)

    async def get_virtual_machine(self, resource_group: str, vm_name: str) -> VirtualMachine:
        return await self.compute_client.virtual_machines.get(resource_group, vm_name)

    async def delete_virtual_machine(self, resource_group: str, vm_name: str) -> OperationStatus:
        self.log.info("Deleting virtual machine %s in resource group %s", vm_name, resource_group)
        poller = await self.compute_client.virtual_machines.begin_delete(resource_group, vm_name)
        return await wait_for_operation(poller)

    async def find_storage_account_resource_group(self, storage_account_name: str) -> str | None:
        """Scans every resource group in the subscription for the storage account,
        returns the name of the first group that owns it, or None if no group does"""
        async for resource_group in self.resource_client.resource_groups.list():
            resource_group_name = cast(str, resource_group.name)
            try:
                await self.storage_client.storage_accounts.get_properties(resource_group_name, storage_account_name)
            except ResourceNotFoundError:
                continue
            self.log.debug("Found storage account %s in resource group %s", storage_account_name, resource_group_name)
            return resource_group_name
        return None

    async def get_storage_account_key(self, resource_group: str, storage_account_name: str) -> str:
        keys_result = await self.storage_client.storage_accounts.list_keys(resource_group, storage_account_name)
        keys: list[StorageAccountKey] = keys_result.keys or []
        if len(keys) == 0:
            raise StorageAccountKeyError(storage_account_name)
        return cast(str, keys[0].value)

    async def delete_blob(self, reference: BlobReference, key: str) -> None:
        async with BlobServiceClient.from_connection_string(
            get_connection_string(reference.account, key, reference.endpoint_suffix)
        ) as blob_service_client:
            await blob_service_client.get_container_client(reference.container).delete_blob(reference.blob)

    async def get_resource_group_by_id(self, resource_id: str, api_version: str = NETWORK_INTERFACE_API_VERSION) -> str:
        """Generic lookup of a resource by id, returns the resource group which owns it"""
        resource = await self.resource_client.resources.get_by_id(resource_id, api_version=api_version)
        return parse_resource_id(cast(str, resource.id))["resource_group"]

    async def delete_network_interface(self, resource_group: str, nic_name: str) -> OperationStatus:
        self.log.info("Deleting network interface %s in resource group %s", nic_name, resource_group)
        poller = await self.network_client.network_interfaces.begin_delete(resource_group, nic_name)
        return await wait_for_operation(poller)
