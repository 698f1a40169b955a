# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from argparse import ArgumentParser, Namespace
from asyncio import run
from logging import basicConfig, getLogger

# 3p
from azure.mgmt.core.tools import parse_resource_id

# project
from vm_teardown.config.env import (
    RESOURCE_GROUP_SETTING,
    STRICT_STORAGE_LOOKUP_SETTING,
    SUBSCRIPTION_ID_SETTING,
    VM_NAME_SETTING,
    MissingConfigOptionError,
    get_config_option,
    is_truthy,
)
from vm_teardown.models.vm_descriptor import (
    BlobReference,
    VMDescriptor,
    deserialize_vm_descriptor,
    virtual_machine_to_dict,
)
from vm_teardown.tasks.client.teardown_client import TeardownClient
from vm_teardown.tasks.common import get_virtual_machine_id
from vm_teardown.tasks.task import Task, task_main

TEARDOWN_TASK_NAME = "teardown_task"

log = getLogger(__name__)


class TeardownError(Exception):
    """Raised when the teardown stops early, wraps whatever went wrong"""

    def __init__(self, message: str) -> None:
        super().__init__(f"Unexpected exception: {message}")


class InvalidVirtualMachineError(Exception):
    def __init__(self, vm_name: str) -> None:
        super().__init__(f"Virtual machine {vm_name} is not backed by VHD blobs or has no network interface")


class StorageAccountNotFoundError(Exception):
    def __init__(self, storage_account_name: str) -> None:
        super().__init__(f"owning resource group not found for storage account {storage_account_name}")
        self.storage_account_name = storage_account_name


class TeardownTask(Task):
    """Deletes a virtual machine, then the blobs behind its disks, then its primary network interface.
    The disk storage accounts and the network interface may live in other resource groups than the VM"""

    NAME = TEARDOWN_TASK_NAME

    def __init__(
        self, subscription_id: str, resource_group: str, vm_name: str, strict_storage_lookup: bool = False
    ) -> None:
        for option, value in (
            ("subscription_id", subscription_id),
            ("resource_group", resource_group),
            ("vm_name", vm_name),
        ):
            if not value or not value.strip():
                raise ValueError(f"{option} must be a non-empty string")
        super().__init__(tags=[f"subscription_id:{subscription_id}", f"vm_name:{vm_name}"])
        self.subscription_id = subscription_id
        self.resource_group = resource_group
        self.vm_name = vm_name
        self.strict_storage_lookup = strict_storage_lookup
        """When set, a disk storage account which no resource group owns fails the teardown
        before its keys are fetched"""

    async def run(self) -> None:
        try:
            await self.teardown()
        except Exception as e:
            vm_id = get_virtual_machine_id(self.subscription_id, self.resource_group, self.vm_name)
            self.log.exception("Teardown of %s stopped", vm_id)
            raise TeardownError(str(e)) from e

    async def teardown(self) -> None:
        async with TeardownClient(self.log, self.credential, self.subscription_id) as client:
            vm = await self.resolve_vm(client)
            await self.delete_vm(client, vm)
            for disk in vm.disks:
                await self.delete_disk_blob(client, vm, disk)
            await self.delete_network_interface(client, vm.primary_network_interface_id)
        self.log.info("Finished tearing down virtual machine %s", self.vm_name)

    async def resolve_vm(self, client: TeardownClient) -> VMDescriptor:
        vm = await client.get_virtual_machine(self.resource_group, self.vm_name)
        descriptor = deserialize_vm_descriptor(
            self.subscription_id, self.resource_group, self.vm_name, virtual_machine_to_dict(vm)
        )
        if descriptor is None:
            raise InvalidVirtualMachineError(self.vm_name)
        self.log.info(
            "Found virtual machine %s with OS disk %s/%s in storage account %s and %s data disk(s)",
            self.vm_name,
            descriptor.os_disk.container,
            descriptor.os_disk.blob,
            descriptor.os_disk.account,
            len(descriptor.data_disks),
        )
        return descriptor

    async def delete_vm(self, client: TeardownClient, vm: VMDescriptor) -> None:
        status, start_time, end_time = await client.delete_virtual_machine(vm.resource_group, vm.name)
        self.log.info(
            "Deleted virtual machine %s: status %s, started %s, ended %s", vm.name, status, start_time, end_time
        )

    async def delete_disk_blob(self, client: TeardownClient, vm: VMDescriptor, disk: BlobReference) -> None:
        account, container, blob, _ = disk
        resource_group = await client.find_storage_account_resource_group(account)
        if resource_group is None:
            not_found = StorageAccountNotFoundError(account)
            if self.strict_storage_lookup:
                raise not_found
            self.log.warning("%s, fetching its keys from resource group %s", not_found, vm.resource_group)
            resource_group = vm.resource_group
        key = await client.get_storage_account_key(resource_group, account)
        await client.delete_blob(disk, key)
        self.log.info("Removed blob %s from container %s in storage account %s", blob, container, account)

    async def delete_network_interface(self, client: TeardownClient, nic_id: str) -> None:
        resource_group = await client.get_resource_group_by_id(nic_id)
        nic_name = parse_resource_id(nic_id)["name"]
        status, start_time, end_time = await client.delete_network_interface(resource_group, nic_name)
        self.log.info(
            "Deleted network interface %s: status %s, started %s, ended %s", nic_name, status, start_time, end_time
        )


async def teardown_vm(
    subscription_id: str,
    resource_group: str,
    vm_name: str,
    *,
    strict_storage_lookup: bool = False,
    verbose: bool = False,
) -> None:
    await task_main(
        TeardownTask(subscription_id, resource_group, vm_name, strict_storage_lookup=strict_storage_lookup),
        verbose=verbose,
    )


def parse_args(argv: list[str] | None = None) -> Namespace:
    parser = ArgumentParser(
        description="Delete an Azure virtual machine together with its VHD blobs and its network interface"
    )
    parser.add_argument(
        "-s", "--subscription", help=f"Subscription ID of the virtual machine (default: ${SUBSCRIPTION_ID_SETTING})"
    )
    parser.add_argument(
        "-g", "--resource-group", help=f"Resource group of the virtual machine (default: ${RESOURCE_GROUP_SETTING})"
    )
    parser.add_argument("-n", "--name", help=f"Name of the virtual machine (default: ${VM_NAME_SETTING})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at debug level for this run")
    parser.add_argument(
        "--strict-storage-lookup",
        action="store_true",
        help="Fail as soon as a disk's storage account is not found in any resource group "
        f"(default: ${STRICT_STORAGE_LOOKUP_SETTING})",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    basicConfig()
    try:
        subscription_id = args.subscription or get_config_option(SUBSCRIPTION_ID_SETTING)
        resource_group = args.resource_group or get_config_option(RESOURCE_GROUP_SETTING)
        vm_name = args.name or get_config_option(VM_NAME_SETTING)
        run(
            teardown_vm(
                subscription_id,
                resource_group,
                vm_name,
                strict_storage_lookup=args.strict_storage_lookup or is_truthy(STRICT_STORAGE_LOOKUP_SETTING),
                verbose=args.verbose,
            )
        )
    except (MissingConfigOptionError, TeardownError, ValueError) as e:
        log.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
