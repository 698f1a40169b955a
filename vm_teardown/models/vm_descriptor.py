# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Final, NamedTuple
from urllib.parse import urlsplit

# 3p
from azure.mgmt.compute.models import DataDisk, OSDisk, VirtualMachine
from jsonschema import ValidationError, validate

DEFAULT_STORAGE_ENDPOINT_SUFFIX: Final = "core.windows.net"

VHD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "vhd": {
            "type": "object",
            "properties": {"uri": {"type": "string", "minLength": 1}},
            "required": ["uri"],
        },
    },
    "required": ["vhd"],
}

NETWORK_INTERFACE_REFERENCE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "primary": {"type": "boolean"},
    },
    "required": ["id"],
}

VIRTUAL_MACHINE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "storage_profile": {
            "type": "object",
            "properties": {
                "os_disk": VHD_SCHEMA,
                "data_disks": {"type": "array", "items": VHD_SCHEMA},
            },
            "required": ["os_disk"],
        },
        "network_profile": {
            "type": "object",
            "properties": {
                "network_interfaces": {
                    "type": "array",
                    "items": NETWORK_INTERFACE_REFERENCE_SCHEMA,
                    "minItems": 1,
                },
            },
            "required": ["network_interfaces"],
        },
    },
    "required": ["storage_profile", "network_profile"],
}


class InvalidVhdUriError(Exception):
    def __init__(self, uri: str, reason: str) -> None:
        super().__init__(f"Invalid VHD URI {uri!r}: {reason}")
        self.uri = uri


class BlobReference(NamedTuple):
    account: str
    container: str
    blob: str
    endpoint_suffix: str = DEFAULT_STORAGE_ENDPOINT_SUFFIX
    """The storage endpoint suffix of the cloud hosting the account, `core.windows.net` in the public cloud"""


def get_endpoint_suffix(hostname: str) -> str:
    _, _, service_host = hostname.partition(".")
    service, _, endpoint_suffix = service_host.partition(".")
    if service == "blob" and endpoint_suffix:
        return endpoint_suffix
    return DEFAULT_STORAGE_ENDPOINT_SUFFIX


def parse_blob_reference(uri: str) -> BlobReference:
    """Split a VHD URI into its storage account, container and blob names

    Example:
    >>> parse_blob_reference("https://mystorage.blob.core.windows.net/vhds/osdisk.vhd")
    BlobReference(account='mystorage', container='vhds', blob='osdisk.vhd', endpoint_suffix='core.windows.net')
    """
    try:
        parts = urlsplit(uri)
    except ValueError as e:
        raise InvalidVhdUriError(uri, str(e)) from e
    if parts.scheme not in {"http", "https"}:
        raise InvalidVhdUriError(uri, "expected an http(s) URI")
    if not parts.hostname:
        raise InvalidVhdUriError(uri, "missing storage account host")
    segments = parts.path.split("/")
    if len(segments) < 3:
        raise InvalidVhdUriError(uri, "expected a container and a blob name in the path")
    account = parts.hostname.split(".")[0]
    container, blob = segments[-2], segments[-1]
    if not account or not container or not blob:
        raise InvalidVhdUriError(uri, "empty storage account, container or blob name")
    return BlobReference(account, container, blob, get_endpoint_suffix(parts.hostname))


@dataclass(frozen=True)
class VMDescriptor:
    subscription_id: str
    resource_group: str
    name: str
    os_disk: BlobReference
    data_disks: tuple[BlobReference, ...]
    network_interface_ids: tuple[str, ...]
    primary_network_interface_id: str

    @property
    def disks(self) -> Iterator[BlobReference]:
        """The OS disk first, then the data disks in the order the VM lists them"""
        yield self.os_disk
        yield from self.data_disks


def get_vhd(disk: OSDisk | DataDisk) -> dict[str, Any]:
    if disk.vhd is None or not disk.vhd.uri:
        return {}
    return {"vhd": {"uri": disk.vhd.uri}}


def virtual_machine_to_dict(vm: VirtualMachine) -> dict[str, Any]:
    """The parts of a virtual machine a teardown needs, read from the model attributes
    so the result has the same shape whichever SDK version built the model"""
    vm_dict: dict[str, Any] = {}
    storage_profile = vm.storage_profile
    if storage_profile is not None and storage_profile.os_disk is not None:
        vm_dict["storage_profile"] = {
            "os_disk": get_vhd(storage_profile.os_disk),
            "data_disks": [get_vhd(disk) for disk in storage_profile.data_disks or []],
        }
    network_profile = vm.network_profile
    if network_profile is not None:
        vm_dict["network_profile"] = {
            "network_interfaces": [
                {"id": nic.id, "primary": bool(nic.primary)}
                for nic in network_profile.network_interfaces or []
                if nic.id
            ]
        }
    return vm_dict


def get_primary_network_interface_id(network_interfaces: list[Mapping[str, Any]]) -> str:
    for nic in network_interfaces:
        if nic.get("primary"):
            return nic["id"]
    return network_interfaces[0]["id"]


def deserialize_vm_descriptor(
    subscription_id: str, resource_group: str, name: str, vm: Mapping[str, Any]
) -> VMDescriptor | None:
    """Build a descriptor from the `virtual_machine_to_dict` form of a virtual machine,
    returns None if the VM is not backed by VHD blobs or has no network interface.
    Raises `InvalidVhdUriError` if any disk URI does not name a blob"""
    try:
        validate(instance=vm, schema=VIRTUAL_MACHINE_SCHEMA)
    except ValidationError:
        return None
    storage_profile = vm["storage_profile"]
    network_interfaces = vm["network_profile"]["network_interfaces"]
    return VMDescriptor(
        subscription_id=subscription_id,
        resource_group=resource_group,
        name=name,
        os_disk=parse_blob_reference(storage_profile["os_disk"]["vhd"]["uri"]),
        data_disks=tuple(parse_blob_reference(disk["vhd"]["uri"]) for disk in storage_profile.get("data_disks", [])),
        network_interface_ids=tuple(nic["id"] for nic in network_interfaces),
        primary_network_interface_id=get_primary_network_interface_id(network_interfaces),
    )
