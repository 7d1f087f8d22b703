"""Configuration types: the top-level network configuration, delegate
configurations, runtime configuration and network selection elements."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

T = TypeVar("T")


class ConfigError(ValueError):
    """Raised when a network configuration cannot be loaded or is invalid."""


_JSON_KINDS = {
    dict: "object",
    list: "array",
    str: "string",
    bool: "bool",
    int: "number",
    float: "number",
    type(None): "null",
}


def _kind(value: Any) -> str:
    return _JSON_KINDS.get(type(value), type(value).__name__)


def _lookup(data: dict, key: str) -> Any:
    """Return the value for ``key``, falling back to a case-insensitive match."""
    if key in data:
        return data[key]
    folded = key.casefold()
    return next((v for k, v in data.items() if k.casefold() == folded), None)


def _object(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise ConfigError(f"cannot use {_kind(value)} as {what}")
    return value


def _str(data: dict, key: str, default: str = "") -> str:
    value = _lookup(data, key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigError(f"cannot use {_kind(value)} as string field {key!r}")
    return value


def _bool(data: dict, key: str, default: bool = False) -> bool:
    value = _opt_bool(data, key)
    return default if value is None else value


def _opt_bool(data: dict, key: str) -> Optional[bool]:
    value = _lookup(data, key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ConfigError(f"cannot use {_kind(value)} as bool field {key!r}")
    return value


def _opt_int(data: dict, key: str) -> Optional[int]:
    value = _lookup(data, key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"cannot use {_kind(value)} {value!r} as integer field {key!r}")
    return value


def _int(data: dict, key: str, default: int = 0) -> int:
    value = _opt_int(data, key)
    return default if value is None else value


def _list(data: dict, key: str) -> Optional[list]:
    value = _lookup(data, key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ConfigError(f"cannot use {_kind(value)} as array field {key!r}")
    return value


def _str_list(data: dict, key: str) -> Optional[list[str]]:
    values = _list(data, key)
    if values is None:
        return None
    result = []
    for value in values:
        if value is None:
            result.append("")
        elif isinstance(value, str):
            result.append(value)
        else:
            raise ConfigError(f"cannot use {_kind(value)} as string in {key!r}")
    return result


def _opt_object(data: dict, key: str) -> Optional[dict]:
    value = _lookup(data, key)
    if value is None:
        return None
    return _object(value, f"object field {key!r}")


def _entries(data: dict, key: str, factory: Callable[[Any], T]) -> Optional[list[T]]:
    values = _list(data, key)
    if values is None:
        return None
    return [factory(_object(value, f"element of {key!r}")) for value in values]


def _ip_list(data: dict, key: str) -> Optional[list[IPAddress]]:
    values = _str_list(data, key)
    if values is None:
        return None
    try:
        return [ipaddress.ip_address(value) for value in values]
    except ValueError as exc:
        raise ConfigError(f"invalid IP address in {key!r}: {exc}") from exc


@dataclass
class PortMapEntry:
    """A port mapping requested for a network attachment."""

    host_port: int = 0
    container_port: int = 0
    protocol: str = ""
    host_ip: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> PortMapEntry:
        data = _object(data, "port mapping")
        return cls(
            host_port=_int(data, "hostPort"),
            container_port=_int(data, "containerPort"),
            protocol=_str(data, "protocol"),
            host_ip=_str(data, "hostIP"),
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"hostPort": self.host_port, "containerPort": self.container_port}
        if self.protocol:
            out["protocol"] = self.protocol
        if self.host_ip:
            out["hostIP"] = self.host_ip
        return out


@dataclass
class BandwidthEntry:
    """Ingress and egress rate limits for a network attachment."""

    ingress_rate: int = 0
    ingress_burst: int = 0
    egress_rate: int = 0
    egress_burst: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> BandwidthEntry:
        data = _object(data, "bandwidth entry")
        return cls(
            ingress_rate=_int(data, "ingressRate"),
            ingress_burst=_int(data, "ingressBurst"),
            egress_rate=_int(data, "egressRate"),
            egress_burst=_int(data, "egressBurst"),
        )

    def to_dict(self) -> dict:
        return {
            "ingressRate": self.ingress_rate,
            "ingressBurst": self.ingress_burst,
            "egressRate": self.egress_rate,
            "egressBurst": self.egress_burst,
        }


@dataclass
class RuntimeConfig:
    """Runtime configuration passed to plugins as capability arguments."""

    port_maps: Optional[list[PortMapEntry]] = None
    bandwidth: Optional[BandwidthEntry] = None
    ips: Optional[list[str]] = None
    mac: str = ""
    infiniband_guid: str = ""
    device_id: str = ""
    cni_device_info_file: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> RuntimeConfig:
        data = _object(data, "runtime config")
        bandwidth = _opt_object(data, "bandwidth")
        return cls(
            port_maps=_entries(data, "portMappings", PortMapEntry.from_dict),
            bandwidth=None if bandwidth is None else BandwidthEntry.from_dict(bandwidth),
            ips=_str_list(data, "ips"),
            mac=_str(data, "mac"),
            infiniband_guid=_str(data, "infinibandGUID"),
            device_id=_str(data, "deviceID"),
            cni_device_info_file=_str(data, "CNIDeviceInfoFile"),
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {}
        if self.port_maps:
            out["portMappings"] = [entry.to_dict() for entry in self.port_maps]
        if self.bandwidth is not None:
            out["bandwidth"] = self.bandwidth.to_dict()
        if self.ips:
            out["ips"] = list(self.ips)
        if self.mac:
            out["mac"] = self.mac
        if self.infiniband_guid:
            out["infinibandGUID"] = self.infiniband_guid
        if self.device_id:
            out["deviceID"] = self.device_id
        if self.cni_device_info_file:
            out["CNIDeviceInfoFile"] = self.cni_device_info_file
        return out


@dataclass
class LogOptions:
    """Log file rotation options."""

    max_age: Optional[int] = None
    max_size: Optional[int] = None
    max_backups: Optional[int] = None
    compress: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: dict) -> LogOptions:
        data = _object(data, "log options")
        return cls(
            max_age=_opt_int(data, "maxAge"),
            max_size=_opt_int(data, "maxSize"),
            max_backups=_opt_int(data, "maxBackups"),
            compress=_opt_bool(data, "compress"),
        )


@dataclass
class PluginConf:
    """The common fields of a single plugin configuration."""

    cni_version: str = ""
    name: str = ""
    type: str = ""
    capabilities: dict[str, bool] = field(default_factory=dict)
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> PluginConf:
        data = _object(data, "plugin config")
        capabilities = _opt_object(data, "capabilities") or {}
        for key, value in capabilities.items():
            if not isinstance(value, bool):
                raise ConfigError(f"cannot use {_kind(value)} as capability {key!r}")
        return cls(
            cni_version=_str(data, "cniVersion"),
            name=_str(data, "name"),
            type=_str(data, "type"),
            capabilities=dict(capabilities),
            raw=data,
        )


@dataclass
class PluginConfList:
    """A named list of chained plugin configurations."""

    cni_version: str = ""
    name: str = ""
    disable_check: bool = False
    plugins: Optional[list[PluginConf]] = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> PluginConfList:
        data = _object(data, "plugin config list")
        return cls(
            cni_version=_str(data, "cniVersion"),
            name=_str(data, "name"),
            disable_check=_bool(data, "disableCheck"),
            plugins=_entries(data, "plugins", PluginConf.from_dict),
            raw=data,
        )


@dataclass
class NetworkSelectionElement:
    """One element of the network attachment selection annotation."""

    name: str = ""
    namespace: str = ""
    ip_request: Optional[list[str]] = None
    mac_request: str = ""
    infiniband_guid_request: str = ""
    interface_request: str = ""
    deprecated_interface_request: str = ""
    port_mappings_request: Optional[list[PortMapEntry]] = None
    bandwidth_request: Optional[BandwidthEntry] = None
    device_id: str = ""
    cni_args: Optional[dict[str, Any]] = None
    gateway_request: Optional[list[IPAddress]] = None

    @classmethod
    def from_dict(cls, data: dict) -> NetworkSelectionElement:
        data = _object(data, "network selection element")
        bandwidth = _opt_object(data, "bandwidth")
        return cls(
            name=_str(data, "name"),
            namespace=_str(data, "namespace"),
            ip_request=_str_list(data, "ips"),
            mac_request=_str(data, "mac"),
            infiniband_guid_request=_str(data, "infiniband-guid"),
            interface_request=_str(data, "interface"),
            deprecated_interface_request=_str(data, "interfaceRequest"),
            port_mappings_request=_entries(data, "portMappings", PortMapEntry.from_dict),
            bandwidth_request=None if bandwidth is None else BandwidthEntry.from_dict(bandwidth),
            device_id=_str(data, "deviceID"),
            cni_args=_opt_object(data, "cni-args"),
            gateway_request=_ip_list(data, "default-route"),
        )


@dataclass
class DelegateNetConf:
    """A delegate plugin configuration together with the pod's requests."""

    conf: PluginConf = field(default_factory=PluginConf)
    conf_list: PluginConfList = field(default_factory=PluginConfList)
    name: str = ""
    ifname_request: str = ""
    mac_request: str = ""
    infiniband_guid_request: str = ""
    ip_request: Optional[list[str]] = None
    port_mappings_request: Optional[list[PortMapEntry]] = None
    bandwidth_request: Optional[BandwidthEntry] = None
    gateway_request: Optional[list[IPAddress]] = None
    is_filter_v4_gateway: bool = False
    is_filter_v6_gateway: bool = False
    master_plugin: bool = False
    conf_list_plugin: bool = False
    device_id: str = ""
    resource_name: str = ""
    raw: bytes = b""


@dataclass
class K8sArgs:
    """The Kubernetes arguments carried in CNI_ARGS."""

    ignore_unknown: bool = False
    ip: Optional[IPAddress] = None
    k8s_pod_name: str = ""
    k8s_pod_namespace: str = ""
    k8s_pod_infra_container_id: str = ""
    k8s_pod_uid: str = ""


@dataclass
class ResourceInfo:
    """Device allocation information for a pod resource."""

    index: int = 0
    device_ids: list[str] = field(default_factory=list)


@dataclass
class NetConf:
    """The top-level meta-plugin network configuration."""

    cni_version: str = ""
    name: str = ""
    type: str = ""
    capabilities: dict[str, bool] = field(default_factory=dict)
    raw_prev_result: Optional[dict] = None
    prev_result: Any = None
    conf_dir: str = ""
    cni_dir: str = ""
    bin_dir: str = ""
    raw_delegates: Optional[list[dict]] = None
    delegates: list[DelegateNetConf] = field(default_factory=list)
    cluster_network: str = ""
    default_networks: Optional[list[str]] = None
    kubeconfig: str = ""
    log_file: str = ""
    log_level: str = ""
    log_to_stderr: bool = False
    log_options: Optional[LogOptions] = None
    runtime_config: Optional[RuntimeConfig] = None
    readiness_indicator_file: str = ""
    namespace_isolation: bool = False
    raw_non_isolated_namespaces: str = ""
    non_isolated_namespaces: list[str] = field(default_factory=list)
    system_namespaces: list[str] = field(default_factory=list)
    multus_namespace: str = ""
    retry_delete_on_error: bool = False

    def add_delegates(self, new_delegates) -> None:
        """Append ``new_delegates`` to the delegate list, keeping their order."""
        self.delegates.extend(new_delegates)