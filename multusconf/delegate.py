"""Loading delegate plugin configurations and injecting per-pod data into them."""

from __future__ import annotations

import ipaddress
import json
import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional, Union

from multusconf.types import (
    ConfigError,
    DelegateNetConf,
    IPAddress,
    NetworkSelectionElement,
    PluginConf,
    PluginConfList,
)

log = logging.getLogger(__name__)

RawConfig = Union[bytes, bytearray, str]

# Characters escaped by the canonical encoder so that output is safe inside HTML.
_ESCAPES = str.maketrans(
    {
        "<": "\\u003c",
        ">": "\\u003e",
        "&": "\\u0026",
        "\u2028": "\\u2028",
        "\u2029": "\\u2029",
    }
)


@contextmanager
def _reraise(prefix: str) -> Iterator[None]:
    try:
        yield
    except ConfigError as exc:
        raise ConfigError(f"{prefix}: {exc}") from exc


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON literal {name}")


def _as_bytes(data: RawConfig) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def _decode(data: RawConfig) -> Any:
    text = data if isinstance(data, str) else bytes(data).decode("utf-8", errors="replace")
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def _decode_object(data: RawConfig) -> dict:
    value = _decode(data)
    if not isinstance(value, dict):
        raise ConfigError("JSON value is not an object")
    return value


def _marshal(value: Any) -> bytes:
    text = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return text.translate(_ESCAPES).encode("utf-8")


def _plugin_list(raw_config: dict, prefix: str) -> list:
    if "plugins" not in raw_config:
        raise ConfigError(f"{prefix}: unable to get plugin list")
    plugins = raw_config["plugins"]
    if not isinstance(plugins, list):
        raise ConfigError(f"{prefix}: unable to typecast plugin list")
    return plugins


def load_delegate_net_conf_list(data: RawConfig, delegate_conf: DelegateNetConf) -> None:
    """Fill ``delegate_conf`` with the plugin list parsed from ``data``."""
    log.debug("LoadDelegateNetConfList: %s, %s", data, delegate_conf)
    with _reraise("LoadDelegateNetConfList: error unmarshalling delegate conflist"):
        delegate_conf.conf_list = PluginConfList.from_dict(_decode(data))

    if not delegate_conf.conf_list.plugins:
        raise ConfigError("LoadDelegateNetConfList: delegate must have the 'type' or 'plugin' field")
    if not delegate_conf.conf_list.plugins[0].type:
        raise ConfigError("LoadDelegateNetConfList: a plugin delegate must have the 'type' field")
    delegate_conf.conf_list_plugin = True
    delegate_conf.name = delegate_conf.conf_list.name


def load_delegate_net_conf(
    data: RawConfig,
    net_element: Optional[NetworkSelectionElement] = None,
    device_id: str = "",
    resource_name: str = "",
) -> DelegateNetConf:
    """Build a delegate configuration from raw plugin JSON and a selection element."""
    log.debug("LoadDelegateNetConf: %s, %s, %s", data, net_element, device_id)
    raw = _as_bytes(data)

    with _reraise("LoadDelegateNetConf: error unmarshalling delegate config"):
        conf = PluginConf.from_dict(_decode(raw))
    delegate = DelegateNetConf(conf=conf, name=conf.name)
    cni_args = net_element.cni_args if net_element is not None else None

    if not conf.type:
        with _reraise("LoadDelegateNetConf: failed with"):
            load_delegate_net_conf_list(raw, delegate)
        if device_id:
            with _reraise("LoadDelegateNetConf: failed to add deviceID in NetConfList bytes"):
                raw = add_device_id_in_conf_list(raw, device_id)
            delegate.resource_name = resource_name
            delegate.device_id = device_id
        if cni_args is not None:
            with _reraise("LoadDelegateNetConf(): failed to add cni-args in NetConfList bytes"):
                raw = add_cni_args_in_conf_list(raw, cni_args)
    else:
        if device_id:
            with _reraise("LoadDelegateNetConf: failed to add deviceID in NetConf bytes"):
                raw = delegate_add_device_id(raw, device_id)
            delegate.resource_name = resource_name
            delegate.device_id = device_id
        if cni_args is not None:
            with _reraise("LoadDelegateNetConf(): failed to add cni-args in NetConfList bytes"):
                raw = add_cni_args_in_config(raw, cni_args)

    if net_element is not None:
        _apply_selection(delegate, net_element, device_id)

    delegate.raw = raw
    return delegate


def _apply_selection(delegate: DelegateNetConf, element: NetworkSelectionElement, device_id: str) -> None:
    if element.name:
        delegate.name = f"{element.namespace}/{element.name}"
    if element.interface_request:
        delegate.ifname_request = element.interface_request
    if element.mac_request:
        delegate.mac_request = element.mac_request
    if element.ip_request is not None:
        delegate.ip_request = element.ip_request
    if element.bandwidth_request is not None:
        delegate.bandwidth_request = element.bandwidth_request
    if element.port_mappings_request is not None:
        delegate.port_mappings_request = element.port_mappings_request
    if element.gateway_request is not None:
        existing = delegate.gateway_request or []
        delegate.gateway_request = [*existing, *element.gateway_request]
    if element.infiniband_guid_request:
        delegate.infiniband_guid_request = element.infiniband_guid_request
    if element.device_id:
        if device_id:
            log.debug("Both RuntimeConfig and ResourceMap provide deviceID. Ignoring RuntimeConfig")
        else:
            delegate.device_id = element.device_id


def delegate_add_device_id(data: RawConfig, device_id: str) -> bytes:
    """Return the plugin config with ``deviceID`` and ``pciBusID`` set."""
    with _reraise("delegateAddDeviceID: failed to unmarshal inBytes"):
        raw_config = _decode_object(data)
    raw_config["deviceID"] = device_id
    raw_config["pciBusID"] = device_id
    config_bytes = _marshal(raw_config)
    log.debug("delegateAddDeviceID updated configBytes %s", config_bytes)
    return config_bytes


def add_device_id_in_conf_list(data: RawConfig, device_id: str) -> bytes:
    """Return the plugin list with ``deviceID`` and ``pciBusID`` set on every plugin."""
    prefix = "addDeviceIDInConfList"
    with _reraise(f"{prefix}: failed to unmarshal inBytes"):
        raw_config = _decode_object(data)
    for idx, plugin in enumerate(_plugin_list(raw_config, prefix)):
        if not isinstance(plugin, dict):
            raise ConfigError(f"{prefix}: unable to typecast plugin #{idx}")
        plugin["deviceID"] = device_id
        plugin["pciBusID"] = device_id
    config_bytes = _marshal(raw_config)
    log.debug("addDeviceIDInConfList: updated configBytes %s", config_bytes)
    return config_bytes


def inject_cni_args(cni_config: dict, args: dict) -> None:
    """Merge ``args`` into ``cni_config["args"]["cni"]``, creating it as needed."""
    if "args" not in cni_config:
        cni_config["args"] = {"cni": dict(args)}
        return
    args_value = cni_config["args"]
    if not isinstance(args_value, dict):
        raise ConfigError("injectCNIArgs: 'args' is not an object")
    if "cni" not in args_value:
        args_value["cni"] = dict(args)
        return
    cni_value = args_value["cni"]
    if not isinstance(cni_value, dict):
        raise ConfigError("injectCNIArgs: 'args.cni' is not an object")
    cni_value.update(args)


def add_cni_args_in_config(data: RawConfig, cni_args: dict) -> bytes:
    """Return the plugin config with ``cni_args`` injected."""
    with _reraise("addCNIArgsInConfig(): failed to unmarshal inBytes"):
        raw_config = _decode_object(data)
    inject_cni_args(raw_config, cni_args)
    return _marshal(raw_config)


def add_cni_args_in_conf_list(data: RawConfig, cni_args: dict) -> bytes:
    """Return the plugin list with ``cni_args`` injected into every plugin."""
    prefix = "addCNIArgsInConfList()"
    with _reraise(f"{prefix}: failed to unmarshal inBytes"):
        raw_config = _decode_object(data)
    for idx, plugin in enumerate(_plugin_list(raw_config, prefix)):
        if not isinstance(plugin, dict):
            raise ConfigError(f"{prefix}: unable to typecast plugin #{idx}")
        inject_cni_args(plugin, cni_args)
    return _marshal(raw_config)


def _is_v4(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv4Address):
        return True
    return ip.ipv4_mapped is not None


def check_gateway_config(delegates: Iterable[DelegateNetConf]) -> None:
    """Set each delegate's gateway filter flags; reject more than one default route per family."""
    delegates = list(delegates)
    gateways = [gw for d in delegates for gw in (d.gateway_request or [])]
    v4_count = sum(1 for gw in gateways if _is_v4(gw))
    v6_count = len(gateways) - v4_count
    if v4_count > 1 or v6_count > 1:
        raise ConfigError("multus does not support ECMP for default-route")

    for delegate in delegates:
        requested = delegate.gateway_request or []
        delegate.is_filter_v4_gateway = not any(_is_v4(gw) for gw in requested)
        delegate.is_filter_v6_gateway = all(_is_v4(gw) for gw in requested)


def check_system_namespaces(namespace: str, system_namespaces: Iterable[str]) -> bool:
    """Report whether ``namespace`` is one of ``system_namespaces``."""
    return namespace in system_namespaces