"""Loading the top-level network configuration and waiting for network readiness."""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import time
from typing import Any, Optional, Union

from multusconf.delegate import load_delegate_net_conf
from multusconf.types import (
    ConfigError,
    IPAddress,
    LogOptions,
    NetConf,
    RuntimeConfig,
    _bool,
    _kind,
    _list,
    _object,
    _opt_object,
    _str,
    _str_list,
)

log = logging.getLogger(__name__)

DEFAULT_CNI_DIR = "/var/lib/cni/multus"
DEFAULT_CONF_DIR = "/etc/cni/multus/net.d"
DEFAULT_BIN_DIR = "/opt/cni/bin"
DEFAULT_READINESS_INDICATOR_FILE = ""
DEFAULT_MULTUS_NAMESPACE = "kube-system"
DEFAULT_NON_ISOLATED_NAMESPACE = "default"

READINESS_POLL_INTERVAL = 1.0
READINESS_POLL_TIMEOUT = 45.0


def get_default_net_conf() -> NetConf:
    """Return a configuration holding the default values."""
    return NetConf(
        bin_dir=DEFAULT_BIN_DIR,
        conf_dir=DEFAULT_CONF_DIR,
        cni_dir=DEFAULT_CNI_DIR,
        log_to_stderr=True,
        multus_namespace=DEFAULT_MULTUS_NAMESPACE,
        non_isolated_namespaces=[DEFAULT_NON_ISOLATED_NAMESPACE],
        readiness_indicator_file=DEFAULT_READINESS_INDICATOR_FILE,
        system_namespaces=["kube-system"],
    )


def _decode_object(data: Union[bytes, bytearray, str]) -> dict:
    text = data if isinstance(data, str) else bytes(data).decode("utf-8", errors="replace")
    try:
        value = json.loads(text)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return _object(value, "network configuration")


def _populate(netconf: NetConf, raw: dict) -> None:
    capabilities = _opt_object(raw, "capabilities")
    if capabilities is not None:
        for key, value in capabilities.items():
            if not isinstance(value, bool):
                raise ConfigError(f"cannot use {_kind(value)} as capability {key!r}")
        netconf.capabilities = dict(capabilities)

    netconf.cni_version = _str(raw, "cniVersion", netconf.cni_version)
    netconf.name = _str(raw, "name", netconf.name)
    netconf.type = _str(raw, "type", netconf.type)
    netconf.raw_prev_result = _opt_object(raw, "prevResult")
    netconf.conf_dir = _str(raw, "confDir", netconf.conf_dir)
    netconf.cni_dir = _str(raw, "cniDir", netconf.cni_dir)
    netconf.bin_dir = _str(raw, "binDir", netconf.bin_dir)

    delegates = _list(raw, "delegates")
    if delegates is not None:
        netconf.raw_delegates = [_object(item, "delegate config") for item in delegates]

    netconf.cluster_network = _str(raw, "clusterNetwork", netconf.cluster_network)
    default_networks = _str_list(raw, "defaultNetworks")
    if default_networks is not None:
        netconf.default_networks = default_networks
    netconf.kubeconfig = _str(raw, "kubeconfig", netconf.kubeconfig)
    netconf.log_file = _str(raw, "logFile", netconf.log_file)
    netconf.log_level = _str(raw, "logLevel", netconf.log_level)
    netconf.log_to_stderr = _bool(raw, "logToStderr", netconf.log_to_stderr)

    log_options = _opt_object(raw, "logOptions")
    if log_options is not None:
        netconf.log_options = LogOptions.from_dict(log_options)
    runtime_config = _opt_object(raw, "runtimeConfig")
    if runtime_config is not None:
        netconf.runtime_config = RuntimeConfig.from_dict(runtime_config)

    netconf.readiness_indicator_file = _str(raw, "readinessindicatorfile", netconf.readiness_indicator_file)
    netconf.namespace_isolation = _bool(raw, "namespaceIsolation", netconf.namespace_isolation)
    netconf.raw_non_isolated_namespaces = _str(raw, "globalNamespaces", netconf.raw_non_isolated_namespaces)
    system_namespaces = _str_list(raw, "systemNamespaces")
    if system_namespaces is not None:
        netconf.system_namespaces = system_namespaces
    netconf.multus_namespace = _str(raw, "multusNamespace", netconf.multus_namespace)
    netconf.retry_delete_on_error = _bool(raw, "retryDeleteOnError", netconf.retry_delete_on_error)


def load_net_conf(data: Union[bytes, bytearray, str]) -> NetConf:
    """Parse the meta-plugin configuration read from standard input."""
    netconf = get_default_net_conf()
    log.debug("LoadNetConf: %s", data)
    try:
        _populate(netconf, _decode_object(data))
    except ConfigError as exc:
        raise ConfigError(f"LoadNetConf: failed to load netconf: {exc}") from exc

    if netconf.raw_prev_result is not None:
        netconf.prev_result = netconf.raw_prev_result
        netconf.raw_prev_result = None

    # Without a cluster network the delegates run in order and the first
    # delegate is the master plugin.
    if not netconf.raw_delegates and not netconf.cluster_network:
        raise ConfigError("LoadNetConf: at least one delegate/clusterNetwork must be specified")

    if netconf.raw_non_isolated_namespaces:
        netconf.non_isolated_namespaces = [
            namespace.strip() for namespace in netconf.raw_non_isolated_namespaces.split(",")
        ]

    if not netconf.cluster_network:
        if not netconf.raw_delegates:
            raise ConfigError("LoadNetConf: at least one delegate must be specified")
        for idx, raw_conf in enumerate(netconf.raw_delegates):
            encoded = json.dumps(raw_conf, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
            try:
                delegate = load_delegate_net_conf(encoded, None, "", "")
            except ConfigError as exc:
                raise ConfigError(f"LoadNetConf: failed to load delegate {idx} config: {exc}") from exc
            netconf.delegates.append(delegate)
        netconf.raw_delegates = None
        netconf.delegates[0].master_plugin = True

    return netconf


def get_gateway_from_result(result: dict) -> list[Optional[IPAddress]]:
    """Return the gateways of the default routes in a plugin result."""
    gateways: list[Optional[IPAddress]] = []
    for route in _object(result, "result").get("routes") or []:
        route = _object(route, "route")
        try:
            destination = ipaddress.ip_network(route.get("dst", ""), strict=False)
            if destination.prefixlen != 0:
                continue
            gw = route.get("gw")
            gateways.append(ipaddress.ip_address(gw) if gw else None)
        except ValueError as exc:
            raise ConfigError(f"invalid route {route!r}: {exc}") from exc
    return gateways


def _absolute(path: str) -> str:
    return os.path.abspath(os.path.normpath(path) if path else path)


def get_readiness_indicator_file(path: str) -> None:
    """Wait until the readiness indicator file exists.

    Raises ``TimeoutError`` when it has not appeared within the poll timeout.
    """
    indicator = _absolute(path)
    deadline = time.monotonic() + READINESS_POLL_TIMEOUT
    while True:
        if os.path.exists(indicator):
            return
        if time.monotonic() >= deadline:
            raise TimeoutError("timed out waiting for the condition")
        time.sleep(READINESS_POLL_INTERVAL)


def readiness_indicator_exists_now(path: str) -> bool:
    """Report whether the readiness indicator file exists right now."""
    try:
        os.stat(_absolute(path))
    except FileNotFoundError:
        return False
    return True


__all__: list[Any] = [
    "get_default_net_conf",
    "load_net_conf",
    "get_gateway_from_result",
    "get_readiness_indicator_file",
    "readiness_indicator_exists_now",
]