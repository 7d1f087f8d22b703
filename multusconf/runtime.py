"""Building the runtime configuration handed to delegate plugins."""

from __future__ import annotations

import dataclasses
import logging
import os
import posixpath
from dataclasses import dataclass, field
from typing import Any, Optional

from multusconf.types import DelegateNetConf, K8sArgs, RuntimeConfig

log = logging.getLogger(__name__)

CNI_DEVICE_INFO_PATH = "/var/run/k8s.cni.cncf.io/devinfo/cni"


@dataclass
class CmdArgs:
    """The arguments a runtime passes with an ADD, DEL or CHECK request."""

    container_id: str = ""
    netns: str = ""
    if_name: str = ""
    args: str = ""
    path: str = ""
    stdin_data: bytes = b""


@dataclass
class CNIRuntimeConf:
    """The per-invocation configuration for a delegate plugin."""

    container_id: str = ""
    net_ns: str = ""
    if_name: str = ""
    args: list[tuple[str, str]] = field(default_factory=list)
    capability_args: dict[str, Any] = field(default_factory=dict)
    cache_dir: str = ""


def get_cni_device_info_path(name: str) -> str:
    """Return the device-info file path for ``name``, with slashes made safe."""
    return posixpath.normpath(posixpath.join(CNI_DEVICE_INFO_PATH, name.replace("/", "-")))


def merge_cni_runtime_config(
    runtime_config: Optional[RuntimeConfig], delegate: DelegateNetConf
) -> RuntimeConfig:
    """Return a copy of ``runtime_config`` with the delegate's requests applied.

    Requests are only applied to delegates that are not the master plugin;
    the given configuration is never modified.
    """
    log.debug("mergeCNIRuntimeConfig: %s %s", runtime_config, delegate)
    merged = RuntimeConfig() if runtime_config is None else dataclasses.replace(runtime_config)
    if delegate.master_plugin:
        return merged

    if delegate.port_mappings_request is not None:
        merged.port_maps = delegate.port_mappings_request
    if delegate.bandwidth_request is not None:
        merged.bandwidth = delegate.bandwidth_request
    if delegate.ip_request is not None:
        merged.ips = delegate.ip_request
    if delegate.mac_request:
        merged.mac = delegate.mac_request
    if delegate.infiniband_guid_request:
        merged.infiniband_guid = delegate.infiniband_guid_request
    if delegate.device_id:
        merged.device_id = delegate.device_id
    log.debug("mergeCNIRuntimeConfig: add runtimeConfig for net-attach-def: %s", merged)
    return merged


def delegate_runtime_config(
    container_id: str,
    delegate: Optional[DelegateNetConf],
    rc: Optional[RuntimeConfig],
    if_name: str,
) -> Optional[RuntimeConfig]:
    """Return the runtime configuration for ``delegate``, or ``rc`` when there is none."""
    if delegate is None:
        return rc
    delegate_rc = merge_cni_runtime_config(rc, delegate)
    if delegate_rc.device_id:
        if delegate_rc.cni_device_info_file:
            log.debug(
                "Existing value of CNIDeviceInfoFile will be overwritten %s",
                delegate_rc.cni_device_info_file,
            )
        auto_device_info = f"{delegate.name}-{container_id}_{if_name}"
        delegate_rc.cni_device_info_file = get_cni_device_info_path(auto_device_info)
        log.debug("Adding auto-generated CNIDeviceInfoFile: %s", delegate_rc.cni_device_info_file)
    return delegate_rc


def _base_runtime_conf(
    net_ns: str,
    pod_namespace: str,
    pod_name: str,
    container_id: str,
    sandbox_id: str,
    pod_uid: str,
    if_name: str,
) -> CNIRuntimeConf:
    # The order of the arguments is relied upon by verbose logging.
    return CNIRuntimeConf(
        container_id=container_id,
        net_ns=net_ns,
        if_name=if_name,
        args=[
            ("IgnoreUnknown", "true"),
            ("K8S_POD_NAMESPACE", pod_namespace),
            ("K8S_POD_NAME", pod_name),
            ("K8S_POD_INFRA_CONTAINER_ID", sandbox_id),
            ("K8S_POD_UID", pod_uid),
        ],
    )


def _merge_environment_args(rt: CNIRuntimeConf, cni_args: str) -> None:
    log.debug("ARGS: %s", cni_args)
    for arg in cni_args.split(";"):
        key, sep, value = arg.partition("=")
        if not sep:
            log.error("CreateCNIRuntimeConf: CNI_ARGS %s is not recognized as CNI arg, skipped", arg)
            continue
        for idx, (existing_key, existing_value) in enumerate(rt.args):
            if existing_key == key and existing_value == "" and value != "":
                log.debug("CreateCNIRuntimeConf: add new val: %s", arg)
                rt.args[idx] = (key, value)
                break
        else:
            rt.args.append((key, value))


def _capability_args(rc: RuntimeConfig) -> dict[str, Any]:
    capabilities: dict[str, Any] = {}
    if rc.port_maps:
        capabilities["portMappings"] = rc.port_maps
    if rc.bandwidth is not None:
        capabilities["bandwidth"] = rc.bandwidth
    if rc.ips:
        capabilities["ips"] = rc.ips
    if rc.mac:
        capabilities["mac"] = rc.mac
    if rc.infiniband_guid:
        capabilities["infinibandGUID"] = rc.infiniband_guid
    if rc.device_id:
        capabilities["deviceID"] = rc.device_id
    if rc.cni_device_info_file:
        capabilities["CNIDeviceInfoFile"] = rc.cni_device_info_file
    return capabilities


def new_cni_runtime_conf(
    container_id: str,
    sandbox_id: str,
    pod_name: str,
    pod_namespace: str,
    pod_uid: str,
    net_ns: str,
    if_name: str,
    rc: Optional[RuntimeConfig],
    delegate: Optional[DelegateNetConf],
) -> tuple[CNIRuntimeConf, str]:
    """Build the runtime configuration and the device-info file path for a request."""
    log.debug("LoadCNIRuntimeConf: %s, %s %s", if_name, rc, delegate)
    delegate_rc = delegate_runtime_config(container_id, delegate, rc, if_name)
    rt = _base_runtime_conf(net_ns, pod_namespace, pod_name, container_id, sandbox_id, pod_uid, if_name)

    cni_args = os.environ.get("CNI_ARGS", "")
    if cni_args:
        _merge_environment_args(rt, cni_args)

    device_info_file = ""
    if delegate_rc is not None:
        device_info_file = delegate_rc.cni_device_info_file
        rt.capability_args = _capability_args(delegate_rc)
    return rt, device_info_file


def create_cni_runtime_conf(
    args: CmdArgs,
    k8s_args: K8sArgs,
    if_name: str,
    rc: Optional[RuntimeConfig],
    delegate: Optional[DelegateNetConf],
) -> tuple[CNIRuntimeConf, str]:
    """Build the runtime configuration for a delegate from command and pod arguments."""
    return new_cni_runtime_conf(
        args.container_id,
        k8s_args.k8s_pod_infra_container_id,
        k8s_args.k8s_pod_name,
        k8s_args.k8s_pod_namespace,
        k8s_args.k8s_pod_uid,
        args.netns,
        if_name,
        rc,
        delegate,
    )